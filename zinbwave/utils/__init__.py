from .batch import partition_indices
from .parallel import WorkerPool, resolve_n_jobs
from .simulate import SimulatedCounts, ZinbDataGenerator, sample_zinb, zinb_simulate

__all__ = [
    "WorkerPool",
    "resolve_n_jobs",
    "partition_indices",
    "ZinbDataGenerator",
    "SimulatedCounts",
    "sample_zinb",
    "zinb_simulate",
]
