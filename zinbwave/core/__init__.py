from .exceptions import (
    ConfigurationError,
    InvalidDesignError,
    InvalidInputError,
    NonConvergenceWarning,
    NumericalInstabilityWarning,
    ZinbWaveError,
    ZinbWaveWarning,
)
from .likelihood import ETA_BOUND, clamp_eta, zinb_derivatives, zinb_loglik
from .structures import FitDiagnostics, FitResult, ProvenanceLog, ZinbModel

__all__ = [
    "ZinbModel",
    "FitResult",
    "FitDiagnostics",
    "ProvenanceLog",
    "ZinbWaveError",
    "InvalidInputError",
    "InvalidDesignError",
    "ConfigurationError",
    "ZinbWaveWarning",
    "NumericalInstabilityWarning",
    "NonConvergenceWarning",
    "ETA_BOUND",
    "clamp_eta",
    "zinb_loglik",
    "zinb_derivatives",
]
