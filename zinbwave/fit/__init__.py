from .blocks import (
    BlockSettings,
    rescale_factors,
    update_dispersion,
    update_latent_factors,
    update_mean_model,
    update_zero_inflation,
)
from .convergence import ConvergenceTracker
from .estimator import ZinbEstimator
from .initialize import initialize_model
from .newton import newton_update

__all__ = [
    "ZinbEstimator",
    "ConvergenceTracker",
    "BlockSettings",
    "initialize_model",
    "newton_update",
    "rescale_factors",
    "update_dispersion",
    "update_mean_model",
    "update_zero_inflation",
    "update_latent_factors",
]
