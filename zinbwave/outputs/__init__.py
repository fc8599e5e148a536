from .loglik import zinb_aic, zinb_bic, zinb_loglik_matrix
from .normalized import normalized_values
from .residuals import deviance_residuals
from .weights import imputed_values, observational_weights

__all__ = [
    "normalized_values",
    "deviance_residuals",
    "observational_weights",
    "imputed_values",
    "zinb_loglik_matrix",
    "zinb_aic",
    "zinb_bic",
]
