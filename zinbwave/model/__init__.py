from .design import DesignMatrix, build_design, check_full_rank, intercept_columns
from .specification import EPSILON_MIN_LOGIT, penalty_strengths, validate_counts, zinb_model

__all__ = [
    "zinb_model",
    "validate_counts",
    "penalty_strengths",
    "EPSILON_MIN_LOGIT",
    "DesignMatrix",
    "build_design",
    "check_full_rank",
    "intercept_columns",
]
