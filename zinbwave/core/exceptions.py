"""Exceptions and warnings raised by zinbwave.

Structural problems (bad counts, bad designs, bad configuration) are errors and
are raised before any optimization work starts. Numerical trouble met during a
fit is never raised: it is recorded on the fit diagnostics and reported once,
at the end of the fit, as a warning.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ZinbWaveError",
    "InvalidInputError",
    "InvalidDesignError",
    "ConfigurationError",
    "ZinbWaveWarning",
    "NumericalInstabilityWarning",
    "NonConvergenceWarning",
]


class ZinbWaveError(Exception):
    """Base class for exceptions in zinbwave.

    Parameters
    ----------
    message : str
        Human readable description of the problem.
    parameter : str, optional
        Name of the offending argument.
    value : Any, optional
        Offending value.
    hint : str, optional
        Suggested fix, appended to the message.
    """

    def __init__(
        self,
        message: str,
        parameter: str | None = None,
        value: Any = None,
        hint: str | None = None,
    ) -> None:
        self.parameter = parameter
        self.value = value
        self.hint = hint
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


class InvalidInputError(ZinbWaveError, ValueError):
    """Raised for invalid count matrices or covariate tables.

    Negative, non-integer or non-finite counts, and covariate tables whose
    number of rows does not match the count matrix.
    """


class InvalidDesignError(ZinbWaveError, ValueError):
    """Raised for model structures that cannot be fitted.

    Rank-deficient design matrices, a number of latent factors that is not
    smaller than both matrix dimensions, or a negative penalty.
    """


class ConfigurationError(ZinbWaveError, ValueError):
    """Raised for unknown or invalid configuration options."""

    def __init__(self, message: str, config_path: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.config_path = config_path


class ZinbWaveWarning(UserWarning):
    """Base class for warnings in zinbwave."""


class NumericalInstabilityWarning(ZinbWaveWarning):
    """Clamped linear predictors or dispersions at their configured bounds."""


class NonConvergenceWarning(ZinbWaveWarning):
    """The fit stopped before the relative tolerance was reached."""
