"""Fit configuration.

Provides a type-safe configuration dataclass for :func:`zinbwave.zinbwave`
with YAML loading. Keys may be given in snake_case or camelCase
(``maxIterations``, ``computeNormalizedValues``, ...).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from numbers import Integral
from pathlib import Path
from typing import Any

import yaml

from zinbwave.core.exceptions import ConfigurationError

__all__ = ["ZinbConfig", "load_config", "save_config"]

_ALIASES = {
    "X": "sample_formula",
    "V": "gene_formula",
    "computeNormalizedValues": "compute_normalized_values",
    "normalizedValues": "compute_normalized_values",
    "computeResiduals": "compute_residuals",
    "residuals": "compute_residuals",
    "computeWeights": "compute_weights",
    "observationalWeights": "compute_weights",
    "computeImputed": "compute_imputed",
    "imputedValues": "compute_imputed",
    "maxIterations": "max_iterations",
    "maxiter": "max_iterations",
    "nJobs": "n_jobs",
    "randomState": "random_state",
    "commonDispersion": "common_dispersion",
    "zeroInflation": "zero_inflation",
    "thetaBounds": "theta_bounds",
}

_INIT_METHODS = ("svd", "random")
_INTEGER_OPTIONS = ("K", "max_iterations", "n_jobs", "newton_steps", "max_step_halvings")


def _is_integer(value: Any) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


@dataclass(slots=True)
class ZinbConfig:
    """Options of a ZINB-WaVE fit.

    Attributes
    ----------
    K : int
        Number of latent factors.
    epsilon : float | None
        Ridge penalty strength. None means the number of genes.
    sample_formula : str | None
        Formula over the sample covariate table (e.g. ``"~ batch"``).
    gene_formula : str | None
        Formula over the gene covariate table.
    compute_normalized_values : bool
        Compute Pearson-type normalized values.
    compute_residuals : bool
        Compute deviance residuals.
    compute_weights : bool
        Compute observational weights.
    compute_imputed : bool
        Compute imputed counts.
    max_iterations : int
        Maximum number of outer iterations.
    tolerance : float
        Relative change of the penalized log-likelihood that stops the fit.
    timeout : float | None
        Wall-clock budget in seconds.
    n_jobs : int
        Worker threads; -1 uses all cores.
    init : str
        "svd" or "random".
    random_state : int | None
        Seed of the initialization.
    common_dispersion : bool
        Share one dispersion across genes.
    zero_inflation : bool
        Fit the zero-inflation component.
    theta_bounds : tuple[float, float]
        Allowed dispersion range.
    newton_steps : int
        Newton steps per block and outer iteration.
    max_step_halvings : int
        Step shrinkages tried before a unit keeps its previous value.
    step_shrink : float
        Factor applied to a rejected step.
    normalized_clip : float | None
        Clip normalized values to ``[-clip, clip]``.
    verbose : bool
        Print one line per outer iteration.
    """

    K: int = 2
    epsilon: float | None = None
    sample_formula: str | None = None
    gene_formula: str | None = None
    compute_normalized_values: bool = True
    compute_residuals: bool = True
    compute_weights: bool = True
    compute_imputed: bool = False
    max_iterations: int = 100
    tolerance: float = 1e-4
    timeout: float | None = None
    n_jobs: int = 1
    init: str = "svd"
    random_state: int | None = 42
    common_dispersion: bool = False
    zero_inflation: bool = True
    theta_bounds: tuple[float, float] = field(default=(1e-4, 1e4))
    newton_steps: int = 2
    max_step_halvings: int = 10
    step_shrink: float = 0.5
    normalized_clip: float | None = None
    verbose: bool = False

    def __post_init__(self) -> None:
        self.theta_bounds = tuple(float(b) for b in self.theta_bounds)  # type: ignore[assignment]
        self.validate()
        # numpy integers are stored as plain ints so the config stays YAML-safe
        for name in _INTEGER_OPTIONS:
            setattr(self, name, int(getattr(self, name)))

    def validate(self) -> None:
        """Check every option.

        Raises
        ------
        ConfigurationError
            If any option has an invalid type or value.
        """
        if not _is_integer(self.K) or self.K < 0:
            raise ConfigurationError(
                f"K must be a non-negative integer, got {self.K!r}.", parameter="K", value=self.K
            )
        if self.epsilon is not None and self.epsilon < 0:
            raise ConfigurationError(
                f"epsilon must be non-negative, got {self.epsilon}.",
                parameter="epsilon",
                value=self.epsilon,
            )
        if not _is_integer(self.max_iterations) or self.max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be a positive integer, got {self.max_iterations!r}.",
                parameter="max_iterations",
                value=self.max_iterations,
            )
        if not self.tolerance > 0:
            raise ConfigurationError(
                f"tolerance must be positive, got {self.tolerance}.",
                parameter="tolerance",
                value=self.tolerance,
            )
        if self.timeout is not None and not self.timeout > 0:
            raise ConfigurationError(
                f"timeout must be positive, got {self.timeout}.",
                parameter="timeout",
                value=self.timeout,
            )
        if not _is_integer(self.n_jobs) or self.n_jobs == 0 or self.n_jobs < -1:
            raise ConfigurationError(
                f"n_jobs must be a positive integer or -1, got {self.n_jobs!r}.",
                parameter="n_jobs",
                value=self.n_jobs,
            )
        if self.init not in _INIT_METHODS:
            raise ConfigurationError(
                f"init must be one of {_INIT_METHODS}, got {self.init!r}.",
                parameter="init",
                value=self.init,
            )
        lower, upper = self.theta_bounds
        if not 0 < lower < upper:
            raise ConfigurationError(
                f"theta_bounds must satisfy 0 < lower < upper, got {self.theta_bounds}.",
                parameter="theta_bounds",
                value=self.theta_bounds,
            )
        if not _is_integer(self.newton_steps) or self.newton_steps < 1:
            raise ConfigurationError(
                f"newton_steps must be a positive integer, got {self.newton_steps!r}.",
                parameter="newton_steps",
                value=self.newton_steps,
            )
        if not _is_integer(self.max_step_halvings) or self.max_step_halvings < 0:
            raise ConfigurationError(
                f"max_step_halvings must be a non-negative integer, got {self.max_step_halvings!r}.",
                parameter="max_step_halvings",
                value=self.max_step_halvings,
            )
        if not 0 < self.step_shrink < 1:
            raise ConfigurationError(
                f"step_shrink must lie in (0, 1), got {self.step_shrink}.",
                parameter="step_shrink",
                value=self.step_shrink,
            )
        if self.normalized_clip is not None and not self.normalized_clip > 0:
            raise ConfigurationError(
                f"normalized_clip must be positive, got {self.normalized_clip}.",
                parameter="normalized_clip",
                value=self.normalized_clip,
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, config_path: Path | None = None) -> ZinbConfig:
        """Build a configuration from a mapping.

        Raises
        ------
        ConfigurationError
            On unknown keys, duplicated keys (an option and its alias) or
            invalid values.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(data).__name__}.",
                config_path=config_path,
            )

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(
                    f"Unknown configuration option '{key}'.",
                    config_path=config_path,
                    parameter=key,
                    hint=f"Known options: {', '.join(sorted(known))}.",
                )
            if name in kwargs:
                raise ConfigurationError(
                    f"Option '{name}' given more than once (check aliases).",
                    config_path=config_path,
                    parameter=name,
                )
            if name in ("sample_formula", "gene_formula") and value is not None and not isinstance(value, str):
                raise ConfigurationError(
                    f"'{key}' must be a formula string in a configuration; "
                    "pass design matrices directly as covariates.",
                    config_path=config_path,
                    parameter=key,
                )
            kwargs[name] = value

        try:
            return cls(**kwargs)
        except ConfigurationError as e:
            e.config_path = config_path
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}", config_path=config_path) from e

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> ZinbConfig:
        """Load a configuration from a YAML file."""
        return load_config(config_path)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["theta_bounds"] = list(self.theta_bounds)
        return data

    def replace(self, **overrides: Any) -> ZinbConfig:
        """Copy with some options changed; aliases are accepted."""
        if not overrides:
            return self
        merged = self.to_dict()
        for key, value in overrides.items():
            merged[_ALIASES.get(key, key)] = value
        return ZinbConfig.from_dict(merged)


def load_config(config_path: str | Path) -> ZinbConfig:
    """Load a :class:`ZinbConfig` from a YAML file.

    Parameters
    ----------
    config_path : str | Path
        Path to the YAML file. An empty file yields the defaults.

    Returns
    -------
    ZinbConfig
        Parsed configuration.

    Raises
    ------
    ConfigurationError
        If the file cannot be read, is not valid YAML, or holds invalid options.
    """
    path = Path(config_path)

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML config: {e}",
            config_path=path,
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file: {e}",
            config_path=path,
        ) from e

    return ZinbConfig.from_dict(data, config_path=path)


def save_config(config: ZinbConfig, config_path: str | Path) -> None:
    """Write a configuration to a YAML file."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
