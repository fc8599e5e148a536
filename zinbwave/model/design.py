"""Design matrices for the cell-level (X) and gene-level (V) regressions.

Covariates may be given as numeric matrices or as covariate tables
(``polars.DataFrame`` or ``pandas.DataFrame``). Tables are turned into design
matrices with formulaic, either from an explicit formula (``"~ batch + depth"``)
or from all of their columns.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
import polars as pl
import scipy.sparse as sp
from formulaic import model_matrix

from zinbwave.core.exceptions import InvalidDesignError, InvalidInputError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = [
    "DesignMatrix",
    "build_design",
    "check_full_rank",
    "intercept_columns",
    "select_columns",
]

INTERCEPT_NAME = "(Intercept)"


class DesignMatrix:
    """A design matrix together with its column names."""

    __slots__ = ("values", "names")

    def __init__(self, values: NDArray[np.float64], names: Sequence[str]) -> None:
        self.values = values
        self.names = list(names)

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape

    def __repr__(self) -> str:
        return f"<DesignMatrix shape={self.shape}, columns={self.names}>"


def _to_pandas(table: pl.DataFrame | pd.DataFrame) -> pd.DataFrame:
    if isinstance(table, pl.DataFrame):
        return pd.DataFrame(table.to_dict(as_series=False))
    return table.reset_index(drop=True)


def _default_formula(columns: Sequence[str], intercept: bool) -> str:
    terms = " + ".join(f"`{c}`" for c in columns)
    if not terms:
        return "~ 1" if intercept else "~ 0"
    return f"~ {terms}" if intercept else f"~ 0 + {terms}"


def _from_table(
    table: pl.DataFrame | pd.DataFrame,
    formula: str | None,
    intercept: bool,
    what: str,
) -> DesignMatrix:
    frame = _to_pandas(table)
    if formula is None:
        formula = _default_formula([str(c) for c in frame.columns], intercept)
    try:
        mm = model_matrix(formula, frame, na_action="raise")
    except Exception as e:  # formulaic raises a variety of parser/encoding errors
        raise InvalidInputError(
            f"Could not build the {what} design from formula '{formula}': {e}",
            parameter=f"{what}_formula",
            value=formula,
        ) from e
    return DesignMatrix(np.asarray(mm, dtype=np.float64), [str(c) for c in mm.columns])


def _from_matrix(matrix: Any, intercept: bool) -> DesignMatrix:
    values = matrix.toarray() if sp.issparse(matrix) else np.asarray(matrix)
    if values.ndim == 1:
        values = values[:, np.newaxis]
    if values.ndim != 2:
        raise InvalidInputError(
            f"Design matrix must be 2-D, got {values.ndim} dimensions.", parameter="covariates"
        )
    try:
        values = values.astype(np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(
            f"Design matrix must be numeric: {e}", parameter="covariates"
        ) from e

    names = [f"x{k}" for k in range(values.shape[1])]
    if intercept and not np.any(intercept_columns(values)):
        values = np.column_stack([np.ones(values.shape[0]), values])
        names = [INTERCEPT_NAME, *names]
    return DesignMatrix(values, names)


def build_design(
    covariates: Any,
    n_rows: int,
    formula: str | None = None,
    intercept: bool = True,
    what: str = "sample",
) -> DesignMatrix:
    """Build a design matrix with ``n_rows`` rows.

    Parameters
    ----------
    covariates : array-like, sparse matrix, polars/pandas DataFrame or None
        Covariates, one row per cell (sample design) or per gene (gene design).
        None gives an intercept-only design.
    n_rows : int
        Expected number of rows.
    formula : str, optional
        formulaic formula over the columns of a covariate table.
    intercept : bool, default=True
        Add an intercept column when the covariates do not already contain a
        constant column (matrices) or when no formula is given (tables).
    what : str, default="sample"
        "sample" or "gene", used in error messages.

    Returns
    -------
    DesignMatrix
        Full column rank design matrix.

    Raises
    ------
    InvalidInputError
        If the number of rows differs from ``n_rows``, values are missing or
        non-numeric, or a formula is given without a table.
    InvalidDesignError
        If the design matrix is rank-deficient or has no column.
    """
    if covariates is None:
        if formula is not None and formula.replace(" ", "") not in ("~1", "1"):
            raise InvalidInputError(
                f"A {what} formula needs a {what} covariate table.",
                parameter=f"{what}_formula",
                value=formula,
            )
        design = DesignMatrix(np.ones((n_rows, 1)), [INTERCEPT_NAME])
    elif isinstance(covariates, (pl.DataFrame, pd.DataFrame)):
        n_table = covariates.height if isinstance(covariates, pl.DataFrame) else len(covariates)
        if n_table != n_rows:
            raise InvalidInputError(
                f"The {what} covariate table has {n_table} rows, expected {n_rows}.",
                parameter=f"{what}_covariates",
                value=n_table,
            )
        design = _from_table(covariates, formula, intercept, what)
    else:
        if formula is not None:
            raise InvalidInputError(
                f"A {what} formula can only be used with a covariate table.",
                parameter=f"{what}_formula",
                value=formula,
            )
        design = _from_matrix(covariates, intercept)

    if design.shape[0] != n_rows:
        raise InvalidInputError(
            f"The {what} design has {design.shape[0]} rows, expected {n_rows}.",
            parameter=f"{what}_covariates",
            value=design.shape[0],
        )
    if not np.all(np.isfinite(design.values)):
        raise InvalidInputError(
            f"The {what} design contains missing or infinite values.",
            parameter=f"{what}_covariates",
        )

    check_full_rank(design.values, what)
    return design


def check_full_rank(values: NDArray[np.float64], what: str = "sample") -> None:
    """Raise :class:`InvalidDesignError` unless ``values`` has full column rank."""
    n_cols = values.shape[1]
    if n_cols == 0:
        raise InvalidDesignError(
            f"The {what} design matrix has no column.", parameter=f"{what}_covariates"
        )
    rank = np.linalg.matrix_rank(values)
    if rank < n_cols:
        raise InvalidDesignError(
            f"The {what} design matrix is not full rank (rank {rank} < {n_cols} columns).",
            parameter=f"{what}_covariates",
            value=rank,
            hint="Remove covariates that are linear combinations of others.",
        )


def intercept_columns(values: NDArray[np.float64]) -> NDArray[np.bool_]:
    """Columns that are constant and non-zero."""
    if values.shape[0] == 0:
        return np.zeros(values.shape[1], dtype=bool)
    first = values[0, :]
    return np.all(values == first, axis=0) & (first != 0)


def select_columns(
    design: DesignMatrix,
    which: Sequence[int] | Sequence[str] | None,
    what: str,
) -> DesignMatrix:
    """Subset design columns by position or name. None keeps every column."""
    if which is None:
        return design
    idx: list[int] = []
    for item in which:
        if isinstance(item, str):
            if item not in design.names:
                raise InvalidDesignError(
                    f"Column '{item}' not found in the {what} design.",
                    parameter=f"which_{what}",
                    value=item,
                    hint=f"Available columns: {design.names}.",
                )
            idx.append(design.names.index(item))
        else:
            k = int(item)
            if not 0 <= k < design.shape[1]:
                raise InvalidDesignError(
                    f"Column index {k} out of range for the {what} design "
                    f"with {design.shape[1]} columns.",
                    parameter=f"which_{what}",
                    value=k,
                )
            idx.append(k)
    return DesignMatrix(design.values[:, idx], [design.names[k] for k in idx])
