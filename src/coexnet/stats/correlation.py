"""
Pairwise correlation with Student-t significance.

Every correlation in the engine goes through this module: gene-gene
correlation for network construction, eigengene-trait correlation, module
membership (gene vs. eigengene) and gene significance (gene vs. trait).

Provides:
- Pearson correlation between the columns of two equal-row matrices using
  pairwise-complete observations
- Spearman correlation (rank-transformed Pearson) as an alternative strategy
- Two-sided Student-t p-values: t = r·sqrt((n-2)/(1-r²)), df = n-2
- FDR correction across module-trait tests

Engineering Design:
    Fast path: with complete data, correlation is a single matrix product of
    standardized columns. With missing values, paired sums are formed with
    mask matrix products so each (i, j) pair uses only the samples observed
    in both columns.

    Undefined correlations are never silently replaced: a column with zero
    variance raises DegenerateInputError (strict mode) or yields NaN with a
    RuntimeWarning, and a pair with fewer than 3 paired observations raises
    InsufficientSamplesError.

Examples:
    >>> from coexnet.stats.correlation import pearson_correlation, correlation_pvalues
    >>> result = pearson_correlation(expression.data)
    >>> pvalues = correlation_pvalues(result.r, result.n)
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from coexnet.core.errors import DegenerateInputError, InsufficientSamplesError

__all__ = [
    'CorrelationResult',
    'CorrelationStrategy',
    'pearson_correlation',
    'spearman_correlation',
    'correlation_pvalues',
    'cor_and_pvalue',
    'apply_fdr_correction',
    'MIN_PAIRED_SAMPLES',
]

MIN_PAIRED_SAMPLES = 3

# Relative tolerances below which a column's spread counts as zero variance;
# the paired-sum path loses precision to cancellation and needs a looser bound
_VARIANCE_RTOL = 1e-10
_PAIRWISE_VARIANCE_RTOL = 1e-7


@dataclass
class CorrelationResult:
    """
    Correlation matrix plus the number of paired observations behind each entry.

    Attributes:
        r: Correlation coefficients (p × q)
        n: Paired observation counts (p × q, int)
        x_names: Optional labels for the rows of r
        y_names: Optional labels for the columns of r
    """
    r: np.ndarray
    n: np.ndarray
    x_names: Optional[pd.Index] = None
    y_names: Optional[pd.Index] = None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.r, index=self.x_names, columns=self.y_names)


CorrelationStrategy = Callable[..., CorrelationResult]


def _as_2d(values, name: str) -> Tuple[np.ndarray, Optional[pd.Index]]:
    labels = None
    if isinstance(values, pd.DataFrame):
        labels = pd.Index(values.columns)
        values = values.to_numpy(dtype=np.float64)
    elif isinstance(values, pd.Series):
        labels = pd.Index([values.name])
        values = values.to_numpy(dtype=np.float64)
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be 1D or 2D, got shape {arr.shape}")
    if np.isinf(arr).any():
        raise DegenerateInputError(f"{name} contains infinite values")
    return arr, labels


def _label(names: Optional[pd.Index], idx: int, fallback: str) -> str:
    if names is not None:
        return str(names[idx])
    return f"{fallback}[{idx}]"


def _handle_degenerate(
    degenerate: np.ndarray,
    r: np.ndarray,
    strict: bool,
    x_names: Optional[pd.Index],
    y_names: Optional[pd.Index],
) -> None:
    """Raise or NaN-out correlations involving zero-variance columns."""
    if not degenerate.any():
        return
    i, j = np.argwhere(degenerate)[0]
    pair = f"({_label(x_names, i, 'x')}, {_label(y_names, j, 'y')})"
    if strict:
        raise DegenerateInputError(
            f"Correlation undefined for {int(degenerate.sum())} pair(s): zero variance "
            f"over paired observations, first offending pair {pair}"
        )
    warnings.warn(
        f"Correlation undefined (zero variance) for {int(degenerate.sum())} pair(s), "
        f"first {pair}; returning NaN",
        RuntimeWarning,
        stacklevel=3,
    )
    r[degenerate] = np.nan


def pearson_correlation(
    x,
    y=None,
    *,
    min_samples: int = MIN_PAIRED_SAMPLES,
    strict: bool = True,
) -> CorrelationResult:
    """
    Pearson correlation between the columns of x and the columns of y.

    Args:
        x: Matrix (n × p) as ndarray or DataFrame (columns are variables)
        y: Matrix (n × q); defaults to x (square, symmetric result)
        min_samples: Minimum paired observations per pair (default 3)
        strict: If True, a zero-variance column raises DegenerateInputError;
            if False its correlations are NaN and a RuntimeWarning is issued

    Returns:
        CorrelationResult with r (p × q) and paired counts n (p × q).
        For y=None the matrix is symmetric with diagonal exactly 1.

    Raises:
        ValueError: If x and y have different numbers of rows
        InsufficientSamplesError: If any pair has fewer than min_samples
            paired observations
        DegenerateInputError: If strict and a column has zero variance, or if
            inputs contain inf
    """
    symmetric = y is None
    x_arr, x_names = _as_2d(x, 'x')
    if symmetric:
        y_arr, y_names = x_arr, x_names
    else:
        y_arr, y_names = _as_2d(y, 'y')

    if x_arr.shape[0] != y_arr.shape[0]:
        raise ValueError(
            f"x and y must have the same number of rows (samples), "
            f"got {x_arr.shape[0]} and {y_arr.shape[0]}"
        )

    x_mask = ~np.isnan(x_arr)
    y_mask = x_mask if symmetric else ~np.isnan(y_arr)

    if x_mask.all() and y_mask.all():
        r, n, degenerate = _pearson_complete(x_arr, y_arr)
    else:
        r, n, degenerate = _pearson_pairwise(x_arr, y_arr, x_mask, y_mask)

    too_few = n < min_samples
    if too_few.any():
        i, j = np.argwhere(too_few)[0]
        raise InsufficientSamplesError(
            f"Need at least {min_samples} paired observations for correlation, "
            f"got {int(n[i, j])} for ({_label(x_names, i, 'x')}, {_label(y_names, j, 'y')}) "
            f"and {int(too_few.sum()) - 1} other pair(s)"
        )

    _handle_degenerate(degenerate, r, strict, x_names, y_names)

    np.clip(r, -1.0, 1.0, out=r)
    if symmetric:
        r = (r + r.T) / 2.0
        diag = np.diag(degenerate).copy()
        np.fill_diagonal(r, 1.0)
        if diag.any():
            r[diag, diag] = np.nan

    return CorrelationResult(r=r, n=n, x_names=x_names, y_names=y_names)


def _pearson_complete(x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    n_obs = x.shape[0]
    xc = x - x.mean(axis=0)
    yc = y - y.mean(axis=0)
    x_ss = np.sqrt((xc ** 2).sum(axis=0))
    y_ss = np.sqrt((yc ** 2).sum(axis=0))

    x_bad = x_ss <= _VARIANCE_RTOL * (np.abs(x).max(axis=0, initial=0.0) + 1.0) * np.sqrt(n_obs)
    y_bad = y_ss <= _VARIANCE_RTOL * (np.abs(y).max(axis=0, initial=0.0) + 1.0) * np.sqrt(n_obs)

    x_ss[x_bad] = 1.0
    y_ss[y_bad] = 1.0
    r = (xc / x_ss).T @ (yc / y_ss)

    n = np.full(r.shape, n_obs, dtype=np.int64)
    degenerate = x_bad[:, None] | y_bad[None, :]
    return r, n, degenerate


def _pearson_pairwise(
    x: np.ndarray,
    y: np.ndarray,
    x_mask: np.ndarray,
    y_mask: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    xm = x_mask.astype(np.float64)
    ym = y_mask.astype(np.float64)
    x0 = np.where(x_mask, x, 0.0)
    y0 = np.where(y_mask, y, 0.0)

    # Paired sums over samples observed in both columns
    n = xm.T @ ym
    sx = x0.T @ ym
    sy = xm.T @ y0
    sxx = (x0 ** 2).T @ ym
    syy = xm.T @ (y0 ** 2)
    sxy = x0.T @ y0

    with np.errstate(divide='ignore', invalid='ignore'):
        cov = sxy - sx * sy / n
        var_x = sxx - sx ** 2 / n
        var_y = syy - sy ** 2 / n

        x_scale = (np.abs(x0).max(axis=0, initial=0.0) + 1.0)[:, None]
        y_scale = (np.abs(y0).max(axis=0, initial=0.0) + 1.0)[None, :]
        degenerate = (
            (var_x <= (_PAIRWISE_VARIANCE_RTOL * x_scale) ** 2 * n)
            | (var_y <= (_PAIRWISE_VARIANCE_RTOL * y_scale) ** 2 * n)
        ) & (n > 0)

        r = cov / np.sqrt(var_x * var_y)

    r[degenerate] = 0.0
    r[n == 0] = np.nan
    return r, np.rint(n).astype(np.int64), degenerate


def spearman_correlation(
    x,
    y=None,
    *,
    min_samples: int = MIN_PAIRED_SAMPLES,
    strict: bool = True,
) -> CorrelationResult:
    """
    Spearman rank correlation (Pearson on average ranks, NaN kept in place).

    Same contract as pearson_correlation; pairwise-complete handling ranks each
    column over its observed values.
    """
    def _rank(values):
        if values is None:
            return None
        if isinstance(values, pd.Series):
            values = values.to_frame()
        if isinstance(values, pd.DataFrame):
            return values.rank(axis=0, method='average', na_option='keep')
        arr = np.asarray(values, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        return pd.DataFrame(arr).rank(axis=0, method='average', na_option='keep').to_numpy()

    return pearson_correlation(_rank(x), _rank(y), min_samples=min_samples, strict=strict)


def correlation_pvalues(r: np.ndarray, n: np.ndarray | int) -> np.ndarray:
    """
    Two-sided Student-t p-values for correlation coefficients.

    t = r * sqrt((n - 2) / (1 - r²)) with n - 2 degrees of freedom. Perfect
    correlations (|r| = 1) give p = 0; NaN correlations give NaN.

    Args:
        r: Correlation coefficients (any shape)
        n: Paired observation counts (broadcastable to r)

    Returns:
        Array of p-values with the shape of r
    """
    r = np.asarray(r, dtype=np.float64)
    df = np.broadcast_to(np.asarray(n, dtype=np.float64), r.shape) - 2.0
    with np.errstate(divide='ignore', invalid='ignore'):
        t = r * np.sqrt(df / (1.0 - r ** 2))
        p = 2.0 * stats.t.sf(np.abs(t), df)
    p = np.where(np.isnan(r), np.nan, p)
    return np.clip(p, 0.0, 1.0)


def cor_and_pvalue(
    x,
    y=None,
    *,
    correlation: Optional[CorrelationStrategy] = None,
    strict: bool = True,
    x_prefix: str = '',
    y_prefix: str = '',
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Labelled correlation and p-value tables.

    Args:
        x: DataFrame/ndarray (samples × p)
        y: DataFrame/ndarray (samples × q); defaults to x
        correlation: Correlation strategy (default pearson_correlation)
        strict: Passed to the strategy
        x_prefix: Prefix for row labels (e.g. "ME")
        y_prefix: Prefix for column labels

    Returns:
        (correlation DataFrame, p-value DataFrame), both p × q
    """
    correlation = correlation or pearson_correlation
    result = correlation(x, y, strict=strict)
    p = correlation_pvalues(result.r, result.n)

    x_names = result.x_names if result.x_names is not None else pd.RangeIndex(result.r.shape[0])
    y_names = result.y_names if result.y_names is not None else pd.RangeIndex(result.r.shape[1])
    x_names = pd.Index([f"{x_prefix}{name}" for name in x_names]) if x_prefix else x_names
    y_names = pd.Index([f"{y_prefix}{name}" for name in y_names]) if y_prefix else y_names

    return (
        pd.DataFrame(result.r, index=x_names, columns=y_names),
        pd.DataFrame(p, index=x_names, columns=y_names),
    )


def apply_fdr_correction(
    p_values: np.ndarray | Sequence[float],
    alpha: float = 0.05,
    method: str = 'bh',
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Benjamini-Hochberg (or Benjamini-Yekutieli) adjustment of p-values.

    NaN p-values are excluded from the adjustment and stay NaN.

    Args:
        p_values: Raw p-values (any shape)
        alpha: FDR level for the significance mask
        method: 'bh' (independence / positive dependence) or 'by'
            (arbitrary dependence)

    Returns:
        (q_values, significant_mask) with the shape of p_values

    References:
        Benjamini, Y., & Hochberg, Y. (1995). Controlling the false discovery
        rate: a practical and powerful approach to multiple testing.
        JRSS-B, 57(1), 289-300.
    """
    from scipy.stats import false_discovery_control

    p_values = np.asarray(p_values, dtype=np.float64)
    q_values = np.full(p_values.shape, np.nan)
    finite = ~np.isnan(p_values)
    if finite.any():
        q_values[finite] = false_discovery_control(p_values[finite], method=method)
    significant = np.zeros(p_values.shape, dtype=bool)
    significant[finite] = q_values[finite] < alpha
    return q_values, significant
