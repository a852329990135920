"""
Scale-free topology fit across candidate soft-threshold powers.

Biological Context:
    Gene co-expression networks are expected to be approximately scale-free:
    a few highly connected hub genes and many weakly connected genes. The
    soft-threshold power is chosen as the smallest power at which the
    connectivity distribution follows a power law (log p(k) linear in log k
    with negative slope) while mean connectivity stays high enough to keep
    modules detectable.

    For every candidate power this module reports the signed scale-free fit
    R² (−sign(slope)·R², so that a negative slope yields a positive index),
    the slope, the adjusted R² of a truncated-exponential model and summary
    connectivity statistics.

Engineering Design:
    The choice of power is configuration, not computation: the table is a
    report and suggest_power is an advisory that returns None and emits a
    ConfigurationWarning when no candidate reaches the target fit.

    Connectivity is accumulated over column blocks of genes (each block is
    correlated against all genes) so the n × n correlation matrix is never
    held. Within a block the adjacency for successive powers is built
    incrementally: base**p_j = base**p_{j-1} · base**(p_j − p_{j-1}).

Examples:
    >>> from coexnet.network.soft_threshold import pick_soft_threshold
    >>> result = pick_soft_threshold(expression, network_type="signed")
    >>> result.table[['power', 'sft_r2', 'mean_k']]
    >>> result.suggested_power
    12
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from coexnet.core.errors import ConfigurationWarning, DegenerateInputError
from coexnet.core.expression import ExpressionMatrix
from coexnet.network.adjacency import NetworkType, apply_soft_threshold
from coexnet.stats.correlation import CorrelationStrategy, pearson_correlation
from coexnet.utils.blocks import (
    DEFAULT_MAX_BLOCK_MEMORY,
    block_bounds,
    resolve_block_size,
    run_blocks,
)

logger = logging.getLogger(__name__)

__all__ = [
    'DEFAULT_POWERS',
    'DEFAULT_R2_CUT',
    'MIN_BREAKS',
    'ScaleFreeFit',
    'SoftThresholdResult',
    'scale_free_fit',
    'connectivity_by_power',
    'pick_soft_threshold',
    'suggest_power',
    'check_power',
]

DEFAULT_POWERS = tuple(range(1, 11)) + tuple(range(12, 51, 2))
DEFAULT_R2_CUT = 0.80

TABLE_COLUMNS = [
    'power', 'sft_r2', 'slope', 'truncated_r2', 'mean_k', 'median_k', 'max_k', 'density',
]

_LOG_P_OFFSET = 1e-9

# Truncated fit estimates 3 coefficients; adjusted R² needs more bins than that
MIN_BREAKS = 4


@dataclass(frozen=True)
class ScaleFreeFit:
    """
    Scale-free topology fit of one connectivity vector.

    Attributes:
        r2: Signed fit index −sign(slope)·R² of log10 p(k) ~ log10 k
        slope: Slope of the log-log regression
        truncated_r2: Adjusted R² of the truncated-exponential model
            log10 p(k) ~ log10 k + k
    """
    r2: float
    slope: float
    truncated_r2: float


@dataclass
class SoftThresholdResult:
    """Soft-threshold table plus the advisory power (None if no power qualifies)."""
    table: pd.DataFrame
    suggested_power: Optional[float]


def scale_free_fit(k: Sequence[float] | np.ndarray, n_breaks: int = 10) -> ScaleFreeFit:
    """
    Fit a power law to the connectivity distribution.

    Connectivities are binned into n_breaks equal-width bins over [min k, max k].
    dk is the mean connectivity of each bin (the bin midpoint when the bin is
    empty or its mean is 0), p(dk) the fraction of genes in the bin. Empty
    bins take part in the fit with p(dk) = 0 (log offset 1e-9).

    Args:
        k: Connectivity per gene (non-negative)
        n_breaks: Number of bins

    Returns:
        ScaleFreeFit; all fields are NaN when every gene has the same
        connectivity (no distribution to fit)

    Raises:
        ValueError: If n_breaks < MIN_BREAKS or k is empty
        DegenerateInputError: If k contains NaN or inf
    """
    import statsmodels.api as sm

    if n_breaks < MIN_BREAKS:
        raise ValueError(f"n_breaks must be >= {MIN_BREAKS}, got {n_breaks}")
    k = np.asarray(k, dtype=np.float64).ravel()
    if k.size == 0:
        raise ValueError("Connectivity vector is empty")
    if not np.isfinite(k).all():
        raise DegenerateInputError("Connectivity contains non-finite values", stage="soft_threshold")

    lo, hi = k.min(), k.max()
    if hi <= lo:
        return ScaleFreeFit(r2=np.nan, slope=np.nan, truncated_r2=np.nan)

    edges = np.linspace(lo, hi, n_breaks + 1)
    # Right-closed bins (edge_i, edge_i+1], the lowest bin also holds min k
    bins = np.digitize(k, edges[1:-1], right=True)
    counts = np.bincount(bins, minlength=n_breaks).astype(np.float64)
    sums = np.bincount(bins, weights=k, minlength=n_breaks)
    midpoints = 0.5 * (edges[:-1] + edges[1:])

    with np.errstate(divide='ignore', invalid='ignore'):
        dk = sums / counts
    dk = np.where((counts == 0) | (dk == 0), midpoints, dk)

    log_dk = np.log10(dk)
    log_p = np.log10(counts / k.size + _LOG_P_OFFSET)

    linear = sm.OLS(log_p, sm.add_constant(log_dk, has_constant='add')).fit()
    truncated = sm.OLS(
        log_p, sm.add_constant(np.column_stack([log_dk, dk]), has_constant='add')
    ).fit()

    slope = float(linear.params[1])
    return ScaleFreeFit(
        r2=float(-np.sign(slope) * linear.rsquared),
        slope=slope,
        truncated_r2=float(truncated.rsquared_adj),
    )


def _validate_powers(powers: Optional[Sequence[float]]) -> np.ndarray:
    values = np.asarray(DEFAULT_POWERS if powers is None else powers, dtype=np.float64)
    if values.ndim != 1 or values.size == 0:
        raise ValueError("At least one candidate power is required")
    if (values <= 0).any() or not np.isfinite(values).all():
        raise ValueError(f"Candidate powers must be positive and finite, got {values.tolist()}")
    return np.unique(values)


def connectivity_by_power(
    expression: ExpressionMatrix,
    powers: Sequence[float],
    network_type: NetworkType | str = NetworkType.SIGNED,
    block_size: Optional[int] = None,
    correlation: Optional[CorrelationStrategy] = None,
    n_workers: int = 1,
    progress: bool = False,
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY,
) -> np.ndarray:
    """
    Whole-network connectivity of every gene for every candidate power.

    Args:
        expression: Samples × genes expression matrix
        powers: Candidate powers, sorted ascending and unique
        network_type: Sign convention
        block_size: Genes per block (None: derived from max_block_memory)
        correlation: Correlation strategy (default pearson_correlation)
        n_workers: Threads used for independent gene blocks
        progress: Show a tqdm progress bar over blocks
        max_block_memory: Memory budget per block in bytes when block_size is None

    Returns:
        Array (n_genes × n_powers) with k_i = Σ_{j≠i} a_ij
    """
    network_type = NetworkType.parse(network_type)
    correlation = correlation or pearson_correlation
    powers = np.asarray(powers, dtype=np.float64)
    steps = np.diff(powers, prepend=0.0)

    data = expression.data
    n = expression.n_genes
    k = np.zeros((n, powers.size), dtype=np.float64)
    bounds = block_bounds(n, resolve_block_size(n, block_size, max_block_memory))

    def work(start: int, stop: int) -> None:
        cor = correlation(data[:, start:stop], data).r
        if not np.isfinite(cor).all():
            raise DegenerateInputError(
                f"Non-finite correlations for genes {start}:{stop}", stage="soft_threshold"
            )
        base = apply_soft_threshold(cor, 1.0, network_type)
        idx = np.arange(start, stop)
        base[idx - start, idx] = 0.0

        step_cache: Dict[float, np.ndarray] = {}
        current = np.ones_like(base)
        for j, step in enumerate(steps):
            if step not in step_cache:
                step_cache[step] = base ** step
            current = current * step_cache[step]
            k[start:stop, j] = current.sum(axis=1)

    run_blocks(bounds, work, n_workers, progress, desc="Soft-threshold connectivity")
    return k


def pick_soft_threshold(
    expression: ExpressionMatrix,
    powers: Optional[Sequence[float]] = None,
    network_type: NetworkType | str = NetworkType.SIGNED,
    n_breaks: int = 10,
    block_size: Optional[int] = None,
    correlation: Optional[CorrelationStrategy] = None,
    n_workers: int = 1,
    r2_cut: float = DEFAULT_R2_CUT,
    max_mean_k: Optional[float] = None,
    progress: bool = False,
) -> SoftThresholdResult:
    """
    Scale-free fit and connectivity summary for each candidate power.

    Args:
        expression: Samples × genes expression matrix (at least 3 genes)
        powers: Candidate powers (default DEFAULT_POWERS)
        network_type: Sign convention
        n_breaks: Connectivity bins for the scale-free fit
        block_size: Genes per block (None: derived from the memory budget)
        correlation: Correlation strategy (default pearson_correlation)
        n_workers: Threads used for independent gene blocks
        r2_cut: Target signed R² for the advisory power
        max_mean_k: Optional upper bound on mean connectivity for the advisory
        progress: Show a tqdm progress bar over blocks

    Returns:
        SoftThresholdResult with columns power, sft_r2, slope, truncated_r2,
        mean_k, median_k, max_k, density

    Raises:
        ValueError: If fewer than 3 genes, invalid powers or fewer than
            MIN_BREAKS bins are given
    """
    n = expression.n_genes
    if n < 3:
        raise ValueError(
            f"Scale-free fit needs at least 3 genes, got {n}; the network would be trivial"
        )
    if n_breaks < MIN_BREAKS:
        raise ValueError(f"n_breaks must be >= {MIN_BREAKS}, got {n_breaks}")
    candidate_powers = _validate_powers(powers)
    logger.info(
        f"Evaluating scale-free fit for {candidate_powers.size} powers "
        f"({NetworkType.parse(network_type).value}, {n} genes)"
    )

    k = connectivity_by_power(
        expression,
        candidate_powers,
        network_type=network_type,
        block_size=block_size,
        correlation=correlation,
        n_workers=n_workers,
        progress=progress,
    )

    rows = []
    for j, power in enumerate(candidate_powers):
        k_power = k[:, j]
        fit = scale_free_fit(k_power, n_breaks=n_breaks)
        rows.append({
            'power': int(power) if float(power).is_integer() else float(power),
            'sft_r2': fit.r2,
            'slope': fit.slope,
            'truncated_r2': fit.truncated_r2,
            'mean_k': float(k_power.mean()),
            'median_k': float(np.median(k_power)),
            'max_k': float(k_power.max()),
            'density': float(k_power.sum() / (n * (n - 1))),
        })
    table = pd.DataFrame(rows, columns=TABLE_COLUMNS)

    for row in table.itertuples(index=False):
        logger.debug(
            f"power={row.power}: R²={row.sft_r2:.3f} slope={row.slope:.2f} "
            f"mean k={row.mean_k:.2f}"
        )

    suggested = suggest_power(table, r2_cut=r2_cut, max_mean_k=max_mean_k)
    return SoftThresholdResult(table=table, suggested_power=suggested)


def suggest_power(
    table: pd.DataFrame,
    r2_cut: float = DEFAULT_R2_CUT,
    max_mean_k: Optional[float] = None,
) -> Optional[float]:
    """
    Smallest power whose signed scale-free R² strictly exceeds r2_cut.

    Advisory only: the power used to build the network is configuration.

    Args:
        table: Soft-threshold table (needs columns power, sft_r2 and, when
            max_mean_k is given, mean_k)
        r2_cut: Target signed R²
        max_mean_k: Optional upper bound on mean connectivity

    Returns:
        The suggested power, or None when no candidate qualifies (a
        ConfigurationWarning is emitted)
    """
    qualifies = table['sft_r2'] > r2_cut
    if max_mean_k is not None:
        qualifies &= table['mean_k'] <= max_mean_k

    if not qualifies.any():
        best = table.loc[table['sft_r2'].idxmax()] if table['sft_r2'].notna().any() else None
        detail = (
            f"; best fit R²={best['sft_r2']:.3f} at power {best['power']}"
            if best is not None else ""
        )
        warnings.warn(
            f"No candidate power reaches scale-free fit R² > {r2_cut}{detail}. "
            f"Choose the power explicitly.",
            ConfigurationWarning,
            stacklevel=2,
        )
        logger.warning(f"No soft-threshold power reached R² > {r2_cut}")
        return None

    power = table.loc[qualifies, 'power'].min()
    power = power.item() if hasattr(power, 'item') else power
    logger.info(f"Suggested soft-threshold power: {power} (R² > {r2_cut})")
    return power


def check_power(
    table: pd.DataFrame,
    power: float,
    r2_cut: float = DEFAULT_R2_CUT,
) -> bool:
    """
    Warn when a configured power is not supported by the soft-threshold table.

    Returns:
        True if the power is in the table and its signed R² exceeds r2_cut;
        otherwise False after emitting a ConfigurationWarning
    """
    matches = table[np.isclose(table['power'].astype(float), float(power))]
    if matches.empty:
        warnings.warn(
            f"Configured power {power} was not among the evaluated powers "
            f"{table['power'].tolist()}; its scale-free fit is unknown",
            ConfigurationWarning,
            stacklevel=2,
        )
        return False

    r2 = float(matches['sft_r2'].iloc[0])
    if not r2 > r2_cut:
        warnings.warn(
            f"Configured power {power} has scale-free fit R²={r2:.3f}, "
            f"below the target {r2_cut}",
            ConfigurationWarning,
            stacklevel=2,
        )
        return False
    return True
