"""
Soft-thresholded adjacency from gene-gene correlation.

Biological Context:
    A weighted co-expression network keeps every gene pair but raises the
    correlation-derived similarity to a power p, suppressing weak
    correlations while preserving strong ones (soft thresholding). The sign
    convention decides how anti-correlated genes are treated:

    - signed:        a = ((1 + r) / 2) ** p   anti-correlation → low adjacency
    - unsigned:      a = |r| ** p             anti-correlation → high adjacency
    - signed hybrid: a = r ** p if r > 0 else 0

    Signed networks are the default because positive and negative
    co-expression carry different biological interpretations downstream.

Engineering Design:
    Dense transforms operate on a full correlation matrix. For networks too
    large to materialize, AdjacencyRows providers hand out contiguous row
    blocks: DenseAdjacency slices an existing matrix, StreamedAdjacency
    recomputes rows from the expression data on demand so that no n × n
    matrix other than the (optionally memory-mapped) output is ever held.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import numpy as np

from coexnet.core.errors import DegenerateInputError
from coexnet.core.expression import ExpressionMatrix
from coexnet.stats.correlation import CorrelationStrategy, pearson_correlation

logger = logging.getLogger(__name__)

__all__ = [
    'NetworkType',
    'apply_soft_threshold',
    'adjacency_from_correlation',
    'adjacency',
    'AdjacencyRows',
    'DenseAdjacency',
    'StreamedAdjacency',
]


class NetworkType(str, Enum):
    """Sign convention for turning correlation into adjacency."""

    SIGNED = "signed"
    UNSIGNED = "unsigned"
    SIGNED_HYBRID = "signed hybrid"

    @classmethod
    def parse(cls, value: "NetworkType | str") -> "NetworkType":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace('_', ' ').replace('-', ' ')
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(
            f"Unknown network type '{value}'. Choose from: {', '.join(m.value for m in cls)}"
        )


def apply_soft_threshold(cor: np.ndarray, power: float, network_type: NetworkType) -> np.ndarray:
    if network_type is NetworkType.SIGNED:
        base = (1.0 + cor) / 2.0
    elif network_type is NetworkType.UNSIGNED:
        base = np.abs(cor)
    else:
        base = np.where(cor > 0, cor, 0.0)
    # Clipping guards against |r| marginally above 1 from float error
    return np.clip(base, 0.0, 1.0) ** power


def adjacency_from_correlation(
    cor: np.ndarray,
    power: float,
    network_type: NetworkType | str = NetworkType.SIGNED,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Transform a correlation matrix into a soft-thresholded adjacency matrix.

    Args:
        cor: Square gene × gene correlation matrix with entries in [-1, 1]
        power: Soft-threshold exponent (> 0)
        network_type: 'signed' (default), 'unsigned' or 'signed hybrid'
        out: Optional preallocated output (e.g. np.memmap)

    Returns:
        Symmetric adjacency matrix with entries in [0, 1] and zero diagonal

    Raises:
        ValueError: If power <= 0 or cor is not square
        DegenerateInputError: If cor contains NaN or inf
    """
    if power <= 0:
        raise ValueError(f"Soft-threshold power must be positive, got {power}")
    cor = np.asarray(cor)
    if cor.ndim != 2 or cor.shape[0] != cor.shape[1]:
        raise ValueError(f"Correlation matrix must be square, got shape {cor.shape}")
    if not np.isfinite(cor).all():
        raise DegenerateInputError(
            f"Correlation matrix contains {int((~np.isfinite(cor)).sum())} non-finite values",
            stage="adjacency",
        )

    network_type = NetworkType.parse(network_type)
    result = apply_soft_threshold(cor, power, network_type)
    np.fill_diagonal(result, 0.0)

    if out is None:
        return result
    out[...] = result
    return out


def adjacency(
    expression: ExpressionMatrix,
    power: float,
    network_type: NetworkType | str = NetworkType.SIGNED,
    correlation: Optional[CorrelationStrategy] = None,
) -> np.ndarray:
    """
    Correlate genes and soft-threshold in one step.

    Args:
        expression: Samples × genes expression matrix
        power: Soft-threshold exponent
        network_type: Sign convention
        correlation: Correlation strategy (default pearson_correlation)

    Returns:
        Gene × gene adjacency matrix (zero diagonal)
    """
    correlation = correlation or pearson_correlation
    logger.info(
        f"Computing {NetworkType.parse(network_type).value} adjacency "
        f"(power={power}) for {expression.n_genes} genes"
    )
    cor = correlation(expression.data).r
    return adjacency_from_correlation(cor, power, network_type)


class AdjacencyRows(ABC):
    """Source of contiguous adjacency row blocks for blockwise network computations."""

    @property
    @abstractmethod
    def n_genes(self) -> int:
        """Number of genes (rows/columns of the full adjacency)."""

    @abstractmethod
    def rows(self, start: int, stop: int) -> np.ndarray:
        """Return adjacency rows [start:stop, :] (all n columns, zero diagonal)."""

    @property
    def is_dense(self) -> bool:
        """Whether the full matrix is held in memory."""
        return False


class DenseAdjacency(AdjacencyRows):
    """Row blocks sliced from an in-memory (or memory-mapped) adjacency matrix."""

    def __init__(self, matrix: np.ndarray):
        self.matrix = matrix

    @property
    def n_genes(self) -> int:
        return self.matrix.shape[0]

    @property
    def is_dense(self) -> bool:
        return True

    def rows(self, start: int, stop: int) -> np.ndarray:
        return np.asarray(self.matrix[start:stop, :], dtype=np.float64)


class StreamedAdjacency(AdjacencyRows):
    """
    Row blocks recomputed from expression data on demand.

    Each call correlates the requested genes against all genes and applies
    the soft threshold, so peak memory is O(block × n) instead of O(n²).

    Args:
        expression: Samples × genes expression matrix
        power: Soft-threshold exponent
        network_type: Sign convention
        correlation: Correlation strategy (default pearson_correlation)
    """

    def __init__(
        self,
        expression: ExpressionMatrix,
        power: float,
        network_type: NetworkType | str = NetworkType.SIGNED,
        correlation: Optional[CorrelationStrategy] = None,
    ):
        if power <= 0:
            raise ValueError(f"Soft-threshold power must be positive, got {power}")
        self.expression = expression
        self.power = power
        self.network_type = NetworkType.parse(network_type)
        self.correlation = correlation or pearson_correlation

    @property
    def n_genes(self) -> int:
        return self.expression.n_genes

    def rows(self, start: int, stop: int) -> np.ndarray:
        data = self.expression.data
        cor = self.correlation(data[:, start:stop], data).r
        if not np.isfinite(cor).all():
            raise DegenerateInputError(
                f"Non-finite correlations for genes {start}:{stop}", stage="adjacency"
            )
        block = apply_soft_threshold(cor, self.power, self.network_type)
        idx = np.arange(start, stop)
        block[idx - start, idx] = 0.0
        return block
