"""
Topological overlap (TOM) of a weighted co-expression network.

Biological Context:
    Adjacency alone scores a gene pair by its own correlation. Topological
    overlap also rewards pairs that share many strong neighbours, which is a
    more robust signal of membership in the same co-expression module and
    less sensitive to noise in any single correlation:

        TOM_ij = (l_ij + a_ij) / (min(k_i, k_j) + 1 - a_ij)

    where l_ij = Σ_u a_iu·a_uj (shared-neighbour weight) and k_i = Σ_u a_iu
    (connectivity). TOM lies in [0, 1]; the diagonal is defined as 1.

Engineering Design:
    The matrix is computed in contiguous row blocks. Each block sees all n
    columns, so connectivities and shared-neighbour sums are always global;
    splitting into blocks changes memory use, never the result. Blocks are
    independent and are dispatched to a ThreadPoolExecutor (numpy releases
    the GIL inside matrix products), writing into a preallocated output that
    may be a numpy.memmap. The clustering distance is read back in row
    blocks into the condensed upper triangle, so a memory-mapped TOM is
    never copied into a dense n × n array.

    blockwise_tom_from_expression never holds the adjacency matrix: rows are
    recomputed from the expression data and shared-neighbour sums are
    accumulated over every column block (L_b = Σ_c A[b, c]·A[c, :]).

Examples:
    >>> from coexnet.network.adjacency import adjacency
    >>> from coexnet.network.tom import tom_similarity, tom_dissimilarity
    >>> adj = adjacency(expression, power=6)
    >>> tom = tom_similarity(adj, block_size=2000, n_workers=4)
    >>> diss = tom_dissimilarity(tom)
    >>> condensed = condensed_tom_dissimilarity(tom)  # scipy linkage input
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from coexnet.core.errors import DegenerateInputError
from coexnet.core.expression import ExpressionMatrix
from coexnet.network.adjacency import (
    AdjacencyRows,
    DenseAdjacency,
    NetworkType,
    StreamedAdjacency,
)
from coexnet.stats.correlation import CorrelationStrategy
from coexnet.utils.blocks import (
    DEFAULT_MAX_BLOCK_MEMORY,
    block_bounds,
    resolve_block_size,
    run_blocks,
)

logger = logging.getLogger(__name__)

__all__ = [
    'validate_adjacency',
    'connectivity',
    'tom_similarity',
    'blockwise_tom_from_expression',
    'tom_dissimilarity',
    'condensed_tom_dissimilarity',
]

_SYMMETRY_ATOL = 1e-8
_RANGE_ATOL = 1e-12


def validate_adjacency(adjacency: np.ndarray, block_size: Optional[int] = None) -> None:
    """
    Check that a matrix is a valid weighted adjacency.

    Symmetry is compared block by block so memory-mapped inputs are never
    transposed in full.

    Raises:
        ValueError: If the matrix is not square, not symmetric or outside [0, 1]
        DegenerateInputError: If it contains NaN or inf
    """
    if adjacency.ndim != 2 or adjacency.shape[0] != adjacency.shape[1]:
        raise ValueError(f"Adjacency must be square, got shape {adjacency.shape}")

    n = adjacency.shape[0]
    block_size = resolve_block_size(n, block_size, DEFAULT_MAX_BLOCK_MEMORY)
    for start, stop in block_bounds(n, block_size):
        rows = np.asarray(adjacency[start:stop, :])
        if not np.isfinite(rows).all():
            raise DegenerateInputError(
                f"Adjacency contains non-finite values in rows {start}:{stop}", stage="tom"
            )
        if rows.min() < -_RANGE_ATOL or rows.max() > 1.0 + _RANGE_ATOL:
            raise ValueError(
                f"Adjacency values must lie in [0, 1], got range "
                f"[{rows.min():.6g}, {rows.max():.6g}] in rows {start}:{stop}"
            )
        cols = np.asarray(adjacency[:, start:stop]).T
        if not np.allclose(rows, cols, rtol=0.0, atol=_SYMMETRY_ATOL):
            raise ValueError(f"Adjacency is not symmetric (rows {start}:{stop})")


def connectivity(
    provider: AdjacencyRows,
    block_size: Optional[int] = None,
    n_workers: int = 1,
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY,
) -> np.ndarray:
    """Whole-network connectivity k_i = Σ_j a_ij, accumulated over row blocks."""
    n = provider.n_genes
    k = np.zeros(n, dtype=np.float64)
    bounds = block_bounds(n, resolve_block_size(n, block_size, max_block_memory))

    def work(start: int, stop: int) -> None:
        k[start:stop] = provider.rows(start, stop).sum(axis=1)

    run_blocks(bounds, work, n_workers, progress=False, desc="Connectivity")
    return k


def _tom_rows(
    a_rows: np.ndarray,
    l_rows: np.ndarray,
    k: np.ndarray,
    start: int,
    stop: int,
) -> np.ndarray:
    k_min = np.minimum(k[start:stop, None], k[None, :])
    # k_min >= a_ij off the diagonal, so the denominator is >= 1
    tom = (l_rows + a_rows) / (k_min + 1.0 - a_rows)
    idx = np.arange(start, stop)
    tom[idx - start, idx] = 1.0
    return np.clip(tom, 0.0, 1.0)


def _compute_tom(
    provider: AdjacencyRows,
    block_size: Optional[int],
    n_workers: int,
    out: Optional[np.ndarray],
    progress: bool,
    max_block_memory: int,
) -> np.ndarray:
    n = provider.n_genes
    block_size = resolve_block_size(n, block_size, max_block_memory)
    bounds = block_bounds(n, block_size)

    if out is None:
        out = np.empty((n, n), dtype=np.float64)
    elif out.shape != (n, n):
        raise ValueError(f"Output array must have shape {(n, n)}, got {out.shape}")

    k = connectivity(provider, block_size=block_size, n_workers=n_workers)

    if provider.is_dense:
        full = np.asarray(provider.matrix, dtype=np.float64)

        def shared(start: int, stop: int, a_rows: np.ndarray) -> np.ndarray:
            return a_rows @ full
    else:
        def shared(start: int, stop: int, a_rows: np.ndarray) -> np.ndarray:
            l_rows = np.zeros_like(a_rows)
            for c_start, c_stop in bounds:
                l_rows += a_rows[:, c_start:c_stop] @ provider.rows(c_start, c_stop)
            return l_rows

    def work(start: int, stop: int) -> None:
        a_rows = provider.rows(start, stop)
        l_rows = shared(start, stop, a_rows)
        out[start:stop, :] = _tom_rows(a_rows, l_rows, k, start, stop)

    logger.debug(f"TOM over {n} genes in {len(bounds)} block(s) of <= {block_size} rows")
    run_blocks(bounds, work, n_workers, progress, desc="Computing TOM")

    if isinstance(out, np.memmap):
        out.flush()
    return out


def tom_similarity(
    adjacency: np.ndarray,
    block_size: Optional[int] = None,
    n_workers: int = 1,
    out: Optional[np.ndarray] = None,
    progress: bool = False,
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY,
) -> np.ndarray:
    """
    Topological overlap matrix from a weighted adjacency.

    Args:
        adjacency: Symmetric gene × gene adjacency in [0, 1]; the diagonal is
            treated as 0 whatever its stored values
        block_size: Rows per block (None: derived from max_block_memory)
        n_workers: Threads used for independent row blocks
        out: Optional preallocated (n × n) output, e.g. np.memmap
        progress: Show a tqdm progress bar over blocks
        max_block_memory: Memory budget per block in bytes when block_size is None

    Returns:
        TOM matrix (n × n), symmetric, entries in [0, 1], diagonal 1

    Raises:
        ValueError: If the adjacency is not square, symmetric or within [0, 1]
        DegenerateInputError: If the adjacency contains NaN or inf
    """
    validate_adjacency(adjacency)
    if np.any(np.diagonal(adjacency) != 0.0):
        adjacency = np.array(adjacency, dtype=np.float64)
        np.fill_diagonal(adjacency, 0.0)
    logger.info(f"Computing topological overlap for {adjacency.shape[0]} genes")
    return _compute_tom(
        DenseAdjacency(adjacency), block_size, n_workers, out, progress, max_block_memory
    )


def blockwise_tom_from_expression(
    expression: ExpressionMatrix,
    power: float,
    network_type: NetworkType | str = NetworkType.SIGNED,
    block_size: Optional[int] = None,
    n_workers: int = 1,
    out: Optional[np.ndarray] = None,
    correlation: Optional[CorrelationStrategy] = None,
    progress: bool = False,
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY,
) -> np.ndarray:
    """
    Topological overlap computed directly from expression, never holding the adjacency.

    Adjacency rows are recomputed per block, trading CPU for memory: peak
    working memory is O(block_size × n) besides the output, which can be a
    memory-mapped file for very large gene sets. The result equals
    tom_similarity(adjacency(expression, power, network_type)) up to
    floating-point rounding.

    Args:
        expression: Samples × genes expression matrix
        power: Soft-threshold exponent
        network_type: Sign convention
        block_size: Genes per row/column block (None: derived from max_block_memory)
        n_workers: Threads used for independent row blocks
        out: Optional preallocated (n × n) output
        correlation: Correlation strategy (default pearson_correlation)
        progress: Show a tqdm progress bar over blocks
        max_block_memory: Memory budget per block in bytes when block_size is None

    Returns:
        TOM matrix (n × n)
    """
    provider = StreamedAdjacency(expression, power, network_type, correlation)
    logger.info(
        f"Computing streamed topological overlap for {expression.n_genes} genes "
        f"(power={power}, {provider.network_type.value})"
    )
    return _compute_tom(provider, block_size, n_workers, out, progress, max_block_memory)


def tom_dissimilarity(tom: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Dissimilarity 1 - TOM used as the clustering distance.

    Raises:
        DegenerateInputError: If TOM contains NaN or inf
    """
    if not np.isfinite(tom).all():
        raise DegenerateInputError("TOM contains non-finite values", stage="tom")
    if out is None:
        return 1.0 - np.asarray(tom, dtype=np.float64)
    np.subtract(1.0, tom, out=out)
    return out


def condensed_tom_dissimilarity(
    tom: np.ndarray,
    block_size: Optional[int] = None,
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY,
) -> np.ndarray:
    """
    Upper triangle of 1 - TOM in scipy's condensed distance order.

    Rows are read in blocks, so only the n(n-1)/2 result and one row block
    are in memory at a time; a numpy.memmap TOM stays on disk.

    Args:
        tom: Square topological overlap matrix (may be a numpy.memmap)
        block_size: Rows per block (None: derived from max_block_memory)
        max_block_memory: Memory budget per block in bytes

    Returns:
        1-D float64 array of length n(n-1)/2, clipped at 0

    Raises:
        ValueError: If tom is not square
        DegenerateInputError: If TOM contains NaN or inf
    """
    if tom.ndim != 2 or tom.shape[0] != tom.shape[1]:
        raise ValueError(f"TOM must be square, got shape {tom.shape}")

    n = tom.shape[0]
    condensed = np.empty(n * (n - 1) // 2, dtype=np.float64)
    offset = 0
    for start, stop in block_bounds(n, resolve_block_size(n, block_size, max_block_memory)):
        rows = tom[start:stop, :]
        if not np.isfinite(rows).all():
            raise DegenerateInputError(
                f"TOM contains non-finite values in rows {start}:{stop}", stage="tom"
            )
        for i in range(start, min(stop, n - 1)):
            length = n - i - 1
            np.subtract(1.0, rows[i - start, i + 1:], out=condensed[offset:offset + length])
            offset += length
    np.clip(condensed, 0.0, None, out=condensed)
    return condensed
