"""
Row/column block scheduling for gene × gene computations.

Networks over tens of thousands of genes do not fit in memory as several
dense n × n float64 temporaries. Stages that touch the full network
(connectivity per power, topological overlap) therefore walk contiguous
gene blocks and write into a preallocated result. Blocks are independent, so
they may run in a ThreadPoolExecutor; numpy releases the GIL inside the
matrix products that dominate each block.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Tuple

from tqdm import tqdm

__all__ = [
    'DEFAULT_MAX_BLOCK_MEMORY',
    'default_block_size',
    'resolve_block_size',
    'block_bounds',
    'run_blocks',
]

DEFAULT_MAX_BLOCK_MEMORY = 2 ** 28

# float64 arrays of shape (block, n) alive at once per block
_ARRAYS_PER_BLOCK = 4


def default_block_size(n_genes: int, max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY) -> int:
    """
    Largest block size whose working arrays fit in max_block_memory bytes.

    Args:
        n_genes: Number of genes (columns per row block)
        max_block_memory: Memory budget per block in bytes

    Returns:
        Block size in [1, n_genes]
    """
    if n_genes <= 0:
        return 1
    rows = max_block_memory // (8 * n_genes * _ARRAYS_PER_BLOCK)
    return int(max(1, min(n_genes, rows)))


def resolve_block_size(
    n_genes: int,
    block_size: Optional[int],
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY,
) -> int:
    """Explicit block size clamped to n_genes, or the memory-derived default."""
    if block_size is None:
        return default_block_size(n_genes, max_block_memory)
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")
    return min(int(block_size), max(n_genes, 1))


def block_bounds(n: int, block_size: int) -> List[Tuple[int, int]]:
    """Contiguous [start, stop) ranges covering range(n)."""
    return [(start, min(start + block_size, n)) for start in range(0, n, block_size)]


def run_blocks(
    bounds: List[Tuple[int, int]],
    work: Callable[[int, int], None],
    n_workers: int = 1,
    progress: bool = False,
    desc: str = "Processing",
) -> None:
    """
    Run work(start, stop) for every block, sequentially or in a thread pool.

    Exceptions raised by a worker propagate to the caller.
    """
    if n_workers <= 1 or len(bounds) <= 1:
        iterator = tqdm(bounds, desc=desc, unit="block") if progress else bounds
        for start, stop in iterator:
            work(start, stop)
        return

    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = {executor.submit(work, start, stop): (start, stop) for start, stop in bounds}
        completed = as_completed(futures)
        if progress:
            completed = tqdm(completed, total=len(futures), desc=desc, unit="block")
        for future in completed:
            future.result()
