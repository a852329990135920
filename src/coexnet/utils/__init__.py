"""Shared helpers: block scheduling for gene × gene stages and atomic file writes."""

from coexnet.utils.blocks import (
    DEFAULT_MAX_BLOCK_MEMORY,
    block_bounds,
    default_block_size,
    resolve_block_size,
    run_blocks,
)
from coexnet.utils.fileio import atomic_write_frame, atomic_write_json, atomic_write_text

__all__ = [
    'DEFAULT_MAX_BLOCK_MEMORY',
    'block_bounds',
    'default_block_size',
    'resolve_block_size',
    'run_blocks',
    'atomic_write_frame',
    'atomic_write_json',
    'atomic_write_text',
]
