"""
Adaptive branch cutting of an average-linkage gene dendrogram.

Biological Context:
    A fixed-height cut of a TOM dendrogram either merges distinct modules that
    join just below the cut or fragments loose modules. The dynamic branch
    cut instead inspects each branch: a branch is kept whole unless it
    clearly consists of two tight sub-branches separated by a gap. Branches
    smaller than the minimum module size are left unassigned (label 0).

Algorithm:
    1. Reference height = 5% quantile of merge heights; default cut height
       = 0.99·(max − ref) + ref.
    2. deep_split (0-4) sets the maximum core scatter, interpolated over
       [0.64, 0.73, 0.82, 0.91, 0.95], and the minimum gap
       (1 − scatter)·3/4. Both are relative to (cut − ref) and converted to
       absolute heights.
    3. Walking down from the root, a branch merging above the cut height is
       always split. A branch merging at or below the cut becomes a module
       unless both children have at least min_module_size genes, each
       child's core scatter is below the maximum and the gap between the
       branch's merge height and each child's core scatter is at least the
       minimum gap, in which case the children are examined in turn.
    4. Modules are renumbered by decreasing size (ties by first gene
       position), so the output is a deterministic function of the tree.

    The core of a branch of size s consists of its
    min_module_size/2 + sqrt(s − min_module_size/2) most tightly joined genes;
    core scatter is the mean height of the merges that join them.

Examples:
    >>> from coexnet.modules.tree_cut import dynamic_branch_cut
    >>> labels = dynamic_branch_cut(linkage, min_module_size=30, deep_split=2)
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from coexnet.modules.labels import UNASSIGNED, relabel_by_size

logger = logging.getLogger(__name__)

__all__ = [
    'DEEP_SPLIT_CORE_SCATTER',
    'TreeCutParameters',
    'tree_cut_parameters',
    'dynamic_branch_cut',
]

DEEP_SPLIT_CORE_SCATTER = (0.64, 0.73, 0.82, 0.91, 0.95)
REFERENCE_QUANTILE = 0.05


class TreeCutParameters:
    """Absolute thresholds derived from a dendrogram and the cut settings."""

    def __init__(
        self,
        reference_height: float,
        cut_height: float,
        max_core_scatter: float,
        min_gap: float,
    ):
        self.reference_height = reference_height
        self.cut_height = cut_height
        self.max_core_scatter = max_core_scatter
        self.min_gap = min_gap

    def __repr__(self) -> str:
        return (
            f"TreeCutParameters(reference_height={self.reference_height:.4g}, "
            f"cut_height={self.cut_height:.4g}, max_core_scatter={self.max_core_scatter:.4g}, "
            f"min_gap={self.min_gap:.4g})"
        )


def tree_cut_parameters(
    heights: np.ndarray,
    deep_split: float = 2,
    cut_height: Optional[float] = None,
) -> TreeCutParameters:
    """
    Absolute cut height, maximum core scatter and minimum gap for a dendrogram.

    Args:
        heights: Merge heights of the dendrogram
        deep_split: Sensitivity 0 (coarse) to 4 (fine); fractional values interpolate
        cut_height: Explicit maximum joining height (default 99% of the
            range above the reference height)

    Returns:
        TreeCutParameters with absolute heights
    """
    if not 0 <= deep_split <= 4:
        raise ValueError(f"deep_split must be between 0 and 4, got {deep_split}")

    heights = np.asarray(heights, dtype=np.float64)
    reference = float(np.quantile(heights, REFERENCE_QUANTILE)) if heights.size else 0.0
    max_height = float(heights.max()) if heights.size else 0.0
    if cut_height is None:
        cut_height = 0.99 * (max_height - reference) + reference

    relative_scatter = float(np.interp(deep_split, np.arange(5), DEEP_SPLIT_CORE_SCATTER))
    relative_gap = (1.0 - relative_scatter) * 3.0 / 4.0
    span = max(cut_height - reference, 0.0)

    return TreeCutParameters(
        reference_height=reference,
        cut_height=float(cut_height),
        max_core_scatter=reference + relative_scatter * span,
        min_gap=relative_gap * span,
    )


def _core_size(branch_size: int, min_module_size: int) -> int:
    half = min_module_size / 2.0
    return int(min(branch_size, half + np.sqrt(max(branch_size - half, 0.0))))


def _lowest_merges(linkage: np.ndarray, n: int, keep: int) -> List[np.ndarray]:
    """For every internal node, its `keep` lowest merge heights (ascending)."""
    empty = np.empty(0, dtype=np.float64)
    lowest: List[np.ndarray] = []
    for left, right, height, _ in linkage:
        left, right = int(left), int(right)
        parts = [
            lowest[left - n] if left >= n else empty,
            lowest[right - n] if right >= n else empty,
            np.array([height]),
        ]
        merged = np.sort(np.concatenate(parts))
        lowest.append(merged[:keep])
    return lowest


def dynamic_branch_cut(
    linkage: np.ndarray,
    min_module_size: int = 30,
    deep_split: float = 2,
    cut_height: Optional[float] = None,
) -> np.ndarray:
    """
    Cut a dendrogram into modules with the adaptive branch criteria.

    Args:
        linkage: scipy linkage matrix ((n-1) × 4) over n genes
        min_module_size: Minimum genes per module; smaller branches are unassigned
        deep_split: Sensitivity 0-4 (higher gives more, smaller modules)
        cut_height: Maximum joining height (default from the reference height)

    Returns:
        Integer labels per gene (leaf order of the linkage input): 0 for
        unassigned, modules 1..m by decreasing size

    Raises:
        ValueError: If min_module_size < 1, deep_split is out of range or the
            linkage matrix is malformed
    """
    if min_module_size < 1:
        raise ValueError(f"min_module_size must be >= 1, got {min_module_size}")
    linkage = np.asarray(linkage, dtype=np.float64)
    if linkage.ndim != 2 or linkage.shape[1] != 4:
        raise ValueError(f"Linkage matrix must have shape (n-1, 4), got {linkage.shape}")

    n = linkage.shape[0] + 1
    heights = linkage[:, 2]
    params = tree_cut_parameters(heights, deep_split=deep_split, cut_height=cut_height)
    logger.debug(f"Dynamic branch cut over {n} genes with {params}")

    labels = np.full(n, UNASSIGNED, dtype=np.int64)
    if n == 1:
        if min_module_size <= 1:
            labels[0] = 1
        return labels

    sizes = np.concatenate([np.ones(n, dtype=np.int64), linkage[:, 3].astype(np.int64)])
    children = linkage[:, :2].astype(np.int64)
    keep = max(_core_size(n, min_module_size) - 1, 1)
    lowest = _lowest_merges(linkage, n, keep)

    def core_scatter(node: int) -> float:
        if node < n:
            return 0.0
        n_merges = max(_core_size(int(sizes[node]), min_module_size) - 1, 1)
        return float(lowest[node - n][:n_merges].mean())

    def leaves(node: int) -> List[int]:
        found, stack = [], [node]
        while stack:
            current = stack.pop()
            if current < n:
                found.append(current)
            else:
                stack.extend(children[current - n])
        return found

    def should_split(node: int) -> bool:
        height = heights[node - n]
        for child in children[node - n]:
            if sizes[child] < min_module_size:
                return False
            scatter = core_scatter(child)
            if scatter >= params.max_core_scatter:
                return False
            if height - scatter < params.min_gap:
                return False
        return True

    next_label = 1
    stack = [2 * n - 2]
    while stack:
        node = stack.pop()
        if sizes[node] < min_module_size:
            continue
        if node < n:
            labels[node] = next_label
            next_label += 1
            continue
        if heights[node - n] > params.cut_height or should_split(node):
            # Right child first on the stack so the left branch is labelled first
            left, right = children[node - n]
            stack.append(right)
            stack.append(left)
            continue
        labels[leaves(node)] = next_label
        next_label += 1

    labels = relabel_by_size(labels)
    n_modules = len(np.unique(labels[labels != UNASSIGNED]))
    logger.info(
        f"Dynamic branch cut: {n_modules} module(s), "
        f"{int((labels == UNASSIGNED).sum())} of {n} genes unassigned"
    )
    return labels
