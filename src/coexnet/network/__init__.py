"""
Weighted network construction: soft thresholding, adjacency and topological overlap.

Exports:
- pick_soft_threshold / suggest_power / check_power: scale-free fit report
  and advisory power
- adjacency / adjacency_from_correlation: soft-thresholded adjacency
- tom_similarity / blockwise_tom_from_expression / tom_dissimilarity /
  condensed_tom_dissimilarity:
  blockwise topological overlap
"""

from .adjacency import (
    NetworkType,
    AdjacencyRows,
    DenseAdjacency,
    StreamedAdjacency,
    apply_soft_threshold,
    adjacency,
    adjacency_from_correlation,
)
from .soft_threshold import (
    DEFAULT_POWERS,
    DEFAULT_R2_CUT,
    ScaleFreeFit,
    SoftThresholdResult,
    scale_free_fit,
    connectivity_by_power,
    pick_soft_threshold,
    suggest_power,
    check_power,
)
from .tom import (
    validate_adjacency,
    connectivity,
    tom_similarity,
    blockwise_tom_from_expression,
    tom_dissimilarity,
    condensed_tom_dissimilarity,
)

__all__ = [
    "NetworkType",
    "AdjacencyRows",
    "DenseAdjacency",
    "StreamedAdjacency",
    "apply_soft_threshold",
    "adjacency",
    "adjacency_from_correlation",
    "DEFAULT_POWERS",
    "DEFAULT_R2_CUT",
    "ScaleFreeFit",
    "SoftThresholdResult",
    "scale_free_fit",
    "connectivity_by_power",
    "pick_soft_threshold",
    "suggest_power",
    "check_power",
    "validate_adjacency",
    "connectivity",
    "tom_similarity",
    "blockwise_tom_from_expression",
    "tom_dissimilarity",
    "condensed_tom_dissimilarity",
]
