"""
Module detection and summarisation.

1. ModuleDetector: average-linkage clustering of 1 − TOM, dynamic branch
   cut and eigengene-based merging of close modules
2. module_eigengenes: first principal component per module
3. labels: integer labels (0 = unassigned) and their display colours

Examples:
    >>> from coexnet.modules import ModuleDetector
    >>> result = ModuleDetector(min_module_size=30).detect(expression, tom)
    >>> result.assignment.to_frame()
"""

from coexnet.modules.detection import (
    DetectionResult,
    ModuleAssignment,
    ModuleDetector,
    hierarchical_clustering,
    merge_close_modules,
)
from coexnet.modules.eigengenes import EigengeneResult, eigengene_column, module_eigengenes
from coexnet.modules.labels import (
    MODULE_COLORS,
    UNASSIGNED,
    UNASSIGNED_NAME,
    label_name,
    labels_to_colors,
)
from coexnet.modules.tree_cut import TreeCutParameters, dynamic_branch_cut, tree_cut_parameters

__all__ = [
    'ModuleDetector',
    'DetectionResult',
    'ModuleAssignment',
    'hierarchical_clustering',
    'merge_close_modules',
    'dynamic_branch_cut',
    'tree_cut_parameters',
    'TreeCutParameters',
    'module_eigengenes',
    'EigengeneResult',
    'eigengene_column',
    'labels_to_colors',
    'label_name',
    'MODULE_COLORS',
    'UNASSIGNED',
    'UNASSIGNED_NAME',
]
