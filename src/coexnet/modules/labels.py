"""
Display names for integer module labels.

Modules are identified internally by integers: 0 is the unassigned set, and
the branch cut numbers modules 1, 2, ... by decreasing size. Merging close
modules keeps the label of the largest constituent and does not renumber,
so merged labels may have gaps (e.g. 1, 3, 4). Reports use the conventional
colour names of co-expression analyses so that module 1 is 'turquoise',
module 2 'blue' and so on; the unassigned set is 'grey'. Labels beyond the
palette are named 'module<N>'.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

import numpy as np

__all__ = [
    'UNASSIGNED',
    'UNASSIGNED_NAME',
    'MODULE_COLORS',
    'label_name',
    'labels_to_colors',
    'name_map',
    'relabel_by_size',
]

UNASSIGNED = 0
UNASSIGNED_NAME = "grey"

MODULE_COLORS = (
    "turquoise", "blue", "brown", "yellow", "green", "red", "black", "pink",
    "magenta", "purple", "greenyellow", "tan", "salmon", "cyan", "midnightblue",
    "lightcyan", "grey60", "lightgreen", "lightyellow", "royalblue", "darkred",
    "darkgreen", "darkturquoise", "darkgrey", "orange", "darkorange", "white",
    "skyblue", "saddlebrown", "steelblue", "paleturquoise", "violet",
    "darkolivegreen", "darkmagenta", "sienna3", "yellowgreen", "skyblue3",
    "plum1", "orangered4", "mediumpurple3", "lightsteelblue1", "lightcyan1",
    "ivory", "floralwhite", "darkorange2", "brown4", "bisque4", "darkslateblue",
    "plum2", "thistle2", "thistle1", "salmon4", "palevioletred3", "navajowhite2",
    "maroon", "lightpink4", "lavenderblush3", "honeydew1", "darkseagreen4",
    "coral1", "antiquewhite4", "coral2", "mediumorchid", "skyblue2",
    "yellow4", "skyblue1", "plum", "orangered3", "mediumpurple2",
    "lightsteelblue", "lightcoral", "indianred4", "firebrick4", "darkolivegreen4",
    "brown2", "blue2", "darkviolet", "plum3", "thistle3", "thistle",
)


def label_name(label: int) -> str:
    """Display name of one integer module label."""
    label = int(label)
    if label < 0:
        raise ValueError(f"Module labels must be non-negative, got {label}")
    if label == UNASSIGNED:
        return UNASSIGNED_NAME
    if label <= len(MODULE_COLORS):
        return MODULE_COLORS[label - 1]
    return f"module{label}"


def labels_to_colors(labels: Iterable[int]) -> List[str]:
    """Display name for every entry of a label vector."""
    return [label_name(label) for label in np.asarray(list(labels), dtype=np.int64)]


def name_map(labels: Iterable[int]) -> Dict[int, str]:
    """Mapping label → display name for the distinct labels present."""
    return {int(label): label_name(label) for label in np.unique(np.asarray(list(labels)))}


def relabel_by_size(labels: np.ndarray) -> np.ndarray:
    """
    Renumber module labels 1..m by decreasing size.

    Ties are broken by the position of the module's first gene, so the result
    depends only on the partition and the gene order. Unassigned genes (0)
    stay 0.
    """
    labels = np.asarray(labels, dtype=np.int64)
    assigned = np.unique(labels[labels != UNASSIGNED])
    if assigned.size == 0:
        return labels.copy()

    sizes = np.array([(labels == lab).sum() for lab in assigned])
    first = np.array([np.argmax(labels == lab) for lab in assigned])
    order = np.lexsort((first, -sizes))

    relabeled = np.zeros_like(labels)
    for new_label, idx in enumerate(order, start=1):
        relabeled[labels == assigned[idx]] = new_label
    return relabeled
