"""
Module detection: hierarchical clustering, adaptive branch cut and merging.

Biological Context:
    Genes are clustered by average linkage on topological overlap
    dissimilarity (1 − TOM). The dynamic branch cut turns the dendrogram
    into initial modules; modules whose eigengenes are highly correlated
    describe the same biological programme split by the tree's shape and
    are merged.

Engineering Design:
    Labels are integers: 0 is the unassigned set ('grey'), modules start at
    1 and are numbered by decreasing size after the cut. When close modules
    merge, the merged module keeps the label of its largest constituent
    (ties resolved by the smaller label), so a module keeps its identity
    and display colour across the merge. Pre-merge labels are retained on
    the ModuleAssignment for reporting.

    Merging repeats (eigengenes recomputed each round) until no pair of
    modules is closer than the merge cut height. Unassigned genes never
    join a module during merging.

Examples:
    >>> detector = ModuleDetector(min_module_size=30, deep_split=2)
    >>> result = detector.detect(expression, tom)
    >>> result.assignment.sizes()
    >>> result.assignment.genes_in("turquoise")
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, linkage as scipy_linkage
from scipy.spatial.distance import squareform

from coexnet.core.errors import ConfigurationWarning, DegenerateInputError, UnknownModuleError
from coexnet.core.expression import ExpressionMatrix
from coexnet.modules.eigengenes import EigengeneResult, module_eigengenes
from coexnet.modules.labels import UNASSIGNED, label_name, name_map
from coexnet.modules.tree_cut import TreeCutParameters, dynamic_branch_cut, tree_cut_parameters
from coexnet.network.tom import condensed_tom_dissimilarity
from coexnet.stats.correlation import CorrelationStrategy, pearson_correlation

logger = logging.getLogger(__name__)

__all__ = [
    'ModuleAssignment',
    'DetectionResult',
    'ModuleDetector',
    'hierarchical_clustering',
    'merge_close_modules',
]

ModuleKey = Union[int, str]


@dataclass(frozen=True, eq=False)
class ModuleAssignment:
    """
    Gene → module partition after (and before) merging of close modules.

    Attributes:
        gene_ids: Gene identifiers in expression column order
        labels: Post-merge module label per gene (0 = unassigned)
        premerge_labels: Label per gene as produced by the branch cut
        names: Display name per post-merge label present
        merge_map: Pre-merge label → post-merge label
    """
    gene_ids: pd.Index
    labels: np.ndarray
    premerge_labels: np.ndarray
    names: Dict[int, str] = field(default_factory=dict)
    merge_map: Dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_labels(
        cls,
        gene_ids: pd.Index,
        labels: np.ndarray,
        premerge_labels: Optional[np.ndarray] = None,
        merge_map: Optional[Dict[int, int]] = None,
    ) -> ModuleAssignment:
        labels = np.asarray(labels, dtype=np.int64)
        premerge = labels if premerge_labels is None else np.asarray(premerge_labels, dtype=np.int64)
        if labels.shape != (len(gene_ids),) or premerge.shape != labels.shape:
            raise ValueError(
                f"Label vectors must match {len(gene_ids)} genes, "
                f"got {labels.shape} and {premerge.shape}"
            )
        if merge_map is None:
            merge_map = {int(lab): int(lab) for lab in np.unique(premerge)}
        return cls(
            gene_ids=pd.Index(gene_ids),
            labels=labels,
            premerge_labels=premerge,
            names=name_map(labels),
            merge_map=dict(merge_map),
        )

    @property
    def modules(self) -> List[int]:
        """Assigned (non-zero) module labels, ascending."""
        return [int(lab) for lab in np.unique(self.labels) if lab != UNASSIGNED]

    @property
    def n_unassigned(self) -> int:
        return int((self.labels == UNASSIGNED).sum())

    def name(self, label: int) -> str:
        return self.names.get(int(label), label_name(label))

    def sizes(self) -> pd.Series:
        """Gene count per label present (including 0 when genes are unassigned)."""
        labels, counts = np.unique(self.labels, return_counts=True)
        return pd.Series(counts, index=pd.Index(labels, name='module'), name='n_genes')

    def resolve(self, module: ModuleKey) -> int:
        """
        Integer label of a module given by label, display name or 'ME<name>'.

        The unassigned set (0, 'grey') is not a module and never resolves.

        Raises:
            UnknownModuleError: If no gene carries the requested module
        """
        label: Optional[int] = None
        if isinstance(module, (int, np.integer)):
            label = int(module)
        else:
            text = str(module).strip()
            if text.lstrip('-').isdigit():
                label = int(text)
            else:
                if text.startswith("ME") and text[2:] in self.names.values():
                    text = text[2:]
                for lab, name in self.names.items():
                    if name == text:
                        label = lab
                        break

        if label is None or label == UNASSIGNED or not (self.labels == label).any():
            available = ', '.join(f"{lab} ({self.name(lab)})" for lab in self.modules)
            raise UnknownModuleError(
                f"Module '{module}' has no genes; available modules: {available or 'none'}"
            )
        return label

    def genes_in(self, module: ModuleKey) -> pd.Index:
        """Genes assigned to a module (post-merge)."""
        label = self.resolve(module)
        return self.gene_ids[self.labels == label]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'gene_id': self.gene_ids,
            'module': self.labels,
            'module_name': [self.name(lab) for lab in self.labels],
            'premerge_module': self.premerge_labels,
            'premerge_name': [label_name(lab) for lab in self.premerge_labels],
        })


@dataclass
class DetectionResult:
    """Dendrogram, final assignment and eigengenes of one detection run."""
    linkage: np.ndarray
    assignment: ModuleAssignment
    eigengenes: EigengeneResult
    n_initial: int
    n_merged: int
    parameters: Optional[TreeCutParameters] = None


def hierarchical_clustering(dissimilarity: np.ndarray) -> np.ndarray:
    """
    Average-linkage clustering of a dissimilarity matrix.

    Args:
        dissimilarity: Symmetric genes × genes dissimilarity (e.g. 1 − TOM),
            or its condensed upper triangle as built by
            condensed_tom_dissimilarity (used as is, without a copy)

    Returns:
        scipy linkage matrix ((n-1) × 4)

    Raises:
        ValueError: If the matrix is not square, a condensed vector has an
            invalid length, or there are fewer than 2 genes
        DegenerateInputError: If it contains NaN or inf
    """
    dissimilarity = np.asarray(dissimilarity, dtype=np.float64)
    if dissimilarity.ndim == 1:
        n = int(np.ceil(np.sqrt(2 * dissimilarity.size)))
        if n * (n - 1) // 2 != dissimilarity.size:
            raise ValueError(
                f"Condensed dissimilarity length {dissimilarity.size} is not n(n-1)/2"
            )
    elif dissimilarity.ndim != 2 or dissimilarity.shape[0] != dissimilarity.shape[1]:
        raise ValueError(f"Dissimilarity must be square, got shape {dissimilarity.shape}")
    else:
        n = dissimilarity.shape[0]
    if n < 2:
        raise ValueError("Clustering needs at least 2 genes")
    if not np.isfinite(dissimilarity).all():
        raise DegenerateInputError(
            f"Dissimilarity contains {int((~np.isfinite(dissimilarity)).sum())} non-finite values",
            stage="module_detection",
        )

    if dissimilarity.ndim == 2:
        condensed = squareform(dissimilarity, checks=False)
        np.clip(condensed, 0.0, None, out=condensed)
    elif dissimilarity.min() < 0:
        condensed = np.clip(dissimilarity, 0.0, None)
    else:
        condensed = dissimilarity
    return scipy_linkage(condensed, method='average')


def _cluster_tom(tom: np.ndarray) -> np.ndarray:
    """Linkage over 1 - TOM built from row blocks; empty for fewer than 2 genes."""
    if tom.shape[0] < 2:
        return np.empty((0, 4), dtype=np.float64)
    return hierarchical_clustering(condensed_tom_dissimilarity(tom))


def _merge_round(
    labels: np.ndarray,
    eigengenes: EigengeneResult,
    cut_height: float,
    correlation: CorrelationStrategy,
) -> Dict[int, int]:
    """One merge pass; returns label → target for labels that merge."""
    cor = correlation(eigengenes.eigengenes.to_numpy()).r
    diss = 1.0 - cor
    np.fill_diagonal(diss, 0.0)
    tree = hierarchical_clustering(diss)
    clusters = fcluster(tree, t=cut_height, criterion='distance')

    sizes = {lab: int((labels == lab).sum()) for lab in eigengenes.labels}
    mapping: Dict[int, int] = {}
    for cluster in np.unique(clusters):
        members = [lab for lab, c in zip(eigengenes.labels, clusters) if c == cluster]
        if len(members) < 2:
            continue
        target = min(members, key=lambda lab: (-sizes[lab], lab))
        for lab in members:
            if lab != target:
                mapping[lab] = target
    return mapping


def merge_close_modules(
    expression: ExpressionMatrix,
    labels: np.ndarray,
    cut_height: float = 0.25,
    correlation: Optional[CorrelationStrategy] = None,
) -> Tuple[np.ndarray, Dict[int, int]]:
    """
    Merge modules whose eigengenes are closer than cut_height (1 − correlation).

    Args:
        expression: Samples × genes expression matrix
        labels: Module label per gene (0 = unassigned)
        cut_height: Maximum eigengene dissimilarity for merging
        correlation: Correlation strategy for eigengenes (default pearson_correlation)

    Returns:
        (merged labels, merge map pre-merge label → post-merge label)
    """
    if not 0 <= cut_height <= 2:
        raise ValueError(f"Merge cut height must be in [0, 2], got {cut_height}")
    correlation = correlation or pearson_correlation
    original = np.asarray(labels, dtype=np.int64)
    merged = original.copy()
    merge_map = {int(lab): int(lab) for lab in np.unique(original)}

    round_ = 0
    while True:
        modules = [lab for lab in np.unique(merged) if lab != UNASSIGNED]
        if len(modules) < 2:
            break
        eigengenes = module_eigengenes(expression, merged)
        mapping = _merge_round(merged, eigengenes, cut_height, correlation)
        if not mapping:
            break
        round_ += 1
        for source, target in mapping.items():
            merged[merged == source] = target
        for pre, post in merge_map.items():
            merge_map[pre] = mapping.get(post, post)
        logger.debug(f"Merge round {round_}: {len(mapping)} module(s) merged")

    n_before = len([lab for lab in np.unique(original) if lab != UNASSIGNED])
    n_after = len([lab for lab in np.unique(merged) if lab != UNASSIGNED])
    logger.info(f"Merged close modules: {n_before} → {n_after} (cut height {cut_height})")
    return merged, merge_map


class ModuleDetector:
    """
    Detect co-expression modules from expression and its topological overlap.

    Args:
        min_module_size: Minimum genes per module
        deep_split: Branch cut sensitivity 0-4
        cut_height: Maximum joining height for the branch cut (None: automatic)
        merge_cut_height: Eigengene dissimilarity below which modules merge
        correlation: Correlation strategy for eigengene comparisons
    """

    def __init__(
        self,
        min_module_size: int = 30,
        deep_split: float = 2,
        cut_height: Optional[float] = None,
        merge_cut_height: float = 0.25,
        correlation: Optional[CorrelationStrategy] = None,
    ):
        if min_module_size < 1:
            raise ValueError(f"min_module_size must be >= 1, got {min_module_size}")
        self.min_module_size = min_module_size
        self.deep_split = deep_split
        self.cut_height = cut_height
        self.merge_cut_height = merge_cut_height
        self.correlation = correlation or pearson_correlation

    @classmethod
    def from_config(cls, config) -> ModuleDetector:
        """Build a detector from any object carrying the detection settings (e.g. NetworkConfig)."""
        return cls(
            min_module_size=config.min_module_size,
            deep_split=config.deep_split,
            cut_height=config.cut_height,
            merge_cut_height=config.merge_cut_height,
            correlation=config.correlation,
        )

    def detect(self, expression: ExpressionMatrix, tom: np.ndarray) -> DetectionResult:
        """
        Cluster, cut and merge.

        Args:
            expression: Samples × genes expression matrix
            tom: Topological overlap matrix over the same genes

        Returns:
            DetectionResult

        Raises:
            ValueError: If tom does not match the gene count
            DegenerateInputError: If tom contains NaN or inf

        Warns:
            ConfigurationWarning: If there are fewer genes than min_module_size
        """
        n = expression.n_genes
        if tom.shape != (n, n):
            raise ValueError(
                f"[module_detection] TOM shape {tom.shape} does not match {n} genes"
            )
        gene_ids = expression.gene_ids

        if n < self.min_module_size:
            warnings.warn(
                f"Only {n} genes, fewer than min_module_size={self.min_module_size}; "
                f"all genes left unassigned",
                ConfigurationWarning,
                stacklevel=2,
            )
            tree = _cluster_tom(tom)
            assignment = ModuleAssignment.from_labels(gene_ids, np.zeros(n, dtype=np.int64))
            return DetectionResult(
                linkage=tree,
                assignment=assignment,
                eigengenes=module_eigengenes(expression, assignment.labels),
                n_initial=0,
                n_merged=0,
            )

        tree = _cluster_tom(tom)
        parameters = tree_cut_parameters(tree[:, 2], self.deep_split, self.cut_height)
        initial = dynamic_branch_cut(
            tree,
            min_module_size=self.min_module_size,
            deep_split=self.deep_split,
            cut_height=self.cut_height,
        )
        n_initial = len(np.unique(initial[initial != UNASSIGNED]))

        merged, merge_map = merge_close_modules(
            expression, initial, cut_height=self.merge_cut_height, correlation=self.correlation
        )
        assignment = ModuleAssignment.from_labels(gene_ids, merged, initial, merge_map)
        eigengenes = module_eigengenes(expression, assignment.labels)

        logger.info(
            f"Detected {len(assignment.modules)} module(s) "
            f"({n_initial} before merging), {assignment.n_unassigned} unassigned gene(s)"
        )
        return DetectionResult(
            linkage=tree,
            assignment=assignment,
            eigengenes=eigengenes,
            n_initial=n_initial,
            n_merged=len(assignment.modules),
            parameters=parameters,
        )
