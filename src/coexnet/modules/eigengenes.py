"""
Module eigengenes: the first principal component of each module's expression.

Biological Context:
    The eigengene summarises a module as one expression profile across
    samples. It is the first principal component of the module's
    standardised genes, oriented so that it correlates positively with the
    module's average expression; a high eigengene value then means the
    module is highly expressed in that sample. Eigengenes stand in for whole
    modules when relating them to traits and when measuring how close two
    modules are.

Engineering Design:
    Genes are scaled to mean 0 and sd 1 (ddof=1), the first left singular
    vector of the scaled block is taken, oriented along the mean scaled
    expression and rescaled to mean 0 and sd 1. A single-gene module
    therefore yields exactly the standardised gene. Variance explained is
    the share of the first singular value, d1² / Σ d², which for
    standardised genes equals the mean squared correlation between the
    eigengene and the module's genes.

    Zero-variance genes or non-finite values raise DegenerateInputError: the
    eigengene is undefined and is never silently replaced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Union

import numpy as np
import pandas as pd

from coexnet.core.errors import DegenerateInputError
from coexnet.core.expression import ExpressionMatrix
from coexnet.modules.labels import UNASSIGNED, label_name

logger = logging.getLogger(__name__)

__all__ = [
    'EigengeneResult',
    'module_eigengenes',
    'eigengene_column',
]


def eigengene_column(label: int, prefix: str = "ME") -> str:
    """Column name of a module's eigengene, e.g. 'MEturquoise'."""
    return f"{prefix}{label_name(label)}"


@dataclass
class EigengeneResult:
    """
    Eigengenes with their supporting summaries.

    Attributes:
        eigengenes: Samples × modules DataFrame, columns 'ME<name>' in label order
        average_expression: Samples × modules mean of standardised genes ('AE<name>')
        variance_explained: Series indexed like eigengenes.columns
        labels: Module label of each column, in column order
    """
    eigengenes: pd.DataFrame
    average_expression: pd.DataFrame
    variance_explained: pd.Series
    labels: list

    def column_for(self, label: int) -> str:
        return self.eigengenes.columns[self.labels.index(int(label))]


def _standardize(block: np.ndarray, gene_ids: Iterable[str], module: str) -> np.ndarray:
    mean = block.mean(axis=0)
    sd = block.std(axis=0, ddof=1)
    bad = ~(sd > 0)
    if bad.any():
        offenders = [g for g, b in zip(gene_ids, bad) if b]
        raise DegenerateInputError(
            f"Module {module} has {len(offenders)} zero-variance gene(s): {offenders[:5]}",
            stage="eigengenes",
        )
    return (block - mean) / sd


def _first_component(scaled: np.ndarray) -> tuple[np.ndarray, float]:
    u, d, _ = np.linalg.svd(scaled, full_matrices=False)
    pc = u[:, 0] * d[0]
    average = scaled.mean(axis=1)
    if np.dot(pc - pc.mean(), average - average.mean()) < 0:
        pc = -pc
    sd = pc.std(ddof=1)
    pc = (pc - pc.mean()) / sd if sd > 0 else pc - pc.mean()
    total = float((d ** 2).sum())
    explained = float(d[0] ** 2 / total) if total > 0 else np.nan
    return pc, explained


def module_eigengenes(
    expression: ExpressionMatrix,
    labels: Union[np.ndarray, Iterable[int]],
    include_unassigned: bool = False,
) -> EigengeneResult:
    """
    Eigengene of every module in a label vector.

    Args:
        expression: Samples × genes expression matrix
        labels: Integer label per gene (aligned with expression.gene_ids), or
            an object with a `labels` attribute such as ModuleAssignment
        include_unassigned: Also summarise the unassigned genes (label 0)

    Returns:
        EigengeneResult with one column per module, ordered by label

    Raises:
        ValueError: If the label vector length differs from the gene count
        DegenerateInputError: If a module contains zero-variance genes or
            expression contains non-finite values
    """
    labels = np.asarray(getattr(labels, 'labels', labels), dtype=np.int64)
    if labels.shape != (expression.n_genes,):
        raise ValueError(
            f"Label vector length {labels.shape[0] if labels.ndim else 0} does not "
            f"match {expression.n_genes} genes"
        )
    expression.validate_finite(stage="eigengenes")

    modules = [int(lab) for lab in np.unique(labels)]
    if not include_unassigned:
        modules = [lab for lab in modules if lab != UNASSIGNED]

    data = expression.data
    gene_ids = np.asarray(expression.gene_ids)
    eigengenes: Dict[str, np.ndarray] = {}
    averages: Dict[str, np.ndarray] = {}
    explained: Dict[str, float] = {}

    for label in modules:
        mask = labels == label
        name = label_name(label)
        scaled = _standardize(data[:, mask], gene_ids[mask], name)
        pc, fraction = _first_component(scaled)
        eigengenes[eigengene_column(label)] = pc
        averages[eigengene_column(label, prefix="AE")] = scaled.mean(axis=1)
        explained[eigengene_column(label)] = fraction

    logger.info(f"Computed eigengenes for {len(modules)} module(s)")
    index = pd.Index(expression.sample_ids, name='sample_id')
    return EigengeneResult(
        eigengenes=pd.DataFrame(eigengenes, index=index),
        average_expression=pd.DataFrame(averages, index=index),
        variance_explained=pd.Series(explained, name='variance_explained'),
        labels=modules,
    )

