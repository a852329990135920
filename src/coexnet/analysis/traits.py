"""
Relating modules and genes to experimental traits.

Biological Context:
    Three complementary statistics connect the network to the experiment:

    - Module-trait correlation: correlation of each module eigengene with
      each trait (e.g. indicator of a cell subset or condition). Modules
      whose eigengene tracks the trait are candidates for follow-up.
    - Module membership (kME): correlation of each gene with each module
      eigengene. A gene with high |kME| for its module is representative of
      (central to) that module. kME is reported for every gene against every
      module, independent of the gene's assignment.
    - Gene significance (GS): correlation of each gene with one trait.

    All p-values are two-sided Student-t tests of the correlation; module-
    trait p-values are additionally adjusted by Benjamini-Hochberg across
    the whole table.

Engineering Design:
    Correlation goes through the injected strategy (default Pearson with
    pairwise-complete observations). A constant trait makes every gene
    significance undefined and raises DegenerateInputError rather than
    reporting zeros.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
import pandas as pd

from coexnet.core.errors import DegenerateInputError
from coexnet.core.expression import ExpressionMatrix, TraitMatrix
from coexnet.modules.detection import ModuleAssignment
from coexnet.modules.eigengenes import EigengeneResult, eigengene_column
from coexnet.stats.correlation import CorrelationStrategy, apply_fdr_correction, cor_and_pvalue

logger = logging.getLogger(__name__)

__all__ = [
    'ModuleTraitStats',
    'MembershipStats',
    'module_trait_correlation',
    'module_membership',
    'gene_significance',
    'gene_module_table',
]


@dataclass
class ModuleTraitStats:
    """
    Module-trait association table.

    Attributes:
        correlation: Modules × traits eigengene-trait correlations
        pvalue: Student-t p-values
        qvalue: Benjamini-Hochberg adjusted p-values over the whole table
        n_samples: Number of samples behind each correlation
    """
    correlation: pd.DataFrame
    pvalue: pd.DataFrame
    qvalue: pd.DataFrame
    n_samples: int

    def to_long(self) -> pd.DataFrame:
        """One row per (module, trait) pair, sorted by p-value."""
        n_modules, n_traits = self.correlation.shape
        long = pd.DataFrame({
            'module': np.repeat(self.correlation.index.to_numpy(), n_traits),
            'trait': np.tile(self.correlation.columns.to_numpy(), n_modules),
            'correlation': self.correlation.to_numpy().ravel(),
            'pvalue': self.pvalue.to_numpy().ravel(),
            'qvalue': self.qvalue.to_numpy().ravel(),
        })
        return long.sort_values('pvalue', kind='mergesort').reset_index(drop=True)


@dataclass
class MembershipStats:
    """
    Module membership of every gene in every module.

    Attributes:
        kme: Genes × modules correlations, columns 'kME<name>'
        pvalue: Genes × modules p-values, columns 'p.kME<name>'
    """
    kme: pd.DataFrame
    pvalue: pd.DataFrame

    def for_module(self, label: int) -> pd.DataFrame:
        """kME and p-value of every gene for one module label."""
        column = f"k{eigengene_column(label)}"
        if column not in self.kme.columns:
            raise KeyError(f"No membership computed for module {label} ({column})")
        return pd.DataFrame({
            'kME': self.kme[column],
            'kME_pvalue': self.pvalue[f"p.{column}"],
        })


def _eigengene_frame(eigengenes: Union[EigengeneResult, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(eigengenes, EigengeneResult):
        return eigengenes.eigengenes
    return eigengenes


def _align_samples(frame: pd.DataFrame, sample_ids: pd.Index, what: str) -> pd.DataFrame:
    if frame.index.equals(sample_ids):
        return frame
    missing = sample_ids.difference(frame.index)
    if len(missing) > 0:
        raise ValueError(f"{len(missing)} samples missing from {what}: {missing[:5].tolist()}")
    return frame.loc[sample_ids]


def module_trait_correlation(
    eigengenes: Union[EigengeneResult, pd.DataFrame],
    traits: Union[TraitMatrix, pd.DataFrame],
    correlation: Optional[CorrelationStrategy] = None,
) -> ModuleTraitStats:
    """
    Correlate every module eigengene with every trait.

    Args:
        eigengenes: Samples × modules eigengenes
        traits: Samples × traits; rows are aligned to the eigengene samples
        correlation: Correlation strategy (default pearson_correlation)

    Returns:
        ModuleTraitStats (modules × traits)

    Raises:
        ValueError: If eigengene samples are missing from the traits
        DegenerateInputError: If a trait is constant
    """
    me = _eigengene_frame(eigengenes)
    trait_frame = traits.to_frame() if isinstance(traits, TraitMatrix) else traits
    trait_frame = _align_samples(trait_frame, me.index, "trait table")

    cor, pvalue = cor_and_pvalue(me, trait_frame, correlation=correlation)
    qvalue, _ = apply_fdr_correction(pvalue.to_numpy())
    qvalue = pd.DataFrame(qvalue, index=pvalue.index, columns=pvalue.columns)

    logger.info(
        f"Module-trait correlation: {cor.shape[0]} module(s) × {cor.shape[1]} trait(s), "
        f"{int((pvalue.to_numpy() < 0.05).sum())} nominal p < 0.05"
    )
    return ModuleTraitStats(correlation=cor, pvalue=pvalue, qvalue=qvalue, n_samples=len(me))


def module_membership(
    expression: ExpressionMatrix,
    eigengenes: Union[EigengeneResult, pd.DataFrame],
    correlation: Optional[CorrelationStrategy] = None,
) -> MembershipStats:
    """
    kME of every gene against every module eigengene.

    Args:
        expression: Samples × genes expression matrix
        eigengenes: Samples × modules eigengenes over the same samples
        correlation: Correlation strategy (default pearson_correlation)

    Returns:
        MembershipStats with 'kME<name>' and 'p.kME<name>' columns
    """
    me = _align_samples(_eigengene_frame(eigengenes), expression.sample_ids, "eigengenes")
    cor, pvalue = cor_and_pvalue(expression.to_frame(), me, correlation=correlation)
    cor.columns = [f"k{col}" for col in me.columns]
    pvalue.columns = [f"p.k{col}" for col in me.columns]
    cor.index.name = 'gene_id'
    pvalue.index.name = 'gene_id'
    return MembershipStats(kme=cor, pvalue=pvalue)


def gene_significance(
    expression: ExpressionMatrix,
    trait: Union[pd.Series, TraitMatrix],
    trait_name: Optional[str] = None,
    correlation: Optional[CorrelationStrategy] = None,
) -> pd.DataFrame:
    """
    Correlation of every gene with one trait.

    Args:
        expression: Samples × genes expression matrix
        trait: Trait values indexed by sample id, or a TraitMatrix together
            with trait_name
        trait_name: Column to use when trait is a TraitMatrix
        correlation: Correlation strategy (default pearson_correlation)

    Returns:
        DataFrame indexed by gene id with columns 'GS.<trait>' and 'p.GS.<trait>'

    Raises:
        DegenerateInputError: If the trait is constant over the samples
        ValueError: If samples are missing from the trait
    """
    if isinstance(trait, TraitMatrix):
        if trait_name is None:
            raise ValueError("trait_name is required when trait is a TraitMatrix")
        trait = trait.column(trait_name)
    name = trait_name or trait.name or 'trait'
    trait = _align_samples(trait.to_frame(name), expression.sample_ids, f"trait '{name}'")[name]

    observed = trait.dropna()
    if observed.nunique() < 2:
        raise DegenerateInputError(
            f"Trait '{name}' is constant over {len(observed)} sample(s); "
            f"gene significance is undefined",
            stage="gene_significance",
        )

    cor, pvalue = cor_and_pvalue(expression.to_frame(), trait.to_frame(name), correlation=correlation)
    table = pd.DataFrame({
        f"GS.{name}": cor.iloc[:, 0],
        f"p.GS.{name}": pvalue.iloc[:, 0],
    })
    table.index.name = 'gene_id'
    return table


def gene_module_table(
    assignment: ModuleAssignment,
    membership: MembershipStats,
    significance: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """
    Per-gene summary: module, membership in every module and trait significance.

    Columns: gene_id, module, module_name, premerge_module, module_kME,
    module_kME_pvalue (membership in the gene's own module, NaN when
    unassigned), then every kME/p.kME column and the GS columns.
    """
    table = assignment.to_frame().set_index('gene_id')
    table = table.drop(columns=['premerge_name'])

    own_kme = np.full(len(table), np.nan)
    own_p = np.full(len(table), np.nan)
    kme = membership.kme.reindex(table.index)
    pvalue = membership.pvalue.reindex(table.index)
    for label in assignment.modules:
        column = f"k{eigengene_column(label)}"
        if column not in kme.columns:
            continue
        mask = assignment.labels == label
        own_kme[mask] = kme[column].to_numpy()[mask]
        own_p[mask] = pvalue[f"p.{column}"].to_numpy()[mask]
    table['module_kME'] = own_kme
    table['module_kME_pvalue'] = own_p

    interleaved = []
    for column in kme.columns:
        interleaved.append(kme[column])
        interleaved.append(pvalue[f"p.{column}"])
    parts = [table] + interleaved
    if significance is not None:
        parts.append(significance.reindex(table.index))
    return pd.concat(parts, axis=1).reset_index()
