"""
Hub gene selection within trait-associated modules.

A hub gene is a gene assigned to a module whose membership in that module
is strong and significant: |kME| above a threshold (default 0.7) and kME
p-value below a cutoff (default 0.05). Hubs are the candidates for
guilt-by-association annotation, e.g. a non-coding RNA that is a hub of a
module rich in genes of a known pathway.

Which modules to examine is an external decision (typically modules
significantly correlated with the trait); an empty hub list is a valid
outcome, a module without genes is an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union

import numpy as np
import pandas as pd

from coexnet.analysis.traits import MembershipStats
from coexnet.modules.detection import ModuleAssignment

logger = logging.getLogger(__name__)

__all__ = [
    'HUB_COLUMNS',
    'HubGeneResult',
    'select_hub_genes',
]

HUB_COLUMNS = ['gene_id', 'module', 'kME', 'kME_pvalue', 'GS', 'GS_pvalue']


@dataclass
class HubGeneResult:
    """
    Hub genes of one module in one analysis.

    Attributes:
        analysis_id: Identifier of the analysis (e.g. cell subset or contrast)
        module: Integer module label
        module_name: Display name of the module
        hubs: DataFrame with columns gene_id, module, kME, kME_pvalue, GS,
            GS_pvalue, ordered by decreasing |kME|
        genes: All genes assigned to the module
    """
    analysis_id: str
    module: int
    module_name: str
    hubs: pd.DataFrame
    genes: pd.Index

    @property
    def n_hubs(self) -> int:
        return len(self.hubs)

    @property
    def key(self) -> tuple:
        return (self.analysis_id, self.module)


def _significance_columns(significance: Optional[pd.DataFrame]) -> tuple:
    if significance is None:
        return None, None
    gs_columns = [c for c in significance.columns if str(c).startswith("GS.")]
    if not gs_columns:
        raise ValueError(f"Gene significance table has no 'GS.<trait>' column: {list(significance.columns)}")
    gs = gs_columns[0]
    return gs, f"p.{gs}"


def select_hub_genes(
    assignment: ModuleAssignment,
    membership: MembershipStats,
    significance: Optional[pd.DataFrame],
    modules: Iterable[Union[int, str]],
    kme_threshold: float = 0.7,
    kme_pvalue: float = 0.05,
    analysis_id: str = "analysis",
) -> Dict[int, HubGeneResult]:
    """
    Select hub genes for each requested module.

    Args:
        assignment: Final module assignment
        membership: kME of every gene against every module
        significance: Gene significance table ('GS.<trait>', 'p.GS.<trait>');
            None leaves the GS columns empty
        modules: Module labels or display names to examine
        kme_threshold: Minimum |kME| (strict)
        kme_pvalue: Maximum kME p-value (strict)
        analysis_id: Identifier recorded on each result

    Returns:
        Mapping module label → HubGeneResult (possibly with zero hubs)

    Raises:
        UnknownModuleError: If a requested module has no genes
        ValueError: If thresholds are out of range
    """
    if not 0 <= kme_threshold <= 1:
        raise ValueError(f"kme_threshold must be in [0, 1], got {kme_threshold}")
    if not 0 < kme_pvalue <= 1:
        raise ValueError(f"kme_pvalue must be in (0, 1], got {kme_pvalue}")

    gs_column, gs_p_column = _significance_columns(significance)
    results: Dict[int, HubGeneResult] = {}

    for module in modules:
        label = assignment.resolve(module)
        name = assignment.name(label)
        genes = assignment.genes_in(label)

        stats = membership.for_module(label).reindex(genes)
        if gs_column is not None:
            gs = significance[gs_column].reindex(genes)
            gs_p = significance[gs_p_column].reindex(genes)
        else:
            gs = pd.Series(np.nan, index=genes)
            gs_p = pd.Series(np.nan, index=genes)

        table = pd.DataFrame({
            'gene_id': genes,
            'module': name,
            'kME': stats['kME'].to_numpy(),
            'kME_pvalue': stats['kME_pvalue'].to_numpy(),
            'GS': gs.to_numpy(),
            'GS_pvalue': gs_p.to_numpy(),
        }, columns=HUB_COLUMNS)

        is_hub = (table['kME'].abs() > kme_threshold) & (table['kME_pvalue'] < kme_pvalue)
        hubs = table[is_hub]
        hubs = hubs.iloc[np.argsort(-hubs['kME'].abs().to_numpy(), kind='stable')]
        hubs = hubs.reset_index(drop=True)

        if hubs.empty:
            logger.info(
                f"[{analysis_id}] Module {name}: no genes pass |kME| > {kme_threshold} "
                f"and p < {kme_pvalue} ({len(genes)} genes examined)"
            )
        else:
            logger.info(f"[{analysis_id}] Module {name}: {len(hubs)} hub gene(s) of {len(genes)}")

        results[label] = HubGeneResult(
            analysis_id=analysis_id,
            module=label,
            module_name=name,
            hubs=hubs,
            genes=genes,
        )
    return results
