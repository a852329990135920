"""
Trait association, module membership and hub gene selection.

Exports:
- module_trait_correlation: eigengene × trait correlation with p/q-values
- module_membership: kME of every gene in every module
- gene_significance: gene × trait correlation
- gene_module_table: per-gene summary table
- select_hub_genes: high-membership genes of selected modules
"""

from coexnet.analysis.hubs import HUB_COLUMNS, HubGeneResult, select_hub_genes
from coexnet.analysis.traits import (
    MembershipStats,
    ModuleTraitStats,
    gene_module_table,
    gene_significance,
    module_membership,
    module_trait_correlation,
)

__all__ = [
    'ModuleTraitStats',
    'MembershipStats',
    'module_trait_correlation',
    'module_membership',
    'gene_significance',
    'gene_module_table',
    'HUB_COLUMNS',
    'HubGeneResult',
    'select_hub_genes',
]
