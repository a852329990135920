"""
Input/output for expression matrices, traits and network results.

Loaders:
- load_expression_csv: variance-stabilized matrix (genes × samples by default)
- load_trait_table: numeric samples × traits table
- traits_from_metadata: one-hot indicator traits from a categorical metadata column

Writers:
- write_network_results: module, eigengene, trait, membership and hub tables
- write_soft_threshold_table: scale-free fit report
"""

from coexnet.io.loaders import load_expression_csv, load_trait_table, traits_from_metadata
from coexnet.io.writers import write_network_results, write_soft_threshold_table

__all__ = [
    'load_expression_csv',
    'load_trait_table',
    'traits_from_metadata',
    'write_network_results',
    'write_soft_threshold_table',
]
