"""
coexnet - Weighted Gene Co-expression Network Analysis

Builds signed co-expression networks from variance-stabilized expression,
detects modules on the topological overlap dendrogram, relates module
eigengenes to sample traits and selects hub genes of trait-associated
modules.
"""

__version__ = "0.1.0"

from coexnet.core.expression import ExpressionMatrix, TraitMatrix
from coexnet.core.errors import (
    ConfigurationWarning,
    DegenerateInputError,
    InsufficientSamplesError,
    UnknownModuleError,
)
from coexnet.pipeline import NetworkAnalysisResult, NetworkConfig, run_network_analysis

__all__ = [
    "ExpressionMatrix",
    "TraitMatrix",
    "InsufficientSamplesError",
    "DegenerateInputError",
    "UnknownModuleError",
    "ConfigurationWarning",
    "NetworkConfig",
    "NetworkAnalysisResult",
    "run_network_analysis",
]
