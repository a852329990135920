"""
Correlation statistics shared by every stage of the network engine.

Exports core functions for:
- Pairwise-complete Pearson and Spearman correlation
- Student-t p-values for correlation coefficients
- Multiple testing correction (FDR)
"""

from .correlation import (
    MIN_PAIRED_SAMPLES,
    CorrelationResult,
    CorrelationStrategy,
    pearson_correlation,
    spearman_correlation,
    correlation_pvalues,
    cor_and_pvalue,
    apply_fdr_correction,
)

__all__ = [
    "MIN_PAIRED_SAMPLES",
    "CorrelationResult",
    "CorrelationStrategy",
    "pearson_correlation",
    "spearman_correlation",
    "correlation_pvalues",
    "cor_and_pvalue",
    "apply_fdr_correction",
]
