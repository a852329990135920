"""
Error taxonomy for the co-expression network engine.

Fatal errors abort the analysis run: downstream stages assume complete and
dimensionally consistent upstream matrices, so nothing is silently dropped or
imputed mid-pipeline. Advisories (e.g. a soft-threshold power that never
reaches scale-free fit) are warnings, not errors.

Hierarchy:
    CoexpressionError
    ├── InsufficientSamplesError   too few paired observations for a correlation
    ├── DegenerateInputError       zero variance, NaN or inf reaching a stage
    └── UnknownModuleError         requested module label has no genes

    ConfigurationWarning (UserWarning)
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    'CoexpressionError',
    'InsufficientSamplesError',
    'DegenerateInputError',
    'UnknownModuleError',
    'ConfigurationWarning',
]


class CoexpressionError(Exception):
    """Base class for fatal errors raised by the network engine."""
    pass


class InsufficientSamplesError(CoexpressionError):
    """Raised when fewer than 3 paired observations are available for a correlation."""
    pass


class DegenerateInputError(CoexpressionError):
    """
    Raised when zero-variance columns or non-finite values reach a stage.

    Attributes:
        stage: Name of the pipeline stage that detected the problem
            (e.g. "adjacency", "tom", "module_detection"), or None when raised
            outside the pipeline.
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        self.stage = stage
        if stage is not None:
            message = f"[{stage}] {message}"
        super().__init__(message)


class UnknownModuleError(CoexpressionError, KeyError):
    """Raised when a requested module label has zero genes after detection/merging."""

    def __str__(self) -> str:
        # KeyError repr-quotes its message; keep it readable
        return str(self.args[0]) if self.args else ''


class ConfigurationWarning(UserWarning):
    """Non-fatal advisory about configuration choices (e.g. soft-threshold power)."""
    pass
