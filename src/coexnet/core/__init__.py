"""
Core data structures and error taxonomy for the network engine.

1. ExpressionMatrix: samples × genes variance-stabilized expression
2. TraitMatrix: samples × trait indicators, aligned to the expression samples
3. Errors: InsufficientSamplesError, DegenerateInputError, UnknownModuleError,
   ConfigurationWarning

Examples:
    >>> from coexnet.core import ExpressionMatrix, DegenerateInputError
    >>> matrix = ExpressionMatrix.from_frame(vst_frame)
    >>> matrix.validate_finite(stage="input")
"""

from coexnet.core.errors import (
    CoexpressionError,
    ConfigurationWarning,
    DegenerateInputError,
    InsufficientSamplesError,
    UnknownModuleError,
)
from coexnet.core.expression import ExpressionMatrix, TraitMatrix

__all__ = [
    'ExpressionMatrix',
    'TraitMatrix',
    'CoexpressionError',
    'InsufficientSamplesError',
    'DegenerateInputError',
    'UnknownModuleError',
    'ConfigurationWarning',
]
