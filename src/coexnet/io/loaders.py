"""
CSV loaders for variance-stabilized expression and sample traits.

Biological Context:
    The network engine starts from counts that were already normalised and
    variance-stabilised upstream (e.g. a DESeq2 VST export) and filtered for
    outlier samples and lowly expressed genes. Such exports are usually
    genes × samples:

    ```
    "","S01_CD4","S02_CD4","S03_CD8"
    "ENSG00000000003",8.21,8.95,7.40
    "ENSG00000000005",4.02,3.88,4.51
    ```

    Traits come either as a numeric samples × traits table or as a sample
    metadata sheet with a categorical column (cell subset, condition) that
    is one-hot encoded into indicator traits.

Engineering Design:
    - Duplicate identifiers warn and keep the first occurrence
    - Non-numeric expression values raise ValueError with examples
    - NaN values are kept (pairwise-complete correlation downstream) but
      reported with a warning; infinite values are rejected
    - Trait tables can be aligned to an expression matrix on load

Examples:
    >>> from coexnet.io.loaders import load_expression_csv, traits_from_metadata
    >>> expression = load_expression_csv("vst_counts.csv")
    >>> traits = traits_from_metadata("samples.csv", "cell_subset", expression=expression)
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from coexnet.core.expression import ExpressionMatrix, TraitMatrix

__all__ = ['load_expression_csv', 'load_trait_table', 'traits_from_metadata']


def _read_table(path: Path, what: str, sep: Optional[str] = None) -> pd.DataFrame:
    if not isinstance(path, Path):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    if sep is None:
        sep = '\t' if path.suffix.lower() in ('.tsv', '.txt') else ','
    try:
        frame = pd.read_csv(path, index_col=0, sep=sep)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"{what} file is empty: {path}") from e
    except Exception as e:
        raise ValueError(f"Failed to read {what.lower()} file {path}: {e}") from e

    if frame.shape[0] == 0 or frame.shape[1] == 0:
        raise ValueError(f"{what} file contains no data: {path}")
    frame.index = frame.index.astype(str)
    frame.columns = frame.columns.astype(str)
    return frame


def _drop_duplicates(frame: pd.DataFrame, rows: str, columns: str) -> pd.DataFrame:
    if frame.index.duplicated().any():
        n_duplicates = frame.index.duplicated().sum()
        warnings.warn(
            f"Found {n_duplicates} duplicate {rows} IDs. Using first occurrence of each.",
            UserWarning,
        )
        frame = frame[~frame.index.duplicated(keep='first')]
    if frame.columns.duplicated().any():
        n_duplicates = frame.columns.duplicated().sum()
        warnings.warn(
            f"Found {n_duplicates} duplicate {columns} IDs. Using first occurrence of each.",
            UserWarning,
        )
        frame = frame.loc[:, ~frame.columns.duplicated(keep='first')]
    return frame


def _numeric_values(frame: pd.DataFrame, what: str) -> np.ndarray:
    try:
        return frame.to_numpy(dtype=np.float64)
    except (ValueError, TypeError) as e:
        non_numeric = []
        coerced = frame.apply(pd.to_numeric, errors='coerce')
        bad = coerced.isna() & frame.notna()
        for row, col in zip(*np.nonzero(bad.to_numpy())):
            non_numeric.append(
                f"row '{frame.index[row]}', col '{frame.columns[col]}': {frame.iat[row, col]}"
            )
            if len(non_numeric) >= 5:
                break
        raise ValueError(
            f"{what} contains non-numeric values:\n"
            + "\n".join(f"  - {x}" for x in non_numeric)
            + ("\n  ..." if len(non_numeric) >= 5 else "")
        ) from e


def load_expression_csv(
    path: Path | str,
    genes_as_rows: bool = True,
    sep: Optional[str] = None,
) -> ExpressionMatrix:
    """
    Load a variance-stabilized expression matrix.

    Args:
        path: CSV (or TSV) file; first column holds identifiers
        genes_as_rows: True for genes × samples files (default, VST export
            layout); False for samples × genes
        sep: Field separator (default: tab for .tsv/.txt, comma otherwise)

    Returns:
        ExpressionMatrix (samples × genes)

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file is empty, non-numeric or contains inf
    """
    frame = _read_table(Path(path), "Expression", sep=sep)
    if genes_as_rows:
        frame = _drop_duplicates(frame, rows="gene", columns="sample").T
    else:
        frame = _drop_duplicates(frame, rows="sample", columns="gene")

    data = _numeric_values(frame, "Expression file")
    if np.isinf(data).any():
        raise ValueError(
            f"Expression file contains {int(np.isinf(data).sum())} infinite values. "
            "Please clean data before loading."
        )
    if np.isnan(data).any():
        n_nan = int(np.isnan(data).sum())
        warnings.warn(
            f"Found {n_nan:,} NaN values ({100 * n_nan / data.size:.2f}% of data). "
            "Correlations will use pairwise-complete observations; the network "
            "stages require complete data.",
            UserWarning,
        )

    return ExpressionMatrix(data=data, sample_ids=frame.index, gene_ids=frame.columns)


def load_trait_table(
    path: Path | str,
    expression: Optional[ExpressionMatrix] = None,
    columns: Optional[Sequence[str]] = None,
    sep: Optional[str] = None,
) -> TraitMatrix:
    """
    Load a numeric samples × traits table.

    Args:
        path: CSV/TSV with sample IDs in the first column
        expression: Optional matrix to align rows to
        columns: Optional subset of trait columns
        sep: Field separator

    Returns:
        TraitMatrix (aligned to expression when given)
    """
    frame = _drop_duplicates(_read_table(Path(path), "Trait", sep=sep), rows="sample", columns="trait")
    if columns is not None:
        missing = [c for c in columns if c not in frame.columns]
        if missing:
            raise ValueError(f"Trait columns not found: {missing}. Available: {list(frame.columns)}")
        frame = frame[list(columns)]
    data = _numeric_values(frame, "Trait file")
    traits = TraitMatrix(data, frame.index, frame.columns)
    return traits.align_to(expression) if expression is not None else traits


def traits_from_metadata(
    path: Path | str,
    column: str,
    expression: Optional[ExpressionMatrix] = None,
    levels: Optional[Sequence[str]] = None,
    sep: Optional[str] = None,
) -> TraitMatrix:
    """
    Build indicator traits from a categorical column of a sample metadata sheet.

    Args:
        path: CSV/TSV with sample IDs in the first column
        column: Categorical column to one-hot encode (e.g. cell subset)
        expression: Optional matrix; metadata is restricted and aligned to its samples
        levels: Optional explicit level order
        sep: Field separator

    Returns:
        TraitMatrix with one 0/1 column per level, named '<column>_<level>'
    """
    frame = _drop_duplicates(_read_table(Path(path), "Metadata", sep=sep), rows="sample", columns="column")
    if column not in frame.columns:
        raise ValueError(f"Metadata column '{column}' not found. Available: {list(frame.columns)}")

    values = frame[column]
    if expression is not None:
        missing = expression.sample_ids.difference(values.index)
        if len(missing) > 0:
            raise ValueError(
                f"{len(missing)} expression samples have no metadata: {missing[:5].tolist()}"
            )
        values = values.loc[expression.sample_ids]

    return TraitMatrix.from_categorical(values, levels=levels)
