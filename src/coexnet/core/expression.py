"""
Core data structures for network construction inputs.

ExpressionMatrix holds the variance-stabilized expression values the network
engine consumes, TraitMatrix holds the sample-level trait indicators that
modules are related to.

Biological Context:
    Co-expression analysis correlates genes across samples:
    - Rows = samples (libraries, donors, cell subsets)
    - Columns = genes (protein-coding genes and non-coding RNAs alike)
    - Values = normalized, variance-stabilized expression (e.g. VST counts)

    Upstream collaborators (quantification, outlier filtering, normalization)
    guarantee the matrix is complete. Traits arrive as one indicator column per
    level of a categorical phenotype (or as continuous measurements) and must
    be ordered exactly like the expression samples.

Engineering Design:
    - Immutable: Operations return new instances (functional style)
    - Type-safe: NumPy arrays for data, Pandas indices for identifiers
    - Validated: Constructor checks shape and identifier uniqueness
    - Finiteness is checked at stage boundaries via validate_finite()

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from coexnet.core.expression import ExpressionMatrix, TraitMatrix
    >>>
    >>> data = np.array([[1.0, 2.0, 0.5], [2.0, 4.0, 0.1], [3.0, 6.0, 0.9]])
    >>> expression = ExpressionMatrix(
    ...     data=data,
    ...     sample_ids=pd.Index(["S1", "S2", "S3"]),
    ...     gene_ids=pd.Index(["ENSG001", "ENSG002", "lncRNA_7"]),
    ... )
    >>> traits = TraitMatrix.from_categorical(
    ...     pd.Series(["CASE", "CTRL", "CASE"], index=["S1", "S2", "S3"], name="group")
    ... )
    >>> traits = traits.align_to(expression)
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from coexnet.core.errors import DegenerateInputError

__all__ = ['ExpressionMatrix', 'TraitMatrix']


class ExpressionMatrix:
    """
    Immutable samples × genes expression matrix.

    Attributes:
        data: Expression values (n_samples × n_genes, float64)
        sample_ids: Row identifiers (unique)
        gene_ids: Column identifiers (unique)

    Shape Invariants:
        - data.shape == (len(sample_ids), len(gene_ids))
        - sample_ids and gene_ids contain no duplicates
    """

    def __init__(
        self,
        data: np.ndarray,
        sample_ids: pd.Index,
        gene_ids: pd.Index,
    ):
        """
        Initialize ExpressionMatrix with validation.

        Args:
            data: Expression matrix (samples × genes)
            sample_ids: Row identifiers
            gene_ids: Column identifiers

        Raises:
            TypeError: If data is not an ndarray
            ValueError: If shapes are inconsistent or identifiers are duplicated
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(sample_ids, pd.Index):
            sample_ids = pd.Index(sample_ids)
        if not isinstance(gene_ids, pd.Index):
            gene_ids = pd.Index(gene_ids)

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_samples, n_genes = data.shape
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data rows ({n_samples})"
            )
        if len(gene_ids) != n_genes:
            raise ValueError(
                f"gene_ids length ({len(gene_ids)}) must match data columns ({n_genes})"
            )
        if sample_ids.has_duplicates:
            dupes = sample_ids[sample_ids.duplicated()].unique().tolist()
            raise ValueError(f"sample_ids must be unique, duplicated: {dupes[:5]}")
        if gene_ids.has_duplicates:
            dupes = gene_ids[gene_ids.duplicated()].unique().tolist()
            raise ValueError(f"gene_ids must be unique, duplicated: {dupes[:5]}")

        data = np.array(data, dtype=np.float64, copy=True)
        data.setflags(write=False)

        self._data = data
        self._sample_ids = sample_ids
        self._gene_ids = gene_ids

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> ExpressionMatrix:
        """Build from a samples × genes DataFrame."""
        return cls(
            data=frame.to_numpy(dtype=np.float64, copy=True),
            sample_ids=pd.Index(frame.index),
            gene_ids=pd.Index(frame.columns),
        )

    @property
    def data(self) -> np.ndarray:
        """Expression values (samples × genes), read-only."""
        return self._data

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def gene_ids(self) -> pd.Index:
        return self._gene_ids

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_samples, n_genes)."""
        return self._data.shape

    @property
    def n_samples(self) -> int:
        return self._data.shape[0]

    @property
    def n_genes(self) -> int:
        return self._data.shape[1]

    def to_frame(self) -> pd.DataFrame:
        """Return a samples × genes DataFrame copy."""
        return pd.DataFrame(self._data.copy(), index=self._sample_ids, columns=self._gene_ids)

    def zero_variance_genes(self, tol: float = 1e-12) -> pd.Index:
        """Genes whose variance across samples is (numerically) zero."""
        with np.errstate(invalid='ignore'):
            variances = np.nanvar(self._data, axis=0)
        return self._gene_ids[~(variances > tol)]

    def validate_finite(self, stage: Optional[str] = None) -> None:
        """
        Fail fast if the matrix contains NaN or inf.

        Raises:
            DegenerateInputError: With the number of offending values and the
                first affected genes.
        """
        finite = np.isfinite(self._data)
        if finite.all():
            return
        bad_genes = self._gene_ids[~finite.all(axis=0)].tolist()
        raise DegenerateInputError(
            f"Expression matrix contains {int((~finite).sum())} non-finite values "
            f"in {len(bad_genes)} genes (first: {bad_genes[:5]})",
            stage=stage,
        )

    def select_genes(self, genes: Sequence[str] | np.ndarray | pd.Index) -> ExpressionMatrix:
        """
        Subset genes (columns) by boolean mask or by identifiers.

        Args:
            genes: Boolean mask of length n_genes, or gene identifiers

        Returns:
            New ExpressionMatrix with the selected genes in the given order

        Raises:
            KeyError: If identifiers are not present
            ValueError: If a mask has the wrong length
        """
        genes = np.asarray(genes)
        if genes.dtype == bool:
            if len(genes) != self.n_genes:
                raise ValueError(
                    f"mask length ({len(genes)}) must match n_genes ({self.n_genes})"
                )
            idx = np.flatnonzero(genes)
        else:
            idx = self._gene_ids.get_indexer(genes)
            if (idx < 0).any():
                missing = genes[idx < 0].tolist()
                raise KeyError(f"Genes not found in expression matrix: {missing[:10]}")
        return ExpressionMatrix(
            data=self._data[:, idx],
            sample_ids=self._sample_ids,
            gene_ids=self._gene_ids[idx],
        )

    def select_samples(self, mask: np.ndarray | pd.Series) -> ExpressionMatrix:
        """Subset samples (rows) with a boolean mask."""
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)
        if len(mask) != self.n_samples:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )
        return ExpressionMatrix(
            data=self._data[mask, :],
            sample_ids=self._sample_ids[mask],
            gene_ids=self._gene_ids,
        )

    def __repr__(self) -> str:
        if self._data.size == 0:
            return f"ExpressionMatrix({self.n_samples} samples × {self.n_genes} genes)"
        return (
            f"ExpressionMatrix({self.n_samples} samples × {self.n_genes} genes)\n"
            f"  Samples: {self._sample_ids[0]}...{self._sample_ids[-1]}\n"
            f"  Genes: {self._gene_ids[0]}...{self._gene_ids[-1]}"
        )


class TraitMatrix:
    """
    Immutable samples × traits matrix of numeric indicators or measurements.

    Attributes:
        data: Trait values (n_samples × n_traits, float64)
        sample_ids: Row identifiers
        trait_names: Column identifiers
    """

    def __init__(self, data: np.ndarray, sample_ids: pd.Index, trait_names: pd.Index):
        data = np.array(data, dtype=np.float64, copy=True)
        if data.ndim == 1:
            data = data.reshape(-1, 1)
        if data.ndim != 2:
            raise ValueError(f"trait data must be 2D, got shape {data.shape}")
        sample_ids = pd.Index(sample_ids)
        trait_names = pd.Index(trait_names)
        if data.shape != (len(sample_ids), len(trait_names)):
            raise ValueError(
                f"trait data shape {data.shape} does not match "
                f"{len(sample_ids)} samples × {len(trait_names)} traits"
            )
        if sample_ids.has_duplicates:
            raise ValueError("trait sample_ids must be unique")
        if trait_names.has_duplicates:
            raise ValueError("trait names must be unique")
        data.setflags(write=False)
        self._data = data
        self._sample_ids = sample_ids
        self._trait_names = trait_names

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> TraitMatrix:
        """Build from a samples × traits DataFrame; non-numeric columns are rejected."""
        non_numeric = [c for c in frame.columns if not pd.api.types.is_numeric_dtype(frame[c])]
        if non_numeric:
            raise ValueError(
                f"Trait columns must be numeric (use from_categorical for labels): {non_numeric}"
            )
        return cls(frame.to_numpy(dtype=np.float64), frame.index, frame.columns)

    @classmethod
    def from_categorical(
        cls,
        values: pd.Series,
        levels: Optional[Sequence[str]] = None,
    ) -> TraitMatrix:
        """
        One-hot encode a categorical sample annotation.

        Each level becomes a 0/1 indicator column named ``<series name>_<level>``
        (or just ``<level>`` for an unnamed Series).

        Args:
            values: Categorical labels indexed by sample id
            levels: Optional explicit level order; defaults to sorted unique labels

        Raises:
            ValueError: If values contain missing labels
        """
        if values.isna().any():
            missing = values.index[values.isna()].tolist()
            raise ValueError(f"Trait labels missing for samples: {missing[:10]}")
        if levels is None:
            levels = sorted(values.astype(str).unique())
        prefix = f"{values.name}_" if values.name is not None else ""
        labels = values.astype(str)
        columns = {f"{prefix}{level}": (labels == str(level)).astype(float) for level in levels}
        frame = pd.DataFrame(columns, index=values.index)
        return cls(frame.to_numpy(), frame.index, frame.columns)

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def trait_names(self) -> pd.Index:
        return self._trait_names

    @property
    def n_samples(self) -> int:
        return self._data.shape[0]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._data.copy(), index=self._sample_ids, columns=self._trait_names)

    def column(self, name: str) -> pd.Series:
        """Return one trait as a Series indexed by sample id."""
        if name not in self._trait_names:
            raise KeyError(f"Trait '{name}' not found. Available: {list(self._trait_names)}")
        j = self._trait_names.get_loc(name)
        return pd.Series(self._data[:, j].copy(), index=self._sample_ids, name=name)

    def align_to(self, expression: ExpressionMatrix) -> TraitMatrix:
        """
        Reorder rows to match the expression sample order.

        Raises:
            ValueError: If any expression sample has no trait row
        """
        if self._sample_ids.equals(expression.sample_ids):
            return self
        missing = expression.sample_ids.difference(self._sample_ids)
        if len(missing) > 0:
            raise ValueError(
                f"{len(missing)} expression samples have no trait values: {missing[:5].tolist()}"
            )
        idx = self._sample_ids.get_indexer(expression.sample_ids)
        return TraitMatrix(self._data[idx, :], expression.sample_ids, self._trait_names)

    def __repr__(self) -> str:
        return f"TraitMatrix({self.n_samples} samples × {len(self._trait_names)} traits: {list(self._trait_names)})"
