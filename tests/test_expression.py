"""Tests for ExpressionMatrix and TraitMatrix."""

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import DegenerateInputError
from coexnet.core.expression import ExpressionMatrix, TraitMatrix


class TestExpressionMatrix:
    """Construction, validation and subsetting."""

    def test_read_only(self, tiny_expression):
        with pytest.raises(ValueError):
            tiny_expression.data[0, 0] = 5.0

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError):
            ExpressionMatrix(np.zeros((3, 2)), pd.Index(["a", "b"]), pd.Index(["g1", "g2"]))

    def test_duplicate_genes_raise(self):
        with pytest.raises(ValueError, match="unique"):
            ExpressionMatrix(np.zeros((2, 2)), pd.Index(["a", "b"]), pd.Index(["g1", "g1"]))

    def test_zero_variance_genes(self):
        data = np.array([[1.0, 4.0], [2.0, 4.0], [3.0, 4.0]])
        matrix = ExpressionMatrix(data, pd.Index(["S1", "S2", "S3"]), pd.Index(["g1", "g2"]))

        assert matrix.zero_variance_genes().tolist() == ["g2"]

    def test_validate_finite_reports_stage(self):
        data = np.array([[1.0, np.nan], [2.0, 4.0], [3.0, 5.0]])
        matrix = ExpressionMatrix(data, pd.Index(["S1", "S2", "S3"]), pd.Index(["g1", "g2"]))

        with pytest.raises(DegenerateInputError, match=r"\[input\]") as excinfo:
            matrix.validate_finite(stage="input")
        assert excinfo.value.stage == "input"

    def test_select_genes(self, tiny_expression):
        subset = tiny_expression.select_genes(["g3", "g1"])

        assert subset.gene_ids.tolist() == ["g3", "g1"]
        np.testing.assert_array_equal(subset.data[:, 1], [1.0, 2.0, 3.0])
        with pytest.raises(KeyError):
            tiny_expression.select_genes(["g9"])

    def test_frame_round_trip(self, tiny_expression):
        frame = tiny_expression.to_frame()

        assert ExpressionMatrix.from_frame(frame).gene_ids.equals(tiny_expression.gene_ids)


class TestTraitMatrix:
    """Trait tables and indicator encoding."""

    def test_from_categorical(self):
        values = pd.Series(["CASE", "CTRL", "CASE"], index=["S1", "S2", "S3"], name="group")

        traits = TraitMatrix.from_categorical(values)

        assert traits.trait_names.tolist() == ["group_CASE", "group_CTRL"]
        np.testing.assert_array_equal(traits.data, [[1, 0], [0, 1], [1, 0]])

    def test_explicit_levels(self):
        values = pd.Series(["b", "a"], index=["S1", "S2"], name="x")

        traits = TraitMatrix.from_categorical(values, levels=["b", "a", "c"])

        assert traits.trait_names.tolist() == ["x_b", "x_a", "x_c"]
        assert traits.column("x_c").sum() == 0

    def test_missing_labels_raise(self):
        values = pd.Series(["CASE", None], index=["S1", "S2"], name="group")

        with pytest.raises(ValueError):
            TraitMatrix.from_categorical(values)

    def test_align_to_expression(self, tiny_expression):
        frame = pd.DataFrame({'age': [30.0, 20.0, 10.0]}, index=["S3", "S2", "S1"])

        aligned = TraitMatrix.from_frame(frame).align_to(tiny_expression)

        assert aligned.column("age").tolist() == [10.0, 20.0, 30.0]

    def test_align_missing_sample_raises(self, tiny_expression):
        frame = pd.DataFrame({'age': [30.0, 20.0]}, index=["S3", "S2"])

        with pytest.raises(ValueError):
            TraitMatrix.from_frame(frame).align_to(tiny_expression)

    def test_non_numeric_frame_rejected(self):
        with pytest.raises(ValueError, match="from_categorical"):
            TraitMatrix.from_frame(pd.DataFrame({'group': ["a", "b"]}))
