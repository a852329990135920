"""Tests for module eigengene computation."""

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import DegenerateInputError
from coexnet.core.expression import ExpressionMatrix
from coexnet.modules.eigengenes import eigengene_column, module_eigengenes


class TestModuleEigengenes:
    """First principal component per module."""

    def test_columns_and_index(self, planted):
        expression, labels, _ = planted

        result = module_eigengenes(expression, labels)

        assert list(result.eigengenes.columns) == ["MEturquoise", "MEblue"]
        assert list(result.average_expression.columns) == ["AEturquoise", "AEblue"]
        assert result.eigengenes.index.name == "sample_id"
        assert result.labels == [1, 2]
        assert result.column_for(2) == "MEblue"

    def test_standardized(self, planted):
        expression, labels, _ = planted

        me = module_eigengenes(expression, labels).eigengenes

        np.testing.assert_allclose(me.mean().to_numpy(), 0.0, atol=1e-12)
        np.testing.assert_allclose(me.std(ddof=1).to_numpy(), 1.0)

    def test_sign_follows_average_expression(self, planted):
        expression, labels, _ = planted
        # Flip the sign of the data: the eigengene must still track the module average
        flipped = ExpressionMatrix(-expression.data, expression.sample_ids, expression.gene_ids)

        result = module_eigengenes(flipped, labels)

        for column in result.eigengenes.columns:
            average = result.average_expression["AE" + column[2:]]
            assert np.corrcoef(result.eigengenes[column], average)[0, 1] > 0

    def test_tracks_planted_pattern(self, planted):
        expression, labels, patterns = planted

        me = module_eigengenes(expression, labels).eigengenes

        assert abs(np.corrcoef(me["MEturquoise"], patterns[:, 0])[0, 1]) > 0.95
        assert abs(np.corrcoef(me["MEblue"], patterns[:, 1])[0, 1]) > 0.95

    def test_variance_explained(self, planted):
        expression, labels, _ = planted

        explained = module_eigengenes(expression, labels).variance_explained

        assert ((explained > 0.5) & (explained <= 1.0)).all()

    def test_hand_computed_eigengene(self, tiny_expression):
        result = module_eigengenes(tiny_expression, np.array([1, 1, 2, 2]))

        np.testing.assert_allclose(result.eigengenes["MEturquoise"], [-1.0, 0.0, 1.0], atol=1e-12)
        expected = np.array([1.0, -2.0, 1.0]) / np.sqrt(3.0)
        np.testing.assert_allclose(result.eigengenes["MEblue"], expected, atol=1e-12)
        np.testing.assert_allclose(result.variance_explained, [1.0, 1.0])

    def test_unassigned_excluded_by_default(self, tiny_expression):
        labels = np.array([1, 1, 0, 0])

        assert list(module_eigengenes(tiny_expression, labels).eigengenes.columns) == ["MEturquoise"]
        assert list(
            module_eigengenes(tiny_expression, labels, include_unassigned=True).eigengenes.columns
        ) == ["MEgrey", "MEturquoise"]

    def test_zero_variance_gene_raises(self):
        expression = ExpressionMatrix(
            np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]]),
            pd.Index(["S1", "S2", "S3"]),
            pd.Index(["g1", "g2"]),
        )

        with pytest.raises(DegenerateInputError) as excinfo:
            module_eigengenes(expression, np.array([1, 1]))
        assert excinfo.value.stage == "eigengenes"

    def test_label_length_mismatch_raises(self, tiny_expression):
        with pytest.raises(ValueError):
            module_eigengenes(tiny_expression, np.array([1, 1]))

    def test_column_name(self):
        assert eigengene_column(0) == "MEgrey"
        assert eigengene_column(3, prefix="AE") == "AEbrown"
