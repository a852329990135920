"""Tests for correlation statistics shared by every network stage."""

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import DegenerateInputError, InsufficientSamplesError
from coexnet.stats.correlation import (
    apply_fdr_correction,
    cor_and_pvalue,
    correlation_pvalues,
    pearson_correlation,
    spearman_correlation,
)


class TestPearsonCorrelation:
    """Pearson correlation with pairwise-complete observations."""

    def test_matches_numpy_on_complete_data(self):
        rng = np.random.default_rng(0)
        x = rng.standard_normal((30, 6))

        result = pearson_correlation(x)

        np.testing.assert_allclose(result.r, np.corrcoef(x, rowvar=False), atol=1e-12)
        assert (result.n == 30).all()

    def test_symmetric_with_unit_diagonal(self):
        rng = np.random.default_rng(1)
        result = pearson_correlation(rng.standard_normal((12, 5)))

        np.testing.assert_array_equal(result.r, result.r.T)
        np.testing.assert_array_equal(np.diag(result.r), np.ones(5))

    def test_cross_correlation_shape_and_labels(self):
        rng = np.random.default_rng(2)
        x = pd.DataFrame(rng.standard_normal((10, 3)), columns=["a", "b", "c"])
        y = pd.DataFrame(rng.standard_normal((10, 2)), columns=["t1", "t2"])

        result = pearson_correlation(x, y)

        assert result.r.shape == (3, 2)
        assert list(result.x_names) == ["a", "b", "c"]
        assert list(result.y_names) == ["t1", "t2"]
        assert result.to_frame().loc["b", "t2"] == pytest.approx(np.corrcoef(x["b"], y["t2"])[0, 1])

    def test_pairwise_complete_observations(self):
        x = np.array([
            [1.0, 2.0],
            [2.0, np.nan],
            [3.0, 6.5],
            [4.0, 8.0],
            [5.0, 9.0],
        ])

        result = pearson_correlation(x)

        complete = ~np.isnan(x).any(axis=1)
        expected = np.corrcoef(x[complete, 0], x[complete, 1])[0, 1]
        assert result.r[0, 1] == pytest.approx(expected)
        assert result.n[0, 1] == 4
        assert result.n[0, 0] == 5

    def test_fewer_than_three_pairs_raises(self):
        x = np.array([[1.0, 2.0], [2.0, 3.0]])

        with pytest.raises(InsufficientSamplesError):
            pearson_correlation(x)

    def test_missing_values_reduce_pairs_below_minimum(self):
        x = np.array([
            [1.0, np.nan],
            [2.0, np.nan],
            [3.0, 1.0],
            [4.0, 2.0],
        ])

        with pytest.raises(InsufficientSamplesError):
            pearson_correlation(x)

    def test_zero_variance_raises_in_strict_mode(self):
        x = np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]])

        with pytest.raises(DegenerateInputError):
            pearson_correlation(x)

    def test_zero_variance_gives_nan_when_not_strict(self):
        x = np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]])

        with pytest.warns(RuntimeWarning):
            result = pearson_correlation(x, strict=False)

        assert np.isnan(result.r[0, 1])
        assert result.r[0, 0] == 1.0

    def test_infinite_values_raise(self):
        x = np.array([[1.0, 2.0], [np.inf, 3.0], [3.0, 1.0]])

        with pytest.raises(DegenerateInputError):
            pearson_correlation(x)

    def test_row_mismatch_raises(self):
        with pytest.raises(ValueError):
            pearson_correlation(np.ones((4, 2)), np.ones((5, 2)))


class TestSpearmanCorrelation:
    """Rank correlation."""

    def test_monotone_relation_is_perfect(self):
        x = np.arange(1.0, 9.0)
        y = np.exp(x)

        result = spearman_correlation(x, y)

        assert result.r[0, 0] == pytest.approx(1.0)

    def test_matches_pearson_on_ranks(self):
        rng = np.random.default_rng(3)
        x = pd.DataFrame(rng.standard_normal((15, 4)))

        result = spearman_correlation(x)

        expected = x.rank().corr().to_numpy()
        np.testing.assert_allclose(result.r, expected, atol=1e-12)


class TestCorrelationPvalues:
    """Student-t p-values."""

    def test_known_value(self):
        # r = 0.5, n = 12: t = 0.5 * sqrt(10 / 0.75)
        from scipy import stats

        t = 0.5 * np.sqrt(10 / 0.75)
        expected = 2 * stats.t.sf(t, 10)

        assert correlation_pvalues(np.array(0.5), 12) == pytest.approx(expected)

    def test_perfect_correlation_has_zero_pvalue(self):
        p = correlation_pvalues(np.array([1.0, -1.0]), 10)

        np.testing.assert_array_equal(p, [0.0, 0.0])

    def test_nan_correlation_stays_nan(self):
        p = correlation_pvalues(np.array([np.nan, 0.2]), 10)

        assert np.isnan(p[0])
        assert 0 < p[1] < 1

    def test_cor_and_pvalue_labels(self):
        rng = np.random.default_rng(4)
        x = pd.DataFrame(rng.standard_normal((20, 2)), columns=["turquoise", "blue"])
        y = pd.DataFrame(rng.standard_normal((20, 1)), columns=["group_CASE"])

        cor, p = cor_and_pvalue(x, y, x_prefix="ME")

        assert list(cor.index) == ["MEturquoise", "MEblue"]
        assert list(p.columns) == ["group_CASE"]
        assert ((p.to_numpy() >= 0) & (p.to_numpy() <= 1)).all()

    def test_cor_and_pvalue_uses_injected_strategy(self):
        x = pd.DataFrame({"a": [1.0, 2.0, 3.0, 4.0, 5.0]})
        y = pd.DataFrame({"b": [1.0, 4.0, 9.0, 16.0, 100.0]})

        cor, _ = cor_and_pvalue(x, y, correlation=spearman_correlation)

        assert cor.loc["a", "b"] == pytest.approx(1.0)


class TestFdrCorrection:
    """Benjamini-Hochberg adjustment."""

    def test_benjamini_hochberg_values(self):
        p = np.array([0.01, 0.04, 0.03, 0.5])

        q, significant = apply_fdr_correction(p, alpha=0.05)

        np.testing.assert_allclose(q, [0.04, 0.16 / 3, 0.16 / 3, 0.5], atol=1e-12)
        np.testing.assert_array_equal(significant, [True, False, False, False])

    def test_nan_excluded(self):
        q, significant = apply_fdr_correction(np.array([np.nan, 0.01, 0.02]))

        assert np.isnan(q[0])
        assert not significant[0]
        np.testing.assert_allclose(q[1:], [0.02, 0.02])
