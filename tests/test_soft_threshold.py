"""Tests for the scale-free fit report and the advisory power."""

import warnings

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import ConfigurationWarning
from coexnet.network.adjacency import adjacency
from coexnet.network.soft_threshold import (
    DEFAULT_POWERS,
    MIN_BREAKS,
    check_power,
    connectivity_by_power,
    pick_soft_threshold,
    scale_free_fit,
    suggest_power,
)


def _table(powers, r2, mean_k=None):
    table = pd.DataFrame({'power': powers, 'sft_r2': r2})
    if mean_k is not None:
        table['mean_k'] = mean_k
    return table


class TestSuggestPower:
    """Advisory power from a soft-threshold table."""

    def test_smallest_power_above_cut(self):
        table = _table([1, 2, 3], [0.4, 0.75, 0.82])

        assert suggest_power(table, r2_cut=0.8) == 3

    def test_cut_is_strict(self):
        table = _table([1, 2, 3], [0.5, 0.8, 0.9])

        assert suggest_power(table, r2_cut=0.8) == 3

    def test_returns_python_scalar(self):
        power = suggest_power(_table([4, 6], [0.85, 0.9]), r2_cut=0.8)

        assert power == 4
        assert not isinstance(power, np.generic)

    def test_no_qualifying_power_warns(self):
        table = _table([1, 2, 3], [0.2, 0.5, 0.6])

        with pytest.warns(ConfigurationWarning, match="Choose the power explicitly"):
            assert suggest_power(table, r2_cut=0.8) is None

    def test_mean_connectivity_ceiling(self):
        table = _table([1, 2, 3], [0.85, 0.9, 0.95], mean_k=[50.0, 20.0, 5.0])

        assert suggest_power(table, r2_cut=0.8, max_mean_k=10.0) == 3


class TestCheckPower:
    """Warnings for configured powers the fit does not support."""

    def test_supported_power(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConfigurationWarning)
            assert check_power(_table([6, 8], [0.7, 0.85]), 8, r2_cut=0.8)

    def test_power_below_target_fit(self):
        with pytest.warns(ConfigurationWarning, match="below the target"):
            assert not check_power(_table([6, 8], [0.7, 0.85]), 6, r2_cut=0.8)

    def test_power_not_evaluated(self):
        with pytest.warns(ConfigurationWarning, match="not among the evaluated powers"):
            assert not check_power(_table([6, 8], [0.7, 0.85]), 12)


class TestScaleFreeFit:
    """Power-law fit of a connectivity distribution."""

    def test_decreasing_distribution_has_positive_index(self):
        k = np.repeat(np.arange(1.0, 11.0), [2 ** (10 - i) for i in range(10)])

        fit = scale_free_fit(k, n_breaks=10)

        assert fit.slope < 0
        assert 0 < fit.r2 <= 1

    def test_increasing_distribution_has_negative_index(self):
        k = np.repeat(np.arange(1.0, 11.0), [2 ** i for i in range(10)])

        fit = scale_free_fit(k, n_breaks=10)

        assert fit.slope > 0
        assert fit.r2 < 0

    def test_constant_connectivity_gives_nan(self):
        fit = scale_free_fit(np.full(20, 3.0))

        assert np.isnan(fit.r2) and np.isnan(fit.slope) and np.isnan(fit.truncated_r2)

    def test_too_few_breaks_raises(self):
        with pytest.raises(ValueError):
            scale_free_fit(np.arange(10.0), n_breaks=1)

    def test_truncated_fit_needs_more_bins_than_coefficients(self):
        k = np.concatenate([np.full(20, 1.0), np.full(8, 5.0), np.full(3, 9.0), [20.0]])

        with pytest.raises(ValueError, match="n_breaks"):
            scale_free_fit(k, n_breaks=MIN_BREAKS - 1)

        fit = scale_free_fit(k, n_breaks=MIN_BREAKS)
        assert np.isfinite(fit.r2)
        assert np.isfinite(fit.truncated_r2), "adjusted R² needs residual degrees of freedom"


class TestPickSoftThreshold:
    """Soft-threshold table over candidate powers."""

    def test_table_layout(self, planted):
        expression, _, _ = planted

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConfigurationWarning)
            result = pick_soft_threshold(expression, powers=[1, 2, 4, 6, 8])

        assert list(result.table.columns) == [
            'power', 'sft_r2', 'slope', 'truncated_r2', 'mean_k', 'median_k', 'max_k', 'density',
        ]
        assert result.table['power'].tolist() == [1, 2, 4, 6, 8]
        assert result.table['mean_k'].is_monotonic_decreasing

    def test_rejects_too_few_bins_before_computing(self, planted):
        expression, _, _ = planted

        with pytest.raises(ValueError, match="n_breaks"):
            pick_soft_threshold(expression, powers=[1, 2], n_breaks=2)

    def test_connectivity_matches_full_adjacency(self, planted):
        expression, _, _ = planted

        k = connectivity_by_power(expression, [1.0, 3.0, 6.0], block_size=8, n_workers=2)

        for j, power in enumerate([1.0, 3.0, 6.0]):
            expected = adjacency(expression, power).sum(axis=1)
            np.testing.assert_allclose(k[:, j], expected, rtol=1e-10)

    def test_density_is_mean_connectivity_over_pairs(self, planted):
        expression, _, _ = planted
        n = expression.n_genes

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConfigurationWarning)
            table = pick_soft_threshold(expression, powers=[2, 6]).table

        np.testing.assert_allclose(table['density'], table['mean_k'] / (n - 1))

    def test_default_powers(self):
        assert DEFAULT_POWERS[:10] == tuple(range(1, 11))
        assert DEFAULT_POWERS[10:] == tuple(range(12, 51, 2))

    def test_too_few_genes_raises(self, planted):
        expression, _, _ = planted

        with pytest.raises(ValueError, match="at least 3 genes"):
            pick_soft_threshold(expression.select_genes(expression.gene_ids[:2]))

    def test_invalid_powers_raise(self, planted):
        expression, _, _ = planted

        with pytest.raises(ValueError):
            pick_soft_threshold(expression, powers=[0, 2])
