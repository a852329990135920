"""End-to-end tests for the network analysis pipeline."""

import warnings

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import (
    ConfigurationWarning,
    DegenerateInputError,
    InsufficientSamplesError,
    UnknownModuleError,
)
from coexnet.core.expression import ExpressionMatrix, TraitMatrix
from coexnet.pipeline import NetworkConfig, run_network_analysis
from coexnet.stats.correlation import spearman_correlation


def _config(**overrides):
    settings = dict(
        power=6,
        powers=[2, 4, 6, 8],
        min_module_size=12,
        trait="group_CASE",
        significant_modules=["turquoise"],
    )
    settings.update(overrides)
    return NetworkConfig(**settings)


def _run(expression, traits, config, analysis_id="CD4"):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConfigurationWarning)
        return run_network_analysis(expression, traits, config, analysis_id=analysis_id)


class TestRunNetworkAnalysis:
    """Full engine on planted modules."""

    def test_recovers_modules_and_hubs(self, planted, planted_traits):
        expression, labels, _ = planted

        result = _run(expression, planted_traits, _config())

        np.testing.assert_array_equal(result.assignment.labels, labels)
        assert list(result.eigengenes.columns) == ["MEturquoise", "MEblue"]
        assert set(result.hubs) == {("CD4", 1)}
        hubs = result.hubs[("CD4", 1)]
        assert hubs.module_name == "turquoise"
        assert hubs.n_hubs == 20
        assert hubs.hubs['kME'].abs().is_monotonic_decreasing

    def test_trait_tables(self, planted, planted_traits):
        expression, _, _ = planted

        result = _run(expression, planted_traits, _config())

        assert result.trait == "group_CASE"
        assert result.module_traits.correlation.shape == (2, 2)
        assert list(result.gene_significance.columns) == ["GS.group_CASE", "p.GS.group_CASE"]
        assert 1 in result.significant_modules()
        assert len(result.gene_table) == expression.n_genes

    def test_soft_threshold_report(self, planted, planted_traits):
        expression, _, _ = planted

        result = _run(expression, planted_traits, _config())

        assert result.soft_threshold.table['power'].tolist() == [2, 4, 6, 8]

    def test_soft_threshold_can_be_skipped(self, planted, planted_traits):
        expression, _, _ = planted

        result = _run(expression, planted_traits, _config(powers=None))

        assert result.soft_threshold is None

    def test_without_traits(self, planted):
        expression, labels, _ = planted

        result = _run(expression, None, _config(trait=None))

        assert result.module_traits is None
        assert result.gene_significance is None
        assert result.significant_modules() == []
        np.testing.assert_array_equal(result.assignment.labels, labels)

    def test_streamed_and_memmapped_tom_agree(self, planted, planted_traits, tmp_path):
        expression, _, _ = planted

        dense = _run(expression, planted_traits, _config(powers=None))
        streamed = _run(
            expression, planted_traits,
            _config(powers=None, streamed_tom=True, block_size=10, n_workers=2),
        )
        mapped = _run(
            expression, planted_traits,
            _config(powers=None, tom_memmap=tmp_path / "tom.dat", block_size=7),
        )

        np.testing.assert_array_equal(streamed.assignment.labels, dense.assignment.labels)
        np.testing.assert_array_equal(mapped.assignment.labels, dense.assignment.labels)

    def test_spearman_strategy(self, planted, planted_traits):
        expression, labels, _ = planted

        result = _run(expression, planted_traits, _config(powers=None, correlation=spearman_correlation))

        np.testing.assert_array_equal(result.assignment.labels, labels)
        assert result.summary()['config']['correlation'] == "spearman_correlation"

    def test_summary(self, planted, planted_traits):
        expression, _, _ = planted

        summary = _run(expression, planted_traits, _config()).summary()

        assert summary['analysis_id'] == "CD4"
        assert summary['n_samples'] == 40
        assert summary['n_genes'] == 34
        assert summary['modules'] == {"turquoise": 20, "blue": 14}
        assert summary['hubs'] == {"turquoise": 20}
        assert summary['config']['power'] == 6


class TestAdvisories:
    """Configuration warnings are emitted and collected."""

    def test_power_outside_report_warns(self, planted, planted_traits):
        expression, _, _ = planted

        with pytest.warns(ConfigurationWarning, match="not among the evaluated powers"):
            result = run_network_analysis(expression, planted_traits, _config(powers=[1, 2, 3]))

        assert any("not among the evaluated powers" in str(w) for w in result.warnings)

    def test_network_smaller_than_minimum_module_is_reported(self, planted):
        expression, _, _ = planted
        config = _config(powers=None, trait=None, min_module_size=50, significant_modules=[])

        with pytest.warns(ConfigurationWarning, match="min_module_size=50"):
            result = run_network_analysis(expression, None, config)

        assert result.assignment.modules == []
        assert any("min_module_size=50" in str(w) for w in result.warnings)
        assert any("min_module_size=50" in w for w in result.summary()['warnings'])


class TestInputValidation:
    """Fatal input errors."""

    def test_power_required(self, planted, planted_traits):
        expression, _, _ = planted

        with pytest.raises(ValueError, match="power must be configured"):
            run_network_analysis(expression, planted_traits, _config(power=None))

    def test_too_few_samples(self, tiny_expression):
        two_samples = tiny_expression.select_samples(np.array([True, True, False]))

        with pytest.raises(InsufficientSamplesError):
            run_network_analysis(two_samples, None, _config(trait=None, min_module_size=2))

    def test_zero_variance_gene(self, planted):
        expression, _, _ = planted
        data = expression.data.copy()
        data[:, 5] = 3.0
        flat = ExpressionMatrix(data, expression.sample_ids, expression.gene_ids)

        with pytest.raises(DegenerateInputError) as excinfo:
            run_network_analysis(flat, None, _config(trait=None))
        assert excinfo.value.stage == "input"

    def test_missing_values_rejected(self, planted):
        expression, _, _ = planted
        data = expression.data.copy()
        data[0, 0] = np.nan
        holey = ExpressionMatrix(data, expression.sample_ids, expression.gene_ids)

        with pytest.raises(DegenerateInputError) as excinfo:
            run_network_analysis(holey, None, _config(trait=None))
        assert excinfo.value.stage == "input"

    def test_ambiguous_trait(self, planted, planted_traits):
        expression, _, _ = planted

        with pytest.raises(ValueError, match="Several traits"):
            run_network_analysis(expression, planted_traits, _config(trait=None))

    def test_unknown_trait(self, planted, planted_traits):
        expression, _, _ = planted

        with pytest.raises(ValueError, match="not found"):
            run_network_analysis(expression, planted_traits, _config(trait="age"))

    def test_unknown_significant_module(self, planted, planted_traits):
        expression, _, _ = planted

        with pytest.raises(UnknownModuleError):
            _run(expression, planted_traits, _config(powers=None, significant_modules=["magenta"]))

    def test_constant_trait(self, planted):
        expression, _, _ = planted
        traits = pd.DataFrame({'batch': 1.0}, index=expression.sample_ids)

        with pytest.raises(DegenerateInputError):
            _run(expression, traits, _config(powers=None, trait="batch"))

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            _config(deep_split=7).validate()
        with pytest.raises(ValueError):
            _config(network_type="directed").validate()
        with pytest.raises(ValueError):
            _config(kme_pvalue=0).validate()

    def test_scale_free_fit_needs_four_bins(self):
        with pytest.raises(ValueError, match="n_breaks"):
            _config(n_breaks=2).validate()
        _config(n_breaks=4).validate()
