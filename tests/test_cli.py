"""Tests for the coexnet command-line interface and config handling."""

import json
from argparse import Namespace
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml

from coexnet.cli import main
from coexnet.cli.config import (
    config_from_args,
    load_config,
    merge_config_with_args,
    validate_config,
)
from coexnet.stats.correlation import pearson_correlation, spearman_correlation

from conftest import save_expression_csv


@pytest.fixture
def inputs(planted, tmp_path):
    expression, _, patterns = planted
    expression_path = save_expression_csv(expression, tmp_path / "vst.csv")
    group = np.where(patterns[:, 0] > np.median(patterns[:, 0]), "CASE", "CTRL")
    metadata_path = tmp_path / "samples.csv"
    pd.DataFrame({'group': group}, index=expression.sample_ids).to_csv(metadata_path)
    return expression_path, metadata_path


class TestLoadConfig:
    """YAML/JSON config files."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "network.yaml"
        path.write_text("network:\n  power: 12\nmodules:\n  min_module_size: 20\n")

        config = load_config(path)

        assert config == {'network': {'power': 12}, 'modules': {'min_module_size': 20}}

    def test_json(self, tmp_path):
        path = tmp_path / "network.json"
        path.write_text(json.dumps({'analysis_id': 'CD8'}))

        assert load_config(path) == {'analysis_id': 'CD8'}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == {}

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "network.toml"
        path.write_text("power = 12\n")

        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")


class TestValidateConfig:
    """Structure and range checks."""

    def test_valid(self):
        validate_config({
            'input': 'vst.csv',
            'network': {'power': 12, 'network_type': 'signed'},
            'hubs': {'significant_modules': ['turquoise'], 'kme_threshold': 0.8},
            'compute': {'method': 'spearman', 'workers': 4},
        })

    @pytest.mark.parametrize("config", [
        {'unknown': 1},
        {'network': {'softpower': 6}},
        {'network': []},
        {'network': {'power': -2}},
        {'network': {'network_type': 'directed'}},
        {'modules': {'deep_split': 6}},
        {'hubs': {'kme_pvalue': 1.5}},
        {'compute': {'method': 'kendall'}},
    ])
    def test_invalid(self, config):
        with pytest.raises(ValueError):
            validate_config(config)


class TestMergeConfig:
    """CLI arguments override config values."""

    def test_config_fills_unset_arguments(self):
        args = Namespace(power=None, min_module_size=None, output=None)
        config = {'output': 'results/CD4', 'network': {'power': 12}, 'modules': {'min_module_size': 20}}

        merged = merge_config_with_args(config, args, cli_args=[])

        assert merged.power == 12
        assert merged.min_module_size == 20
        assert merged.output == Path('results/CD4')

    def test_explicit_arguments_win(self):
        args = Namespace(power=8.0, min_module_size=None)
        config = {'network': {'power': 12}}

        merged = merge_config_with_args(config, args, cli_args=['--power', '8'])

        assert merged.power == 8.0

    def test_short_options_count_as_explicit(self):
        args = Namespace(power=8.0)

        merged = merge_config_with_args({'network': {'power': 12}}, args, cli_args=['-p', '8'])

        assert merged.power == 8.0

    def test_config_from_args(self):
        args = Namespace(power=12, method='spearman', modules=['turquoise', 2], workers=None,
                         skip_soft_threshold=False, powers=[4, 8])

        config = config_from_args(args)

        assert config.power == 12
        assert config.correlation is spearman_correlation
        assert config.significant_modules == ['turquoise', 2]
        assert config.n_workers == 1
        assert config.powers == (4, 8)
        assert config.min_module_size == 30

    def test_skip_soft_threshold(self):
        config = config_from_args(Namespace(power=6, skip_soft_threshold=True))

        assert config.powers is None
        assert config.correlation is pearson_correlation


class TestCommands:
    """Subcommands end to end."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "power" in capsys.readouterr().out

    def test_power(self, inputs, tmp_path, capsys):
        expression_path, _ = inputs
        out = tmp_path / "power"

        code = main(["power", "--input", str(expression_path), "--output", str(out),
                     "--powers", "1", "2", "4", "6"])

        assert code == 0
        table = pd.read_csv(out / "analysis_soft_threshold.csv")
        assert table['power'].tolist() == [1, 2, 4, 6]
        assert "Table written to" in capsys.readouterr().out

    def test_network(self, inputs, tmp_path):
        expression_path, metadata_path = inputs
        out = tmp_path / "CD4"

        code = main([
            "network", "--input", str(expression_path),
            "--metadata", str(metadata_path), "--trait-column", "group", "--trait", "group_CASE",
            "--power", "6", "--powers", "2", "4", "6",
            "--min-module-size", "12", "--modules", "turquoise",
            "--analysis-id", "CD4", "--output", str(out),
        ])

        assert code == 0
        assert (out / "CD4_turquoise_hub_genes.csv").exists()
        summary = json.loads((out / "CD4_summary.json").read_text())
        assert summary['modules'] == {"turquoise": 20, "blue": 14}
        assert summary['trait'] == "group_CASE"

    def test_network_from_config(self, inputs, tmp_path):
        expression_path, metadata_path = inputs
        out = tmp_path / "from_config"
        config_path = tmp_path / "network.yaml"
        config_path.write_text(yaml.safe_dump({
            'input': str(expression_path),
            'metadata': str(metadata_path),
            'trait_column': 'group',
            'trait': 'group_CASE',
            'analysis_id': 'CD4',
            'output': str(out),
            'network': {'power': 12},
            'modules': {'min_module_size': 12},
            'hubs': {'significant_modules': ['blue']},
        }))

        code = main(["network", "--config", str(config_path), "--power", "6", "--skip-soft-threshold"])

        assert code == 0
        summary = json.loads((out / "CD4_summary.json").read_text())
        assert summary['config']['power'] == 6
        assert summary['hubs'].keys() == {"blue"}
        assert not (out / "CD4_soft_threshold.csv").exists()

    def test_network_requires_power(self, inputs, tmp_path, capsys):
        expression_path, _ = inputs

        code = main(["network", "--input", str(expression_path), "--output", str(tmp_path)])

        assert code == 1
        assert "--power is required" in capsys.readouterr().err

    def test_network_reports_unknown_module(self, inputs, tmp_path, capsys):
        expression_path, _ = inputs

        code = main([
            "network", "--input", str(expression_path), "--output", str(tmp_path),
            "--power", "6", "--skip-soft-threshold", "--min-module-size", "12",
            "--modules", "magenta",
        ])

        assert code == 1
        assert "magenta" in capsys.readouterr().err

    def test_invalid_argument_exits(self, inputs):
        expression_path, _ = inputs

        with pytest.raises(SystemExit):
            main(["network", "--input", str(expression_path), "--kme-pvalue", "2"])
