"""
Configuration file support for the coexnet CLI.

Supports YAML and JSON config files with CLI argument override. A config
mirrors the command-line options, grouped by stage:

```yaml
input: vst_counts.csv
metadata: samples.csv
trait_column: cell_subset
trait: cell_subset_CD4
analysis_id: CD4
output: results/CD4
network:
  power: 12
  network_type: signed
  powers: [1, 2, 3, 4, 5, 6, 8, 10, 12, 14, 16, 18, 20]
  r2_cut: 0.8
modules:
  min_module_size: 30
  deep_split: 2
  merge_cut_height: 0.25
hubs:
  significant_modules: [turquoise, blue]
  kme_threshold: 0.7
  kme_pvalue: 0.05
compute:
  block_size: 5000
  workers: 4
  method: pearson
```
"""

import json
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from coexnet.network.adjacency import NetworkType
from coexnet.pipeline import NetworkConfig
from coexnet.stats.correlation import pearson_correlation, spearman_correlation

CORRELATION_METHODS = {
    'pearson': pearson_correlation,
    'spearman': spearman_correlation,
}

# (config section or None for top level, config key) → argparse destination
CONFIG_TO_ARGS: Dict[Tuple[Optional[str], str], str] = {
    (None, 'input'): 'input',
    (None, 'output'): 'output',
    (None, 'traits'): 'traits',
    (None, 'metadata'): 'metadata',
    (None, 'trait_column'): 'trait_column',
    (None, 'trait'): 'trait',
    (None, 'analysis_id'): 'analysis_id',
    ('network', 'power'): 'power',
    ('network', 'powers'): 'powers',
    ('network', 'network_type'): 'network_type',
    ('network', 'r2_cut'): 'r2_cut',
    ('network', 'max_mean_k'): 'max_mean_k',
    ('network', 'n_breaks'): 'n_breaks',
    ('modules', 'min_module_size'): 'min_module_size',
    ('modules', 'deep_split'): 'deep_split',
    ('modules', 'cut_height'): 'cut_height',
    ('modules', 'merge_cut_height'): 'merge_cut_height',
    ('hubs', 'significant_modules'): 'modules',
    ('hubs', 'kme_threshold'): 'kme_threshold',
    ('hubs', 'kme_pvalue'): 'kme_pvalue',
    ('compute', 'block_size'): 'block_size',
    ('compute', 'workers'): 'workers',
    ('compute', 'streamed_tom'): 'streamed_tom',
    ('compute', 'tom_memmap'): 'tom_memmap',
    ('compute', 'method'): 'method',
}

PATH_ARGS = {'input', 'output', 'traits', 'metadata', 'tom_memmap'}

SECTIONS = {'network', 'modules', 'hubs', 'compute'}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("network.yaml"))
        >>> print(config['network']['power'])
        12
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Performs basic validation:
    - Known sections and keys only
    - Valid network type and correlation method
    - Reasonable numeric ranges

    Parameters:
        config: Configuration dictionary

    Raises:
        ValueError: If configuration is invalid
    """
    known = {key for section, key in CONFIG_TO_ARGS if section is None}
    for key, value in config.items():
        if key in SECTIONS:
            if not isinstance(value, dict):
                raise ValueError(f"Config section '{key}' must be a mapping, got {type(value).__name__}")
            section_keys = {k for s, k in CONFIG_TO_ARGS if s == key}
            unknown = set(value) - section_keys
            if unknown:
                raise ValueError(
                    f"Unknown key(s) in section '{key}': {sorted(unknown)}. "
                    f"Valid keys: {sorted(section_keys)}"
                )
        elif key not in known:
            raise ValueError(
                f"Unknown config key '{key}'. Valid top-level keys: "
                f"{sorted(known | SECTIONS)}"
            )

    network = config.get('network', {})
    if 'network_type' in network:
        NetworkType.parse(network['network_type'])
    if 'power' in network and network['power'] is not None:
        power = network['power']
        if not isinstance(power, (int, float)) or power <= 0:
            raise ValueError(f"Soft-threshold power must be a positive number, got: {power}")
    if 'powers' in network and network['powers'] is not None:
        powers = network['powers']
        if not isinstance(powers, list) or not powers or any(
            not isinstance(p, (int, float)) or p <= 0 for p in powers
        ):
            raise ValueError(f"powers must be a non-empty list of positive numbers, got: {powers}")

    method = config.get('compute', {}).get('method')
    if method is not None and method not in CORRELATION_METHODS:
        raise ValueError(
            f"Invalid correlation method '{method}'. "
            f"Choose from: {', '.join(CORRELATION_METHODS)}"
        )

    modules = config.get('modules', {})
    if 'min_module_size' in modules:
        size = modules['min_module_size']
        if not isinstance(size, int) or size < 1:
            raise ValueError(f"min_module_size must be a positive integer, got: {size}")
    if 'deep_split' in modules:
        deep_split = modules['deep_split']
        if not isinstance(deep_split, (int, float)) or not 0 <= deep_split <= 4:
            raise ValueError(f"deep_split must be between 0 and 4, got: {deep_split}")

    hubs = config.get('hubs', {})
    for key in ('kme_threshold', 'kme_pvalue'):
        if key in hubs:
            value = hubs[key]
            if not isinstance(value, (int, float)) or not 0 <= value <= 1:
                raise ValueError(f"{key} must be a number in [0, 1], got: {value}")


def _merge_value(cli_value: Any, config_value: Any, arg_name: str, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value

    if config_value is not None:
        return config_value

    return cli_value


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    """Destinations of the options given on the command line."""
    short_to_long = {
        'i': 'input',
        'o': 'output',
        'p': 'power',
        't': 'traits',
        'm': 'metadata',
        'c': 'config',
    }
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in short_to_long:
            explicit.add(short_to_long[arg[1]])
    return explicit


def merge_config_with_args(config: Dict[str, Any], args: Namespace, cli_args: Optional[List[str]] = None) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values)
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values
    """
    explicit = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    for (section, key), arg_name in CONFIG_TO_ARGS.items():
        source = config if section is None else config.get(section, {})
        if key not in source:
            continue
        config_value = source[key]
        if config_value is not None and arg_name in PATH_ARGS:
            config_value = Path(config_value)
        setattr(
            merged,
            arg_name,
            _merge_value(getattr(merged, arg_name, None), config_value, arg_name, arg_name in explicit),
        )

    return merged


def config_from_args(args: Namespace) -> NetworkConfig:
    """
    Build a NetworkConfig from parsed (and config-merged) CLI arguments.

    Options a subcommand does not define keep their NetworkConfig defaults.
    """
    defaults = NetworkConfig()

    def get(name: str, default: Any) -> Any:
        value = getattr(args, name, None)
        return default if value is None else value

    powers = defaults.powers
    if getattr(args, 'skip_soft_threshold', False):
        powers = None
    elif getattr(args, 'powers', None):
        powers = tuple(args.powers)

    return NetworkConfig(
        power=getattr(args, 'power', None),
        powers=powers,
        network_type=get('network_type', defaults.network_type),
        n_breaks=get('n_breaks', defaults.n_breaks),
        r2_cut=get('r2_cut', defaults.r2_cut),
        max_mean_k=getattr(args, 'max_mean_k', None),
        min_module_size=get('min_module_size', defaults.min_module_size),
        deep_split=get('deep_split', defaults.deep_split),
        cut_height=getattr(args, 'cut_height', None),
        merge_cut_height=get('merge_cut_height', defaults.merge_cut_height),
        kme_threshold=get('kme_threshold', defaults.kme_threshold),
        kme_pvalue=get('kme_pvalue', defaults.kme_pvalue),
        significant_modules=list(get('modules', [])),
        trait=getattr(args, 'trait', None),
        block_size=getattr(args, 'block_size', None),
        n_workers=get('workers', defaults.n_workers),
        streamed_tom=bool(getattr(args, 'streamed_tom', False)),
        tom_memmap=getattr(args, 'tom_memmap', None),
        progress=bool(getattr(args, 'progress', False)),
        correlation=CORRELATION_METHODS[get('method', 'pearson')],
    )
