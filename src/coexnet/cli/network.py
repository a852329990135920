"""
coexnet network command - Weighted co-expression network analysis.

Usage:
    coexnet network --input vst_counts.csv --metadata samples.csv --trait-column cell_subset \\
        --trait cell_subset_CD4 --power 12 --analysis-id CD4 --output results/CD4
    coexnet network --config network.yaml --modules turquoise blue

Builds the signed network at the configured power, detects and merges
modules, correlates module eigengenes with traits and writes hub genes for
the modules given with --modules. Run without --modules first to inspect the
module-trait table, then rerun with the modules of interest.
"""

import argparse
import logging
import sys
from pathlib import Path

from coexnet.cli._validators import (
    _deep_split,
    _positive_float,
    _positive_int,
    _probability,
    _unit_interval,
)
from coexnet.cli.config import CORRELATION_METHODS
from coexnet.core.errors import CoexpressionError
from coexnet.network.adjacency import NetworkType


def _module_id(value: str):
    """Module given as label number or name."""
    return int(value) if value.lstrip('-').isdigit() else value


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the network subcommand."""
    parser = subparsers.add_parser(
        "network",
        help="Weighted co-expression network, modules and hub genes",
        description=(
            "Construct a weighted gene co-expression network, detect modules "
            "on the topological overlap dendrogram, relate module eigengenes "
            "to sample traits and select hub genes."
        )
    )

    # Input/output
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="YAML/JSON config file (CLI arguments override it)")
    parser.add_argument("--input", "-i", type=Path, default=None,
                        help="Variance-stabilized expression CSV (genes x samples)")
    parser.add_argument("--genes-as-columns", action="store_true",
                        help="Input is samples x genes instead of genes x samples")
    parser.add_argument("--traits", "-t", type=Path, default=None,
                        help="Numeric samples x traits CSV")
    parser.add_argument("--metadata", "-m", type=Path, default=None,
                        help="Sample metadata CSV (alternative to --traits)")
    parser.add_argument("--trait-column", default=None,
                        help="Categorical metadata column encoded as indicator traits")
    parser.add_argument("--trait", default=None,
                        help="Trait used for gene significance (required with several traits)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory")
    parser.add_argument("--analysis-id", default=None,
                        help="Identifier prefixed to every output (default: analysis)")

    # Network construction
    parser.add_argument("--power", "-p", type=_positive_float, default=None,
                        help="Soft-threshold power (required; see `coexnet power`)")
    parser.add_argument("--powers", type=_positive_float, nargs="+", default=None,
                        help="Candidate powers for the scale-free fit report")
    parser.add_argument("--skip-soft-threshold", action="store_true",
                        help="Do not compute the scale-free fit report")
    parser.add_argument("--network-type", choices=[t.value for t in NetworkType], default=None,
                        help="Adjacency sign convention (default: signed)")
    parser.add_argument("--r2-cut", type=float, default=None,
                        help="Target signed scale-free R² (default: 0.8)")
    parser.add_argument("--max-mean-k", type=_positive_float, default=None,
                        help="Upper bound on mean connectivity for the suggested power")
    parser.add_argument("--n-breaks", type=_positive_int, default=None,
                        help="Connectivity bins for the fit (default: 10)")
    parser.add_argument("--method", choices=list(CORRELATION_METHODS), default=None,
                        help="Correlation method (default: pearson)")

    # Module detection
    parser.add_argument("--min-module-size", type=_positive_int, default=None,
                        help="Minimum genes per module (default: 30)")
    parser.add_argument("--deep-split", type=_deep_split, default=None,
                        help="Branch cut sensitivity 0-4 (default: 2)")
    parser.add_argument("--cut-height", type=_probability, default=None,
                        help="Maximum dendrogram joining height (default: automatic)")
    parser.add_argument("--merge-cut-height", type=_positive_float, default=None,
                        help="Merge modules with eigengene dissimilarity below this (default: 0.25)")

    # Hub genes
    parser.add_argument("--modules", type=_module_id, nargs="+", default=None,
                        help="Modules (labels or colour names) examined for hub genes")
    parser.add_argument("--kme-threshold", type=_unit_interval, default=None,
                        help="Minimum |kME| for hub genes (default: 0.7)")
    parser.add_argument("--kme-pvalue", type=_probability, default=None,
                        help="Maximum kME p-value for hub genes (default: 0.05)")

    # Compute
    parser.add_argument("--block-size", type=_positive_int, default=None,
                        help="Genes per block (default: derived from memory budget)")
    parser.add_argument("--workers", type=_positive_int, default=None,
                        help="Threads for blockwise computation (default: 1)")
    parser.add_argument("--streamed-tom", action="store_true",
                        help="Compute TOM from expression without a full adjacency matrix")
    parser.add_argument("--tom-memmap", type=Path, default=None,
                        help="Back the TOM matrix by a memory-mapped file")
    parser.add_argument("--progress", action="store_true",
                        help="Show progress bars")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")

    parser.set_defaults(func=run_network)


def _load_traits(args: argparse.Namespace, expression):
    from coexnet.io.loaders import load_trait_table, traits_from_metadata

    if args.traits and args.metadata:
        raise ValueError("Use either --traits or --metadata/--trait-column, not both")
    if args.traits:
        return load_trait_table(args.traits, expression=expression)
    if args.metadata:
        if not args.trait_column:
            raise ValueError("--trait-column is required with --metadata")
        return traits_from_metadata(args.metadata, args.trait_column, expression=expression)
    return None


def run_network(args: argparse.Namespace) -> int:
    """Execute the network command."""
    from coexnet.cli.config import config_from_args
    from coexnet.io.loaders import load_expression_csv
    from coexnet.io.writers import write_network_results
    from coexnet.pipeline import run_network_analysis

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    # Load and merge config file if provided
    if args.config:
        from coexnet.cli.config import load_config, merge_config_with_args, validate_config

        print(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
            cli_args = getattr(args, 'cli_args', None)
            if cli_args is None:
                cli_args = sys.argv[2:]  # Skip 'coexnet network'
            args = merge_config_with_args(config, args, cli_args)
            print("  Configuration loaded successfully")
        except (FileNotFoundError, ValueError) as e:
            print(f"ERROR: Config file error: {e}", file=sys.stderr)
            return 1

    # Validate required arguments (after config merge)
    if not args.input:
        print("ERROR: --input is required (via CLI or config file)", file=sys.stderr)
        return 1
    if not args.output:
        print("ERROR: --output is required (via CLI or config file)", file=sys.stderr)
        return 1
    if args.power is None:
        print("ERROR: --power is required (via CLI or config file); "
              "run `coexnet power` to inspect the scale-free fit", file=sys.stderr)
        return 1
    analysis_id = args.analysis_id or "analysis"

    print(f"\n{'='*70}")
    print(f"  Co-expression Network Analysis: {analysis_id}")
    print(f"{'='*70}\n")

    try:
        network_config = config_from_args(args)
        network_config.validate()

        logger.info(f"Loading: {args.input}")
        expression = load_expression_csv(args.input, genes_as_rows=not args.genes_as_columns)
        logger.info(f"Matrix: {expression.n_genes} genes x {expression.n_samples} samples")
        traits = _load_traits(args, expression)
        if traits is not None:
            logger.info(f"Traits: {list(traits.trait_names)}")

        result = run_network_analysis(expression, traits, network_config, analysis_id=analysis_id)
    except (FileNotFoundError, ValueError, CoexpressionError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    written = write_network_results(result, args.output)

    summary = result.summary()
    print(f"\nModules: {summary['n_modules']} "
          f"({summary['n_modules_initial']} before merging), "
          f"{summary['n_unassigned']} unassigned genes")
    for name, size in summary['modules'].items():
        print(f"  {name:<15} {size:>6} genes")

    if result.module_traits is not None and result.trait is not None:
        associated = result.significant_modules(trait=result.trait)
        if associated:
            names = [result.assignment.name(label) for label in associated]
            print(f"\nModules associated with {result.trait} (p < 0.05): {', '.join(names)}")
        else:
            print(f"\nNo module eigengene associated with {result.trait} at p < 0.05")

    for hub_result in result.hubs.values():
        print(f"Hub genes in {hub_result.module_name}: {hub_result.n_hubs}/{len(hub_result.genes)}")

    for warning in result.warnings:
        print(f"WARNING: {warning}")

    print(f"\n{len(written)} files written to: {args.output}")
    return 0
