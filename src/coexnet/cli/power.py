"""
coexnet power command - Scale-free fit report for soft-threshold selection.

Usage:
    coexnet power --input vst_counts.csv --output results/power
    coexnet power --input vst_counts.csv --output results/power --powers 1 2 4 6 8 10 12 --r2-cut 0.85

Writes <analysis-id>_soft_threshold.csv and prints the smallest power whose
signed scale-free R² exceeds the cut. The printed power is advisory; pass
the chosen value to `coexnet network --power`.
"""

import argparse
import logging
import sys
import warnings
from pathlib import Path

from coexnet.cli._validators import _positive_float, _positive_int
from coexnet.cli.config import CORRELATION_METHODS
from coexnet.core.errors import CoexpressionError, ConfigurationWarning
from coexnet.network.adjacency import NetworkType
from coexnet.network.soft_threshold import DEFAULT_R2_CUT


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the power subcommand."""
    parser = subparsers.add_parser(
        "power",
        help="Scale-free fit table for soft-threshold power selection",
        description=(
            "Evaluate the scale-free topology fit and connectivity of the "
            "network for a range of soft-threshold powers."
        )
    )

    parser.add_argument("--input", "-i", type=Path, required=True,
                        help="Variance-stabilized expression CSV (genes x samples)")
    parser.add_argument("--genes-as-columns", action="store_true",
                        help="Input is samples x genes instead of genes x samples")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/power"),
                        help="Output directory (default: results/power)")
    parser.add_argument("--analysis-id", default="analysis",
                        help="Prefix of the output table (default: analysis)")

    parser.add_argument("--powers", type=_positive_float, nargs="+", default=None,
                        help="Candidate powers (default: 1-10, then 12-50 in steps of 2)")
    parser.add_argument("--network-type", choices=[t.value for t in NetworkType],
                        default=NetworkType.SIGNED.value,
                        help="Adjacency sign convention (default: signed)")
    parser.add_argument("--r2-cut", type=float, default=DEFAULT_R2_CUT,
                        help=f"Target signed scale-free R² (default: {DEFAULT_R2_CUT})")
    parser.add_argument("--max-mean-k", type=_positive_float, default=None,
                        help="Upper bound on mean connectivity for the suggested power")
    parser.add_argument("--n-breaks", type=_positive_int, default=10,
                        help="Connectivity bins for the fit (default: 10)")
    parser.add_argument("--method", choices=list(CORRELATION_METHODS), default="pearson",
                        help="Correlation method (default: pearson)")

    parser.add_argument("--block-size", type=_positive_int, default=None,
                        help="Genes per block (default: derived from memory budget)")
    parser.add_argument("--workers", type=_positive_int, default=1,
                        help="Threads for blockwise computation (default: 1)")
    parser.add_argument("--progress", action="store_true",
                        help="Show progress bars")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging (per-power fit details)")

    parser.set_defaults(func=run_power)


def run_power(args: argparse.Namespace) -> int:
    """Execute the power command."""
    from coexnet.io.loaders import load_expression_csv
    from coexnet.io.writers import write_soft_threshold_table
    from coexnet.network.soft_threshold import pick_soft_threshold

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)

    print(f"\n{'='*70}")
    print("  Soft-Threshold Power Selection")
    print(f"{'='*70}\n")

    try:
        logger.info(f"Loading: {args.input}")
        expression = load_expression_csv(args.input, genes_as_rows=not args.genes_as_columns)
        logger.info(f"Matrix: {expression.n_genes} genes x {expression.n_samples} samples")

        expression.validate_finite(stage="input")
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConfigurationWarning)
            result = pick_soft_threshold(
                expression,
                powers=args.powers,
                network_type=args.network_type,
                n_breaks=args.n_breaks,
                block_size=args.block_size,
                correlation=CORRELATION_METHODS[args.method],
                n_workers=args.workers,
                r2_cut=args.r2_cut,
                max_mean_k=args.max_mean_k,
                progress=args.progress,
            )
    except (FileNotFoundError, ValueError, CoexpressionError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    path = write_soft_threshold_table(
        result.table, args.output / f"{args.analysis_id}_soft_threshold.csv"
    )

    print(result.table.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
    print()
    if result.suggested_power is not None:
        print(f"Suggested power: {result.suggested_power} (signed R² > {args.r2_cut})")
    else:
        print(f"WARNING: no candidate power reached signed R² > {args.r2_cut}; "
              f"choose the power from the table")
    print(f"Table written to: {path}")
    return 0
