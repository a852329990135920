"""
coexnet CLI - Command-line interface for weighted co-expression network analysis.

Commands:
    coexnet power    - Scale-free fit table for soft-threshold power selection
    coexnet network  - Network construction, modules, trait association and hub genes
"""

import argparse
import sys
from typing import Optional, List

from coexnet import __version__


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for coexnet."""
    parser = argparse.ArgumentParser(
        prog="coexnet",
        description="Weighted gene co-expression network analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  power     Scale-free fit table for soft-threshold power selection
  network   Network construction, modules, trait association and hub genes

Examples:
  coexnet power --input vst_counts.csv --output results/power
  coexnet network --input vst_counts.csv --metadata samples.csv --trait-column subset \\
      --trait subset_CD4 --power 12 --analysis-id CD4 --output results/CD4
  coexnet network --config network.yaml --modules turquoise blue
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from coexnet.cli import network, power
    power.register_parser(subparsers)
    network.register_parser(subparsers)

    raw_args = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(raw_args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Arguments after the subcommand name, for config-file override detection
    parsed_args.cli_args = raw_args[raw_args.index(parsed_args.command) + 1:]

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
