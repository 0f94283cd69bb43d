# main.py

"""Entry point for the product_pipeline extraction CLI."""

import argparse
import asyncio
import logging
import sys

from product_pipeline.config.logging_config import setup_logging
from product_pipeline.config.settings import Settings

logger = logging.getLogger("product_pipeline.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    chain = " → ".join(s["id"] for s in Settings.EXTRACTION_STRATEGIES)

    parser = argparse.ArgumentParser(
        prog="product_pipeline",
        description="Extract structured product data from a product page.",
        epilog=f"Strategy chain: {chain}",
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Product page URL to extract.",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=None,
        help="Overall deadline in seconds (default: none).",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        default=False,
        help="Print per-strategy counters after the run.",
    )
    parser.add_argument(
        "--rates",
        action="store_true",
        default=False,
        help="Refresh and print the exchange-rate table.",
    )
    return parser


def _run_extract(args: argparse.Namespace) -> None:
    """Run a single extraction and exit."""
    from product_pipeline.cli.runner import cli_extract

    exit_code = asyncio.run(
        cli_extract(
            url=args.url,
            timeout=args.timeout,
            output_format=args.output_format,
            show_metrics=args.metrics,
        )
    )
    sys.exit(exit_code)


def _run_rates() -> None:
    """Refresh and show exchange rates."""
    from product_pipeline.cli.runner import run_rates

    exit_code = asyncio.run(run_rates())
    sys.exit(exit_code)


def main() -> None:
    """Route to the rate table (--rates) or a URL extraction."""
    log_file = setup_logging()
    logger.info("product_pipeline starting, log file: %s", log_file)

    parser = _build_parser()
    args = parser.parse_args()

    if args.rates:
        _run_rates()
    elif args.url is None:
        parser.print_help()
        sys.exit(2)
    else:
        _run_extract(args)


if __name__ == "__main__":
    main()
