# product_pipeline/cli/runner.py

"""Headless CLI extraction runner built on the extraction service."""

import json
import logging
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

from product_pipeline.currency.rate_cache import RateCache
from product_pipeline.services.extraction_service import (
    ExtractionResponse,
    ExtractionService,
)

logger = logging.getLogger("product_pipeline.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def _print_record(record: dict[str, Any]) -> None:
    """Render a Rich table of one product record to stdout."""
    table = Table(
        title=record["name"],
        show_lines=True,
        title_style="bold cyan",
        show_header=False,
    )
    table.add_column("Field", style="bold")
    table.add_column("Value", overflow="fold")

    if record["price"] is not None:
        price = RateCache.format_amount(record["price"], record["currency"])
        converted = RateCache.format_amount(
            record["converted_price"], record["reporting_currency"]
        )
        price_str = f"{price}  →  {converted} (rate {record['exchange_rate']:.4f})"
    else:
        price_str = "N/A"

    table.add_row("Brand", record["brand"] or "—")
    table.add_row("Price", price_str)
    table.add_row("Strategy", f"[magenta]{record['strategy']}[/magenta]")
    table.add_row("Description", (record["description"] or "—")[:300])
    table.add_row(
        f"Images ({len(record['images'])})",
        "\n".join(record["images"]) or "—",
    )
    table.add_row("Source", f"[dim]{record['source_url']}[/dim]")
    Console().print(table)


def _print_failure(response: ExtractionResponse) -> None:
    error = response.error
    _err.print(f"[red]✗ {error.get('message', 'Extraction failed')}[/red]")
    reasons: list[dict[str, str]] = error.get("reasons", [])
    for entry in reasons:
        _err.print(f"[dim]  {entry['strategy']}: {entry['reason']}[/dim]")
    if "elapsed_seconds" in error:
        _err.print(f"[dim]  elapsed {error['elapsed_seconds']:.2f}s[/dim]")


def _print_metrics(snapshot: dict[str, Any]) -> None:
    table = Table(title="Strategy Metrics", title_style="bold cyan")
    table.add_column("Strategy", style="bold")
    table.add_column("Attempts", justify="right")
    table.add_column("Successes", justify="right", style="green")
    table.add_column("Failures", justify="right", style="red")
    for name, counts in snapshot["strategies"].items():
        table.add_row(
            name,
            str(counts["attempts"]),
            str(counts["successes"]),
            str(counts["failures"]),
        )
    _err.print(table)


async def cli_extract(
    url: str,
    timeout: float | None,
    output_format: str,
    show_metrics: bool = False,
    service: ExtractionService | None = None,
) -> int:
    """Extract one URL and return an exit code (0=ok, 1=fail)."""
    _err.print(f"[bold]Extracting:[/bold] {url}")
    async with service or ExtractionService.create_default() as svc:
        response = await svc.extract(url, timeout=timeout)
        if show_metrics:
            _print_metrics(svc.metrics_snapshot())

    if not response.ok or response.record is None:
        _print_failure(response)
        if output_format == "json":
            json.dump(response.to_dict(), sys.stdout, indent=2)
            sys.stdout.write("\n")
        return 1

    record = response.record
    _err.print(
        f"[green]✓ {record['name']} via {record['strategy']}"
        f" ({len(record['images'])} images)[/green]"
    )
    if output_format == "table":
        _print_record(record)
    else:
        json.dump(record, sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")
    return 0


async def run_rates(service: ExtractionService | None = None) -> int:
    """Refresh exchange rates and print them."""
    _err.print("[bold]Refreshing exchange rates...[/bold]")
    async with service or ExtractionService.create_default() as svc:
        snapshot = await svc.refresh_rates()

    source = (
        "[yellow]fallback table[/yellow]"
        if snapshot["is_fallback"]
        else "[green]live[/green]"
    )
    table = Table(
        title=f"Exchange Rates (base {snapshot['base']})",
        title_style="bold cyan",
        caption=f"source: {source}, refreshed: {snapshot['refreshed_at']}",
    )
    table.add_column("Currency", style="bold")
    table.add_column("Rate", justify="right")
    for code, rate in sorted(snapshot["rates"].items()):
        table.add_row(code, f"{rate:,.4f}")
    Console().print(table)
    if snapshot["is_fallback"]:
        _err.print("[yellow]Live rates unavailable; showing fallback table.[/yellow]")
    return 0
