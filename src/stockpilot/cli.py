"""
StockPilot CLI — command-line interface.

Usage:
    stockpilot valuation --company varg
    stockpilot purchases P1001 --company sneaky-steve
    stockpilot history P1001 --company varg --window 90
    stockpilot compare centra_export.csv --company varg --date 2025-01-31
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from stockpilot import __version__
from stockpilot.exceptions import StockPilotError

T = TypeVar("T")

app = typer.Typer(
    name="stockpilot",
    help="📦 StockPilot — FIFO inventory valuation and stock reconciliation",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_CONFIG_OPTION = typer.Option("stockpilot.yaml", "--config", "-c", help="Path to config file")
_COMPANY_OPTION = typer.Option(..., "--company", "-C", help="Company id, e.g. varg or sneaky-steve")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]StockPilot[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log connector and analyzer activity"),
) -> None:
    """📦 StockPilot — value what is on the shelf at what it actually cost."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )


def _run(config: str, action: Callable[[Any], Awaitable[T]]) -> T:
    """Build a StockPilot, run one async action, and always close connectors."""
    from stockpilot.pilot import StockPilot

    config_path = config if Path(config).exists() else None

    async def runner() -> T:
        pilot = StockPilot.from_config(config_path)
        try:
            return await action(pilot)
        finally:
            await pilot.close()

    try:
        return asyncio.run(runner())
    except StockPilotError as e:
        console.print(f"[bold red]✗ {e.code}[/bold red] {e.message}")
        raise typer.Exit(code=1) from e


@app.command()
def valuation(
    company: str = _COMPANY_OPTION,
    product: str = typer.Option(None, "--product", "-p", help="Only this product number"),
    force: bool = typer.Option(False, "--force", help="Ignore cached results"),
    output: str = typer.Option(None, "--output", "-o", help="Write a Markdown report"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Calculate the FIFO valuation of a company's stock."""
    from stockpilot.analyzers.fifo import AgeGroup
    from stockpilot.exporters.markdown import render_valuation_markdown

    console.print(Panel.fit(
        f"[bold blue]📦 StockPilot[/bold blue] — FIFO Valuation ({company})",
        subtitle=f"v{__version__}",
    ))

    with console.status("[bold green]Valuing inventory...[/bold green]"):
        result = _run(
            config,
            lambda pilot: pilot.calculate_valuation(company, product_number=product, force=force),
        )

    s = result.summary
    table = Table(title="Valuation Summary", show_lines=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total Value", f"{s.total_value:,.2f} SEK")
    table.add_row("Units on Hand", f"{s.total_quantity:,}")
    table.add_row("Average Cost", f"{s.average_cost:,.2f} SEK")
    table.add_row("Average Age", f"{s.average_age_in_days} days")
    for group in AgeGroup:
        table.add_row(
            f"Value {group.value}",
            f"{s.value_by_age_group[group]:,.2f} SEK ({s.items_by_age_group[group]:,} units)",
        )
    if s.pos_available:
        table.add_row("Units in POS", f"{s.total_pos_quantity or 0:,}")
    if s.inconsistent_sizes:
        table.add_row("Inconsistent Sizes", f"[yellow]{s.inconsistent_sizes}[/yellow]")
    if s.failed_sizes:
        table.add_row("Failed Sizes", f"[red]{s.failed_sizes}[/red]")
    console.print(table)

    if output:
        path = Path(output)
        path.write_text(render_valuation_markdown(result, company_name=company))
        console.print(f"[green]✓[/green] Report saved to [bold]{path}[/bold]")


@app.command()
def purchases(
    product: str = typer.Argument(..., help="Product number"),
    company: str = _COMPANY_OPTION,
    output: str = typer.Option(None, "--output", "-o", help="Write a Markdown report"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Show every delivery of a product per variant and size."""
    from stockpilot.exporters.markdown import render_purchase_history_markdown

    history = _run(config, lambda pilot: pilot.fetch_purchase_history(company, product))

    table = Table(title=f"Purchase History — {history.product_number} {history.product_name}")
    table.add_column("Variant", style="bold cyan")
    table.add_column("Size")
    table.add_column("On Hand", justify="right")
    table.add_column("Purchased", justify="right")
    table.add_column("First Purchase")
    table.add_column("Deliveries", justify="right")
    for variant in history.variants:
        for size in variant.sizes:
            first = size.first_purchase_date
            table.add_row(
                variant.variant_name or variant.variant_number,
                size.size,
                str(size.current_stock),
                str(size.total_quantity_purchased),
                f"{first:%Y-%m-%d}" if first else "-",
                str(len(size.deliveries)),
            )
    console.print(table)

    if output:
        path = Path(output)
        path.write_text(render_purchase_history_markdown(history))
        console.print(f"[green]✓[/green] Report saved to [bold]{path}[/bold]")


@app.command()
def history(
    product: str = typer.Argument(..., help="Product number"),
    company: str = _COMPANY_OPTION,
    window: str = typer.Option("30", "--window", "-w", help='7, 30, 90 or "all" days'),
    variant: int = typer.Option(None, "--variant", help="Per-size series for this variant id"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Show daily stock series for a product."""
    result = _run(
        config,
        lambda pilot: pilot.fetch_stock_history(company, product, window=window, variant_id=variant),
    )

    if not result.series:
        console.print("[dim]No stock recorded in this window.[/dim]")
        return

    table = Table(title=f"Stock History — {product} ({window} days)")
    table.add_column("Series", style="bold cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("First", justify="right")
    table.add_column("Last", justify="right")
    table.add_column("Peak", justify="right")
    for series in result.series:
        first, last = series.points[0], series.points[-1]
        table.add_row(
            series.name,
            str(first.date),
            str(last.date),
            str(first.quantity),
            str(last.quantity),
            str(max(p.quantity for p in series.points)),
        )
    console.print(table)


@app.command()
def compare(
    extract: Path = typer.Argument(..., exists=True, dir_okay=False, help="Warehouse stock extract (CSV)"),
    company: str = _COMPANY_OPTION,
    date: str = typer.Option(None, "--date", "-d", help="Valuation date YYYY-MM-DD (default: latest)"),
    output: str = typer.Option("valuation_comparison.csv", "--output", "-o", help="Report CSV path"),
    markdown: str = typer.Option(None, "--markdown", help="Also write a Markdown summary"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Reconcile the FIFO valuation against a warehouse extract."""
    from stockpilot.connectors.extract_parser import parse_extract
    from stockpilot.exporters.markdown import render_comparison_markdown

    async def action(pilot: Any) -> Any:
        rows = parse_extract(extract.read_text(encoding="utf-8"))
        comparison = await pilot.run_comparison(company, rows, date)
        return comparison, pilot.generate_report(comparison)

    with console.status("[bold green]Comparing...[/bold green]"):
        comparison, report = _run(config, action)

    s = comparison.summary
    table = Table(title="Reconciliation Summary", show_lines=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Matched EANs", str(s.matched_count))
    table.add_row("Matched Difference", f"{s.matched_value_delta:,.2f} SEK ({s.matched_value_delta_percent}%)")
    table.add_row("Internal Only", f"{s.internal_only_count} ({s.internal_only_value:,.2f} SEK)")
    table.add_row("External Only", f"{s.external_only_count} ({s.external_only_value:,.2f} SEK)")
    table.add_row("Rows Without EAN", str(s.external_rows_without_ean))
    if s.failed_sizes:
        table.add_row("Failed Sizes", f"[red]{s.failed_sizes}[/red] ({s.internal_failed_count} EANs not compared)")
    table.add_row("Quantity Differences", str(s.rows_with_qty_diff))
    table.add_row("Value Differences", str(s.rows_with_value_diff))
    console.print(table)

    Path(output).write_text(report, encoding="utf-8")
    console.print(f"[green]✓[/green] Report saved to [bold]{output}[/bold]")
    if markdown:
        Path(markdown).write_text(render_comparison_markdown(comparison))
        console.print(f"[green]✓[/green] Summary saved to [bold]{markdown}[/bold]")


@app.command()
def connectors() -> None:
    """List all available connectors."""
    from stockpilot.connectors.registry import _BUILTIN_CONNECTORS

    table = Table(title="Available Connectors")
    table.add_column("Type", style="bold cyan")
    table.add_column("Module")
    table.add_column("Status")

    for name, path in _BUILTIN_CONNECTORS.items():
        module = path.rsplit(".", 1)[0]
        try:
            __import__(module)
            status = "✅ Available"
        except ImportError:
            status = "📦 Needs install"
        table.add_row(name, path, status)

    console.print(table)


if __name__ == "__main__":
    app()
