"""CLI interface for order resolution."""

import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import get_config_unvalidated
from .embeddings import InMemoryEmbeddingCache
from .models import ResolvedOrder
from .services.resolve_service import OrderResolutionService
from .snapshot import load_catalog_file, load_price_history_file

app = typer.Typer(
    name="ordproc",
    help="""
    [bold]Order Resolution CLI[/bold]

    Resolve free-text wholesale orders into priced, stock-checked catalog lines.

    [cyan]Examples:[/cyan]
      ordproc parse "10 cases of watermelon adalya $250"
      ordproc resolve "5 boxes mint fakher" --catalog catalog.json
      ordproc resolve "5 boxes mint fakher" --catalog catalog.json --history prices.json --customer C1

    [cyan]Getting Started:[/cyan]
      1. Export the catalog snapshot as a JSON array of products
      2. Optionally set OPENAI_API_KEY for completion parsing and semantic matching
      3. Run with --mock to stay fully offline
    """,
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)


def _configure(verbose: bool, mock: bool, no_completion: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = get_config_unvalidated()
    if mock:
        config.mock = True
    if no_completion:
        config.completion_enabled = False
    return config


@app.command()
def parse(
    text: str = typer.Argument(..., help="Order text"),
    mock: bool = typer.Option(
        False,
        "--mock",
        help="Parse locally without calling OpenAI",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Split order text into candidate lines."""
    config = _configure(verbose, mock, no_completion=False)
    service = OrderResolutionService.from_config(config, _embedding_cache(config))
    lines, parser = service.parse(text)

    print(
        json.dumps(
            {
                "parser": parser,
                "lines": [line.model_dump(mode="json") for line in lines],
            },
            indent=2,
        )
    )


@app.command()
def resolve(
    text: str = typer.Argument(..., help="Order text"),
    catalog_file: Path = typer.Option(
        ...,
        "--catalog",
        "-c",
        help="Catalog snapshot (JSON array of products)",
        exists=True,
        dir_okay=False,
    ),
    history_file: Optional[Path] = typer.Option(
        None,
        "--history",
        help="Customer price history (JSON array of price records)",
        exists=True,
        dir_okay=False,
    ),
    customer_id: Optional[str] = typer.Option(
        None,
        "--customer",
        help="Customer the order is for",
    ),
    output_file: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output JSON file (default: stdout)",
        resolve_path=True,
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        help="Never call external services (local parsing and matching only)",
    ),
    no_completion: bool = typer.Option(
        False,
        "--no-completion",
        help="Always use the local parser",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show configuration and a line table",
    ),
):
    """Resolve order text against catalog and price-history snapshots."""
    config = _configure(verbose, mock, no_completion)

    if verbose:
        console.print("[bold]Configuration:[/bold]")
        console.print(f"  Model: {config.model}")
        console.print(f"  Completion parsing: {config.uses_completion}")
        console.print(f"  Semantic matching: {config.uses_embeddings}")
        console.print(f"  Tax rate: {config.tax_rate}")
        console.print(f"  Currency: {config.currency}")
        console.print(f"  Mock mode: {config.mock}")
        console.print()

    start_time = time.time()

    try:
        catalog = load_catalog_file(catalog_file)
        history = load_price_history_file(history_file) if history_file else []

        service = OrderResolutionService.from_config(config, _embedding_cache(config))
        order = service.resolve(text, customer_id, catalog, history)

        if verbose:
            _print_table(order)

        if output_file:
            _save_output(order, output_file)
        else:
            print(json.dumps(order.model_dump(mode="json"), indent=2))

        elapsed = time.time() - start_time
        console.print(
            f"\n[bold green]✓ Resolved {order.summary.line_count} lines[/bold green] "
            f"total {order.summary.total} {order.currency} ({elapsed:.1f}s)"
        )

    except Exception as e:
        console.print(f"\n[bold red]✗ Error:[/bold red] {str(e)}")
        if verbose:
            import traceback

            console.print(f"[dim white]{traceback.format_exc()}[/dim white]")
        raise typer.Exit(code=1)


def _embedding_cache(config) -> InMemoryEmbeddingCache:
    return InMemoryEmbeddingCache(
        ttl_sec=config.embedding_cache_ttl_sec,
        max_entries=config.embedding_cache_max_entries,
    )


def _print_table(order: ResolvedOrder):
    table = Table(title="Resolved lines")
    table.add_column("Text")
    table.add_column("Product")
    table.add_column("Qty", justify="right")
    table.add_column("Unit price", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Match")
    table.add_column("Stock")

    for line in order.lines:
        table.add_row(
            line.original_text,
            line.product_name if line.product else "[red]-[/red]",
            f"{line.quantity} {line.unit}",
            f"{line.unit_price} ({line.price_source.value})",
            str(line.total_price),
            line.confidence.value,
            line.stock_status.value,
        )
    console.print(table)

    for issue in order.issues:
        console.print(f"[yellow]⚠️  {issue.code}[/yellow] {issue.message}")


def _save_output(order: ResolvedOrder, output_file: Path):
    """Save resolved order to JSON file."""
    with open(output_file, "w") as f:
        json.dump(order.model_dump(mode="json"), f, indent=2)
    console.print(f"[dim]Saved output to {output_file}[/dim]")


@app.command()
def version():
    """Show version information."""
    console.print("ordproc version 0.1.0")


if __name__ == "__main__":
    app()
