"""CLI for yoyforge."""

import json
from datetime import date
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from yoyforge.config import get_settings, setup_logging
from yoyforge.models.filter import FilterCondition
from yoyforge.parser.filters import combine_filters, date_range_filters, parse_filter_params
from yoyforge.store import ComparisonStore

app = typer.Typer(
    name="yf",
    help="yoyforge - year-over-year metric comparisons",
    no_args_is_help=True,
)
console = Console()

MetricsDir = Annotated[Path | None, typer.Option("--dir", "-d", help="Metric catalog directory")]
DbPath = Annotated[str | None, typer.Option("--db", help="DuckDB database path")]
StartDate = Annotated[str | None, typer.Option("--start", help="Start date (YYYY-MM-DD)")]
EndDate = Annotated[str | None, typer.Option("--end", help="End date (YYYY-MM-DD)")]
FilterOpts = Annotated[
    list[str] | None,
    typer.Option("--filter", "-f", help="key=value filter, repeatable (e.g. channel=web,store)"),
]
MetricsOpt = Annotated[
    str | None, typer.Option("--metrics", "-m", help="Comma-separated metric aliases (default: all)")
]
OutputOpt = Annotated[str, typer.Option("--output", "-o", help="Output format: table, json")]
Verbose = Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")]


def get_store(metrics_dir: Path | None, db_path: str | None = None) -> ComparisonStore:
    settings = get_settings()
    updates = {}
    if metrics_dir is not None:
        updates["catalog_path"] = metrics_dir
    if db_path is not None:
        updates["database_path"] = db_path
    return ComparisonStore.from_settings(settings.model_copy(update=updates))


def _configure_logging(verbose: bool) -> None:
    setup_logging("DEBUG" if verbose else get_settings().log_level)


def _load_store(metrics_dir: Path | None, db_path: str | None = None) -> ComparisonStore:
    try:
        return get_store(metrics_dir, db_path)
    except Exception as e:
        console.print(f"[red]Error loading metrics: {e}[/red]")
        raise typer.Exit(1)


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date: {value}. Use YYYY-MM-DD[/red]")
        raise typer.Exit(1)


def _build_filters(
    store: ComparisonStore,
    start: str | None,
    end: str | None,
    filter_args: list[str] | None,
) -> list[FilterCondition]:
    params = {}
    for arg in filter_args or []:
        key, sep, value = arg.partition("=")
        if not sep or not key.strip():
            console.print(f"[red]Invalid filter: {arg}. Use key=value[/red]")
            raise typer.Exit(1)
        params[key.strip()] = value

    date_filters = date_range_filters(
        _parse_date(start), _parse_date(end), store.catalog.date_field
    )
    return combine_filters(parse_filter_params(params), date_filters)


def _metric_list(metrics: str | None) -> list[str] | None:
    if not metrics:
        return None
    return [m.strip() for m in metrics.split(",") if m.strip()]


@app.command("list")
def list_items(
    item_type: Annotated[str, typer.Argument(help="Type: metrics, derived, or dimensions")],
    metrics_dir: MetricsDir = None,
) -> None:
    """List metrics, derived metrics, or dimensions."""
    store = _load_store(metrics_dir)

    if item_type == "metrics":
        _print_rows(
            "Metrics",
            store.list_metrics(),
            [("Alias", "alias", "cyan"), ("Table", "table", "green"), ("Expression", "expression", "yellow")],
        )
    elif item_type == "derived":
        _print_rows(
            "Derived Metrics",
            [{**d, "dependencies": ", ".join(d["dependencies"])} for d in store.list_derived_metrics()],
            [("Name", "name", "cyan"), ("Depends On", "dependencies", "green"), ("Formula", "formula", None)],
        )
    elif item_type == "dimensions":
        _print_rows(
            "Dimensions",
            store.list_dimensions(),
            [("Id", "id", "cyan"), ("Name", "name", "green")],
        )
    else:
        console.print(f"[red]Unknown type: {item_type}. Use: metrics, derived, dimensions[/red]")
        raise typer.Exit(1)


def _print_rows(title: str, rows: list[dict], columns: list[tuple[str, str, str | None]]) -> None:
    if not rows:
        console.print(f"[yellow]No {title.lower()} defined[/yellow]")
        return

    table = Table(title=title)
    for header, _, style in columns:
        table.add_column(header, style=style)
    table.add_column("Description")

    for row in rows:
        table.add_row(*(str(row[key]) for _, key, _ in columns), row.get("description") or "-")

    console.print(table)


@app.command()
def compare(
    metrics_dir: MetricsDir = None,
    db_path: DbPath = None,
    metrics: MetricsOpt = None,
    start_date: StartDate = None,
    end_date: EndDate = None,
    filters: FilterOpts = None,
    output: OutputOpt = "table",
    verbose: Verbose = False,
) -> None:
    """Compare the period against the same period last year."""
    _configure_logging(verbose)
    store = _load_store(metrics_dir, db_path)
    condition_list = _build_filters(store, start_date, end_date, filters)

    try:
        response = store.balance(_metric_list(metrics), condition_list)
    except Exception as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        console.print(json.dumps(response, indent=2, default=str))
        return

    table = Table(title="Year over Year")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in response.items():
        table.add_row(key, _fmt(value))
    console.print(table)


@app.command()
def breakdown(
    group_by: Annotated[str, typer.Argument(help="Dimension to group by")],
    metrics_dir: MetricsDir = None,
    db_path: DbPath = None,
    metrics: MetricsOpt = None,
    start_date: StartDate = None,
    end_date: EndDate = None,
    filters: FilterOpts = None,
    page: Annotated[int, typer.Option("--page", help="Page number, 1-based")] = 1,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Rows per page")] = 50,
    order_by: Annotated[str | None, typer.Option("--order-by", help="Sort column")] = None,
    order_direction: Annotated[str, typer.Option("--direction", help="asc or desc")] = "desc",
    output: OutputOpt = "table",
    verbose: Verbose = False,
) -> None:
    """Compare the period against last year, one row per dimension value."""
    _configure_logging(verbose)
    store = _load_store(metrics_dir, db_path)
    condition_list = _build_filters(store, start_date, end_date, filters)

    try:
        result = store.list_page(
            group_by,
            _metric_list(metrics),
            condition_list,
            page=page,
            limit=limit,
            order_by=order_by,
            order_direction=order_direction,
        )
    except Exception as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        console.print(json.dumps(result.model_dump(), indent=2, default=str))
        return

    meta = result.meta
    table = Table(
        title=f"{meta.group_by} (page {meta.page}/{meta.total_pages}, {meta.total} total)"
    )
    columns = list(result.data[0]) if result.data else ["id", "name"]
    for col in columns:
        table.add_column(col)
    for row in result.data:
        table.add_row(*(_fmt(row.get(c, "")) for c in columns))
    console.print(table)


@app.command("values")
def values(
    table_name: Annotated[str, typer.Argument(help="Table to read")],
    column: Annotated[str, typer.Argument(help="Column to list distinct values of")],
    metrics_dir: MetricsDir = None,
    db_path: DbPath = None,
    start_date: StartDate = None,
    end_date: EndDate = None,
    filters: FilterOpts = None,
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum values")] = 100,
    offset: Annotated[int, typer.Option("--offset", help="Values to skip")] = 0,
    output: OutputOpt = "table",
) -> None:
    """List distinct values of a column (for filter pickers)."""
    store = _load_store(metrics_dir, db_path)
    condition_list = _build_filters(store, start_date, end_date, filters)

    try:
        result = store.distinct_values(
            table_name, column, condition_list, limit=limit, offset=offset
        )
    except Exception as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        console.print(json.dumps({"data": result}, indent=2, default=str))
        return
    for value in result:
        console.print(value)


@app.command()
def validate(
    metrics_dir: MetricsDir = None,
    db_path: DbPath = None,
) -> None:
    """Validate the catalog against the database."""
    store = _load_store(metrics_dir, db_path)

    try:
        errors = store.validate()
    finally:
        store.close()

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)

    console.print(
        f"[green]Validated {len(store.catalog.metrics)} metrics and "
        f"{len(store.catalog.derived_metrics)} derived metrics successfully![/green]"
    )


@app.command("show-sql")
def show_sql(
    metrics_dir: MetricsDir = None,
    db_path: DbPath = None,
    metrics: MetricsOpt = None,
    group_by: Annotated[str | None, typer.Option("--group-by", "-g", help="Dimension")] = None,
    start_date: StartDate = None,
    end_date: EndDate = None,
    filters: FilterOpts = None,
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum rows")] = None,
) -> None:
    """Show generated SQL and parameters without executing."""
    store = _load_store(metrics_dir, db_path)
    condition_list = _build_filters(store, start_date, end_date, filters)

    try:
        if group_by:
            compiled = store.compile_grouped(
                group_by, _metric_list(metrics), condition_list, limit=limit
            )
        else:
            compiled = store.compile_comparison(_metric_list(metrics), condition_list)
    except Exception as e:
        console.print(f"[red]Error generating SQL: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    syntax = Syntax(store.compiler.format_sql(compiled.sql), "sql", theme="monokai", line_numbers=True)
    console.print(syntax)
    if compiled.params:
        console.print(json.dumps(compiled.params, indent=2, default=str))
    if compiled.skipped_tables:
        console.print(f"[yellow]Zeroed (no dimension column): {', '.join(compiled.skipped_tables)}[/yellow]")


def _fmt(value) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


if __name__ == "__main__":
    app()
