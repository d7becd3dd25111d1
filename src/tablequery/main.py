"""
tablequery - CLI Entry Point.

Usage:
    tablequery explain orders.yaml --args '{"status": "paid"}'
    tablequery query orders.yaml --db shop.db --args '{"number": 10}'
    tablequery get orders.yaml 42 --db shop.db
    tablequery version
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="tablequery",
    help="tablequery - schema-driven queries against a table described in YAML.",
    add_completion=False,
)
console = Console()


def _configure_logging() -> None:
    from tablequery.config import settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _parse_args(raw: str) -> dict[str, Any]:
    try:
        args = json.loads(raw) if raw else {}
    except json.JSONDecodeError as e:
        console.print(f"[red]❌ --args is not valid JSON: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(args, dict):
        console.print("[red]❌ --args must be a JSON object[/red]")
        raise typer.Exit(1)
    return args


def _open_query(table_path: Path, db: Optional[str]):
    from tablequery.config import settings
    from tablequery.db.sqlite import SQLiteTransport
    from tablequery.errors import TransportError
    from tablequery.meta.store import SQLiteSideTableStore
    from tablequery.query.engine import Query
    from tablequery.schema.loader import load_table

    _configure_logging()

    try:
        table = load_table(table_path)
    except (OSError, ValueError, TypeError) as e:
        console.print(f"[red]❌ Could not load table definition: {e}[/red]")
        raise typer.Exit(1)

    try:
        transport = SQLiteTransport(db or settings.sqlite_path)
    except TransportError as e:
        console.print(f"[red]❌ Could not open database: {e.message}[/red]")
        raise typer.Exit(1)

    return Query(table, transport, side_table=SQLiteSideTableStore(transport))


def _as_dict(item: Any) -> dict[str, Any]:
    from tablequery.query.shaping import item_to_dict

    return item_to_dict(item)


def _render_rows(title: str, rows: list[dict[str, Any]]) -> None:
    if not rows:
        console.print("[dim]No rows.[/dim]")
        return

    table = Table(title=title)
    columns = list(rows[0])
    for name in columns:
        table.add_column(name)
    for row in rows:
        table.add_row(*("" if row.get(name) is None else str(row.get(name)) for name in columns))
    console.print(table)


@app.command()
def explain(
    table_path: Path = typer.Argument(..., help="YAML table definition"),
    args: str = typer.Option("", "--args", "-a", help="Query arguments as a JSON object"),
) -> None:
    """Print the SQL a query would run, without running it."""
    query = _open_query(table_path, ":memory:")
    sql = query.explain(_parse_args(args))

    if query.last_error is not None:
        console.print(f"[red]❌ {query.last_error.message}[/red]")
        raise typer.Exit(1)

    console.print(sql, soft_wrap=True, markup=False, highlight=False)


@app.command(name="query")
def run_query(
    table_path: Path = typer.Argument(..., help="YAML table definition"),
    db: Optional[str] = typer.Option(None, "--db", "-d", help="SQLite database path"),
    args: str = typer.Option("", "--args", "-a", help="Query arguments as a JSON object"),
) -> None:
    """Run a query and print the matching items."""
    query = _open_query(table_path, db)
    result = query.query(_parse_args(args))

    if query.last_error is not None:
        console.print(f"[red]❌ {query.last_error.message}[/red]")
        raise typer.Exit(1)

    if isinstance(result, int):
        console.print(f"Count: {result}")
        return

    if isinstance(result, dict):
        rows = [{query.primary: key, "value": value} for key, value in result.items()]
    else:
        rows = [{query.primary: item} if isinstance(item, (int, str)) else _as_dict(item) for item in result]

    _render_rows(query.table.table_name, rows)
    console.print(f"[dim]{len(rows)} shown, {query.found_items} found[/dim]")


@app.command()
def get(
    table_path: Path = typer.Argument(..., help="YAML table definition"),
    item_id: str = typer.Argument(..., help="Primary key value"),
    db: Optional[str] = typer.Option(None, "--db", "-d", help="SQLite database path"),
) -> None:
    """Fetch one item by primary key."""
    query = _open_query(table_path, db)
    item = query.get_item(item_id)

    if item is None:
        message = query.last_error.message if query.last_error else f"No item {item_id}"
        console.print(f"[red]❌ {message}[/red]")
        raise typer.Exit(1)

    _render_rows(query.table.table_name, [_as_dict(item)])


@app.command()
def version() -> None:
    """Show version information."""
    from tablequery import __version__

    console.print(f"tablequery version {__version__}")


if __name__ == "__main__":
    app()
