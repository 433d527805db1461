"""
Database management commands for tmplink.
"""
import click
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select, text

from tmplink.database import engine as db_engine
from tmplink.database.connection import session_scope
from tmplink.database.models import Base

console = Console()


@click.group(name="db")
def db_cli():
    """Database management commands."""
    pass


@db_cli.command()
def init() -> None:
    """
    Create all linkage tables.

    Existing tables are left untouched.
    """
    console.print("[bold blue]Initializing Database[/bold blue]")
    try:
        db_engine.ensure_schema()
        console.print("[green]✅ Database initialized successfully![/green]")
    except Exception as e:
        console.print(f"[red]Database initialization failed: {e}[/red]")
        raise SystemExit(1)


@db_cli.command()
def health() -> None:
    """Check database connectivity."""
    console.print("[bold blue]Database Health Check[/bold blue]")
    try:
        with session_scope() as session:
            session.execute(text("SELECT 1"))
        dialect = db_engine.get_engine().dialect.name
        console.print(f"[green]✅ Database is healthy ({dialect})[/green]")
    except Exception as e:
        console.print(f"[red]Health check failed: {e}[/red]")
        raise SystemExit(1)


@db_cli.command()
def stats() -> None:
    """Show row counts per table."""
    console.print("[bold blue]Database Statistics[/bold blue]")
    try:
        table = Table(title="Tables")
        table.add_column("Table Name", style="cyan")
        table.add_column("Row Count", style="magenta")
        with session_scope() as session:
            for name, model_table in sorted(Base.metadata.tables.items()):
                count = session.execute(select(func.count()).select_from(model_table)).scalar_one()
                table.add_row(name, str(count))
        console.print(table)
    except Exception as e:
        console.print(f"[red]Failed to get database stats: {e}[/red]")
        raise SystemExit(1)
