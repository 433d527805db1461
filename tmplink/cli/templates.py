"""
Template linkage commands: link, unlink, validate and host removal.
"""
import sys
from typing import Tuple

import click
from rich.console import Console
from rich.json import JSON
from rich.table import Table

from tmplink.database.connection import session_scope
from tmplink.errors import LinkageError
from tmplink.linkage.service import LinkageService, LinkResult

console = Console()


@click.group(name='template')
def template_cli():
    """Template linkage commands."""
    pass


@click.group(name='host')
def host_cli():
    """Host commands."""
    pass


def _fail(action: str, error: Exception) -> None:
    console.print(f"[red]{action} failed: {error}[/red]")
    sys.exit(1)


def _print_families(result: LinkResult) -> None:
    table = Table(title=f"Host {result.hostid}")
    table.add_column("Family", style="cyan")
    table.add_column("Inserted", style="green")
    table.add_column("Updated", style="yellow")
    table.add_column("Skipped", style="magenta")
    for family, stats in result.families.items():
        table.add_row(family, str(stats.inserted), str(stats.updated), str(stats.skipped))
    console.print(table)


@template_cli.command()
@click.argument('hostid', type=int)
@click.argument('templateids', type=int, nargs=-1, required=True)
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format.')
def link(hostid: int, templateids: Tuple[int, ...], json_output: bool) -> None:
    """Links TEMPLATEIDS to host HOSTID."""
    try:
        with session_scope() as session:
            result = LinkageService(session).link(hostid, templateids)
    except LinkageError as e:
        _fail("Link", e)
        return

    if json_output:
        console.print(JSON(result.model_dump_json()))
        return
    _print_families(result)
    if result.record_set_id:
        console.print(f"[green]✅ Linked, record set {result.record_set_id} ({result.audit_rows} audit rows)[/green]")
    else:
        console.print("[green]✅ Nothing to change[/green]")


@template_cli.command()
@click.argument('hostid', type=int)
@click.argument('templateids', type=int, nargs=-1, required=True)
@click.option('--keep', is_flag=True, help='Detach entities from the templates instead of deleting them.')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format.')
def unlink(hostid: int, templateids: Tuple[int, ...], keep: bool, json_output: bool) -> None:
    """Unlinks TEMPLATEIDS from host HOSTID."""
    try:
        with session_scope() as session:
            result = LinkageService(session).unlink(hostid, templateids, keep=keep)
    except LinkageError as e:
        _fail("Unlink", e)
        return

    if json_output:
        console.print(JSON(result.model_dump_json()))
        return
    if not result.templateids:
        console.print("[yellow]No linked templates to remove[/yellow]")
        return
    for name, count in result.deleted.items():
        if count:
            console.print(f"- [cyan]{name}[/cyan]: {count}")
    console.print(f"[green]✅ Unlinked, record set {result.record_set_id} ({result.audit_rows} audit rows)[/green]")


@template_cli.command()
@click.argument('templateids', type=int, nargs=-1, required=True)
@click.option('--host', 'hostid', type=int, default=None, help='Also check the templates against this host.')
def validate(templateids: Tuple[int, ...], hostid: int) -> None:
    """Checks whether TEMPLATEIDS can be linked together."""
    try:
        with session_scope() as session:
            result = LinkageService(session).validate(templateids, hostid)
    except LinkageError as e:
        _fail("Validation", e)
        return

    if result.ok:
        console.print("[green]✅ Templates are valid[/green]")
    else:
        console.print(f"[red]Invalid: {result.reason}[/red]")
        sys.exit(1)


@host_cli.command(name='delete')
@click.argument('hostids', type=int, nargs=-1, required=True)
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format.')
def delete_hosts(hostids: Tuple[int, ...], json_output: bool) -> None:
    """Deletes HOSTIDS together with everything on them."""
    try:
        with session_scope() as session:
            result = LinkageService(session).delete_hosts(hostids)
    except LinkageError as e:
        _fail("Delete", e)
        return

    if json_output:
        console.print(JSON(result.model_dump_json()))
        return
    console.print(f"[green]✅ Deleted {result.deleted.get('hosts', 0)} host(s), "
                  f"record set {result.record_set_id}[/green]")
