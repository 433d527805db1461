import logging

import click
from rich.console import Console

from tmplink.utils.logging import setup_logging

from .database import db_cli
from .templates import host_cli, template_cli

console = Console()


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enables verbose mode.')
@click.option('--quiet', '-q', is_flag=True, help='Enables quiet mode.')
@click.option('--db-url', envvar='TMPLINK_DB_URL', default=None, help='Database URL.')
@click.pass_context
def app(ctx, verbose, quiet, db_url):
    """
    tmplink template linkage CLI.
    """
    ctx.ensure_object(dict)
    ctx.obj['VERBOSE'] = verbose
    ctx.obj['QUIET'] = quiet

    setup_logging()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.ERROR)

    from tmplink.database.engine import init_db
    init_db(db_url)


# Add subcommands
app.add_command(db_cli, name='db')
app.add_command(template_cli, name='template')
app.add_command(host_cli, name='host')

if __name__ == '__main__':
    app()
