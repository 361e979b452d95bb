import warnings

import click

from strata import __version__
from strata.cli_migrations import COMMANDS
from strata.config.logging_config import get_logger, set_log_level

warnings.filterwarnings("ignore")
log = get_logger(__name__)


@click.group()
@click.version_option(__version__, prog_name="strata")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool):
    """strata CLI - Apply, roll back and inspect database schema migrations."""
    if verbose:
        set_log_level("DEBUG")
        log.debug("Debug logging enabled")


for command in COMMANDS:
    cli.add_command(command)


if __name__ == "__main__":
    cli()
