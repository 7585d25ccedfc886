"""
iot-bridge command line entry point.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from iot_migration import __version__
from iot_migration.cli.commands import checkpoint as checkpoint_commands
from iot_migration.cli.commands import config as config_commands
from iot_migration.cli.commands import migrate as migrate_commands
from iot_migration.cli.context import MigrationContext
from iot_migration.utils.logging import configure_logging, get_logger

# Tokens are usually kept in .env and referenced as ${VAR} in the YAML file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="iot-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="IOT_BRIDGE_CONFIG",
    help="YAML configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="IOT_BRIDGE_LOG_LEVEL",
    help="Console log level [default: logging.level from the config, else WARNING]",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="IOT_BRIDGE_LOG_FILE",
    help="JSON log file [default: logging.file from the config]",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """Copy devices from one IoT device registry to another.

    Device identities, credentials, config history and gateway bindings are
    migrated in phases. Progress is checkpointed in the work directory, so
    running the same command again resumes an interrupted migration.

    Examples:

        iot-bridge config validate -c config.yaml

        iot-bridge migrate run -c config.yaml --devices-csv devices.csv

        iot-bridge migrate status -c config.yaml
    """
    # Console only until the configuration is loaded and names a file sink
    configure_logging(level=log_level or "WARNING", log_file=str(log_file) if log_file else None)
    ctx.obj = MigrationContext(config_path=config, log_level=log_level, log_file=log_file)
    logger.debug("cli_started", config=str(config) if config else None)


cli.add_command(config_commands.config)
cli.add_command(migrate_commands.migrate)
cli.add_command(checkpoint_commands.checkpoint)


def main() -> int:
    """Run the CLI and return its exit code."""
    try:
        # standalone_mode=False returns the code of click.exceptions.Exit
        # instead of calling sys.exit
        result = cli(standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
