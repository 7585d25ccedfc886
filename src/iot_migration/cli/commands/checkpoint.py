"""
Checkpoint management commands.

This module provides commands for inspecting and removing the checkpoint
file of an interrupted migration.
"""

import json

import click

from iot_migration.cli.context import MigrationContext
from iot_migration.cli.decorators import handle_errors, pass_context, requires_config
from iot_migration.cli.utils import echo_info, echo_success, echo_warning, print_stats
from iot_migration.migration.checkpoint import CheckpointStore
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="checkpoint")
def checkpoint() -> None:
    """Checkpoint management commands.

    Inspect or discard the state of an interrupted migration.
    """
    pass


@checkpoint.command(name="show")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
@pass_context
@requires_config
@handle_errors
def show_checkpoint(ctx: MigrationContext, as_json: bool) -> None:
    """Show the checkpoint of the current migration.

    Examples:

        iot-bridge checkpoint show --config config.yaml
    """
    path = ctx.config.state.checkpoint_path
    store = CheckpointStore.load(path)

    if store is None:
        echo_warning(f"No checkpoint found at {path}")
        return

    summary = store.summary()
    summary["args"] = store.state.args

    if as_json:
        click.echo(json.dumps(summary, indent=2, default=str))
        return

    echo_info(f"Checkpoint: {path}")
    print_stats({k: v for k, v in summary.items() if k != "args"}, title="Checkpoint")
    if summary["args"]:
        print_stats(summary["args"], title="Run Options")


@checkpoint.command(name="clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_context
@requires_config
@handle_errors
def clear_checkpoint(ctx: MigrationContext, yes: bool) -> None:
    """Delete the checkpoint so the next run starts fresh.

    Examples:

        iot-bridge checkpoint clear --config config.yaml --yes
    """
    path = ctx.config.state.checkpoint_path

    if not path.exists():
        echo_warning(f"No checkpoint found at {path}")
        return

    if not yes:
        click.confirm(
            "This discards all recorded progress; the next run starts from scratch. Continue?",
            abort=True,
        )

    CheckpointStore.clear(path)
    echo_success(f"Checkpoint removed: {path}")
