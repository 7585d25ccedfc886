"""
Migration execution commands.

This module provides commands for running, resuming and inspecting a
device migration.
"""

import asyncio
from pathlib import Path

import click

from iot_migration.cli.context import MigrationContext
from iot_migration.cli.decorators import handle_errors, pass_context, requires_config
from iot_migration.cli.utils import (
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    format_count,
    format_duration,
    print_stats,
)
from iot_migration.migration.checkpoint import CheckpointStore
from iot_migration.migration.coordinator import MigrationCoordinator, MigrationSummary
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="migrate")
def migrate() -> None:
    """Migration commands.

    Run or resume a migration and inspect its progress.
    """
    pass


@migrate.command(name="run")
@click.option(
    "--devices-csv",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="CSV file with a deviceId column; only these devices are migrated",
)
@click.option(
    "--config-history/--no-config-history",
    default=None,
    help="Migrate config version history (default: on)",
)
@click.option(
    "--update-public-keys/--no-update-public-keys",
    default=None,
    help="Replace credentials of devices that already exist (default: on)",
)
@click.option(
    "--skip-config/--no-skip-config",
    default=None,
    help="Do not push the latest config to devices that already exist",
)
@click.option(
    "--cleanup-destination/--no-cleanup-destination",
    default=None,
    help="Delete every device in the destination registry before migrating",
)
@click.option(
    "--export-batch-size",
    type=click.IntRange(min=0),
    default=None,
    help="Export fetched device IDs to CSV files of this size instead of migrating",
)
@click.option(
    "--silent/--no-silent",
    default=None,
    help="Non-interactive mode: never prompt",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.option("--no-progress", is_flag=True, help="Disable progress bars")
@pass_context
@requires_config
@handle_errors
def run(
    ctx: MigrationContext,
    devices_csv: Path | None,
    config_history: bool | None,
    update_public_keys: bool | None,
    skip_config: bool | None,
    cleanup_destination: bool | None,
    export_batch_size: int | None,
    silent: bool | None,
    yes: bool,
    no_progress: bool,
) -> None:
    """Run or resume a device migration.

    Flags override the options section of the configuration file. If a
    checkpoint exists in the work directory the run resumes from it.

    Examples:

        # Full migration
        iot-bridge migrate run --config config.yaml

        # Empty the destination first, without prompting
        iot-bridge migrate run --config config.yaml --cleanup-destination --yes

        # Split a registry into CSV batches of 5000 devices
        iot-bridge migrate run --config config.yaml --export-batch-size 5000
    """
    config = ctx.config.with_options(
        devices_csv=str(devices_csv) if devices_csv else None,
        config_history=config_history,
        update_public_keys=update_public_keys,
        skip_config=skip_config,
        cleanup_destination=cleanup_destination,
        export_batch_size=export_batch_size,
        silent=silent,
    )
    ctx.config = config
    options = config.options
    interactive = not (yes or options.silent)

    existing = CheckpointStore.load(config.state.checkpoint_path)
    if existing is not None:
        state = existing.summary()
        echo_info(
            f"Resuming migration from phase '{state['phase']}': "
            f"{format_count(state['fetched'])} fetched, {format_count(state['migrated'])} migrated, "
            f"{format_count(state['configs'])} configs processed"
        )
    else:
        echo_info("Starting fresh migration with checkpoint tracking")

    if options.cleanup_destination and existing is None and interactive:
        click.confirm(
            f"This will delete EVERY device in destination registry "
            f"'{config.destination.registry}'. Continue?",
            abort=True,
        )

    echo_info(f"Source:      {config.source.url} ({config.source.registry_path})")
    echo_info(f"Destination: {config.destination.url} ({config.destination.registry_path})")

    async def run_migration() -> MigrationSummary:
        try:
            await ctx.source_client.validate_connectivity()
            if options.export_batch_size == 0:
                await ctx.destination_client.validate_connectivity()

            coordinator = MigrationCoordinator(
                config,
                source=ctx.source_client,
                destination=ctx.destination_client,
                enable_progress=not no_progress,
            )
            return await coordinator.run()
        finally:
            await ctx.close_clients()

    summary = asyncio.run(run_migration())
    _report_summary(summary)


def _report_summary(summary: MigrationSummary) -> None:
    click.echo()

    if summary.exported_files:
        echo_success(
            f"Exported {format_count(summary.fetched)} device IDs to "
            f"{len(summary.exported_files)} CSV file(s)"
        )
        for path in summary.exported_files:
            click.echo(f"  {path}")
        return

    print_stats(
        {
            "devices_fetched": format_count(summary.fetched),
            "devices_created": format_count(summary.created),
            "devices_updated": format_count(summary.updated),
            "gateways_reconciled": format_count(summary.gateways),
            "failures": format_count(summary.failed),
            "duration": format_duration(summary.duration_seconds or 0),
        },
        title="Migration Summary",
    )

    if summary.failed:
        echo_warning(f"{format_count(summary.failed)} operation(s) failed")
        for context, count in sorted(summary.errors_by_context.items()):
            click.echo(f"  {context}: {count}")
        if summary.failures_file:
            echo_warning(f"Failed devices written to {summary.failures_file}")

    if summary.completed:
        echo_success("Migration complete!")
    else:
        echo_error("Migration incomplete. Rerun the same command to resume from the checkpoint.")


@migrate.command(name="status")
@pass_context
@requires_config
@handle_errors
def status(ctx: MigrationContext) -> None:
    """Show progress of the current (interrupted) migration.

    Examples:

        iot-bridge migrate status --config config.yaml
    """
    path = ctx.config.state.checkpoint_path
    store = CheckpointStore.load(path)

    if store is None:
        echo_info(f"No migration in progress (no checkpoint at {path})")
        return

    state = store.summary()
    total = state["total"]
    migrated = state["migrated"]
    percentage = (migrated / total * 100) if total else 0.0

    print_stats(
        {
            "current_phase": state["phase"],
            "completed_phases": ", ".join(state["completed_phases"]) or "-",
            "devices_fetched": format_count(state["fetched"]),
            "devices_migrated": f"{format_count(migrated)} / {format_count(total)} ({percentage:.1f}%)",
            "configs_processed": format_count(state["configs"]),
            "gateways_processed": format_count(state["gateways"]),
            "started": state["start_time"],
            "last_updated": state["last_updated"],
        },
        title="Migration Status",
    )
