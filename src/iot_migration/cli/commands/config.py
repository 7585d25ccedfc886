"""
Configuration management commands.

This module provides commands for validating migration configuration.
"""

import asyncio

import click

from iot_migration.cli.context import MigrationContext
from iot_migration.cli.decorators import handle_errors, pass_context, requires_config
from iot_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from iot_migration.config import MigrationConfig
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Test connectivity to the source and destination registries",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate migration configuration.

    Examples:

        # Basic validation
        iot-bridge config validate --config config.yaml

        # Validate and test connectivity
        iot-bridge config validate --config config.yaml --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path}")
    cfg = ctx.config

    click.echo()
    _display_config_summary(cfg)
    click.echo()

    warnings = _check_settings(cfg)
    for warning in warnings:
        echo_warning(warning)

    if check_connectivity:
        echo_info("Testing connectivity...")

        async def check_registries() -> None:
            try:
                await ctx.source_client.validate_connectivity()
                echo_success(f"Source registry reachable: {cfg.source.registry_path}")
                await ctx.destination_client.validate_connectivity()
                echo_success(f"Destination registry reachable: {cfg.destination.registry_path}")
            finally:
                await ctx.close_clients()

        try:
            asyncio.run(check_registries())
        except Exception:
            echo_error("Connectivity check failed")
            raise

    echo_success("Configuration is valid")


def _display_config_summary(cfg: MigrationConfig) -> None:
    rows = [
        ["Source", cfg.source.url, cfg.source.registry_path],
        ["Destination", cfg.destination.url, cfg.destination.registry_path],
    ]
    print_table("Registries", ["Role", "URL", "Registry"], rows)

    options = cfg.options
    print_table(
        "Options",
        ["Option", "Value"],
        [
            ["devices_csv", options.devices_csv or "(all devices)"],
            ["config_history", options.config_history],
            ["update_public_keys", options.update_public_keys],
            ["skip_config", options.skip_config],
            ["cleanup_destination", options.cleanup_destination],
            ["export_batch_size", options.export_batch_size],
            ["max_workers", cfg.performance.max_workers],
            ["work_dir", cfg.state.work_dir],
        ],
    )


def _check_settings(cfg: MigrationConfig) -> list[str]:
    """Return warnings for settings that are valid but probably unintended."""
    warnings = []

    if cfg.source.registry_path == cfg.destination.registry_path and cfg.source.url == cfg.destination.url:
        warnings.append("Source and destination point at the same registry")

    if cfg.options.config_history and not cfg.destination.system_key:
        warnings.append(
            "config_history is enabled but destination.system_key is not set; "
            "the config history update will fail"
        )

    if not cfg.source.verify_ssl or not cfg.destination.verify_ssl:
        warnings.append("SSL verification is disabled for at least one registry")

    if cfg.performance.max_workers > cfg.performance.http_max_connections:
        warnings.append(
            f"max_workers ({cfg.performance.max_workers}) exceeds http_max_connections "
            f"({cfg.performance.http_max_connections}); workers will wait for connections"
        )

    return warnings
