"""
Decorators shared by the CLI commands.

Stacking order on a command is ``@pass_context``, ``@requires_config``,
``@handle_errors``: the context is resolved first, the configuration is
loaded next, and only the command body runs under the error handler.
"""

import functools
from collections.abc import Callable

import click

from iot_migration.cli.context import MigrationContext
from iot_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    StateError,
)
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Checked in order, so subclasses come before their bases.
# Per-device failures never reach here: they end up in the failures CSV and
# the command still exits 0.
EXIT_CODES: list[tuple[tuple[type[Exception], ...], int, str, str | None]] = [
    (
        (ConfigurationError,),
        2,
        "Configuration error",
        "Check the configuration file and the environment variables it references.",
    ),
    (
        (AuthenticationError,),
        3,
        "Authentication error",
        "Check the source and destination registry tokens.",
    ),
    ((APIError, NetworkError), 4, "Registry error", None),
    (
        (StateError,),
        5,
        "Checkpoint error",
        "Inspect the checkpoint with 'iot-bridge checkpoint show' "
        "or discard it with 'iot-bridge checkpoint clear'.",
    ),
]


def pass_context(f: Callable) -> Callable:
    """Call the command with the MigrationContext stored on the click context."""

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        return f(click_ctx.obj, *args, **kwargs)

    return wrapper


def _exit_code_for(error: Exception) -> tuple[int, str, str | None]:
    for types, code, label, hint in EXIT_CODES:
        if isinstance(error, types):
            return code, label, hint
    return 1, "Unexpected error", "See the log file for the full traceback."


def handle_errors(f: Callable) -> Callable:
    """
    Turn run-aborting exceptions into a message and an exit code.

    Exit codes:
        0: Success, including runs with per-device failures
        1: Unexpected error
        2: Configuration error
        3: Authentication error
        4: Registry API or network error
        5: Checkpoint error
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (click.exceptions.Exit, click.exceptions.Abort):
            raise
        except Exception as e:
            code, label, hint = _exit_code_for(e)
            logger.error(
                "command_failed",
                error_type=type(e).__name__,
                error=str(e),
                exit_code=code,
                exc_info=code == 1,
            )
            click.echo(f"{label}: {e}", err=True)
            if hint:
                click.echo(f"\n{hint}", err=True)
            raise click.exceptions.Exit(code) from e

    return wrapper


def requires_config(f: Callable) -> Callable:
    """Load the configuration before the command runs; exit 2 if it cannot be loaded."""

    @functools.wraps(f)
    def wrapper(ctx: MigrationContext, *args, **kwargs):
        if ctx.config_path is None:
            click.echo(
                "No configuration file given. Pass --config or set IOT_BRIDGE_CONFIG.",
                err=True,
            )
            raise click.exceptions.Exit(2)

        try:
            ctx.config
        except Exception as e:
            click.echo(f"Could not load {ctx.config_path}: {e}", err=True)
            raise click.exceptions.Exit(2) from e

        return f(ctx, *args, **kwargs)

    return wrapper
