"""Structured logging for IoT Bridge.

structlog events are routed through the standard library so two sinks can
apply their own thresholds: a Rich console handler (WARNING by default, so
progress bars stay readable) and an optional JSON-lines file that records
everything from DEBUG up.
"""

import json
import logging
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, Processor, WrappedLogger

from iot_migration import __version__

APP_NAME = "iot-bridge"

# Key fragments whose values are replaced before a payload is logged
SENSITIVE_KEYS = (
    "token",
    "password",
    "secret",
    "authorization",
    "private_key",
    "system_key",
)


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", APP_NAME)
    event_dict.setdefault("version", __version__)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
    ]


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    return logging.getLevelNamesMapping().get(name.upper(), default)


def _file_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
        foreign_pre_chain=_shared_processors(),
    )


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Install the console and file sinks.

    Args:
        level: Console threshold
        log_format: ``json`` (one object per line) or ``console`` for the file
        log_file: File to append to; no file sink when None
        file_level: File threshold, DEBUG when None
    """
    console_level = _level(level, logging.WARNING)
    file_log_level = _level(file_level, logging.DEBUG)

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    root.setLevel(logging.DEBUG)
    root.addHandler(console_handler)

    threshold = console_level
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(_file_formatter(log_format))
        root.addHandler(file_handler)
        threshold = min(console_level, file_log_level)

    # httpx logs every request at INFO; ours already carry the same data
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """Log a finished registry call.

    404 and 409 are part of the upsert and binding protocols, so they are
    logged at DEBUG like successes; other client errors are warnings.
    """
    fields = {
        "method": method,
        "url": url,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if status_code < 400 or status_code in (404, 409):
        logger.debug("registry_call", **fields)
    elif status_code < 500:
        logger.warning("registry_call_rejected", **fields)
    else:
        logger.info("registry_call_failed", **fields)


def log_phase_progress(
    logger: structlog.stdlib.BoundLogger, phase: str, completed: int, total: int
) -> None:
    logger.info(
        "migration_progress",
        phase=phase,
        completed=completed,
        total=total,
        percentage=round(completed / total * 100, 2) if total else 0.0,
    )


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower().replace("-", "_")
    return any(fragment in lowered for fragment in SENSITIVE_KEYS)


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Copy a request or response body with credentials redacted.

    Public keys are left alone; they are not secrets and are useful when
    debugging credential updates.
    """
    if isinstance(payload, (dict, list)) and max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(payload, dict):
        return {
            key: "[REDACTED]" if _is_sensitive(key) else sanitize_payload(value, max_depth - 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    text = json.dumps(payload, indent=2, default=str)
    if len(text) <= max_size:
        return text
    return f"{text[:max_size]}\n... [TRUNCATED - {len(text)} total chars]"


def should_log_payloads(enabled: bool) -> bool:
    """Payloads are logged only when enabled and some sink accepts DEBUG."""
    if not enabled:
        return False
    return any(h.level <= logging.DEBUG for h in logging.getLogger().handlers)
