"""Run configuration for IoT Bridge.

One YAML file describes both registries plus the tuning knobs. It is parsed
into :class:`MigrationConfig` once at startup and the resulting object is
passed to every component; nothing reads the environment after that, except
the ``IOT_BRIDGE_*`` overrides pydantic-settings applies while loading.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iot_migration.client.exceptions import ConfigurationError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "console")

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class RegistryConfig(BaseModel):
    """Where a registry lives and how to authenticate against it."""

    url: str = Field(..., description="API root, e.g. https://iot.example.com/api/v1")
    token: str = Field(..., description="Bearer token of a user allowed to manage devices")
    project: str = Field(..., description="Owning project")
    region: str = Field(..., description="Region the registry was created in")
    registry: str = Field(..., description="Registry ID")
    system_key: str | None = Field(
        default=None, description="Needed only to read config version history"
    )
    verify_ssl: bool = Field(default=True, description="Check the server certificate")
    timeout: int = Field(default=30, ge=1, le=600, description="Seconds before a call is abandoned")

    @field_validator("url")
    @classmethod
    def check_scheme(cls, value: str) -> str:
        if value.split("://", 1)[0] not in ("http", "https"):
            raise ValueError(f"expected an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("token")
    @classmethod
    def check_token(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("a registry token is required")
        return value

    @field_validator("project", "region", "registry")
    @classmethod
    def check_path_segment(cls, value: str) -> str:
        value = value.strip()
        if not value or "/" in value:
            raise ValueError(f"{value!r} is not usable as a resource path segment")
        return value

    @property
    def registry_path(self) -> str:
        return f"projects/{self.project}/locations/{self.region}/registries/{self.registry}"


class MigrationOptions(BaseModel):
    """Switches that change what a run does.

    The checkpoint records these so ``migrate status`` can show how an
    interrupted run was started.
    """

    devices_csv: str | None = Field(
        default=None, description="Only migrate the IDs listed in this CSV (deviceId column)"
    )
    config_history: bool = Field(default=True, description="Copy every stored config version")
    update_public_keys: bool = Field(
        default=True, description="Overwrite credentials when the device already exists"
    )
    skip_config: bool = Field(
        default=False, description="Leave the config of existing destination devices alone"
    )
    cleanup_destination: bool = Field(
        default=False, description="Empty the destination registry first"
    )
    export_batch_size: int = Field(
        default=0, ge=0, description="When >0, write ID batches to CSV and stop"
    )
    silent: bool = Field(default=False, description="Never prompt")


class PerformanceConfig(BaseModel):
    """Concurrency and HTTP pool sizing."""

    max_workers: int = Field(default=25, ge=1, le=200)
    rate_limit: int = Field(default=50, ge=0, le=1000, description="Calls per second, 0 = unpaced")
    page_size: int = Field(default=1000, ge=1, le=10000)
    http_max_connections: int = Field(default=50, ge=1, le=500)
    http_max_keepalive_connections: int = Field(default=20, ge=1, le=200)


class StateConfig(BaseModel):
    work_dir: str = Field(default="./migration_work", description="Checkpoint, reports, exports")
    checkpoint_file: str = Field(default="migration_checkpoint.json")

    @property
    def checkpoint_path(self) -> Path:
        return Path(self.work_dir) / self.checkpoint_file


class LoggingConfig(BaseModel):
    """Console and file sinks; see :func:`iot_migration.utils.logging.configure_logging`."""

    level: str = Field(default="WARNING", description="Console threshold")
    file_level: str = Field(default="DEBUG", description="File threshold")
    format: str = Field(default="json", description="File layout: json or console")
    file: str | None = Field(default="logs/migration.log")
    disable_progress: bool = False
    log_payloads: bool = Field(
        default=False, description="Record sanitized request and response bodies at DEBUG"
    )
    max_payload_size: int = Field(default=10000, ge=100, le=1000000)

    @field_validator("level", "file_level")
    @classmethod
    def known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}; use one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("format")
    @classmethod
    def known_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"unknown log format {value!r}; use json or console")
        return fmt


class MigrationConfig(BaseSettings):
    """Everything a run needs, loaded from YAML.

    ``IOT_BRIDGE_PERFORMANCE__MAX_WORKERS=10`` style variables override the
    nested values.
    """

    model_config = SettingsConfigDict(
        env_prefix="IOT_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: RegistryConfig
    destination: RegistryConfig
    options: MigrationOptions = Field(default_factory=MigrationOptions)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def with_options(self, **overrides: Any) -> "MigrationConfig":
        """Copy with command-line option values applied.

        Flags left unset arrive as ``None`` and keep the file's value.
        """
        updates = {name: value for name, value in overrides.items() if value is not None}
        if not updates:
            return self
        return self.model_copy(update={"options": self.options.model_copy(update=updates)})


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Parse ``config_path`` and expand ``${VAR}`` references.

    Raises:
        FileNotFoundError: The file does not exist
        ConfigurationError: The file is empty or names an unset variable
        pydantic.ValidationError: A value is out of range or malformed
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not raw:
        raise ConfigurationError(f"{path} contains no settings")

    return MigrationConfig(**_expand_env_vars(raw))


def _substitute(match: re.Match) -> str:
    name = match.group(1)
    if name not in os.environ:
        raise ConfigurationError(
            f"Configuration references ${{{name}}} but {name} is not set "
            "(export it or add it to .env)"
        )
    return os.environ[name]


def _expand_env_vars(data: Any) -> Any:
    """Replace ``${NAME}`` anywhere inside string values, recursively."""
    if isinstance(data, str):
        return _ENV_REF.sub(_substitute, data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data
