"""State shared by all iot-bridge commands.

The configuration and both registry clients are created on first use, so
``checkpoint clear`` never opens a connection and ``config validate`` fails
on a bad file before anything else happens.
"""

from dataclasses import dataclass, field
from pathlib import Path

from iot_migration.client.exceptions import ConfigurationError
from iot_migration.client.registry_client import RegistryClient
from iot_migration.config import MigrationConfig, load_config_from_yaml
from iot_migration.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """Stored on ``click.Context.obj``.

    ``log_level`` and ``log_file`` hold the global command-line flags; when
    given they win over the ``logging`` section of the configuration.
    """

    config_path: Path | None = None
    log_level: str | None = None
    log_file: Path | None = None

    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _clients: dict[str, RegistryClient] = field(default_factory=dict, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        if self._config is None:
            if self.config_path is None:
                raise ConfigurationError("No configuration file given (--config / IOT_BRIDGE_CONFIG)")
            logger.debug("loading_configuration", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)
            self.apply_logging_settings()
        return self._config

    @config.setter
    def config(self, value: MigrationConfig) -> None:
        self._config = value

    def apply_logging_settings(self) -> None:
        """Reconfigure the log sinks from the loaded configuration."""
        settings = self.config.logging
        configure_logging(
            level=self.log_level or settings.level,
            log_format=settings.format,
            log_file=str(self.log_file) if self.log_file else settings.file,
            file_level=settings.file_level,
        )

    def _client(self, which: str) -> RegistryClient:
        if which not in self._clients:
            logger.debug("creating_registry_client", registry=which)
            self._clients[which] = RegistryClient(
                config=getattr(self.config, which),
                performance=self.config.performance,
                log_payloads=self.config.logging.log_payloads,
                max_payload_size=self.config.logging.max_payload_size,
            )
        return self._clients[which]

    @property
    def source_client(self) -> RegistryClient:
        return self._client("source")

    @property
    def destination_client(self) -> RegistryClient:
        return self._client("destination")

    async def close_clients(self) -> None:
        """Close the clients opened so far, on the loop that used them."""
        while self._clients:
            _, client = self._clients.popitem()
            await client.close()
