"""Migration coordinator for sequencing the migration phases.

This module provides the coordinator that drives a complete run:
fetch devices, fetch config history, upsert devices, reconcile gateway
bindings. Each phase consults the checkpoint, so the same call resumes
an interrupted run.
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from iot_migration.client.registry_client import DeviceRegistry
from iot_migration.config import MigrationConfig
from iot_migration.migration.batch_export import export_device_batches
from iot_migration.migration.checkpoint import CheckpointStore, MigrationPhase, device_set_digest
from iot_migration.migration.cleanup import RegistryCleaner
from iot_migration.migration.fetcher import DeviceFetcher
from iot_migration.migration.gateway import GatewayReconciler
from iot_migration.migration.upserter import DeviceUpserter
from iot_migration.models import ConfigVersion
from iot_migration.reporting.config_recorder import CONFIG_HISTORY_FILENAME, ConfigHistoryRecorder
from iot_migration.reporting.failures import ErrorAggregator
from iot_migration.reporting.progress import ProgressTracker
from iot_migration.utils.csv_input import read_device_ids_csv
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationSummary:
    """Result of a coordinator run."""

    resumed: bool = False
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    gateways: int = 0
    completed: bool = False
    exported_files: list[str] = field(default_factory=list)
    failures_file: str | None = None
    errors_by_context: dict[str, int] = field(default_factory=dict)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MigrationCoordinator:
    """Coordinates a migration run.

    Setup failures (configuration, authentication, corrupt checkpoint,
    unreachable registry listing) propagate to the caller. Per-device
    failures are collected by the error aggregator and never stop a phase.
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: DeviceRegistry,
        destination: DeviceRegistry,
        errors: ErrorAggregator | None = None,
        enable_progress: bool = True,
    ):
        """Initialize migration coordinator.

        Args:
            config: Migration configuration
            source: Source registry client
            destination: Destination registry client
            errors: Aggregator for per-device failures (a new one if None)
            enable_progress: Whether to enable progress bars (disable for CI/automation)
        """
        self.config = config
        self.source = source
        self.destination = destination
        self.errors = errors or ErrorAggregator()
        self.enable_progress = enable_progress and not config.logging.disable_progress
        self.checkpoint: CheckpointStore | None = None

    @property
    def work_dir(self) -> Path:
        return Path(self.config.state.work_dir)

    async def run(self, device_ids: list[str] | None = None) -> MigrationSummary:
        """Execute or resume a migration.

        Args:
            device_ids: Only migrate these devices. When None, the devices CSV
                from the options is used if set, otherwise the whole registry.

        Returns:
            MigrationSummary

        Raises:
            CheckpointError: If an existing checkpoint file is corrupt or was
                created for a different set of devices
            ConfigurationError: If the devices CSV cannot be read
        """
        start = datetime.now(UTC)
        options = self.config.options
        workers = self.config.performance.max_workers

        if device_ids is None and options.devices_csv:
            device_ids = read_device_ids_csv(options.devices_csv)
            logger.info("device_ids_loaded", path=options.devices_csv, count=len(device_ids))

        device_set = device_set_digest(device_ids)
        checkpoint = CheckpointStore.initialize(
            self.config.state.checkpoint_path,
            args={**options.model_dump(mode="json"), "device_set": device_set},
        )
        self.checkpoint = checkpoint
        summary = MigrationSummary(resumed=checkpoint.resumed)

        if checkpoint.resumed:
            checkpoint.check_device_set(device_set)
            logger.info("migration_resuming", **checkpoint.summary())
        else:
            logger.info("migration_started", work_dir=str(self.work_dir))

        progress = ProgressTracker(total_phases=4, enable=self.enable_progress)
        try:
            if options.cleanup_destination and not checkpoint.resumed:
                await RegistryCleaner(self.destination, self.errors, workers).delete_all()

            fetcher = DeviceFetcher(self.source, checkpoint, self.errors, workers, progress)
            devices = await fetcher.fetch_devices(device_ids)
            summary.fetched = len(devices)

            if options.export_batch_size > 0:
                paths = export_device_batches(devices, options.export_batch_size, self.work_dir)
                summary.exported_files = [str(p) for p in paths]
                # Each batch is migrated by its own run with its own checkpoint
                CheckpointStore.clear(checkpoint.path)
                return self._finish(summary, start)

            config_history: dict[str, list[ConfigVersion]] = {}
            if options.config_history:
                with ConfigHistoryRecorder(self.work_dir / CONFIG_HISTORY_FILENAME) as recorder:
                    config_history = await fetcher.fetch_config_history(devices, recorder)

            upserter = DeviceUpserter(
                self.destination, checkpoint, self.errors, options, workers, progress
            )
            upsert = await upserter.migrate_devices(devices, config_history)
            summary.created = upsert.created
            summary.updated = upsert.updated

            if not checkpoint.is_phase_completed(MigrationPhase.GATEWAY_BINDING):
                checkpoint.set_phase(MigrationPhase.GATEWAY_BINDING)
                bindings = await fetcher.fetch_gateway_bindings(devices)
                reconciler = GatewayReconciler(
                    self.destination, checkpoint, self.errors, options, workers, progress
                )
                reconcile = await reconciler.reconcile(bindings)
                summary.gateways = reconcile.gateways_processed
                summary.completed = reconcile.completed
            else:
                summary.completed = True
        finally:
            progress.close()

        return self._finish(summary, start)

    def _finish(self, summary: MigrationSummary, start: datetime) -> MigrationSummary:
        summary.failed = len(self.errors)
        summary.errors_by_context = self.errors.by_context()

        failures_file = self.errors.write_csv(self.work_dir)
        if failures_file:
            summary.failures_file = str(failures_file)
            logger.warning(
                "migration_completed_with_failures",
                failures=summary.failed,
                failures_file=summary.failures_file,
            )

        summary.duration_seconds = (datetime.now(UTC) - start).total_seconds()
        logger.info("migration_finished", **summary.to_dict())
        return summary
