"""
Destination upsert engine.

This module provides the DeviceUpserter class, which writes fetched devices
into the destination registry. A device is created first; when the
destination answers with a conflict the device already exists, so it is
patched instead and its latest config pushed. Running the engine twice
converges to the same destination state.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial

from iot_migration.client.exceptions import ConflictError
from iot_migration.client.registry_client import DeviceRegistry
from iot_migration.config import MigrationOptions
from iot_migration.migration.checkpoint import CheckpointStore, MigrationPhase
from iot_migration.migration.worker_pool import AtomicCounter, WorkerPool
from iot_migration.models import ConfigVersion, Device, to_destination_device
from iot_migration.reporting.failures import ErrorAggregator
from iot_migration.reporting.progress import ProgressTracker
from iot_migration.utils.logging import get_logger, log_phase_progress

logger = get_logger(__name__)

CONTEXT_CREATE = "Error when Creating Device"
CONTEXT_PATCH = "Error when Patching Device"
CONTEXT_CONFIG_HISTORY = "Update config history"

PATCH_UPDATE_MASK = "blocked,metadata,logLevel,gatewayConfig.gatewayAuthMethod"


def build_update_mask(update_public_keys: bool) -> str:
    """Fields overwritten when a device already exists in the destination."""
    if update_public_keys:
        return f"credentials,{PATCH_UPDATE_MASK}"
    return PATCH_UPDATE_MASK


@dataclass
class UpsertResult:
    """Outcome of one upsert pass."""

    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: bool = False
    failed_ids: list[str] = field(default_factory=list)

    @property
    def migrated(self) -> int:
        return self.created + self.updated


class DeviceUpserter:
    """Creates or updates devices in the destination registry."""

    def __init__(
        self,
        destination: DeviceRegistry,
        checkpoint: CheckpointStore,
        errors: ErrorAggregator,
        options: MigrationOptions,
        max_workers: int = 25,
        progress: ProgressTracker | None = None,
    ):
        self.destination = destination
        self.checkpoint = checkpoint
        self.errors = errors
        self.options = options
        self.max_workers = max_workers
        self.progress = progress
        self.update_mask = build_update_mask(options.update_public_keys)

    async def migrate_devices(
        self,
        devices: list[Device],
        config_history: dict[str, list[ConfigVersion]] | None = None,
    ) -> UpsertResult:
        """
        Upsert every device not yet migrated, then push the config history.

        Args:
            devices: Devices fetched from the source
            config_history: Config versions per device ID to write in one request

        Returns:
            UpsertResult with created/updated/failed counts
        """
        if self.checkpoint.is_phase_completed(MigrationPhase.DEVICE_MIGRATE):
            logger.info("device_migrate_skipped", reason="phase_completed")
            return UpsertResult(total=len(devices), skipped=True)

        remaining = self.checkpoint.get_remaining_devices_for_migration(devices)
        result = UpsertResult(total=len(remaining))
        created = AtomicCounter()
        updated = AtomicCounter()
        finished = AtomicCounter()

        logger.info(
            "device_migrate_started",
            devices=len(devices),
            remaining=len(remaining),
            update_mask=self.update_mask,
        )
        if self.progress:
            self.progress.start_phase("Migrating devices", len(remaining))

        async def upsert_one(device: Device) -> None:
            outcome = await self._upsert(device)
            if outcome == "created":
                created.increment()
            elif outcome == "updated":
                updated.increment()
            else:
                result.failed_ids.append(device.id)

            if self.progress:
                if outcome:
                    self.progress.update(succeeded=1)
                else:
                    self.progress.update(failed=1)

            count = finished.increment()
            if count % 1000 == 0:
                log_phase_progress(logger, "device_migrate", count, len(remaining))

        async with WorkerPool(self.max_workers, name="upsert") as pool:
            for device in remaining:
                await pool.add_task(partial(upsert_one, device))
            await pool.wait()

        if self.progress:
            self.progress.complete_phase()

        result.created = created.count
        result.updated = updated.count
        result.failed = len(result.failed_ids)

        if config_history:
            await self._push_config_history(config_history)

        self.checkpoint.set_phase(MigrationPhase.CONFIG_HISTORY)

        logger.info(
            "device_migrate_completed",
            created=result.created,
            updated=result.updated,
            failed=result.failed,
        )
        return result

    async def _upsert(self, device: Device) -> str | None:
        """Create or update one device.

        Returns:
            "created", "updated", or None when the device failed
        """
        body = to_destination_device(device, self.options.update_public_keys)

        try:
            await self.destination.create_device(body)
        except ConflictError:
            logger.debug("device_exists", device_id=device.id)
        except Exception as e:
            self.errors.add_error(CONTEXT_CREATE, device.id, e)
            return None
        else:
            await asyncio.to_thread(self.checkpoint.add_migrated_device, device.id)
            return "created"

        try:
            await self.destination.patch_device(device.id, body, self.update_mask)
            if not self.options.skip_config and device.config is not None:
                await self.destination.modify_cloud_to_device_config(
                    device.id,
                    device.config.binary_data or "",
                    version_to_update=0,
                )
        except Exception as e:
            self.errors.add_error(CONTEXT_PATCH, device.id, e)
            return None

        await asyncio.to_thread(self.checkpoint.add_migrated_device, device.id)
        return "updated"

    async def _push_config_history(self, config_history: dict[str, list[ConfigVersion]]) -> None:
        try:
            await self.destination.update_config_history(config_history)
        except Exception as e:
            # The devices themselves are migrated; history is best effort
            self.errors.add_error(CONTEXT_CONFIG_HISTORY, "", e)
            logger.error("config_history_update_failed", devices=len(config_history), error=str(e))
