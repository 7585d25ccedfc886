"""
Source registry fetch pipeline.

This module provides the DeviceFetcher class, which reads devices, their
config version history and their gateway bindings from the source registry
and records each unit of work in the checkpoint as it arrives.
"""

import asyncio
from functools import partial

from iot_migration.client.exceptions import NotFoundError
from iot_migration.client.registry_client import DeviceRegistry
from iot_migration.migration.checkpoint import CheckpointStore, MigrationPhase
from iot_migration.migration.worker_pool import AtomicCounter, WorkerPool
from iot_migration.models import ConfigVersion, Device, GatewayBindings
from iot_migration.reporting.config_recorder import ConfigHistoryRecorder
from iot_migration.reporting.failures import ErrorAggregator
from iot_migration.reporting.progress import ProgressTracker
from iot_migration.utils.logging import get_logger, log_phase_progress

logger = get_logger(__name__)

CONTEXT_FETCH_DEVICE = "Fetch device"
CONTEXT_FETCH_CONFIG_HISTORY = "Fetch config history"
CONTEXT_FETCH_BOUND_DEVICES = "Fetch bound devices"


class DeviceFetcher:
    """
    Reads everything the migration needs from the source registry.

    Each fetch method consults the checkpoint first, so on a resumed run only
    the work that was not recorded yet hits the network.
    """

    def __init__(
        self,
        source: DeviceRegistry,
        checkpoint: CheckpointStore,
        errors: ErrorAggregator,
        max_workers: int = 25,
        progress: ProgressTracker | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            source: Source registry client
            checkpoint: Checkpoint store of the current run
            errors: Aggregator collecting per-device failures
            max_workers: Concurrent registry calls
            progress: Optional progress display
        """
        self.source = source
        self.checkpoint = checkpoint
        self.errors = errors
        self.max_workers = max_workers
        self.progress = progress

    def _progress_start(self, name: str, total: int | None, unit: str = "device") -> None:
        if self.progress:
            self.progress.start_phase(name, total, unit=unit)

    def _progress_update(self, succeeded: int = 0, failed: int = 0, skipped: int = 0) -> None:
        if self.progress:
            self.progress.update(succeeded=succeeded, failed=failed, skipped=skipped)

    def _progress_total(self, total: int) -> None:
        if self.progress:
            self.progress.set_total(total)

    def _progress_done(self) -> None:
        if self.progress:
            self.progress.complete_phase()

    async def fetch_devices(self, device_ids: list[str] | None = None) -> list[Device]:
        """
        Fetch devices from the source registry.

        Args:
            device_ids: Only fetch these devices; None pages through the whole registry

        Returns:
            The fetched devices (from the checkpoint when the fetch phase already completed)
        """
        if self.checkpoint.is_phase_completed(MigrationPhase.DEVICE_FETCH):
            devices = self.checkpoint.get_fetched_devices()
            logger.info("device_fetch_skipped", reason="phase_completed", devices=len(devices))
            return devices

        if device_ids is not None:
            await self._fetch_by_ids(device_ids)
        else:
            await self._fetch_all()

        self.checkpoint.set_phase(MigrationPhase.DEVICE_MIGRATE)

        devices = self.checkpoint.get_fetched_devices()
        if device_ids is not None:
            order = {device_id: i for i, device_id in enumerate(device_ids)}
            devices = [d for d in devices if d.id in order]
            devices.sort(key=lambda d: order[d.id])
        return devices

    async def _fetch_by_ids(self, device_ids: list[str]) -> None:
        self.checkpoint.set_total_devices(len(device_ids))
        remaining = self.checkpoint.get_unfetched_device_ids(device_ids)
        missing: list[str] = []

        logger.info(
            "device_fetch_started",
            mode="csv",
            requested=len(device_ids),
            remaining=len(remaining),
        )
        self._progress_start("Fetching devices", len(remaining))

        async def fetch_one(device_id: str) -> None:
            try:
                device = await self.source.get_device(device_id)
            except Exception as e:
                if isinstance(e, NotFoundError):
                    missing.append(device_id)
                self.errors.add_error(CONTEXT_FETCH_DEVICE, device_id, e)
                self._progress_update(failed=1)
                return
            await asyncio.to_thread(self.checkpoint.add_fetched_device, device)
            self._progress_update(succeeded=1)

        async with WorkerPool(self.max_workers, name="fetch") as pool:
            for device_id in remaining:
                await pool.add_task(partial(fetch_one, device_id))
            await pool.wait()

        self._progress_done()

        if missing:
            logger.warning(
                "devices_not_found_in_source",
                count=len(missing),
                device_ids=missing[:20],
            )

    async def _fetch_all(self) -> None:
        logger.info("device_fetch_started", mode="list")
        self._progress_start("Fetching devices", None)

        page_token: str | None = None
        fetched = 0
        while True:
            # Listing failures are not per-device; they abort the phase
            page = await self.source.list_devices(page_token=page_token)
            if page.devices:
                await asyncio.to_thread(self.checkpoint.add_fetched_devices, page.devices)
            fetched += len(page.devices)
            self._progress_update(succeeded=len(page.devices))

            if not page.next_page_token:
                break
            page_token = page.next_page_token

        total = len(self.checkpoint.get_fetched_devices())
        self.checkpoint.set_total_devices(total)
        self._progress_total(total)
        self._progress_done()
        logger.info("device_fetch_completed", fetched=fetched)

    async def fetch_config_history(
        self,
        devices: list[Device],
        recorder: ConfigHistoryRecorder | None = None,
    ) -> dict[str, list[ConfigVersion]]:
        """
        Fetch the config version history of each device.

        Failures are reported per device and leave that device unprocessed
        so a resumed run retries it. Does not advance the phase.

        Args:
            devices: Fetched source devices
            recorder: Also append each history, or its fetch error, to this CSV log

        Returns:
            Mapping of device ID to its config versions, including checkpointed entries
        """
        if self.checkpoint.is_phase_completed(MigrationPhase.DEVICE_MIGRATE):
            logger.info("config_history_fetch_skipped", reason="phase_completed")
            return self.checkpoint.get_config_history()

        remaining = self.checkpoint.get_remaining_devices_for_config(devices)
        done = AtomicCounter()
        total = len(remaining)

        logger.info("config_history_fetch_started", devices=len(devices), remaining=total)
        self._progress_start("Fetching config history", total)

        async def fetch_one(device: Device) -> None:
            try:
                versions = await self.source.list_config_versions(device.id)
            except Exception as e:
                self.errors.add_error(CONTEXT_FETCH_CONFIG_HISTORY, device.id, e)
                if recorder:
                    recorder.record_error(device.id, e)
                self._progress_update(failed=1)
                return
            await asyncio.to_thread(self.checkpoint.add_processed_config, device.id, versions)
            if recorder:
                recorder.record(device.id, versions)
            self._progress_update(succeeded=1)

            completed = done.increment()
            if completed % 1000 == 0:
                log_phase_progress(logger, "config_history", completed, total)

        async with WorkerPool(self.max_workers, name="config-history") as pool:
            for device in remaining:
                await pool.add_task(partial(fetch_one, device))
            await pool.wait()

        self._progress_done()
        return self.checkpoint.get_config_history()

    async def fetch_gateway_bindings(self, devices: list[Device]) -> GatewayBindings | None:
        """
        List the devices bound to each gateway in the source registry.

        Returns:
            Mapping of gateway ID to bound devices, or None when there are no gateways.
            Gateways whose listing failed are left out of the mapping.
        """
        gateways = [d for d in devices if d.is_gateway]
        if not gateways:
            logger.info("gateway_bindings_none")
            return None

        bindings: GatewayBindings = {}
        logger.info("gateway_bindings_fetch_started", gateways=len(gateways))
        self._progress_start("Fetching gateway bindings", len(gateways), unit="gateway")

        async def fetch_one(gateway: Device) -> None:
            try:
                bound = await self.source.list_bound_devices(gateway.id)
            except Exception as e:
                self.errors.add_error(CONTEXT_FETCH_BOUND_DEVICES, gateway.id, e)
                self._progress_update(failed=1)
                return
            bindings[gateway.id] = bound
            self._progress_update(succeeded=1)

        async with WorkerPool(self.max_workers, name="gateway-bindings") as pool:
            for gateway in gateways:
                await pool.add_task(partial(fetch_one, gateway))
            await pool.wait()

        self._progress_done()
        logger.info(
            "gateway_bindings_fetched",
            gateways=len(bindings),
            bound_devices=sum(len(v) for v in bindings.values()),
        )
        return bindings
