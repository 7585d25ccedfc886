"""
Destination registry cleanup.

Deletes every device from the destination registry before a fresh
migration. Gateways are handled first: their bindings are removed and the
gateways deleted, then all remaining devices are deleted.
"""

from dataclasses import dataclass
from functools import partial

from iot_migration.client.registry_client import DeviceRegistry
from iot_migration.migration.worker_pool import AtomicCounter, WorkerPool
from iot_migration.models import Device, GatewayType
from iot_migration.reporting.failures import ErrorAggregator
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

CONTEXT_CLEANUP_UNBIND = "Cleanup unbind device"
CONTEXT_CLEANUP_DELETE = "Cleanup delete device"


@dataclass
class CleanupResult:
    gateways_deleted: int = 0
    devices_deleted: int = 0
    failed: int = 0


class RegistryCleaner:
    """Empties a destination registry.

    Listing failures propagate and abort the run; failures on individual
    devices are reported to the aggregator.
    """

    def __init__(self, registry: DeviceRegistry, errors: ErrorAggregator, max_workers: int = 25):
        self.registry = registry
        self.errors = errors
        self.max_workers = max_workers

    async def _list_all(self, gateway_type: str | None = None) -> list[Device]:
        devices: list[Device] = []
        page_token: str | None = None
        while True:
            page = await self.registry.list_devices(page_token=page_token, gateway_type=gateway_type)
            devices.extend(page.devices)
            if not page.next_page_token:
                return devices
            page_token = page.next_page_token

    async def delete_all(self) -> CleanupResult:
        """Unbind and delete every gateway, then delete every remaining device."""
        result = CleanupResult()
        deleted = AtomicCounter()
        failed = AtomicCounter()

        gateways = await self._list_all(gateway_type=GatewayType.GATEWAY.value)
        logger.info("cleanup_started", gateways=len(gateways))

        async def delete_gateway(gateway: Device) -> None:
            bound = await self.registry.list_bound_devices(gateway.id)
            for device in bound:
                try:
                    await self.registry.unbind_device_from_gateway(device.id, gateway.id)
                except Exception as e:
                    self.errors.add_error(CONTEXT_CLEANUP_UNBIND, device.id, e)
                    failed.increment()
            await delete_device(gateway)

        async def delete_device(device: Device) -> None:
            try:
                await self.registry.delete_device(device.id)
            except Exception as e:
                self.errors.add_error(CONTEXT_CLEANUP_DELETE, device.id, e)
                failed.increment()
                return
            deleted.increment()

        # Gateway listings are setup-level: a failure here aborts the cleanup
        for gateway in gateways:
            await delete_gateway(gateway)
        result.gateways_deleted = deleted.count

        devices = await self._list_all()
        async with WorkerPool(self.max_workers, name="cleanup") as pool:
            for device in devices:
                await pool.add_task(partial(delete_device, device))
            await pool.wait()

        result.devices_deleted = deleted.count - result.gateways_deleted
        result.failed = failed.count

        logger.info(
            "cleanup_completed",
            gateways_deleted=result.gateways_deleted,
            devices_deleted=result.devices_deleted,
            failed=result.failed,
        )
        return result
