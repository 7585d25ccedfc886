"""
Gateway binding reconciliation.

This module provides the GatewayReconciler class. For every gateway it
makes the destination's bindings match the source: everything currently
bound to the gateway in the destination is unbound, each device bound in
the source is created if missing, then bound again. Rerunning the
reconciliation for a gateway converges to the same bindings.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial

from iot_migration.client.exceptions import ConflictError, NotFoundError
from iot_migration.client.registry_client import DeviceRegistry
from iot_migration.config import MigrationOptions
from iot_migration.migration.checkpoint import CheckpointStore, MigrationPhase
from iot_migration.migration.worker_pool import AtomicCounter, WorkerPool
from iot_migration.models import Device, GatewayBindings, to_destination_device
from iot_migration.reporting.failures import ErrorAggregator
from iot_migration.reporting.progress import ProgressTracker
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

CONTEXT_LIST_DESTINATION_BOUND = "Fetch destination bound devices"
CONTEXT_UNBIND = "Unbind device from gateway"
CONTEXT_GET_BOUND = "Get bound device"
CONTEXT_CREATE_BOUND = "Create bound device"
CONTEXT_BIND = "Bind device to gateway"


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation pass."""

    gateways: int = 0
    gateways_processed: int = 0
    bound: int = 0
    created: int = 0
    failed: int = 0
    completed: bool = False
    skipped: bool = False
    unprocessed_gateways: list[str] = field(default_factory=list)


class GatewayReconciler:
    """Restores gateway bindings in the destination registry."""

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

    async def reconcile(self, bindings: GatewayBindings | None) -> ReconcileResult:
        """
        Reconcile the bindings of every gateway not yet processed.

        The checkpoint is completed (and its file deleted) only once every
        gateway in ``bindings`` has been processed.

        Args:
            bindings: Source bindings per gateway ID, None when there are no gateways

        Returns:
            ReconcileResult
        """
        if self.checkpoint.is_phase_completed(MigrationPhase.GATEWAY_BINDING):
            logger.info("gateway_binding_skipped", reason="phase_completed")
            return ReconcileResult(skipped=True, completed=True)

        if not bindings:
            self.checkpoint.complete()
            return ReconcileResult(completed=True)

        remaining = self.checkpoint.get_unprocessed_gateways(bindings)
        result = ReconcileResult(gateways=len(bindings))
        bound = AtomicCounter()
        created = AtomicCounter()
        failed = AtomicCounter()

        logger.info("gateway_binding_started", gateways=len(bindings), remaining=len(remaining))
        if self.progress:
            self.progress.start_phase("Reconciling gateways", len(remaining), unit="gateway")

        async def reconcile_one(gateway_id: str) -> None:
            ok = await self._reconcile_gateway(
                gateway_id, bindings[gateway_id], bound, created, failed
            )
            if ok:
                await asyncio.to_thread(self.checkpoint.add_processed_gateway, gateway_id)
            else:
                result.unprocessed_gateways.append(gateway_id)
            if self.progress:
                self.progress.update(succeeded=1 if ok else 0, failed=0 if ok else 1)

        async with WorkerPool(self.max_workers, name="gateway") as pool:
            for gateway_id in remaining:
                await pool.add_task(partial(reconcile_one, gateway_id))
            await pool.wait()

        if self.progress:
            self.progress.complete_phase()

        result.bound = bound.count
        result.created = created.count
        result.failed = failed.count
        result.gateways_processed = len(bindings) - len(
            self.checkpoint.get_unprocessed_gateways(bindings)
        )

        if not self.checkpoint.get_unprocessed_gateways(bindings):
            self.checkpoint.complete()
            result.completed = True
        else:
            logger.warning(
                "gateway_binding_incomplete",
                unprocessed=len(result.unprocessed_gateways),
                gateway_ids=result.unprocessed_gateways[:20],
            )

        logger.info(
            "gateway_binding_completed",
            gateways=result.gateways_processed,
            bound=result.bound,
            created=result.created,
            failed=result.failed,
        )
        return result

    async def _reconcile_gateway(
        self,
        gateway_id: str,
        source_bound: list[Device],
        bound: AtomicCounter,
        created: AtomicCounter,
        failed: AtomicCounter,
    ) -> bool:
        """Reconcile one gateway.

        Returns:
            False when the destination's current bindings could not be listed,
            leaving the gateway for a later run
        """
        try:
            existing = await self.destination.list_bound_devices(gateway_id)
        except NotFoundError:
            existing = []
        except Exception as e:
            self.errors.add_error(CONTEXT_LIST_DESTINATION_BOUND, gateway_id, e)
            return False

        for device in existing:
            try:
                await self.destination.unbind_device_from_gateway(device.id, gateway_id)
            except Exception as e:
                self.errors.add_error(CONTEXT_UNBIND, device.id, e)

        for device in source_bound:
            if not await self._ensure_device(device, created, failed):
                continue
            try:
                await self.destination.bind_device_to_gateway(device.id, gateway_id)
            except Exception as e:
                self.errors.add_error(CONTEXT_BIND, device.id, e)
                failed.increment()
                continue
            bound.increment()

        logger.debug(
            "gateway_reconciled",
            gateway_id=gateway_id,
            unbound=len(existing),
            bound=len(source_bound),
        )
        return True

    async def _ensure_device(
        self, device: Device, created: AtomicCounter, failed: AtomicCounter
    ) -> bool:
        """Make sure a bound device exists in the destination."""
        try:
            await self.destination.get_device(device.id)
            return True
        except NotFoundError:
            pass
        except Exception as e:
            self.errors.add_error(CONTEXT_GET_BOUND, device.id, e)
            failed.increment()
            return False

        try:
            await self.destination.create_device(
                to_destination_device(device, self.options.update_public_keys)
            )
        except ConflictError:
            # Created concurrently by another gateway's worker
            return True
        except Exception as e:
            self.errors.add_error(CONTEXT_CREATE_BOUND, device.id, e)
            failed.increment()
            return False

        created.increment()
        return True
