"""
Checkpoint and resume management for migrations.

This module provides the CheckpointStore class, the durable record of a
migration run. It tracks which phase the run is in and which devices,
config histories and gateways have already been handled, so an
interrupted run can resume without repeating or losing work.

The whole state is rewritten to a JSON file at every mutation; the file
is deleted once the run completes.
"""

import hashlib
import os
import tempfile
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from iot_migration.client.exceptions import CheckpointError
from iot_migration.models import ConfigVersion, Device, GatewayBindings
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationPhase(str, Enum):
    """Phases of a migration run, in execution order."""

    DEVICE_FETCH = "device_fetch"
    DEVICE_MIGRATE = "device_migrate"
    CONFIG_HISTORY = "config_history"
    GATEWAY_BINDING = "gateway_binding"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return list(MigrationPhase).index(self)


def _now() -> datetime:
    return datetime.now(UTC)


def device_set_digest(device_ids: Iterable[str] | None) -> str | None:
    """Order-independent SHA-256 of the device IDs a run was started for.

    None stands for a run over the whole registry.
    """
    if device_ids is None:
        return None
    joined = "\n".join(sorted(set(device_ids)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


class CheckpointState(BaseModel):
    """Serialized form of the checkpoint file."""

    start_time: datetime = Field(default_factory=_now)
    last_updated: datetime = Field(default_factory=_now)
    current_phase: MigrationPhase = MigrationPhase.DEVICE_FETCH
    completed_phases: list[MigrationPhase] = Field(default_factory=list)
    devices_fetched: dict[str, Device] = Field(default_factory=dict)
    devices_migrated: dict[str, bool] = Field(default_factory=dict)
    configs_processed: dict[str, bool] = Field(default_factory=dict)
    config_history: dict[str, list[ConfigVersion]] = Field(default_factory=dict)
    gateways_processed: dict[str, bool] = Field(default_factory=dict)
    total_devices: int = 0
    args: dict[str, Any] = Field(default_factory=dict)


class CheckpointStore:
    """
    Thread-safe, file-backed migration checkpoint.

    Every mutating method takes the lock, updates the in-memory state and
    rewrites the file before returning, so a crash never loses a recorded
    unit of work. Coroutines call the per-item methods through
    ``asyncio.to_thread`` so the file write does not stall the event loop.

    Usage:
        store = CheckpointStore.initialize(path, args=config.options.model_dump())
        if not store.is_phase_completed(MigrationPhase.DEVICE_FETCH):
            for device_id in store.get_unfetched_device_ids(ids):
                store.add_fetched_device(fetch(device_id))
            store.set_phase(MigrationPhase.DEVICE_MIGRATE)
    """

    def __init__(self, path: str | Path, state: CheckpointState | None = None, resumed: bool = False):
        self.path = Path(path)
        self.state = state or CheckpointState()
        self.resumed = resumed
        self._lock = threading.RLock()

    @classmethod
    def load(cls, path: str | Path) -> "CheckpointStore | None":
        """Load a checkpoint from disk.

        Returns:
            The loaded store, or None when no checkpoint file exists

        Raises:
            CheckpointError: If the file exists but cannot be read or parsed
        """
        path = Path(path)
        if not path.exists():
            return None

        try:
            raw = path.read_text()
            state = CheckpointState.model_validate_json(raw)
        except OSError as e:
            raise CheckpointError(f"Failed to read checkpoint file {path}: {e}") from e
        except (ValidationError, ValueError) as e:
            raise CheckpointError(f"Failed to parse checkpoint file {path}: {e}") from e

        logger.info(
            "checkpoint_loaded",
            path=str(path),
            phase=state.current_phase.value,
            fetched=len(state.devices_fetched),
            migrated=len(state.devices_migrated),
        )
        return cls(path, state, resumed=True)

    @classmethod
    def initialize(cls, path: str | Path, args: dict[str, Any] | None = None) -> "CheckpointStore":
        """Resume from an existing checkpoint or start a fresh one.

        A fresh checkpoint is written to disk immediately.

        Raises:
            CheckpointError: If an existing checkpoint is corrupt or the new one cannot be saved
        """
        store = cls.load(path)
        if store is not None:
            return store

        store = cls(path, CheckpointState(args=args or {}))
        with store._lock:
            store._save()
        logger.info("checkpoint_created", path=str(store.path))
        return store

    @staticmethod
    def clear(path: str | Path) -> bool:
        """Delete a checkpoint file. Returns whether one existed."""
        path = Path(path)
        if not path.exists():
            return False
        path.unlink()
        logger.info("checkpoint_cleared", path=str(path))
        return True

    def _save(self) -> None:
        """Atomically rewrite the checkpoint file. Caller holds the lock."""
        self.state.last_updated = _now()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(self.state.model_dump_json(indent=2))
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CheckpointError(f"Failed to save checkpoint file {self.path}: {e}") from e

    # Phase state machine

    @property
    def current_phase(self) -> MigrationPhase:
        with self._lock:
            return self.state.current_phase

    def set_phase(self, phase: MigrationPhase) -> None:
        """Move the run to ``phase``.

        The previous phase is recorded as completed. Setting the current phase
        again is a no-op apart from persisting.

        Raises:
            CheckpointError: On a backward transition
        """
        with self._lock:
            current = self.state.current_phase
            if phase.order < current.order:
                raise CheckpointError(
                    f"Cannot move checkpoint back from {current.value} to {phase.value}"
                )
            if phase != current and current not in self.state.completed_phases:
                self.state.completed_phases.append(current)
            self.state.current_phase = phase
            self._save()

        logger.info("phase_changed", phase=phase.value, previous=current.value)

    def is_phase_completed(self, phase: MigrationPhase) -> bool:
        with self._lock:
            return phase in self.state.completed_phases

    def check_device_set(self, digest: str | None) -> None:
        """Refuse to resume a run that was started for different devices.

        Raises:
            CheckpointError: If ``digest`` differs from the one recorded in ``args``
        """
        with self._lock:
            recorded = self.state.args.get("device_set")
        if recorded != digest:
            raise CheckpointError(
                f"Checkpoint {self.path} belongs to a run over a different set of devices. "
                "Finish that run with the same device selection, or discard it with "
                "'iot-bridge checkpoint clear'."
            )

    # Units of work

    def add_fetched_device(self, device: Device) -> None:
        with self._lock:
            self.state.devices_fetched[device.id] = device
            self._save()

    def add_fetched_devices(self, devices: Iterable[Device]) -> None:
        """Record a listed page of devices with a single write."""
        with self._lock:
            for device in devices:
                self.state.devices_fetched[device.id] = device
            self._save()

    def add_migrated_device(self, device_id: str) -> None:
        """Record a device as written to the destination.

        Raises:
            CheckpointError: If the device was never fetched
        """
        with self._lock:
            if device_id not in self.state.devices_fetched:
                raise CheckpointError(f"Device {device_id} was migrated but never fetched")
            self.state.devices_migrated[device_id] = True
            self._save()

    def add_processed_config(self, device_id: str, configs: list[ConfigVersion]) -> None:
        with self._lock:
            self.state.configs_processed[device_id] = True
            self.state.config_history[device_id] = list(configs)
            self._save()

    def add_processed_gateway(self, gateway_id: str) -> None:
        with self._lock:
            self.state.gateways_processed[gateway_id] = True
            self._save()

    def set_total_devices(self, count: int) -> None:
        with self._lock:
            self.state.total_devices = count
            self._save()

    # Queries

    def get_unfetched_device_ids(self, device_ids: Iterable[str]) -> list[str]:
        with self._lock:
            return [d for d in device_ids if d not in self.state.devices_fetched]

    def get_remaining_devices_for_migration(self, devices: Iterable[Device]) -> list[Device]:
        with self._lock:
            return [d for d in devices if d.id not in self.state.devices_migrated]

    def get_remaining_devices_for_config(self, devices: Iterable[Device]) -> list[Device]:
        with self._lock:
            return [d for d in devices if d.id not in self.state.configs_processed]

    def get_unprocessed_gateways(self, bindings: GatewayBindings) -> list[str]:
        with self._lock:
            return [g for g in bindings if g not in self.state.gateways_processed]

    def get_fetched_devices(self) -> list[Device]:
        with self._lock:
            return list(self.state.devices_fetched.values())

    def get_config_history(self) -> dict[str, list[ConfigVersion]]:
        with self._lock:
            return {k: list(v) for k, v in self.state.config_history.items()}

    def is_migrated(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self.state.devices_migrated

    def complete(self) -> None:
        """Mark the run complete and delete the checkpoint file."""
        with self._lock:
            for phase in (self.state.current_phase, MigrationPhase.COMPLETE):
                if phase not in self.state.completed_phases:
                    self.state.completed_phases.append(phase)
            self.state.current_phase = MigrationPhase.COMPLETE
            self._save()
            try:
                self.path.unlink()
            except OSError as e:
                logger.warning("checkpoint_remove_failed", path=str(self.path), error=str(e))
            else:
                logger.info("checkpoint_completed", path=str(self.path))

    def summary(self) -> dict[str, Any]:
        """Counts for status display."""
        with self._lock:
            return {
                "phase": self.state.current_phase.value,
                "completed_phases": [p.value for p in self.state.completed_phases],
                "fetched": len(self.state.devices_fetched),
                "migrated": len(self.state.devices_migrated),
                "configs": len(self.state.configs_processed),
                "gateways": len(self.state.gateways_processed),
                "total": self.state.total_devices,
                "start_time": self.state.start_time.isoformat(),
                "last_updated": self.state.last_updated.isoformat(),
            }

