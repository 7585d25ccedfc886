"""
Shared pytest fixtures for the IoT Bridge tests.

This module provides:
- FakeRegistry, an in-memory registry implementing the DeviceRegistry contract
- Device factories (make_device, make_gateway)
- Configuration, checkpoint and error aggregator fixtures
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from iot_migration.client.exceptions import APIError, ConflictError, NotFoundError
from iot_migration.config import MigrationConfig, MigrationOptions, RegistryConfig
from iot_migration.migration.checkpoint import CheckpointStore
from iot_migration.models import (
    ConfigVersion,
    Device,
    DeviceConfig,
    DeviceCredential,
    DevicePage,
    GatewayConfig,
    GatewayType,
    PublicKeyCredential,
)
from iot_migration.reporting.failures import ErrorAggregator

# ============================================================================
# In-memory registry
# ============================================================================


class FakeRegistry:
    """In-memory device registry.

    Failures are injected per (operation, id) with :meth:`fail`; every call
    is recorded in ``calls`` as ``(operation, *args)``.
    """

    def __init__(self, page_size: int = 2):
        self.devices: dict[str, Device] = {}
        self.bindings: dict[str, set[str]] = {}
        self.config_versions: dict[str, list[ConfigVersion]] = {}
        self.config_history: dict[str, list[ConfigVersion]] | None = None
        self.pushed_configs: dict[str, str] = {}
        self.page_size = page_size
        self.calls: list[tuple[Any, ...]] = []
        self._failures: dict[tuple[str, str], Exception] = {}

    # Test helpers

    def add(self, device: Device, bound_to: str | None = None) -> Device:
        self.devices[device.id] = device
        if bound_to:
            self.bindings.setdefault(bound_to, set()).add(device.id)
        return device

    def fail(self, operation: str, key: str, error: Exception | None = None) -> None:
        self._failures[(operation, key)] = error or APIError("injected failure", status_code=400)

    def recover(self) -> None:
        self._failures.clear()

    def calls_to(self, operation: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == operation]

    def bound(self, gateway_id: str) -> set[str]:
        return set(self.bindings.get(gateway_id, set()))

    def _check(self, operation: str, key: str) -> None:
        error = self._failures.get((operation, key))
        if error is not None:
            raise error

    # DeviceRegistry contract

    async def list_devices(
        self,
        page_token: str | None = None,
        gateway_id: str | None = None,
        gateway_type: str | None = None,
        page_size: int | None = None,
    ) -> DevicePage:
        self.calls.append(("list_devices", page_token, gateway_id, gateway_type))
        self._check("list_devices", gateway_id or "")

        devices = sorted(self.devices.values(), key=lambda d: d.id)
        if gateway_id is not None:
            if gateway_id not in self.devices:
                raise NotFoundError("Resource not found", status_code=404)
            members = self.bindings.get(gateway_id, set())
            devices = [d for d in devices if d.id in members]
        if gateway_type == GatewayType.GATEWAY.value:
            devices = [d for d in devices if d.is_gateway]

        size = page_size or self.page_size
        start = int(page_token) if page_token else 0
        end = start + size
        next_token = str(end) if end < len(devices) else None
        return DevicePage(devices=devices[start:end], next_page_token=next_token)

    async def get_device(self, device_id: str) -> Device:
        self.calls.append(("get_device", device_id))
        self._check("get_device", device_id)
        if device_id not in self.devices:
            raise NotFoundError("Resource not found", status_code=404)
        return self.devices[device_id]

    async def create_device(self, device: Device) -> Device:
        self.calls.append(("create_device", device.id))
        self._check("create_device", device.id)
        if device.id in self.devices:
            raise ConflictError("Resource conflict (already exists)", status_code=409)
        self.devices[device.id] = device
        return device

    async def patch_device(self, device_id: str, device: Device, update_mask: str) -> Device:
        self.calls.append(("patch_device", device_id, update_mask))
        self._check("patch_device", device_id)
        if device_id not in self.devices:
            raise NotFoundError("Resource not found", status_code=404)
        current = self.devices[device_id]
        updates: dict[str, Any] = {}
        for path in update_mask.split(","):
            name = path.split(".")[0]
            attr = {"logLevel": "log_level", "gatewayConfig": "gateway_config"}.get(name, name)
            updates[attr] = getattr(device, attr)
        self.devices[device_id] = current.model_copy(update=updates)
        return self.devices[device_id]

    async def delete_device(self, device_id: str) -> None:
        self.calls.append(("delete_device", device_id))
        self._check("delete_device", device_id)
        if device_id not in self.devices:
            raise NotFoundError("Resource not found", status_code=404)
        del self.devices[device_id]
        self.bindings.pop(device_id, None)

    async def list_config_versions(self, device_id: str) -> list[ConfigVersion]:
        self.calls.append(("list_config_versions", device_id))
        self._check("list_config_versions", device_id)
        return list(self.config_versions.get(device_id, []))

    async def list_bound_devices(self, gateway_id: str) -> list[Device]:
        self.calls.append(("list_bound_devices", gateway_id))
        self._check("list_bound_devices", gateway_id)
        if gateway_id not in self.devices:
            raise NotFoundError("Resource not found", status_code=404)
        members = self.bindings.get(gateway_id, set())
        return [self.devices[d] for d in sorted(members) if d in self.devices]

    async def bind_device_to_gateway(self, device_id: str, gateway_id: str) -> None:
        self.calls.append(("bind_device_to_gateway", device_id, gateway_id))
        self._check("bind_device_to_gateway", device_id)
        if device_id not in self.devices or gateway_id not in self.devices:
            raise NotFoundError("Resource not found", status_code=404)
        self.bindings.setdefault(gateway_id, set()).add(device_id)

    async def unbind_device_from_gateway(self, device_id: str, gateway_id: str) -> None:
        self.calls.append(("unbind_device_from_gateway", device_id, gateway_id))
        self._check("unbind_device_from_gateway", device_id)
        self.bindings.get(gateway_id, set()).discard(device_id)

    async def modify_cloud_to_device_config(
        self, device_id: str, binary_data: str, version_to_update: int = 0
    ) -> ConfigVersion:
        self.calls.append(("modify_cloud_to_device_config", device_id, version_to_update))
        self._check("modify_cloud_to_device_config", device_id)
        self.pushed_configs[device_id] = binary_data
        return ConfigVersion(version="2", binary_data=binary_data)

    async def validate_connectivity(self) -> bool:
        self.calls.append(("validate_connectivity",))
        return True

    async def update_config_history(self, history: dict[str, list[ConfigVersion]]) -> None:
        self.calls.append(("update_config_history", len(history)))
        self._check("update_config_history", "")
        self.config_history = history


# ============================================================================
# Device factories
# ============================================================================


def make_device(device_id: str, **overrides: Any) -> Device:
    """Build a non-gateway device with a credential, metadata and a config."""
    data: dict[str, Any] = {
        "id": device_id,
        "name": f"projects/p/locations/us-central1/registries/src/devices/{device_id}",
        "num_id": "1234",
        "credentials": [
            DeviceCredential(public_key=PublicKeyCredential(format="RSA_PEM", key=f"key-{device_id}"))
        ],
        "metadata": {"owner": "fleet"},
        "log_level": "INFO",
        "config": DeviceConfig(version="1", binary_data="aGVsbG8="),
        "gateway_config": GatewayConfig(gateway_type=GatewayType.NON_GATEWAY.value),
    }
    data.update(overrides)
    return Device(**data)


def make_gateway(device_id: str, **overrides: Any) -> Device:
    overrides.setdefault(
        "gateway_config",
        GatewayConfig(
            gateway_type=GatewayType.GATEWAY.value,
            gateway_auth_method="ASSOCIATION_ONLY",
        ),
    )
    return make_device(device_id, **overrides)


@pytest.fixture
def device_factory() -> Callable[..., Device]:
    return make_device


@pytest.fixture
def gateway_factory() -> Callable[..., Device]:
    return make_gateway


# ============================================================================
# Registries, configuration and state
# ============================================================================


@pytest.fixture
def source() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def destination() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def errors() -> ErrorAggregator:
    return ErrorAggregator()


@pytest.fixture
def options() -> MigrationOptions:
    return MigrationOptions()


@pytest.fixture
def checkpoint_path(tmp_path: Path) -> Path:
    return tmp_path / "work" / "migration_checkpoint.json"


@pytest.fixture
def checkpoint(checkpoint_path: Path) -> CheckpointStore:
    return CheckpointStore.initialize(checkpoint_path)


def registry_config(registry: str, **overrides: Any) -> RegistryConfig:
    data: dict[str, Any] = {
        "url": "https://iot.example.com",
        "token": f"{registry}-token",
        "project": "proj",
        "region": "us-central1",
        "registry": registry,
        "system_key": f"{registry}-key",
    }
    data.update(overrides)
    return RegistryConfig(**data)


@pytest.fixture
def migration_config(tmp_path: Path) -> MigrationConfig:
    return MigrationConfig(
        source=registry_config("src"),
        destination=registry_config("dst"),
        performance={"max_workers": 4},
        state={"work_dir": str(tmp_path / "work")},
        logging={"disable_progress": True, "file": None},
    )
