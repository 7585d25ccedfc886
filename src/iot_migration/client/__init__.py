"""Registry API clients."""

from iot_migration.client.registry_client import DeviceRegistry, RegistryClient

__all__ = ["DeviceRegistry", "RegistryClient"]
