"""Pydantic models for device registry resources.

Registry payloads use camelCase keys; the models expose snake_case
attributes and keep any field they do not know about, so opaque device
data survives the round trip from source to destination unchanged.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class GatewayType(str, Enum):
    """Gateway role of a device."""

    GATEWAY_TYPE_UNSPECIFIED = "GATEWAY_TYPE_UNSPECIFIED"
    GATEWAY = "GATEWAY"
    NON_GATEWAY = "NON_GATEWAY"


class RegistryModel(BaseModel):
    """Base model for registry payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_api(self) -> dict[str, Any]:
        """Serialize to the registry's JSON representation."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PublicKeyCredential(RegistryModel):
    format: str
    key: str


class DeviceCredential(RegistryModel):
    public_key: PublicKeyCredential | None = None
    expiration_time: str | None = None


class DeviceConfig(RegistryModel):
    """A configuration version of a device.

    Used both for the device's current config and for each entry of its
    version history. ``binary_data`` is base64 encoded.
    """

    version: str | None = None
    cloud_update_time: str | None = None
    device_ack_time: str | None = None
    binary_data: str | None = None

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        # int64 fields arrive as numbers from some registries and strings from others
        if isinstance(v, int):
            return str(v)
        return v


# Version history entries share the config shape
ConfigVersion = DeviceConfig


class DeviceState(RegistryModel):
    update_time: str | None = None
    binary_data: str | None = None


class DeviceStatus(RegistryModel):
    code: int | None = None
    message: str | None = None


class GatewayConfig(RegistryModel):
    gateway_type: str | None = None
    gateway_auth_method: str | None = None
    last_accessed_gateway_id: str | None = None
    last_accessed_gateway_time: str | None = None


class Device(RegistryModel):
    """A device identity held by a registry."""

    id: str
    name: str | None = None
    num_id: str | None = None
    credentials: list[DeviceCredential] = Field(default_factory=list)
    last_heartbeat_time: str | None = None
    last_event_time: str | None = None
    last_state_time: str | None = None
    last_config_ack_time: str | None = None
    last_config_send_time: str | None = None
    blocked: bool = False
    last_error_time: str | None = None
    last_error_status: DeviceStatus | None = None
    config: DeviceConfig | None = None
    state: DeviceState | None = None
    log_level: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    gateway_config: GatewayConfig | None = None

    @field_validator("num_id", mode="before")
    @classmethod
    def coerce_num_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v

    @property
    def is_gateway(self) -> bool:
        return (
            self.gateway_config is not None
            and self.gateway_config.gateway_type == GatewayType.GATEWAY.value
        )


@dataclass
class DevicePage:
    """One page of a device listing."""

    devices: list[Device] = field(default_factory=list)
    next_page_token: str | None = None


# gateway ID -> devices bound to that gateway in the source registry
GatewayBindings = dict[str, list[Device]]


def to_destination_device(device: Device, update_public_keys: bool) -> Device:
    """Derive the copy of a source device that is written to the destination.

    The fetched device is never mutated. Credentials are carried over only
    when ``update_public_keys`` is set, and the name is reset to the bare ID
    because the full resource path differs between registries.

    Args:
        device: Device fetched from the source registry
        update_public_keys: Whether to carry the device's credentials over

    Returns:
        New Device instance for the destination registry
    """
    credentials = [c.model_copy(deep=True) for c in device.credentials] if update_public_keys else []
    return device.model_copy(update={"name": device.id, "credentials": credentials}, deep=True)


def config_history_payload(history: dict[str, list[DeviceConfig]]) -> dict[str, Any]:
    """Build the body of the aggregate config history update.

    Returns:
        ``{"configs": {device_id: {version: {cloudUpdateTime, deviceAckTime, binaryData}}}}``
    """
    configs: dict[str, Any] = {}
    for device_id, versions in history.items():
        configs[device_id] = {
            str(v.version): {
                "cloudUpdateTime": v.cloud_update_time or "",
                "deviceAckTime": v.device_ack_time or "",
                "binaryData": v.binary_data or "",
            }
            for v in versions
        }
    return {"configs": configs}
