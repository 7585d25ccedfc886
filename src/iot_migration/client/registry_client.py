"""Device registry API client.

This module defines the registry contract the migration engine depends on
and its HTTP implementation. Registry resources live under
``{url}/v1/projects/{project}/locations/{region}/registries/{registry}``.
"""

from typing import Any, Protocol

import httpx

from iot_migration.client.base_client import BaseAPIClient
from iot_migration.client.exceptions import APIError, ConfigurationError
from iot_migration.config import PerformanceConfig, RegistryConfig
from iot_migration.models import (
    ConfigVersion,
    Device,
    DevicePage,
    config_history_payload,
)
from iot_migration.utils.logging import get_logger
from iot_migration.utils.retry import retry_api_call, retry_api_call_short

logger = get_logger(__name__)

# Fields requested from list endpoints; the default projection omits most of them
DEVICE_FIELD_MASK = (
    "blocked,credentials,lastErrorStatus,lastHeartbeatTime,lastEventTime,lastStateTime,"
    "lastConfigAckTime,lastConfigSendTime,lastErrorTime,config,state,logLevel,metadata,"
    "gatewayConfig"
)


class DeviceRegistry(Protocol):
    """Operations the migration engine needs from a device registry."""

    async def list_devices(
        self,
        page_token: str | None = None,
        gateway_id: str | None = None,
        gateway_type: str | None = None,
        page_size: int | None = None,
    ) -> DevicePage: ...

    async def get_device(self, device_id: str) -> Device: ...

    async def create_device(self, device: Device) -> Device: ...

    async def patch_device(self, device_id: str, device: Device, update_mask: str) -> Device: ...

    async def delete_device(self, device_id: str) -> None: ...

    async def list_config_versions(self, device_id: str) -> list[ConfigVersion]: ...

    async def list_bound_devices(self, gateway_id: str) -> list[Device]: ...

    async def bind_device_to_gateway(self, device_id: str, gateway_id: str) -> None: ...

    async def unbind_device_from_gateway(self, device_id: str, gateway_id: str) -> None: ...

    async def modify_cloud_to_device_config(
        self, device_id: str, binary_data: str, version_to_update: int = 0
    ) -> ConfigVersion: ...

    async def update_config_history(self, history: dict[str, list[ConfigVersion]]) -> None: ...


class RegistryClient(BaseAPIClient):
    """HTTP client for one device registry.

    Every call is retried on transient failures. Not-found and conflict
    responses are raised to the caller unchanged.
    """

    def __init__(
        self,
        config: RegistryConfig,
        performance: PerformanceConfig | None = None,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize registry client.

        Args:
            config: Registry connection configuration
            performance: Performance configuration (pool limits, rate limit, page size)
            log_payloads: Enable request/response payload logging
            max_payload_size: Maximum payload size to log
            transport: Optional httpx transport, mainly for tests
        """
        performance = performance or PerformanceConfig()
        self.config = config
        self.page_size = performance.page_size

        super().__init__(
            base_url=f"{config.url}/v1/{config.registry_path}",
            token=config.token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=performance.rate_limit,
            max_connections=performance.http_max_connections,
            max_keepalive_connections=performance.http_max_keepalive_connections,
            log_payloads=log_payloads,
            max_payload_size=max_payload_size,
            transport=transport,
        )

    @retry_api_call
    async def list_devices(
        self,
        page_token: str | None = None,
        gateway_id: str | None = None,
        gateway_type: str | None = None,
        page_size: int | None = None,
    ) -> DevicePage:
        """List one page of devices.

        Args:
            page_token: Token returned by the previous page
            gateway_id: Only devices bound to this gateway
            gateway_type: Only devices of this gateway type (GATEWAY or NON_GATEWAY)
            page_size: Devices per page (defaults to the configured page size)

        Returns:
            DevicePage with the devices and the next page token (None on the last page)
        """
        params: dict[str, Any] = {
            "pageSize": page_size or self.page_size,
            "fieldMask": DEVICE_FIELD_MASK,
        }
        if page_token:
            params["pageToken"] = page_token
        if gateway_id:
            params["gatewayListOptions.associationsGatewayId"] = gateway_id
        if gateway_type:
            params["gatewayListOptions.gatewayType"] = gateway_type

        data = await self.get("devices", params=params)

        devices = [Device.model_validate(d) for d in data.get("devices") or []]
        return DevicePage(devices=devices, next_page_token=data.get("nextPageToken") or None)

    @retry_api_call
    async def get_device(self, device_id: str) -> Device:
        data = await self.get(f"devices/{device_id}")
        return Device.model_validate(data)

    @retry_api_call
    async def create_device(self, device: Device) -> Device:
        data = await self.post("devices", json_data=device.to_api())
        return Device.model_validate(data) if data else device

    @retry_api_call
    async def patch_device(self, device_id: str, device: Device, update_mask: str) -> Device:
        data = await self.patch(
            f"devices/{device_id}",
            json_data=device.to_api(),
            params={"updateMask": update_mask},
        )
        return Device.model_validate(data) if data else device

    @retry_api_call
    async def delete_device(self, device_id: str) -> None:
        await self.delete(f"devices/{device_id}")

    @retry_api_call
    async def list_config_versions(self, device_id: str) -> list[ConfigVersion]:
        data = await self.get(f"devices/{device_id}/configVersions")
        return [ConfigVersion.model_validate(c) for c in data.get("deviceConfigs") or []]

    async def list_bound_devices(self, gateway_id: str) -> list[Device]:
        """List every device bound to a gateway, following pagination."""
        devices: list[Device] = []
        page_token: str | None = None

        while True:
            page = await self.list_devices(page_token=page_token, gateway_id=gateway_id)
            devices.extend(page.devices)
            if not page.next_page_token:
                break
            page_token = page.next_page_token

        return devices

    @retry_api_call
    async def bind_device_to_gateway(self, device_id: str, gateway_id: str) -> None:
        await self.post(
            f"{self.base_url}:bindDeviceToGateway",
            json_data={"deviceId": device_id, "gatewayId": gateway_id},
        )

    @retry_api_call
    async def unbind_device_from_gateway(self, device_id: str, gateway_id: str) -> None:
        await self.post(
            f"{self.base_url}:unbindDeviceFromGateway",
            json_data={"deviceId": device_id, "gatewayId": gateway_id},
        )

    @retry_api_call
    async def modify_cloud_to_device_config(
        self, device_id: str, binary_data: str, version_to_update: int = 0
    ) -> ConfigVersion:
        """Push a config to a device.

        ``version_to_update=0`` means unconditional.
        """
        data = await self.post(
            f"devices/{device_id}:modifyCloudToDeviceConfig",
            json_data={"versionToUpdate": str(version_to_update), "binaryData": binary_data},
        )
        return ConfigVersion.model_validate(data)

    @retry_api_call_short
    async def update_config_history(self, history: dict[str, list[ConfigVersion]]) -> None:
        """Write the collected config version history in one request.

        The code service answers 200 even when it fails and reports the
        failure under an ``error`` key.

        Raises:
            ConfigurationError: If the registry has no system key configured
            APIError: If the service reports an error or answers with a non-JSON body
        """
        if not self.config.system_key:
            raise ConfigurationError(
                "A system_key is required on the destination registry to migrate config history"
            )

        url = f"{self.config.url}/api/v/1/code/{self.config.system_key}/devicesConfigHistoryUpdate"
        data = await self.post(
            url,
            json_data=config_history_payload(history),
            headers={"ClearBlade-UserToken": self.token},
        )
        if data.get("error"):
            raise APIError(f"Config history update failed: {data['error']}", response=data)

        logger.info("config_history_updated", devices=len(history))

    async def validate_connectivity(self) -> bool:
        """Check the registry is reachable by listing a single device.

        Returns:
            True if the registry answered

        Raises:
            AuthenticationError: If the token is rejected
            NotFoundError: If the registry does not exist
        """
        await self.list_devices(page_size=1)
        logger.info("registry_reachable", registry=self.config.registry_path)
        return True
