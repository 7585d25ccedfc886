"""
Unit tests for registry models.

Tests cover:
- camelCase payload parsing and serialization
- Preservation of unknown fields
- Deriving the destination copy of a device
- Config history request body
"""

from iot_migration.models import (
    ConfigVersion,
    Device,
    config_history_payload,
    to_destination_device,
)
from tests.conftest import make_device, make_gateway


class TestDevice:
    def test_parses_registry_payload(self):
        device = Device.model_validate(
            {
                "id": "a",
                "numId": 42,
                "logLevel": "DEBUG",
                "gatewayConfig": {"gatewayType": "GATEWAY", "gatewayAuthMethod": "DEVICE_AUTH_TOKEN_ONLY"},
                "credentials": [{"publicKey": {"format": "ES256_PEM", "key": "k"}}],
            }
        )

        assert device.num_id == "42"
        assert device.log_level == "DEBUG"
        assert device.is_gateway
        assert device.credentials[0].public_key.format == "ES256_PEM"

    def test_to_api_uses_camel_case_and_drops_nulls(self):
        data = make_device("a").to_api()

        assert data["logLevel"] == "INFO"
        assert data["gatewayConfig"] == {"gatewayType": "NON_GATEWAY"}
        assert "lastHeartbeatTime" not in data
        assert "log_level" not in data

    def test_unknown_fields_round_trip(self):
        device = Device.model_validate({"id": "a", "futureField": {"nested": [1, 2]}})

        assert device.to_api()["futureField"] == {"nested": [1, 2]}

    def test_is_gateway(self):
        assert make_gateway("g").is_gateway
        assert not make_device("d").is_gateway
        assert not Device(id="bare").is_gateway


class TestDestinationDevice:
    def test_name_reset_and_credentials_kept(self):
        source = make_device("a")

        copy = to_destination_device(source, update_public_keys=True)

        assert copy.name == "a"
        assert copy.credentials == source.credentials
        assert copy.credentials[0] is not source.credentials[0]

    def test_credentials_dropped(self):
        source = make_device("a")

        copy = to_destination_device(source, update_public_keys=False)

        assert copy.credentials == []
        assert source.credentials
        assert source.name.endswith("/devices/a")


class TestConfigVersion:
    def test_numeric_version_is_coerced(self):
        assert ConfigVersion.model_validate({"version": 7}).version == "7"

    def test_history_payload(self):
        payload = config_history_payload(
            {
                "a": [
                    ConfigVersion(version="2", binary_data="Yg==", device_ack_time="t2"),
                    ConfigVersion(version="1"),
                ],
                "b": [],
            }
        )

        assert payload == {
            "configs": {
                "a": {
                    "2": {"cloudUpdateTime": "", "deviceAckTime": "t2", "binaryData": "Yg=="},
                    "1": {"cloudUpdateTime": "", "deviceAckTime": "", "binaryData": ""},
                },
                "b": {},
            }
        }
