"""
Unit tests for CheckpointStore.

Tests cover:
- Fresh initialization and loading an existing checkpoint
- Corrupt checkpoint files
- Phase transitions and monotonicity
- Durability of every recorded unit of work
- Set-difference queries used for resume
- Device-set fingerprints guarding resume
- Completion deleting the file
"""

import json
from pathlib import Path

import pytest

from iot_migration.client.exceptions import CheckpointError
from iot_migration.migration.checkpoint import CheckpointStore, MigrationPhase, device_set_digest
from iot_migration.models import ConfigVersion, Device
from tests.conftest import make_device, make_gateway


class TestInitialize:
    def test_missing_file_loads_as_none(self, checkpoint_path: Path):
        assert CheckpointStore.load(checkpoint_path) is None

    def test_fresh_checkpoint_is_saved_immediately(self, checkpoint_path: Path):
        store = CheckpointStore.initialize(checkpoint_path, args={"skip_config": True})

        assert checkpoint_path.exists()
        assert store.resumed is False
        assert store.current_phase == MigrationPhase.DEVICE_FETCH

        data = json.loads(checkpoint_path.read_text())
        assert data["current_phase"] == "device_fetch"
        assert data["completed_phases"] == []
        assert data["args"] == {"skip_config": True}
        for key in (
            "start_time",
            "last_updated",
            "devices_fetched",
            "devices_migrated",
            "configs_processed",
            "config_history",
            "gateways_processed",
            "total_devices",
        ):
            assert key in data

    def test_existing_checkpoint_is_resumed(self, checkpoint_path: Path):
        store = CheckpointStore.initialize(checkpoint_path)
        store.add_fetched_device(make_device("a"))
        store.set_phase(MigrationPhase.DEVICE_MIGRATE)

        resumed = CheckpointStore.initialize(checkpoint_path)

        assert resumed.resumed is True
        assert resumed.current_phase == MigrationPhase.DEVICE_MIGRATE
        assert [d.id for d in resumed.get_fetched_devices()] == ["a"]

    def test_corrupt_file_raises(self, checkpoint_path: Path):
        checkpoint_path.parent.mkdir(parents=True)
        checkpoint_path.write_text("{not json")

        with pytest.raises(CheckpointError):
            CheckpointStore.load(checkpoint_path)

        with pytest.raises(CheckpointError):
            CheckpointStore.initialize(checkpoint_path)

    def test_unknown_phase_is_corrupt(self, checkpoint_path: Path):
        checkpoint_path.parent.mkdir(parents=True)
        checkpoint_path.write_text(json.dumps({"current_phase": "teleport"}))

        with pytest.raises(CheckpointError):
            CheckpointStore.load(checkpoint_path)

    def test_clear(self, checkpoint: CheckpointStore):
        assert CheckpointStore.clear(checkpoint.path) is True
        assert not checkpoint.path.exists()
        assert CheckpointStore.clear(checkpoint.path) is False


class TestPhases:
    def test_set_phase_records_previous_as_completed(self, checkpoint: CheckpointStore):
        checkpoint.set_phase(MigrationPhase.DEVICE_MIGRATE)

        assert checkpoint.is_phase_completed(MigrationPhase.DEVICE_FETCH)
        assert not checkpoint.is_phase_completed(MigrationPhase.DEVICE_MIGRATE)

    def test_setting_same_phase_does_not_complete_it(self, checkpoint: CheckpointStore):
        checkpoint.set_phase(MigrationPhase.DEVICE_FETCH)

        assert not checkpoint.is_phase_completed(MigrationPhase.DEVICE_FETCH)
        assert checkpoint.state.completed_phases == []

    def test_completed_phases_are_never_duplicated(self, checkpoint: CheckpointStore):
        checkpoint.set_phase(MigrationPhase.DEVICE_MIGRATE)
        checkpoint.set_phase(MigrationPhase.DEVICE_MIGRATE)
        checkpoint.set_phase(MigrationPhase.CONFIG_HISTORY)

        assert checkpoint.state.completed_phases == [
            MigrationPhase.DEVICE_FETCH,
            MigrationPhase.DEVICE_MIGRATE,
        ]

    def test_backward_transition_is_rejected(self, checkpoint: CheckpointStore):
        checkpoint.set_phase(MigrationPhase.CONFIG_HISTORY)

        with pytest.raises(CheckpointError):
            checkpoint.set_phase(MigrationPhase.DEVICE_FETCH)

        assert checkpoint.current_phase == MigrationPhase.CONFIG_HISTORY

    def test_phase_is_persisted(self, checkpoint: CheckpointStore):
        checkpoint.set_phase(MigrationPhase.GATEWAY_BINDING)

        reloaded = CheckpointStore.load(checkpoint.path)
        assert reloaded is not None
        assert reloaded.current_phase == MigrationPhase.GATEWAY_BINDING
        assert reloaded.is_phase_completed(MigrationPhase.DEVICE_FETCH)

    def test_complete_deletes_file(self, checkpoint: CheckpointStore):
        checkpoint.set_phase(MigrationPhase.GATEWAY_BINDING)
        checkpoint.complete()

        assert not checkpoint.path.exists()
        assert checkpoint.current_phase == MigrationPhase.COMPLETE
        assert checkpoint.is_phase_completed(MigrationPhase.GATEWAY_BINDING)
        assert checkpoint.is_phase_completed(MigrationPhase.COMPLETE)


class TestUnitsOfWork:
    def test_each_mutation_is_durable(self, checkpoint: CheckpointStore):
        device = make_device("a")
        checkpoint.add_fetched_device(device)
        checkpoint.add_migrated_device("a")
        checkpoint.add_processed_config("a", [ConfigVersion(version="3", binary_data="eA==")])
        checkpoint.add_processed_gateway("gw")
        checkpoint.set_total_devices(7)

        reloaded = CheckpointStore.load(checkpoint.path)
        assert reloaded is not None
        assert reloaded.get_fetched_devices()[0] == device
        assert reloaded.is_migrated("a")
        assert reloaded.get_config_history()["a"][0].version == "3"
        assert reloaded.state.gateways_processed == {"gw": True}
        assert reloaded.state.total_devices == 7

    def test_migrated_requires_fetched(self, checkpoint: CheckpointStore):
        with pytest.raises(CheckpointError):
            checkpoint.add_migrated_device("ghost")

        assert not checkpoint.is_migrated("ghost")

    def test_unknown_device_fields_survive_round_trip(self, checkpoint: CheckpointStore):
        device = Device.model_validate({**make_device("a").to_api(), "vendorExtra": {"x": 1}})
        checkpoint.add_fetched_device(device)

        reloaded = CheckpointStore.load(checkpoint.path)
        assert reloaded is not None
        assert reloaded.get_fetched_devices()[0].model_extra == {"vendorExtra": {"x": 1}}

    def test_no_temp_files_left_behind(self, checkpoint: CheckpointStore):
        for i in range(5):
            checkpoint.add_fetched_device(make_device(f"d{i}"))

        assert [p.name for p in checkpoint.path.parent.iterdir()] == [checkpoint.path.name]

    def test_listed_page_is_saved_once(self, checkpoint: CheckpointStore, monkeypatch):
        saves: list[int] = []
        original = checkpoint._save

        def counting_save() -> None:
            saves.append(1)
            original()

        monkeypatch.setattr(checkpoint, "_save", counting_save)

        checkpoint.add_fetched_devices([make_device(f"d{i}") for i in range(50)])

        assert len(saves) == 1
        reloaded = CheckpointStore.load(checkpoint.path)
        assert reloaded is not None
        assert len(reloaded.get_fetched_devices()) == 50


class TestDeviceSet:
    def test_digest_ignores_order_and_duplicates(self):
        assert device_set_digest(["b", "a", "a"]) == device_set_digest(["a", "b"])
        assert device_set_digest(["a"]) != device_set_digest(["a", "b"])
        assert device_set_digest(None) is None

    def test_matching_set_is_accepted(self, checkpoint_path: Path):
        digest = device_set_digest(["a", "b"])
        CheckpointStore.initialize(checkpoint_path, args={"device_set": digest})
        store = CheckpointStore.load(checkpoint_path)
        assert store is not None

        store.check_device_set(device_set_digest(["b", "a"]))

    def test_different_set_is_refused(self, checkpoint_path: Path):
        CheckpointStore.initialize(checkpoint_path, args={"device_set": device_set_digest(["a"])})
        store = CheckpointStore.load(checkpoint_path)
        assert store is not None

        with pytest.raises(CheckpointError, match="different set of devices"):
            store.check_device_set(device_set_digest(["b"]))
        with pytest.raises(CheckpointError):
            store.check_device_set(None)

    def test_checkpoint_without_recorded_set_is_a_whole_registry_run(
        self, checkpoint: CheckpointStore
    ):
        checkpoint.check_device_set(None)

        with pytest.raises(CheckpointError):
            checkpoint.check_device_set(device_set_digest(["a"]))


class TestQueries:
    def test_set_differences_preserve_input_order(self, checkpoint: CheckpointStore):
        devices = [make_device(i) for i in ("c", "a", "b")]
        checkpoint.add_fetched_device(devices[1])
        checkpoint.add_migrated_device("a")
        checkpoint.add_processed_config("c", [])

        assert checkpoint.get_unfetched_device_ids(["c", "a", "b"]) == ["c", "b"]
        assert [d.id for d in checkpoint.get_remaining_devices_for_migration(devices)] == ["c", "b"]
        assert [d.id for d in checkpoint.get_remaining_devices_for_config(devices)] == ["a", "b"]

    def test_unprocessed_gateways(self, checkpoint: CheckpointStore):
        bindings = {"g1": [make_device("x")], "g2": [], "g3": []}
        checkpoint.add_processed_gateway("g2")

        assert checkpoint.get_unprocessed_gateways(bindings) == ["g1", "g3"]

    def test_snapshots_are_copies(self, checkpoint: CheckpointStore):
        checkpoint.add_fetched_device(make_gateway("g"))
        checkpoint.add_processed_config("g", [ConfigVersion(version="1")])

        checkpoint.get_fetched_devices().clear()
        checkpoint.get_config_history()["g"].clear()

        assert len(checkpoint.get_fetched_devices()) == 1
        assert len(checkpoint.get_config_history()["g"]) == 1

    def test_summary(self, checkpoint: CheckpointStore):
        checkpoint.add_fetched_device(make_device("a"))
        checkpoint.add_fetched_device(make_device("b"))
        checkpoint.add_migrated_device("a")
        checkpoint.set_total_devices(2)

        summary = checkpoint.summary()
        assert summary["fetched"] == 2
        assert summary["migrated"] == 1
        assert summary["configs"] == 0
        assert summary["gateways"] == 0
        assert summary["total"] == 2
        assert summary["phase"] == "device_fetch"
