"""
Tests for the iot-bridge command line interface.

Tests cover:
- Configuration validation and exit codes
- Checkpoint show and clear
- Running a migration against in-memory registries
- Migration status
"""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from iot_migration.cli.context import MigrationContext
from iot_migration.cli.main import cli
from iot_migration.migration.checkpoint import CheckpointStore, MigrationPhase
from tests.conftest import FakeRegistry, make_device


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def config_file(tmp_path: Path, work_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("TEST_DST_TOKEN", "secret")
    registry = {
        "url": "https://iot.example.com",
        "project": "proj",
        "region": "us-central1",
    }
    data = {
        "source": {**registry, "registry": "src", "token": "src-token"},
        "destination": {
            **registry,
            "registry": "dst",
            "token": "${TEST_DST_TOKEN}",
            "system_key": "dst-key",
        },
        "performance": {"max_workers": 2},
        "state": {"work_dir": str(work_dir)},
        "logging": {"disable_progress": True},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def invoke(tmp_path: Path, config_file: Path):
    runner = CliRunner()

    def _invoke(*args: str, input: str | None = None):
        return runner.invoke(
            cli,
            ["--config", str(config_file), "--log-file", str(tmp_path / "cli.log"), *args],
            input=input,
        )

    return _invoke


@pytest.fixture
def registries(monkeypatch: pytest.MonkeyPatch) -> tuple[FakeRegistry, FakeRegistry]:
    source, destination = FakeRegistry(), FakeRegistry()
    monkeypatch.setattr(MigrationContext, "source_client", property(lambda self: source))
    monkeypatch.setattr(
        MigrationContext, "destination_client", property(lambda self: destination)
    )
    return source, destination


class TestConfigCommands:
    def test_validate(self, invoke):
        result = invoke("config", "validate")

        assert result.exit_code == 0, result.output
        assert "Configuration is valid" in result.output

    def test_missing_env_var_exits_with_config_error(self, invoke, monkeypatch):
        monkeypatch.delenv("TEST_DST_TOKEN")

        result = invoke("config", "validate")

        assert result.exit_code == 2

    def test_config_is_required(self, tmp_path, monkeypatch):
        monkeypatch.delenv("IOT_BRIDGE_CONFIG", raising=False)

        result = CliRunner().invoke(
            cli, ["--log-file", str(tmp_path / "cli.log"), "config", "validate"]
        )

        assert result.exit_code == 2


class TestCheckpointCommands:
    def test_show_without_checkpoint(self, invoke):
        result = invoke("checkpoint", "show")

        assert result.exit_code == 0
        assert "No checkpoint found" in result.output

    def test_show_json(self, invoke, work_dir):
        store = CheckpointStore.initialize(work_dir / "migration_checkpoint.json")
        store.add_fetched_device(make_device("a"))

        result = invoke("checkpoint", "show", "--json")

        assert result.exit_code == 0, result.output
        summary = json.loads(result.stdout)
        assert summary["fetched"] == 1
        assert summary["phase"] == "device_fetch"

    def test_clear_with_confirmation(self, invoke, work_dir):
        path = work_dir / "migration_checkpoint.json"
        CheckpointStore.initialize(path)

        declined = invoke("checkpoint", "clear", input="n\n")
        assert declined.exit_code == 1
        assert path.exists()

        result = invoke("checkpoint", "clear", "--yes")
        assert result.exit_code == 0
        assert not path.exists()


class TestMigrateCommands:
    def test_run(self, invoke, registries):
        source, destination = registries
        source.add(make_device("a"))
        source.add(make_device("b"))

        result = invoke("migrate", "run", "--no-progress")

        assert result.exit_code == 0, result.output
        assert "Migration complete!" in result.output
        assert set(destination.devices) == {"a", "b"}

    def test_run_with_flags_overriding_file(self, invoke, registries, work_dir):
        source, destination = registries
        for i in range(3):
            source.add(make_device(f"d{i}"))

        result = invoke("migrate", "run", "--export-batch-size", "2", "--no-config-history")

        assert result.exit_code == 0, result.output
        assert (work_dir / "batch_1.csv").exists()
        assert (work_dir / "batch_2.csv").exists()
        assert destination.calls == []

    def test_cleanup_prompt_can_be_declined(self, invoke, registries):
        source, destination = registries
        destination.add(make_device("keep"))

        result = invoke("migrate", "run", "--cleanup-destination", input="n\n")

        assert result.exit_code == 1
        assert "keep" in destination.devices
        assert destination.calls == []

    def test_per_device_failures_do_not_fail_the_command(self, invoke, registries):
        source, destination = registries
        source.add(make_device("a"))
        destination.fail("create_device", "a")

        result = invoke("migrate", "run")

        assert result.exit_code == 0, result.output
        assert "operation(s) failed" in result.output

    def test_status(self, invoke, work_dir):
        store = CheckpointStore.initialize(work_dir / "migration_checkpoint.json")
        store.add_fetched_device(make_device("a"))
        store.set_total_devices(4)
        store.set_phase(MigrationPhase.DEVICE_MIGRATE)
        store.add_migrated_device("a")

        result = invoke("migrate", "status")

        assert result.exit_code == 0, result.output
        assert "device_migrate" in result.output
        assert "25.0%" in result.output
