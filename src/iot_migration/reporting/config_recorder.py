"""Audit log of the config histories read from the source registry.

One row is appended per device as its history is fetched, so the data
survives after the checkpoint file is deleted at the end of the run.
Rows are ``;``-separated with columns ``deviceId,config,error``; ``config``
holds the versions as a JSON array.
"""

import csv
import json
import threading
from pathlib import Path
from typing import Any, TextIO

from iot_migration.models import ConfigVersion
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_HISTORY_FILENAME = "deviceConfigs.csv"
CONFIG_HISTORY_FIELDNAMES = ["deviceId", "config", "error"]


class ConfigHistoryRecorder:
    """Appends fetched config histories, or fetch errors, to a CSV file.

    Usage:
        with ConfigHistoryRecorder(work_dir / CONFIG_HISTORY_FILENAME) as recorder:
            recorder.record("dev-1", versions)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.path.exists() or self.path.stat().st_size == 0

        self._file: TextIO = open(self.path, "a", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(
            self._file, fieldnames=CONFIG_HISTORY_FIELDNAMES, delimiter=";"
        )
        self._lock = threading.Lock()
        if new_file:
            self._writer.writeheader()

    def _write(self, device_id: str, config: str, error: str) -> None:
        with self._lock:
            self._writer.writerow({"deviceId": device_id, "config": config, "error": error})
            self._file.flush()

    def record(self, device_id: str, versions: list[ConfigVersion]) -> None:
        payload = json.dumps([v.to_api() for v in versions])
        self._write(device_id, payload, "")

    def record_error(self, device_id: str, error: Exception | str) -> None:
        self._write(device_id, "", str(error))

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()
        logger.debug("config_history_recorder_closed", path=str(self.path))

    def __enter__(self) -> "ConfigHistoryRecorder":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
