"""Per-device failure collection and CSV reporting.

Item-level failures never abort a migration phase. They are collected here
and written to ``failed_devices_<timestamp>.csv`` at the end of the run, so
the operator can inspect or retry the affected devices.
"""

import csv
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)

FAILURES_FIELDNAMES = ["context", "error", "deviceId"]


@dataclass(frozen=True)
class ErrorLogEntry:
    """Record of one failed operation on one device."""

    context: str
    device_id: str
    error: str


class ErrorAggregator:
    """Thread-safe, append-only list of failures."""

    def __init__(self) -> None:
        self._entries: list[ErrorLogEntry] = []
        self._lock = threading.Lock()

    def add_error(self, context: str, device_id: str, error: Exception | str) -> ErrorLogEntry:
        entry = ErrorLogEntry(context=context, device_id=device_id, error=str(error))
        with self._lock:
            self._entries.append(entry)
        logger.warning("device_operation_failed", context=context, device_id=device_id, error=str(error))
        return entry

    def entries(self) -> list[ErrorLogEntry]:
        with self._lock:
            return list(self._entries)

    def by_context(self) -> dict[str, int]:
        """Count failures per context."""
        counts: dict[str, int] = {}
        for entry in self.entries():
            counts[entry.context] = counts.get(entry.context, 0) + 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __bool__(self) -> bool:
        return len(self) > 0

    def write_csv(self, directory: str | Path = ".", timestamp: datetime | None = None) -> Path | None:
        """Write the failures report.

        Args:
            directory: Directory to write the file into
            timestamp: Timestamp for the file name (defaults to now)

        Returns:
            Path of the written file, or None when there were no failures
        """
        entries = self.entries()
        if not entries:
            return None

        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = (timestamp or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
        path = directory / f"failed_devices_{stamp}.csv"

        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=FAILURES_FIELDNAMES)
            writer.writeheader()
            writer.writerows(
                {"context": e.context, "error": e.error, "deviceId": e.device_id} for e in entries
            )

        logger.info("failures_report_written", path=str(path), failures=len(entries))
        return path
