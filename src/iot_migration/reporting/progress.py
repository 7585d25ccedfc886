"""Progress tracking for migration runs.

This module provides progress bars using tqdm: one bar for the overall run
and one per phase counting devices (or gateways) as they are processed.
"""

import threading
from typing import Any

from tqdm import tqdm

from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


class ProgressTracker:
    """Tracks and displays migration progress.

    Phase drivers call :meth:`start_phase` with the number of items they are
    about to process (``None`` while paginating an unknown total), then
    :meth:`update` once per finished item from their worker tasks.
    """

    def __init__(self, total_phases: int = 4, enable: bool = True):
        """Initialize progress tracker.

        Args:
            total_phases: Number of phases shown on the overall bar
            enable: Whether to display progress bars (False for CI/automation)
        """
        self.total_phases = total_phases
        self.enable = enable
        self.phase_bar: tqdm | None = None
        self.item_bar: tqdm | None = None
        self.current_phase = 0
        self._lock = threading.Lock()

        self.stats = {
            "phases_completed": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
        }

        if self.enable:
            self.phase_bar = tqdm(
                total=total_phases,
                desc="Migration Progress",
                unit="phase",
                position=0,
                leave=True,
                bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}]",
            )

    def start_phase(self, phase_name: str, total: int | None = None, unit: str = "device") -> None:
        """Start tracking a new phase.

        Args:
            phase_name: Name shown next to the bar
            total: Items in this phase, None if unknown
            unit: Item unit shown by tqdm
        """
        self.current_phase += 1

        if self.enable:
            if self.item_bar:
                self.item_bar.close()
            self.item_bar = tqdm(
                total=total,
                desc=f"  {phase_name}",
                unit=unit,
                position=1,
                leave=False,
            )

        logger.info(
            "phase_started",
            phase_name=phase_name,
            phase_number=self.current_phase,
            total=total,
        )

    def set_total(self, total: int) -> None:
        """Set the total of the current phase once it becomes known."""
        if self.enable and self.item_bar:
            self.item_bar.total = total
            self.item_bar.refresh()

    def update(self, succeeded: int = 0, failed: int = 0, skipped: int = 0) -> None:
        """Record finished items. Safe to call from concurrent workers."""
        with self._lock:
            self.stats["succeeded"] += succeeded
            self.stats["failed"] += failed
            self.stats["skipped"] += skipped

            if self.enable and self.item_bar:
                count = succeeded + failed + skipped
                if count > 0:
                    self.item_bar.update(count)
                    self.item_bar.set_postfix(failed=self.stats["failed"], refresh=False)

    def complete_phase(self) -> None:
        """Mark current phase as completed."""
        self.stats["phases_completed"] += 1

        if self.enable:
            if self.item_bar:
                self.item_bar.close()
                self.item_bar = None
            if self.phase_bar:
                self.phase_bar.update(1)

        logger.info("phase_completed", phase_number=self.current_phase)

    def get_stats(self) -> dict[str, int]:
        return self.stats.copy()

    def close(self) -> None:
        """Close all progress bars."""
        if self.enable:
            if self.item_bar:
                self.item_bar.close()
                self.item_bar = None
            if self.phase_bar:
                self.phase_bar.close()
                self.phase_bar = None

        logger.debug("progress_tracker_closed", final_stats=self.stats)

    def __enter__(self) -> "ProgressTracker":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
