"""Export fetched device IDs to CSV batches.

Each ``batch_N.csv`` has a ``deviceId`` header and can be passed back as the
devices CSV of a later run, so a large registry can be migrated in slices.
"""

import csv
from collections.abc import Sequence
from pathlib import Path

from iot_migration.models import Device
from iot_migration.utils.csv_input import DEVICE_ID_COLUMN
from iot_migration.utils.logging import get_logger

logger = get_logger(__name__)


def export_device_batches(
    devices: Sequence[Device], batch_size: int, output_dir: str | Path
) -> list[Path]:
    """Write device IDs to ``batch_1.csv`` ... ``batch_N.csv``.

    Args:
        devices: Devices to export, in order
        batch_size: Maximum device IDs per file
        output_dir: Directory the files are written to

    Returns:
        Paths of the written files

    Raises:
        ValueError: If batch_size is not positive
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths: list[Path] = []
    for index, start in enumerate(range(0, len(devices), batch_size), start=1):
        path = output_dir / f"batch_{index}.csv"
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([DEVICE_ID_COLUMN])
            writer.writerows([d.id] for d in devices[start : start + batch_size])
        paths.append(path)

    logger.info(
        "device_batches_exported",
        devices=len(devices),
        batch_size=batch_size,
        files=len(paths),
        output_dir=str(output_dir),
    )
    return paths
