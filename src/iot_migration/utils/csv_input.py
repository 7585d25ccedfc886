"""Reading device ID lists from CSV files."""

import csv
from pathlib import Path

from iot_migration.client.exceptions import ConfigurationError

DEVICE_ID_COLUMN = "deviceId"


def read_device_ids_csv(path: str | Path) -> list[str]:
    """Read device IDs from the ``deviceId`` column of a CSV file.

    Blank cells are skipped and duplicates dropped, keeping first-seen order.

    Raises:
        ConfigurationError: If the file is missing or has no deviceId column
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Devices CSV file not found: {path}")

    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        fieldnames = [name.strip() for name in reader.fieldnames or []]
        if DEVICE_ID_COLUMN not in fieldnames:
            raise ConfigurationError(
                f"Devices CSV file {path} must have a '{DEVICE_ID_COLUMN}' header column"
            )
        reader.fieldnames = fieldnames

        seen: set[str] = set()
        device_ids: list[str] = []
        for row in reader:
            device_id = (row.get(DEVICE_ID_COLUMN) or "").strip()
            if device_id and device_id not in seen:
                seen.add(device_id)
                device_ids.append(device_id)

    return device_ids
