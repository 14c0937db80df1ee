from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "response_"
SNAPSHOT_SUFFIX = ".json"


def sanitize_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    iso = now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return re.sub(r"[:.]", "-", iso)


class SnapshotStore:
    """One JSON file per intercepted listing response, in a single directory."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def exists(self) -> bool:
        return self.directory.is_dir()

    def ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def clear(self) -> int:
        if not self.exists():
            logger.info("No previous files to delete")
            return 0

        files = [p for p in self.directory.iterdir() if p.is_file()]
        logger.info(f"Found {len(files)} previous response files, deleting...")
        deleted = 0
        for path in files:
            try:
                path.unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not delete {path.name}: {e}")
        if deleted:
            logger.info(f"Deleted {deleted} previous response files")
        return deleted

    def write(self, payload: Any, seq: int, now: Optional[datetime] = None) -> Path:
        self.ensure_dir()
        path = self.directory / f"{SNAPSHOT_PREFIX}{seq}_{sanitize_timestamp(now)}{SNAPSHOT_SUFFIX}"
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
        return path

    def read_all(self) -> List[Dict[str, Any]]:
        if not self.exists():
            return []

        items: List[Dict[str, Any]] = []
        for path in sorted(self.directory.glob(f"*{SNAPSHOT_SUFFIX}")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Error parsing {path.name}: {e}")
                continue
            if isinstance(data, list):
                items.extend(d for d in data if isinstance(d, dict))
            elif isinstance(data, dict):
                items.append(data)
        return items
