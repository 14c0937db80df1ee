"""
Inventory records, response normalization and restock detection.

The product listing endpoint returns `{"data": [{"alias": ..., "inventory_quantity": ...,
"name": ...}, ...]}`. Each element becomes one `InventoryRecord`; the set of records
seen during one poll cycle is a snapshot, and two consecutive snapshots are
compared to find items that went from 0 to a positive quantity.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

UNKNOWN_NAME = "Unknown"
UNKNOWN_QUANTITY = "unknown"
QUANTITY_NOT_FOUND = "not found in response"
SHAPE_ERROR = "Expected data structure not found"

Quantity = Union[int, str]


def utc_now_iso(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_quantity(value: Any) -> Quantity:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return UNKNOWN_QUANTITY
        return max(0, int(value))
    if isinstance(value, str):
        try:
            return max(0, int(float(value.strip())))
        except (ValueError, OverflowError):
            return UNKNOWN_QUANTITY
    return UNKNOWN_QUANTITY


def is_known_quantity(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class InventoryRecord:
    alias: str
    quantity: Quantity
    name: str = UNKNOWN_NAME
    timestamp: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "alias": self.alias,
            "inventory_quantity": self.quantity,
            "name": self.name,
            "timestamp": self.timestamp,
        }
        if self.error:
            data["error"] = self.error
        return data


Snapshot = Tuple[InventoryRecord, ...]


def records_from_payload(
    payload: Any,
    *,
    fallback_alias: str,
    now: Optional[datetime] = None,
) -> List[InventoryRecord]:
    """Map one parsed listing response to records.

    An unexpected shape yields a single placeholder record carrying an `error`
    so that the anomaly is visible in the stored snapshot.
    """
    timestamp = utc_now_iso(now)
    items = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        return [
            InventoryRecord(
                alias=fallback_alias,
                quantity=QUANTITY_NOT_FOUND,
                name=UNKNOWN_NAME,
                timestamp=timestamp,
                error=SHAPE_ERROR,
            )
        ]

    records: List[InventoryRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        alias = item.get("alias")
        if not alias:
            continue
        records.append(
            InventoryRecord(
                alias=str(alias),
                quantity=normalize_quantity(item.get("inventory_quantity")),
                name=str(item.get("name") or UNKNOWN_NAME),
                timestamp=timestamp,
            )
        )
    return records


@dataclass(frozen=True)
class RestockEvent:
    alias: str
    name: str
    previous_quantity: int
    quantity: int


def detect_restocks(current: Iterable[InventoryRecord], previous: Iterable[InventoryRecord]) -> Iterator[RestockEvent]:
    """Yield an event for every item whose quantity went from exactly 0 to > 0.

    Items missing from `previous` never qualify. Duplicate aliases in
    `previous` resolve to the last occurrence.
    """
    previous_by_alias: Dict[str, InventoryRecord] = {}
    for record in previous:
        if record.alias:
            previous_by_alias[record.alias] = record

    for record in current:
        if not record.alias:
            continue
        before = previous_by_alias.get(record.alias)
        if before is None:
            continue
        if not (is_known_quantity(before.quantity) and is_known_quantity(record.quantity)):
            continue
        if before.quantity == 0 and record.quantity > 0:
            yield RestockEvent(
                alias=record.alias,
                name=record.name,
                previous_quantity=before.quantity,
                quantity=record.quantity,
            )


def _timestamp_sort_key(item: Dict[str, Any]) -> float:
    parsed = parse_iso_datetime(item.get("timestamp"))
    return parsed.timestamp() if parsed else 0.0


def unique_latest(items: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Newest entry per alias, newest first. Entries without an alias are dropped."""
    ordered = sorted((i for i in items if isinstance(i, dict)), key=_timestamp_sort_key, reverse=True)
    seen: Dict[str, Dict[str, Any]] = {}
    for item in ordered:
        alias = item.get("alias")
        if not alias:
            continue
        if alias not in seen:
            seen[alias] = item
    return list(seen.values())
