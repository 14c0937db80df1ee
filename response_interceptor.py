"""
Captures the product listing API responses a page makes while it loads.

Chrome reports network activity through the DevTools performance log. Each
`drain()` call reads whatever events arrived since the previous call, keeps the
responses whose URL contains the configured API fragment, and once Chrome
reports the body as finished, fetches it with `Network.getResponseBody`.

Every matching response is normalized to inventory records, written to the
snapshot store as its own file, and only then appended to `records`.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from inventory import InventoryRecord, records_from_payload
from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class PendingResponse:
    url: str
    status: int


class ResponseInterceptor:
    def __init__(
        self,
        store: SnapshotStore,
        *,
        api_pattern: str,
        fallback_alias: str,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.api_pattern = api_pattern
        self.fallback_alias = fallback_alias
        self.clock = clock
        self.records: List[InventoryRecord] = []
        self.response_count = 0
        self.parse_errors = 0
        self.anomalies = 0
        self._pending: Dict[str, PendingResponse] = {}

    def matches(self, url: str) -> bool:
        return bool(url) and self.api_pattern in url

    def handle_response(self, url: str, status: int, body: Any) -> List[InventoryRecord]:
        if not self.matches(url):
            return []

        self.response_count += 1
        seq = self.response_count
        logger.info(f"[#{seq}] {status} {url}")

        try:
            payload = json.loads(body) if isinstance(body, (str, bytes, bytearray)) else body
        except ValueError:
            self.parse_errors += 1
            logger.warning(f"  [#{seq}] non-JSON or parse error; response ignored")
            return []

        now = self.clock() if self.clock else None
        try:
            records = records_from_payload(payload, fallback_alias=self.fallback_alias, now=now)
        except Exception as e:
            self.parse_errors += 1
            logger.warning(f"  [#{seq}] could not normalize response: {e.__class__.__name__}: {e}; response ignored")
            return []
        if any(r.error for r in records):
            self.anomalies += 1
            logger.warning(f"  [#{seq}] unexpected response shape; stored placeholder record")

        document: Any = [r.to_dict() for r in records]
        if len(records) == 1 and records[0].error:
            document = records[0].to_dict()

        try:
            path = self.store.write(document, seq, now=now)
            logger.info(f"  Saved inventory data to: {path.name}")
        except OSError as e:
            logger.error(f"  [#{seq}] could not persist response: {e}")

        self.records.extend(records)
        for r in records:
            logger.info(f"  {r.alias}: inventory_quantity={r.quantity}")
        return records

    def drain(self, driver: Any) -> int:
        """Process new DevTools events. Returns the number of records added."""
        try:
            entries = driver.get_log("performance")
        except Exception as e:
            logger.warning(f"Could not read browser performance log: {e}")
            return 0

        before = len(self.records)
        for entry in entries:
            try:
                message = json.loads(entry["message"])["message"]
            except (KeyError, TypeError, ValueError):
                continue
            method = message.get("method")
            params = message.get("params") or {}
            request_id = params.get("requestId")
            if not request_id:
                continue

            if method == "Network.responseReceived":
                response = params.get("response") or {}
                url = str(response.get("url") or "")
                if self.matches(url):
                    self._pending[request_id] = PendingResponse(url=url, status=int(response.get("status") or 0))
            elif method == "Network.loadingFinished":
                pending = self._pending.pop(request_id, None)
                if pending is not None:
                    self._process_pending(driver, request_id, pending)
            elif method == "Network.loadingFailed":
                pending = self._pending.pop(request_id, None)
                if pending is not None:
                    logger.warning(f"Listing request failed before completing: {pending.url}")
        return len(self.records) - before

    def flush(self, driver: Any) -> int:
        """Final drain; also tries responses whose completion event never arrived."""
        added = self.drain(driver)
        before = len(self.records)
        for request_id, pending in list(self._pending.items()):
            self._process_pending(driver, request_id, pending)
        self._pending.clear()
        return added + len(self.records) - before

    def _process_pending(self, driver: Any, request_id: str, pending: PendingResponse) -> None:
        try:
            result = driver.execute_cdp_cmd("Network.getResponseBody", {"requestId": request_id})
        except Exception as e:
            logger.warning(f"Could not read response body for {pending.url}: {e}")
            return

        body = result.get("body", "") if isinstance(result, dict) else ""
        if isinstance(result, dict) and result.get("base64Encoded"):
            try:
                body = base64.b64decode(body).decode("utf-8", errors="replace")
            except ValueError:
                body = ""
        self.handle_response(pending.url, pending.status, body)
