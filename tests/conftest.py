from __future__ import annotations

import base64
import dataclasses
import json
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

import pytest

from config import RecipientLists, Settings
from snapshot_store import SnapshotStore

API_PATTERN = "/api/1/entity/ms.products?fields"
LISTING_URL = "https://shop.amul.com/api/1/entity/ms.products?fields[name]=1&q=milk"


def perf_entry(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"level": "INFO", "message": json.dumps({"message": {"method": method, "params": params}}), "timestamp": 0}


def listing_body(*items: Tuple[str, Any, str]) -> str:
    return json.dumps({"data": [{"alias": a, "inventory_quantity": q, "name": n} for a, q, n in items]})


class FakeDriver:
    """Stands in for a Chrome webdriver: performance log + Network.getResponseBody."""

    def __init__(self) -> None:
        self.log: List[Dict[str, Any]] = []
        self.bodies: Dict[str, Dict[str, Any]] = {}
        self.quit_calls = 0
        self.visited: List[str] = []

    def add_response(
        self,
        request_id: str,
        url: str,
        body: str,
        *,
        status: int = 200,
        finished: bool = True,
        failed: bool = False,
        base64_encoded: bool = False,
    ) -> None:
        self.log.append(perf_entry("Network.responseReceived", {"requestId": request_id, "response": {"url": url, "status": status}}))
        if base64_encoded:
            self.bodies[request_id] = {"body": base64.b64encode(body.encode("utf-8")).decode("ascii"), "base64Encoded": True}
        else:
            self.bodies[request_id] = {"body": body, "base64Encoded": False}
        if failed:
            self.log.append(perf_entry("Network.loadingFailed", {"requestId": request_id}))
        elif finished:
            self.log.append(perf_entry("Network.loadingFinished", {"requestId": request_id}))

    def get_log(self, kind: str) -> List[Dict[str, Any]]:
        assert kind == "performance"
        entries, self.log = self.log, []
        return entries

    def execute_cdp_cmd(self, cmd: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if cmd == "Network.getResponseBody":
            return self.bodies[params["requestId"]]
        return {}

    def quit(self) -> None:
        self.quit_calls += 1


class FakeSession:
    """Browser session whose page load replays a scripted set of listing responses."""

    def __init__(self, driver: FakeDriver, responses: List[Tuple[str, str]]) -> None:
        self.driver = driver
        self.responses = responses
        self.scrolls = 0

    def goto(self, url: str) -> None:
        self.driver.visited.append(url)
        for idx, (response_url, body) in enumerate(self.responses):
            self.driver.add_response(f"req-{idx}", response_url, body)

    def wait_for_selector(self, selector: str, timeout: float) -> bool:
        return False

    def fill(self, selector: str, value: str) -> None:
        raise AssertionError("pincode prompt is not shown by the fake page")

    def click(self, selector: str) -> None:
        raise AssertionError("pincode prompt is not shown by the fake page")

    def scroll_step(self, distance: int) -> bool:
        self.scrolls += 1
        return self.scrolls >= 3

    def wait_for_ready(self, timeout: float) -> bool:
        return True


class ScriptedBrowser:
    """Session factory: each cycle pops the next list of responses (or an exception)."""

    def __init__(self, cycles: List[Any]) -> None:
        self.cycles = list(cycles)
        self.opened = 0
        self.closed = 0
        self.drivers: List[FakeDriver] = []

    @contextmanager
    def __call__(self, profile: Any):
        self.opened += 1
        script = self.cycles.pop(0) if self.cycles else []
        if isinstance(script, Exception):
            raise script
        driver = FakeDriver()
        self.drivers.append(driver)
        try:
            yield FakeSession(driver, script)
        finally:
            self.closed += 1


class RecordingNotifier:
    def __init__(self, channel: str = "sms") -> None:
        self.calls: List[Tuple[str, str, str]] = []
        self.channel = channel

    def notify(self, recipient: str, message: str, category: str = "restock") -> str:
        self.calls.append((recipient, message, category))
        return self.channel

    def categories(self) -> List[str]:
        return [c for _, _, c in self.calls]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        responses_dir=str(tmp_path / "responses"),
        api_pattern=API_PATTERN,
        settle_seconds=1.0,
        scroll_pause_seconds=0.0,
        poll_interval_seconds=1.0,
        sms_to="+919999999999",
        recipients=RecipientLists(default=("ops@example.com",)),
        log_file="",
    )


@pytest.fixture
def store(settings) -> SnapshotStore:
    return SnapshotStore(settings.responses_dir)


@pytest.fixture
def make_settings(settings):
    def factory(**changes: Any) -> Settings:
        return dataclasses.replace(settings, **changes)

    return factory
