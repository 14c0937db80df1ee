#!/usr/bin/env python3
"""
Amul product page: browser-driven restock watcher.

Every poll cycle opens Chrome on the product page, sets the delivery pincode,
scrolls to trigger lazy-loaded content and captures the product listing API
responses the page makes. The captured inventory is compared with the previous
cycle and a notification is sent for every item that went from 0 to a positive
quantity. The very first completed cycle sends a single heartbeat instead.

Example:
  # one cycle, log only
  python3 stock_watch.py --once --dry-run

  # run every 3 minutes until interrupted
  python3 stock_watch.py --interval 180

Configuration comes from environment variables (see config.py); a `.env`
file in the working directory is loaded automatically.
"""

from __future__ import annotations

import argparse
import dataclasses
import hashlib
import logging
import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, List, Optional, Sequence, Tuple

from selenium.common.exceptions import TimeoutException

from browser_session import BrowserProfile, BrowserSession, apply_location, open_session, scroll_to_bottom
from config import Settings, load_settings
from inventory import RestockEvent, Snapshot, detect_restocks
from logging_utils import setup_logging
from notifier import (
    CATEGORY_ERROR,
    CATEGORY_HEARTBEAT,
    CATEGORY_RESTOCK,
    Notifier,
    build_error_message,
    build_heartbeat_message,
    build_restock_message,
)
from response_interceptor import ResponseInterceptor
from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SETTLE_POLL_SECONDS = 0.5

SessionFactory = Callable[[BrowserProfile], ContextManager[BrowserSession]]


@dataclass(frozen=True)
class CycleState:
    previous: Snapshot = ()
    completed_cycles: int = 0
    error_signature: str = ""
    error_notified_at: Optional[datetime] = None


@dataclass
class CycleResult:
    run: int
    ok: bool = False
    skipped: bool = False
    snapshot: Snapshot = ()
    restocks: List[RestockEvent] = field(default_factory=list)
    heartbeat_sent: bool = False
    errors: List[Tuple[str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0


def compute_error_signature(errors: Sequence[Tuple[str, str]], *, max_items: int = 20) -> str:
    h = hashlib.sha1()
    for context, message in list(errors)[: max(1, max_items)]:
        h.update(str(context).encode("utf-8", errors="ignore"))
        h.update(b"\n")
        h.update(str(message).encode("utf-8", errors="ignore"))
        h.update(b"\n")
    return h.hexdigest()


def should_send_error_notification(
    state: CycleState,
    *,
    signature: str,
    repeat_interval_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    if state.error_signature != signature:
        return True
    if repeat_interval_seconds <= 0 or state.error_notified_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return (now - state.error_notified_at).total_seconds() >= repeat_interval_seconds


def prepare_workspace(store: SnapshotStore) -> bool:
    try:
        store.ensure_dir()
        return True
    except OSError as e:
        logger.critical(f"Cannot create responses directory {store.directory}: {e}; the schedule will still run")
        return False


class StockMonitor:
    def __init__(
        self,
        settings: Settings,
        notifier: Notifier,
        store: SnapshotStore,
        *,
        session_factory: SessionFactory = open_session,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.notifier = notifier
        self.store = store
        self.profile = BrowserProfile.from_settings(settings)
        self.session_factory = session_factory
        self.sleep = sleep
        self.state = CycleState()
        self.run_count = 0
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "StockMonitor":
        return cls(settings, Notifier.from_settings(settings), SnapshotStore(settings.responses_dir))

    def run_cycle(self) -> CycleResult:
        """Run one poll cycle. Never raises; failures are logged and reported."""
        if not self._lock.acquire(blocking=False):
            logger.warning("Previous cycle is still running; skipping this run")
            return CycleResult(run=self.run_count, skipped=True)
        try:
            self.run_count += 1
            return self._run_cycle(self.run_count)
        finally:
            self._lock.release()

    def _run_cycle(self, run: int) -> CycleResult:
        started = time.monotonic()
        logger.info(f"=== Starting run #{run} at {datetime.now().strftime('%H:%M:%S')} ({self.settings.profile_name}) ===")
        result = CycleResult(run=run)
        phase = "cleaning"

        try:
            try:
                self.store.clear()
            except OSError as e:
                logger.warning(f"Could not clean previous response files: {e}")

            interceptor = ResponseInterceptor(
                self.store,
                api_pattern=self.settings.api_pattern,
                fallback_alias=self.settings.product_alias,
            )

            phase = "session"
            with self.session_factory(self.profile) as session:
                phase = "extracting"
                self._extract(session, interceptor)
                phase = "settling"
                self._settle(session, interceptor)

            result.snapshot = tuple(interceptor.records)
            logger.info(f"Done: captured {interceptor.response_count} API response(s), {len(result.snapshot)} record(s)")
            result.errors.extend(self._capture_problems(interceptor))

            phase = "comparing"
            self._compare_and_notify(result)

            self.state = dataclasses.replace(
                self.state,
                previous=result.snapshot,
                completed_cycles=self.state.completed_cycles + 1,
            )
            result.ok = True
        except Exception as e:
            logger.error(f"Run #{run} failed while {phase}: {e}", exc_info=True)
            result.errors.append((f"cycle ({phase})", f"{e.__class__.__name__}: {e}"))

        if result.errors:
            self._report_errors(result.errors)

        result.duration_seconds = time.monotonic() - started
        status = "ok" if result.ok else "failed"
        logger.info(f"=== Finished run #{run} ({status}) in {result.duration_seconds:.1f}s ===")
        return result

    def _extract(self, session: BrowserSession, interceptor: ResponseInterceptor) -> None:
        settings = self.settings
        driver = session.driver

        logger.info(f"Opening product page: {settings.product_url}")
        try:
            session.goto(settings.product_url)
        except TimeoutException:
            logger.warning(f"Page load exceeded {settings.page_load_timeout_seconds}s; continuing with what has loaded")
        interceptor.drain(driver)

        apply_location(
            session,
            settings.pincode,
            input_timeout=settings.location_timeout_seconds,
            suggestion_timeout=settings.suggestion_timeout_seconds,
        )
        interceptor.drain(driver)

        steps = scroll_to_bottom(
            session,
            max_steps=settings.scroll_max_steps,
            distance=settings.scroll_step_px,
            pause_seconds=settings.scroll_pause_seconds,
            on_step=lambda: interceptor.drain(driver),
            sleep=self.sleep,
        )
        logger.debug(f"Scrolled {steps} step(s)")

    def _settle(self, session: BrowserSession, interceptor: ResponseInterceptor) -> None:
        # Responses may still be arriving; keep collecting until the settle time is up.
        remaining = self.settings.settle_seconds
        while remaining > 0:
            step = min(SETTLE_POLL_SECONDS, remaining)
            self.sleep(step)
            remaining -= step
            interceptor.drain(session.driver)
        interceptor.flush(session.driver)

    def _capture_problems(self, interceptor: ResponseInterceptor) -> List[Tuple[str, str]]:
        problems: List[Tuple[str, str]] = []
        if interceptor.response_count == 0:
            problems.append(("capture", f"No responses matching {self.settings.api_pattern} (possible blocking or site change)"))
        if interceptor.parse_errors:
            problems.append(("capture", f"{interceptor.parse_errors} response(s) could not be parsed"))
        if interceptor.anomalies:
            problems.append(("capture", f"{interceptor.anomalies} response(s) had an unexpected structure"))
        return problems

    def _compare_and_notify(self, result: CycleResult) -> None:
        settings = self.settings

        if self.state.completed_cycles == 0:
            logger.info("First completed cycle: sending heartbeat instead of comparing")
            channel = self.notifier.notify(
                settings.sms_to,
                build_heartbeat_message(result.snapshot, settings.product_url),
                CATEGORY_HEARTBEAT,
            )
            result.heartbeat_sent = channel != "none"
            return

        result.restocks = list(detect_restocks(result.snapshot, self.state.previous))
        if not result.restocks:
            logger.info("No restock events (0 -> in stock)")
            return

        logger.info(f"Restock events: {len(result.restocks)}")
        for event in result.restocks:
            logger.info(f"- {event.name} ({event.alias}): {event.previous_quantity} -> {event.quantity}")
            self.notifier.notify(settings.sms_to, build_restock_message(event, settings.product_url), CATEGORY_RESTOCK)

    def _report_errors(self, errors: List[Tuple[str, str]]) -> None:
        logger.info(f"Errors: {len(errors)}")
        for context, msg in errors[:10]:
            logger.info(f"- {context}: {msg}")

        if not self.settings.notify_on_errors:
            return

        signature = compute_error_signature(errors)
        if not should_send_error_notification(
            self.state,
            signature=signature,
            repeat_interval_seconds=self.settings.error_repeat_interval_seconds,
        ):
            logger.info("Same errors already reported recently; skipping error notification")
            return

        text = build_error_message(errors, log_file=self.settings.log_file)
        channel = self.notifier.notify(self.settings.sms_to, text, CATEGORY_ERROR)
        if channel != "none":
            self.state = dataclasses.replace(
                self.state,
                error_signature=signature,
                error_notified_at=datetime.now(timezone.utc),
            )

    def run_forever(self, stop_event: Optional[threading.Event] = None, *, max_cycles: Optional[int] = None) -> None:
        """Run a cycle now, then every poll interval (measured from cycle start).

        A cycle that outlasts the interval is followed immediately by the next
        one; cycles never overlap.
        """
        stop_event = stop_event or threading.Event()
        interval = self.settings.poll_interval_seconds
        cycles = 0
        logger.info(f"Scheduled to run every {interval:.0f}s. Press Ctrl+C to stop.")

        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Unexpected error escaped the poll cycle")
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            wait = interval - (time.monotonic() - started)
            if wait <= 0:
                logger.warning(f"Cycle took longer than the {interval:.0f}s interval; starting the next one now")
                wait = 0
            else:
                logger.info(f"Next run in {wait:.0f}s")
            stop_event.wait(wait)

        logger.info("Stock watcher stopped")


def install_signal_handlers(stop_event: threading.Event) -> None:
    def handler(signum: int, frame: Any) -> None:
        logger.info("Received shutdown signal. Stopping after the current cycle...")
        stop_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    changes: dict = {}
    if getattr(args, "dry_run", False):
        changes["dry_run"] = True
    if getattr(args, "interval", None):
        changes["poll_interval_seconds"] = max(1.0, float(args.interval))
    if getattr(args, "log_level", None):
        changes["log_level"] = args.log_level
    if getattr(args, "log_file", None) is not None:
        changes["log_file"] = args.log_file
    if getattr(args, "show_browser", False):
        changes["headless"] = False
    return dataclasses.replace(settings, **changes) if changes else settings


def add_watch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dry-run", action="store_true", help="Run and log only; do not send notifications")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between cycle starts (default: POLL_INTERVAL_SECONDS or 180)")
    parser.add_argument("--log-level", type=str, default=None, help="Log level (DEBUG/INFO/WARNING/ERROR)")
    parser.add_argument("--log-file", type=str, default=None, help="Log file path ('' disables file logging)")
    parser.add_argument("--show-browser", action="store_true", help="Show the browser window even in production")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Amul product page restock watcher")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    add_watch_arguments(parser)
    args = parser.parse_args(argv)

    settings = apply_cli_overrides(load_settings(), args)
    setup_logging(level=settings.log_level, log_file=settings.log_file)

    monitor = StockMonitor.from_settings(settings)
    prepare_workspace(monitor.store)

    if args.once:
        result = monitor.run_cycle()
        return 0 if result.ok else 1

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    monitor.run_forever(stop_event)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
