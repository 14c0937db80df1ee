#!/usr/bin/env python3
"""
Unified entrypoint: runs the restock watcher and the inventory query API in
one process (the shape used by single-container deployments).

The watcher runs in a background thread; the API is served in the foreground
on PORT. Configuration is read from the environment (see config.py).
"""

from __future__ import annotations

import argparse
import logging
import threading
from typing import Optional, Sequence

from api_server import create_app
from config import load_settings
from logging_utils import setup_logging
from stock_watch import StockMonitor, add_watch_arguments, apply_cli_overrides, install_signal_handlers, prepare_workspace

logger = logging.getLogger(__name__)

WATCHER_SHUTDOWN_TIMEOUT_SECONDS = 120.0


def start_watcher_thread(monitor: StockMonitor, stop_event: threading.Event) -> threading.Thread:
    thread = threading.Thread(
        target=monitor.run_forever,
        args=(stop_event,),
        name="stock-watch",
        daemon=True,
    )
    thread.start()
    return thread


def stop_watcher(
    stop_event: threading.Event,
    watcher: threading.Thread,
    timeout: float = WATCHER_SHUTDOWN_TIMEOUT_SECONDS,
) -> bool:
    """Ask the watcher to stop and wait for its current cycle to close the browser."""
    stop_event.set()
    if watcher.is_alive():
        logger.info("Waiting for the current watcher cycle to finish...")
    watcher.join(timeout)
    if watcher.is_alive():
        logger.warning(f"Watcher did not stop within {timeout:.0f}s; exiting anyway")
        return False
    return True


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Amul restock watcher + inventory API")
    parser.add_argument("--host", default="0.0.0.0", help="API listen address")
    parser.add_argument("--port", type=int, default=None, help="API listen port (default: PORT or 3001)")
    parser.add_argument("--no-api", action="store_true", help="Run only the watcher")
    add_watch_arguments(parser)
    args = parser.parse_args(argv)

    settings = apply_cli_overrides(load_settings(), args)
    setup_logging(level=settings.log_level, log_file=settings.log_file)

    monitor = StockMonitor.from_settings(settings)
    prepare_workspace(monitor.store)

    stop_event = threading.Event()

    if args.no_api:
        install_signal_handlers(stop_event)
        monitor.run_forever(stop_event)
        return 0

    watcher = start_watcher_thread(monitor, stop_event)
    port = args.port or settings.port
    app = create_app(monitor.store, demo_mode=settings.demo_mode)
    logger.info(f"API Server running at http://{args.host}:{port}")
    try:
        app.run(host=args.host, port=port, use_reloader=False)
    except OSError as e:
        logger.error(f"Cannot listen on port {port}: {e}; watcher keeps running")
        try:
            watcher.join()
        except KeyboardInterrupt:
            pass
    finally:
        stop_watcher(stop_event, watcher)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
