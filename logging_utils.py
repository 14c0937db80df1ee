from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

# Browser driver and HTTP client internals log every request at DEBUG/INFO.
NOISY_LOGGERS = (
    "selenium",
    "urllib3",
    "undetected_chromedriver",
    "uc",
    "werkzeug",
)


def setup_logging(
    *,
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    root = logging.getLogger()

    # Called by every entrypoint (and again by the unified runner).
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    root.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            rotating = RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            logging.getLogger(__name__).error(f"Cannot open log file {log_file}: {e}; logging to console only")
        else:
            rotating.setFormatter(formatter)
            root.addHandler(rotating)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
