"""
Runtime configuration for the Amul restock monitor.

Everything is read from environment variables (optionally via a `.env` file)
once at startup and handed to the components as a frozen `Settings` value.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_PRODUCT_ALIAS = "amul-high-protein-milk-250-ml-or-pack-of-32"
DEFAULT_API_PATTERN = "/api/1/entity/ms.products?fields"
DEFAULT_PINCODE = "500084"
DEFAULT_RESPONSES_DIR = "responses"
DEFAULT_LOG_FILE = os.path.join("logs", "stock_watch.log")
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/137.0.0.0 Safari/537.36"
)

# Flags needed to run Chrome inside a restricted container.
CONTAINER_BROWSER_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--single-process",
)


def parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except Exception:
        return default


def parse_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return default


def parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if not text:
        return default
    if text in {"1", "true", "yes", "on", "y"}:
        return True
    if text in {"0", "false", "no", "off", "n"}:
        return False
    return default


def split_csv(value: Optional[str]) -> List[str]:
    parts: List[str] = []
    for raw in (value or "").replace("\n", ",").split(","):
        item = raw.strip()
        if item:
            parts.append(item)
    return parts


@dataclass(frozen=True)
class RecipientLists:
    """Email recipients per notification category, with a shared fallback."""

    default: Tuple[str, ...] = ()
    restock: Tuple[str, ...] = ()
    heartbeat: Tuple[str, ...] = ()
    error: Tuple[str, ...] = ()

    def for_category(self, category: str) -> List[str]:
        specific = {"restock": self.restock, "heartbeat": self.heartbeat, "error": self.error}.get(category)
        return list(specific or self.default)


@dataclass(frozen=True)
class Settings:
    # deployment profile
    production: bool = False
    headless: bool = False
    browser_args: Tuple[str, ...] = ()
    use_undetected_chrome: bool = True
    chrome_version_main: Optional[int] = None
    user_agent: str = DEFAULT_USER_AGENT

    # target
    product_alias: str = DEFAULT_PRODUCT_ALIAS
    product_url: str = f"https://shop.amul.com/en/product/{DEFAULT_PRODUCT_ALIAS}"
    api_pattern: str = DEFAULT_API_PATTERN
    pincode: str = DEFAULT_PINCODE

    # timing
    poll_interval_seconds: float = 180.0
    settle_seconds: float = 5.0
    location_timeout_seconds: float = 10.0
    suggestion_timeout_seconds: float = 5.0
    page_load_timeout_seconds: int = 60
    scroll_max_steps: int = 40
    scroll_step_px: int = 200
    scroll_pause_seconds: float = 0.2

    responses_dir: str = DEFAULT_RESPONSES_DIR

    # text-message provider
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    sms_to: str = ""

    # email provider
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_from: str = ""
    smtp_use_tls: bool = True
    recipients: RecipientLists = field(default_factory=RecipientLists)

    notify_on_errors: bool = True
    error_repeat_interval_seconds: int = 3600
    dry_run: bool = False

    port: int = 3001
    demo_mode: bool = False

    log_level: str = "INFO"
    log_file: str = DEFAULT_LOG_FILE

    @property
    def profile_name(self) -> str:
        return "production" if self.production else "development"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Resolve `Settings` from `env` (defaults to the process environment)."""
    if env is None:
        load_dotenv()
        env = os.environ

    production = bool(env.get("RAILWAY_ENVIRONMENT") or env.get("RENDER"))
    headless = parse_bool(env.get("HEADLESS"), production)

    if env.get("BROWSER_ARGS") is not None:
        browser_args = tuple(split_csv(env.get("BROWSER_ARGS")))
    else:
        browser_args = CONTAINER_BROWSER_ARGS if production else ()

    chrome_version = env.get("CHROME_VERSION_MAIN")
    chrome_version_main = int(chrome_version) if chrome_version and chrome_version.isdigit() else None

    product_alias = (env.get("PRODUCT_ALIAS") or DEFAULT_PRODUCT_ALIAS).strip()
    product_url = (env.get("PRODUCT_URL") or f"https://shop.amul.com/en/product/{product_alias}").strip()

    smtp_user = (env.get("SMTP_USER") or "").strip()

    recipients = RecipientLists(
        default=tuple(split_csv(env.get("EMAIL_TO"))),
        restock=tuple(split_csv(env.get("EMAIL_TO_RESTOCK"))),
        heartbeat=tuple(split_csv(env.get("EMAIL_TO_HEARTBEAT"))),
        error=tuple(split_csv(env.get("EMAIL_TO_ERROR"))),
    )

    demo_mode = env.get("RENDER") == "true" or parse_bool(env.get("DEMO_MODE"), False)

    return Settings(
        production=production,
        headless=headless,
        browser_args=browser_args,
        use_undetected_chrome=parse_bool(env.get("USE_UNDETECTED_CHROME"), True),
        chrome_version_main=chrome_version_main,
        user_agent=(env.get("USER_AGENT") or DEFAULT_USER_AGENT).strip(),
        product_alias=product_alias,
        product_url=product_url,
        api_pattern=env.get("API_PATTERN") or DEFAULT_API_PATTERN,
        pincode=(env.get("PINCODE") or DEFAULT_PINCODE).strip(),
        poll_interval_seconds=max(1.0, parse_float(env.get("POLL_INTERVAL_SECONDS"), 180.0)),
        settle_seconds=max(0.0, parse_float(env.get("SETTLE_SECONDS"), 5.0)),
        location_timeout_seconds=parse_float(env.get("LOCATION_TIMEOUT_SECONDS"), 10.0),
        suggestion_timeout_seconds=parse_float(env.get("SUGGESTION_TIMEOUT_SECONDS"), 5.0),
        page_load_timeout_seconds=parse_int(env.get("PAGE_LOAD_TIMEOUT_SECONDS"), 60),
        scroll_max_steps=max(0, parse_int(env.get("SCROLL_MAX_STEPS"), 40)),
        scroll_step_px=parse_int(env.get("SCROLL_STEP_PX"), 200),
        scroll_pause_seconds=max(0.0, parse_float(env.get("SCROLL_PAUSE_SECONDS"), 0.2)),
        responses_dir=env.get("RESPONSES_DIR") or DEFAULT_RESPONSES_DIR,
        twilio_account_sid=(env.get("TWILIO_ACCOUNT_SID") or "").strip(),
        twilio_auth_token=(env.get("TWILIO_AUTH_TOKEN") or "").strip(),
        twilio_from_number=(env.get("TWILIO_FROM_NUMBER") or "").strip(),
        sms_to=(env.get("SMS_TO") or "").strip(),
        smtp_host=(env.get("SMTP_HOST") or "").strip(),
        smtp_port=parse_int(env.get("SMTP_PORT"), 587),
        smtp_user=smtp_user,
        smtp_password=env.get("SMTP_PASSWORD") or "",
        email_from=(env.get("EMAIL_FROM") or smtp_user).strip(),
        smtp_use_tls=parse_bool(env.get("SMTP_USE_TLS"), True),
        recipients=recipients,
        notify_on_errors=parse_bool(env.get("NOTIFY_ON_ERRORS"), True),
        error_repeat_interval_seconds=max(0, parse_int(env.get("ERROR_REPEAT_INTERVAL_SECONDS"), 3600)),
        dry_run=parse_bool(env.get("DRY_RUN"), False),
        port=parse_int(env.get("PORT"), 3001),
        demo_mode=demo_mode,
        log_level=(env.get("LOG_LEVEL") or "INFO").strip(),
        log_file=env.get("LOG_FILE") if env.get("LOG_FILE") is not None else DEFAULT_LOG_FILE,
    )
