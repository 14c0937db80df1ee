"""
Amul restock notifier.

Sends alerts as text messages through the Twilio REST API and falls back to
email (SMTP) whenever the text message cannot be delivered.

Environment variables (see config.py):
- TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER (+<country><number>), SMS_TO
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, EMAIL_FROM
- EMAIL_TO, EMAIL_TO_RESTOCK, EMAIL_TO_HEARTBEAT, EMAIL_TO_ERROR
"""

from __future__ import annotations

import logging
import re
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from typing import Iterable, List, Optional, Sequence, Tuple

import requests

from config import RecipientLists, Settings
from inventory import InventoryRecord, RestockEvent

logger = logging.getLogger(__name__)

CATEGORY_RESTOCK = "restock"
CATEGORY_HEARTBEAT = "heartbeat"
CATEGORY_ERROR = "error"

SMS_MAX_MESSAGE_LEN = 1600
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")

SUBJECTS = {
    CATEGORY_RESTOCK: "Amul restock alert",
    CATEGORY_HEARTBEAT: "Amul stock monitor status",
    CATEGORY_ERROR: "Amul stock monitor error",
}


def is_international_number(number: str) -> bool:
    return bool(E164_RE.match((number or "").strip()))


def _chunk_text(text: str, max_len: int = SMS_MAX_MESSAGE_LEN) -> List[str]:
    if not text:
        return [""]
    if len(text) <= max_len:
        return [text]

    chunks: List[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break

        split_at = remaining.rfind("\n", 0, max_len)
        if split_at <= 0:
            split_at = max_len

        chunks.append(remaining[:split_at].rstrip())
        remaining = remaining[split_at:].lstrip()

    return chunks


class SmsChannel:
    def __init__(
        self,
        *,
        account_sid: str = "",
        auth_token: str = "",
        from_number: str = "",
        timeout: int = 10,
    ) -> None:
        self.account_sid = (account_sid or "").strip()
        self.auth_token = (auth_token or "").strip()
        self.from_number = (from_number or "").strip()
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, to: str, body: str) -> bool:
        if not self.enabled:
            logger.warning("SMS is not configured; skipping (requires TWILIO_ACCOUNT_SID + TWILIO_AUTH_TOKEN + TWILIO_FROM_NUMBER)")
            return False
        if not is_international_number(self.from_number):
            logger.error(f"TWILIO_FROM_NUMBER must be in international format (+<country><number>), got {self.from_number!r}; not sending")
            return False
        if not (to or "").strip():
            logger.warning("No SMS recipient configured (SMS_TO); skipping")
            return False

        url = TWILIO_MESSAGES_URL.format(sid=self.account_sid)
        chunks = _chunk_text(body)
        for idx, chunk in enumerate(chunks):
            payload = {"From": self.from_number, "To": to.strip(), "Body": chunk}
            error = ""
            try:
                resp = requests.post(url, data=payload, auth=(self.account_sid, self.auth_token), timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                error = f"error={e}"
            else:
                if resp.status_code not in (200, 201):
                    error = f"status={resp.status_code} body={resp.text[:500]}"
            if error:
                if idx == 0:
                    logger.error(f"SMS send failed: to={to} {error}")
                    return False
                # Earlier parts were delivered; no email fallback.
                logger.warning(f"SMS partially delivered: to={to} sent={idx}/{len(chunks)} parts, {error}")
                return True
        logger.info(f"SMS sent to {to}")
        return True


class EmailChannel:
    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str = "",
        use_tls: bool = True,
        timeout: int = 20,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.use_tls = use_tls
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.sender)

    def send(self, recipients: Sequence[str], subject: str, body: str) -> bool:
        if not self.enabled:
            logger.error("Email is not configured; set SMTP_HOST and EMAIL_FROM/SMTP_USER")
            return False
        recipients = [r for r in recipients if r]
        if not recipients:
            logger.error(f"No email recipients for '{subject}'; set EMAIL_TO or a category list")
            return False

        message = MIMEText(body, "plain", "utf-8")
        message["From"] = self.sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(message, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed: to={recipients} error={e}")
            return False

        logger.info(f"Email sent to {', '.join(recipients)}: {subject}")
        return True


class Notifier:
    """Text message first, email to the category's recipients as fallback."""

    def __init__(
        self,
        sms: SmsChannel,
        email: EmailChannel,
        recipients: RecipientLists,
        *,
        dry_run: bool = False,
    ) -> None:
        self.sms = sms
        self.email = email
        self.recipients = recipients
        self.dry_run = dry_run

    @classmethod
    def from_settings(cls, settings: Settings) -> "Notifier":
        return cls(
            SmsChannel(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
            ),
            EmailChannel(
                host=settings.smtp_host,
                port=settings.smtp_port,
                user=settings.smtp_user,
                password=settings.smtp_password,
                sender=settings.email_from,
                use_tls=settings.smtp_use_tls,
            ),
            settings.recipients,
            dry_run=settings.dry_run,
        )

    def notify(self, recipient: str, message: str, category: str = CATEGORY_RESTOCK) -> str:
        """Deliver `message`. Returns "sms", "email", "dry-run" or "none"; never raises."""
        if self.dry_run:
            logger.info(f"dry-run: not sending {category} notification:\n{message}")
            return "dry-run"

        try:
            if self.sms.send(recipient, message):
                return "sms"
        except Exception:
            logger.exception("Unexpected SMS failure")

        emails = self.recipients.for_category(category)
        logger.info(f"Falling back to email for {category} notification ({len(emails)} recipient(s))")
        try:
            if self.email.send(emails, SUBJECTS.get(category, SUBJECTS[CATEGORY_RESTOCK]), message):
                return "email"
        except Exception:
            logger.exception("Unexpected email failure")

        logger.error(f"Could not deliver {category} notification through any channel")
        return "none"


def _now_local_str(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")


def build_restock_message(event: RestockEvent, product_url: str = "", *, now: Optional[datetime] = None) -> str:
    lines = [
        f"🥛 Back in stock: {event.name}",
        f"Quantity: {event.quantity} (was {event.previous_quantity})",
        f"Time: {_now_local_str(now)}",
    ]
    if product_url:
        lines.append(product_url)
    return "\n".join(lines)


def build_heartbeat_message(
    snapshot: Iterable[InventoryRecord],
    product_url: str = "",
    *,
    now: Optional[datetime] = None,
) -> str:
    records = list(snapshot)
    lines = [
        "✅ Amul stock monitor is running",
        f"Time: {_now_local_str(now)}",
        f"Products tracked: {len(records)}",
    ]
    for r in records[:10]:
        lines.append(f"- {r.name}: {r.quantity}")
    if product_url:
        lines.append(product_url)
    return "\n".join(lines)


def build_error_message(errors: Sequence[Tuple[str, str]], *, log_file: str = "", now: Optional[datetime] = None) -> str:
    lines: List[str] = []
    lines.append("⚠️ Amul stock monitor error")
    lines.append(f"Time: {_now_local_str(now)}")
    lines.append(f"Errors: {len(errors)}")
    lines.append("")

    for context, message in list(errors)[:10]:
        msg = " ".join(str(message).split())
        if len(msg) > 300:
            msg = msg[:297] + "..."
        lines.append(f"- {context}: {msg}")

    lines.append("")
    lines.append("Possible causes: network issues, bot protection, or site changes.")
    if log_file:
        lines.append(f"Log: {log_file}")
    return "\n".join(lines).rstrip()
