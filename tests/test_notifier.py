from datetime import datetime

import pytest
import requests

import notifier as notifier_module
from config import RecipientLists
from inventory import InventoryRecord, RestockEvent
from notifier import (
    CATEGORY_ERROR,
    CATEGORY_HEARTBEAT,
    CATEGORY_RESTOCK,
    EmailChannel,
    Notifier,
    SmsChannel,
    _chunk_text,
    build_error_message,
    build_heartbeat_message,
    build_restock_message,
    is_international_number,
)

RECIPIENTS = RecipientLists(
    default=("ops@example.com",),
    restock=("alerts@example.com", "buyer@example.com"),
    error=("oncall@example.com",),
)


class FakeResponse:
    def __init__(self, status_code=201, text="{}"):
        self.status_code = status_code
        self.text = text


class FakeSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.logged_in = None
        self.tls = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, message, to_addrs=None):
        self.sent.append((message, list(to_addrs or [])))


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(notifier_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def make_notifier(from_number="+15005550006", **kwargs):
    sms = SmsChannel(account_sid="AC123", auth_token="secret", from_number=from_number)
    email = EmailChannel(host="smtp.example.com", port=587, user="bot@example.com", password="pw")
    return Notifier(sms, email, RECIPIENTS, **kwargs)


def sent_emails():
    return [(msg, to) for smtp in FakeSMTP.instances for msg, to in smtp.sent]


def test_sms_delivery_uses_twilio_api(monkeypatch):
    calls = []

    def fake_post(url, data=None, auth=None, timeout=None):
        calls.append((url, data, auth))
        return FakeResponse(201)

    monkeypatch.setattr(notifier_module.requests, "post", fake_post)

    channel = make_notifier().notify("+919876543210", "Milk is back", CATEGORY_RESTOCK)

    assert channel == "sms"
    url, data, auth = calls[0]
    assert url.endswith("/Accounts/AC123/Messages.json")
    assert data == {"From": "+15005550006", "To": "+919876543210", "Body": "Milk is back"}
    assert auth == ("AC123", "secret")
    assert sent_emails() == []


def test_sender_without_plus_falls_back_to_category_email(monkeypatch):
    def must_not_post(*args, **kwargs):
        raise AssertionError("SMS must not be attempted with a misconfigured sender")

    monkeypatch.setattr(notifier_module.requests, "post", must_not_post)

    channel = make_notifier(from_number="15005550006").notify("+919876543210", "Milk is back", CATEGORY_RESTOCK)

    assert channel == "email"
    (message, to), = sent_emails()
    assert to == ["alerts@example.com", "buyer@example.com"]
    assert message["Subject"] == "Amul restock alert"
    assert "Milk is back" in message.get_payload(decode=True).decode("utf-8")


@pytest.mark.parametrize(
    "post",
    [
        lambda *a, **k: FakeResponse(400, '{"message": "invalid To"}'),
        lambda *a, **k: (_ for _ in ()).throw(requests.exceptions.ConnectionError("unreachable")),
    ],
    ids=["rejected", "unreachable"],
)
def test_sms_failure_falls_back_to_email(monkeypatch, post):
    monkeypatch.setattr(notifier_module.requests, "post", post)

    channel = make_notifier().notify("+919876543210", "Monitor failed", CATEGORY_ERROR)

    assert channel == "email"
    (_, to), = sent_emails()
    assert to == ["oncall@example.com"]


def test_heartbeat_uses_default_list_when_category_unset(monkeypatch):
    monkeypatch.setattr(notifier_module.requests, "post", lambda *a, **k: FakeResponse(500))

    assert make_notifier().notify("+919876543210", "alive", CATEGORY_HEARTBEAT) == "email"
    (_, to), = sent_emails()
    assert to == ["ops@example.com"]


def test_both_channels_failing_never_raises(monkeypatch):
    monkeypatch.setattr(notifier_module.requests, "post", lambda *a, **k: FakeResponse(503))
    FakeSMTP.fail_with = OSError("connection refused")

    assert make_notifier().notify("+919876543210", "Milk is back", CATEGORY_RESTOCK) == "none"


def test_unconfigured_sms_goes_straight_to_email(monkeypatch):
    monkeypatch.setattr(notifier_module.requests, "post", lambda *a, **k: pytest.fail("no SMS credentials"))
    notifier = Notifier(SmsChannel(), EmailChannel(host="smtp.example.com", sender="bot@example.com"), RECIPIENTS)

    assert notifier.notify("", "hello", CATEGORY_RESTOCK) == "email"


def test_dry_run_sends_nothing(monkeypatch):
    monkeypatch.setattr(notifier_module.requests, "post", lambda *a, **k: pytest.fail("dry run"))

    assert make_notifier(dry_run=True).notify("+919876543210", "hello", CATEGORY_RESTOCK) == "dry-run"
    assert sent_emails() == []


def test_email_login_and_tls(monkeypatch):
    channel = EmailChannel(host="smtp.example.com", user="bot@example.com", password="pw")

    assert channel.send(["a@example.com"], "subject", "body")
    smtp = FakeSMTP.instances[0]
    assert smtp.tls
    assert smtp.logged_in == ("bot@example.com", "pw")


def test_email_without_recipients_fails():
    channel = EmailChannel(host="smtp.example.com", sender="bot@example.com")
    assert channel.send([], "subject", "body") is False
    assert FakeSMTP.instances == []


@pytest.mark.parametrize("number, ok", [("+919876543210", True), ("919876543210", False), ("+0123", False), ("", False)])
def test_international_number_check(number, ok):
    assert is_international_number(number) is ok


def test_long_sms_is_chunked():
    text = "\n".join(f"line {i} " + "x" * 50 for i in range(100))
    chunks = _chunk_text(text, max_len=500)
    assert all(len(c) <= 500 for c in chunks)
    assert "".join(chunks).replace("\n", "") == text.replace("\n", "")


def test_message_builders():
    now = datetime(2025, 6, 1, 9, 0, 0)
    event = RestockEvent(alias="milk", name="Milk", previous_quantity=0, quantity=32)

    restock = build_restock_message(event, "https://shop.amul.com/en/product/milk", now=now)
    assert "Milk" in restock and "32" in restock and "https://shop.amul.com/en/product/milk" in restock

    heartbeat = build_heartbeat_message([InventoryRecord(alias="milk", quantity=0, name="Milk")], now=now)
    assert "Products tracked: 1" in heartbeat
    assert "- Milk: 0" in heartbeat

    error = build_error_message([("capture", "x" * 400)], log_file="logs/stock_watch.log", now=now)
    assert "Errors: 1" in error
    assert "..." in error
    assert "logs/stock_watch.log" in error


def test_partial_sms_delivery_does_not_repeat_by_email(monkeypatch):
    responses = [FakeResponse(201), FakeResponse(500)]
    monkeypatch.setattr(notifier_module.requests, "post", lambda *a, **k: responses.pop(0))
    long_message = "\n".join("x" * 100 for _ in range(30))

    channel = make_notifier().notify("+919876543210", long_message, CATEGORY_RESTOCK)

    assert channel == "sms"
    assert responses == []
    assert sent_emails() == []
