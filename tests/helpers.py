"""Shared test helper functions for Convoy tests.

Payload builders and fakes used by conftest.py and individual test files.
These are NOT fixtures - they are regular functions and classes.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import threading
from typing import Any

from convoy.notifications.notifier import Notification

PHONE_A = "111000111"
ACCOUNT_A = "waba-a"
SECRET_A = "secret-a"
TOKEN_A = "verify-a"

PHONE_B = "222000222"
ACCOUNT_B = "waba-b"
SECRET_B = "secret-b"

CONTACT = "+15551230000"
CONTACT_DIGITS = "15551230000"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Notifier that keeps every published notification."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.published: list[Notification] = []

    def publish(self, notification: Notification) -> None:
        with self._lock:
            self.published.append(notification)

    def types(self) -> list[str]:
        with self._lock:
            return [n.type for n in self.published]


class ExplodingNotifier:
    """Notifier whose publish always fails; ingestion must not care."""

    def __init__(self) -> None:
        self.calls = 0

    def publish(self, notification: Notification) -> None:
        self.calls += 1
        raise RuntimeError("downstream down")


def sign(body: bytes, secret: str) -> str:
    """X-Hub-Signature-256 value for body."""
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def to_body(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def envelope(*entries: dict[str, Any], obj: str = "whatsapp_business_account") -> dict[str, Any]:
    return {"object": obj, "entry": list(entries)}


def entry(account_id: str | None, *changes: dict[str, Any], time: int | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {"changes": list(changes)}
    if account_id is not None:
        data["id"] = account_id
    if time is not None:
        data["time"] = time
    return data


def messages_change(
    phone_number_id: str = PHONE_A,
    *,
    messages: list[dict[str, Any]] | None = None,
    statuses: list[dict[str, Any]] | None = None,
    contacts: list[dict[str, Any]] | None = None,
    field: str | None = "messages",
) -> dict[str, Any]:
    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "15550000000", "phone_number_id": phone_number_id},
    }
    if contacts is not None:
        value["contacts"] = contacts
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    change: dict[str, Any] = {"value": value}
    if field is not None:
        change["field"] = field
    return change


def text_message(
    external_id: str = "m1",
    body: str = "Hi",
    sender: str = CONTACT,
    timestamp: int = 1704067200,
) -> dict[str, Any]:
    return {
        "from": sender,
        "id": external_id,
        "timestamp": str(timestamp),
        "type": "text",
        "text": {"body": body},
    }


def reaction_message(
    target: str = "m1",
    emoji: str = "👍",
    sender: str = CONTACT,
    external_id: str = "r1",
    timestamp: int = 1704067300,
) -> dict[str, Any]:
    return {
        "from": sender,
        "id": external_id,
        "timestamp": str(timestamp),
        "type": "reaction",
        "reaction": {"message_id": target, "emoji": emoji},
    }


def status(
    external_id: str = "m1",
    value: str = "delivered",
    timestamp: int = 1704067400,
    recipient: str = CONTACT_DIGITS,
    **extra: Any,
) -> dict[str, Any]:
    data = {
        "id": external_id,
        "status": value,
        "timestamp": str(timestamp),
        "recipient_id": recipient,
    }
    data.update(extra)
    return data


def contact_profile(wa_id: str = CONTACT_DIGITS, name: str = "Ana") -> dict[str, Any]:
    return {"wa_id": wa_id, "profile": {"name": name}}
