"""Conversation aggregate - per (tenant, contact) document.

The aggregate is a plain mutable dataclass tree. Stores load it under a lock,
mutate it through ``convoy.conversations.aggregate`` and write it back, and
serialize it to JSON-compatible dicts for JSONB columns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal

from convoy.infra.time import parse_iso, to_iso
from convoy.whatsapp.content import Content, content_from_dict

WINDOW_DURATION = timedelta(hours=24)

Direction = Literal["incoming", "outgoing"]
ConversationStatus = Literal["active", "archived", "closed"]


class Outcome(str, Enum):
    """Result of an aggregate operation. None of these are errors."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    TARGET_NOT_FOUND = "target_not_found"
    UNCHANGED = "unchanged"


@dataclass
class ReactionEntry:
    reactor: str
    emoji: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"reactor": self.reactor, "emoji": self.emoji, "timestamp": to_iso(self.timestamp)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReactionEntry:
        return cls(reactor=data["reactor"], emoji=data["emoji"], timestamp=parse_iso(data["timestamp"]))


@dataclass
class Message:
    """Embedded message entry, unique by external_id within a conversation."""

    external_id: str
    direction: Direction
    type: str
    content: Content
    timestamp: datetime
    status: str = "delivered"
    status_timestamps: dict[str, str] = field(default_factory=dict)
    reactions: list[ReactionEntry] = field(default_factory=list)
    error: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        return self.content.text

    def reaction_by(self, reactor: str) -> ReactionEntry | None:
        for entry in self.reactions:
            if entry.reactor == reactor:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "external_id": self.external_id,
            "direction": self.direction,
            "type": self.type,
            "content": self.content.to_dict(),
            "timestamp": to_iso(self.timestamp),
            "status": self.status,
            "status_timestamps": dict(self.status_timestamps),
            "reactions": [r.to_dict() for r in self.reactions],
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            external_id=data["external_id"],
            direction=data["direction"],
            type=data["type"],
            content=content_from_dict(data["content"]),
            timestamp=parse_iso(data["timestamp"]),
            status=data.get("status", "delivered"),
            status_timestamps=dict(data.get("status_timestamps") or {}),
            reactions=[ReactionEntry.from_dict(r) for r in data.get("reactions") or []],
            error=data.get("error"),
        )


@dataclass
class ProfileChange:
    field: str
    old: str | None
    new: str | None
    changed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old": self.old, "new": self.new, "changed_at": to_iso(self.changed_at)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProfileChange:
        return cls(
            field=data["field"],
            old=data.get("old"),
            new=data.get("new"),
            changed_at=parse_iso(data["changed_at"]),
        )


@dataclass
class Contact:
    address: str
    name: str | None = None
    photo: str | None = None
    about: str | None = None
    history: list[ProfileChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "photo": self.photo,
            "about": self.about,
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contact:
        return cls(
            address=data["address"],
            name=data.get("name"),
            photo=data.get("photo"),
            about=data.get("about"),
            history=[ProfileChange.from_dict(h) for h in data.get("history") or []],
        )


@dataclass
class Window:
    """Customer-service window; tracked, not enforced."""

    is_open: bool = False
    opened_at: datetime | None = None
    expires_at: datetime | None = None
    category: str | None = None

    def is_open_at(self, when: datetime) -> bool:
        return self.is_open and self.expires_at is not None and when < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_open": self.is_open,
            "opened_at": to_iso(self.opened_at),
            "expires_at": to_iso(self.expires_at),
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Window:
        return cls(
            is_open=bool(data.get("is_open")),
            opened_at=parse_iso(data.get("opened_at")),
            expires_at=parse_iso(data.get("expires_at")),
            category=data.get("category"),
        )


@dataclass
class Metrics:
    """Monotonic counters."""

    total_messages: int = 0
    incoming_messages: int = 0
    outgoing_messages: int = 0
    windows_opened: int = 0
    unread_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_messages": self.total_messages,
            "incoming_messages": self.incoming_messages,
            "outgoing_messages": self.outgoing_messages,
            "windows_opened": self.windows_opened,
            "unread_count": self.unread_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metrics:
        return cls(**{k: int(data.get(k, 0)) for k in cls.__dataclass_fields__})


@dataclass
class LastMessage:
    external_id: str
    text: str
    type: str
    direction: Direction

    def to_dict(self) -> dict[str, Any]:
        return {"external_id": self.external_id, "text": self.text, "type": self.type, "direction": self.direction}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LastMessage:
        return cls(**{k: data[k] for k in cls.__dataclass_fields__})


@dataclass
class Conversation:
    """Aggregate root keyed by (tenant_id, contact.address)."""

    id: str
    tenant_id: str
    contact: Contact
    messages: list[Message] = field(default_factory=list)
    last_message: LastMessage | None = None
    last_message_at: datetime | None = None
    window: Window = field(default_factory=Window)
    metrics: Metrics = field(default_factory=Metrics)
    status: ConversationStatus = "active"
    is_deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def find_message(self, external_id: str) -> Message | None:
        for message in self.messages:
            if message.external_id == external_id:
                return message
        return None

    def has_message(self, external_id: str) -> bool:
        return self.find_message(external_id) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "contact": self.contact.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
            "last_message": self.last_message.to_dict() if self.last_message else None,
            "last_message_at": to_iso(self.last_message_at),
            "window": self.window.to_dict(),
            "metrics": self.metrics.to_dict(),
            "status": self.status,
            "is_deleted": self.is_deleted,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        last = data.get("last_message")
        return cls(
            id=str(data["id"]),
            tenant_id=str(data["tenant_id"]),
            contact=Contact.from_dict(data["contact"]),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            last_message=LastMessage.from_dict(last) if last else None,
            last_message_at=parse_iso(data.get("last_message_at")),
            window=Window.from_dict(data.get("window") or {}),
            metrics=Metrics.from_dict(data.get("metrics") or {}),
            status=data.get("status", "active"),
            is_deleted=bool(data.get("is_deleted", False)),
            created_at=parse_iso(data.get("created_at")),
            updated_at=parse_iso(data.get("updated_at")),
        )
