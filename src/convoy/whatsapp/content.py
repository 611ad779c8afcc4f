"""Normalized message content - a closed union over message types.

Every variant carries ``text``, the human-readable summary used for
conversation previews. Variants serialize to plain dicts for JSONB storage
and back via ``content_from_dict``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Union

MEDIA_TYPES = ("image", "video", "audio", "document", "sticker")


@dataclass(frozen=True)
class ReplyContext:
    """Back-reference carried by a reply."""

    quoted_external_id: str
    quoted_sender: str | None = None


@dataclass(frozen=True, kw_only=True)
class _BaseContent:
    type: str
    text: str
    context: ReplyContext | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.context is None:
            data.pop("context")
        return data


@dataclass(frozen=True, kw_only=True)
class TextContent(_BaseContent):
    type: str = "text"
    preview_url: bool = False


@dataclass(frozen=True, kw_only=True)
class MediaContent(_BaseContent):
    """image / video / audio / document / sticker.

    ``media_id`` is the platform media handle; retrieval happens elsewhere.
    """

    media_id: str | None = None
    media_url: str | None = None
    mime_type: str | None = None
    sha256: str | None = None
    caption: str | None = None
    filename: str | None = None
    voice: bool = False


@dataclass(frozen=True, kw_only=True)
class LocationContent(_BaseContent):
    type: str = "location"
    latitude: float | None = None
    longitude: float | None = None
    name: str | None = None
    address: str | None = None


@dataclass(frozen=True, kw_only=True)
class ContactsContent(_BaseContent):
    type: str = "contacts"
    contacts: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["contacts"] = list(self.contacts)
        return data


@dataclass(frozen=True, kw_only=True)
class ButtonReplyContent(_BaseContent):
    """Quick-reply button tap (interactive.button_reply or legacy ``button``)."""

    type: str = "interactive-button"
    button_id: str | None = None
    title: str | None = None
    payload: str | None = None


@dataclass(frozen=True, kw_only=True)
class ListReplyContent(_BaseContent):
    type: str = "interactive-list"
    list_id: str | None = None
    title: str | None = None
    description: str | None = None


@dataclass(frozen=True, kw_only=True)
class FlowReplyContent(_BaseContent):
    """Flow submission (interactive.nfm_reply); ``response`` is opaque."""

    type: str = "interactive-flow"
    flow_token: str | None = None
    response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ReactionContent(_BaseContent):
    """Stored only for orphan reactions whose target message is unknown."""

    type: str = "reaction"
    target_external_id: str | None = None
    emoji: str = ""


@dataclass(frozen=True, kw_only=True)
class UnknownContent(_BaseContent):
    """Fallback for message types this service does not model."""

    raw: dict[str, Any] = field(default_factory=dict)


Content = Union[
    TextContent,
    MediaContent,
    LocationContent,
    ContactsContent,
    ButtonReplyContent,
    ListReplyContent,
    FlowReplyContent,
    ReactionContent,
    UnknownContent,
]

_BY_TYPE: dict[str, type] = {
    "text": TextContent,
    "location": LocationContent,
    "contacts": ContactsContent,
    "interactive-button": ButtonReplyContent,
    "interactive-list": ListReplyContent,
    "interactive-flow": FlowReplyContent,
    "reaction": ReactionContent,
    **{t: MediaContent for t in MEDIA_TYPES},
}


def content_from_dict(data: dict[str, Any]) -> Content:
    """Rebuild a content variant from its stored dict."""
    data = dict(data)
    context = data.pop("context", None)
    cls = _BY_TYPE.get(data.get("type", ""), UnknownContent)
    if cls is ContactsContent:
        data["contacts"] = tuple(data.get("contacts") or ())
    kwargs = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    if context:
        kwargs["context"] = ReplyContext(**context)
    return cls(**kwargs)
