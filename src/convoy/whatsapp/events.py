"""Canonical events produced by the normalizer.

Downstream components see only these types, never raw webhook JSON. Events
are tenant-free; the ingestion engine pairs each with the tenant resolved for
the change it came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Literal, Union

from .content import Content

DeliveryStatus = Literal["sent", "delivered", "read", "failed"]
DELIVERY_STATUSES: tuple[str, ...] = ("sent", "delivered", "read", "failed")


@dataclass(frozen=True, kw_only=True)
class InboundMessage:
    kind: ClassVar[str] = "inbound_message"

    external_id: str
    contact: str
    timestamp: datetime
    content: Content
    contact_name: str | None = None


@dataclass(frozen=True, kw_only=True)
class StatusUpdate:
    kind: ClassVar[str] = "status_update"

    external_id: str
    status: DeliveryStatus
    timestamp: datetime
    recipient: str | None = None
    error: dict[str, Any] | None = None
    conversation_id: str | None = None
    conversation_category: str | None = None
    pricing_category: str | None = None


@dataclass(frozen=True, kw_only=True)
class Reaction:
    """Reaction to a stored message. An empty emoji removes the reaction."""

    kind: ClassVar[str] = "reaction"

    external_id: str
    target_external_id: str
    contact: str
    emoji: str
    timestamp: datetime
    contact_name: str | None = None


@dataclass(frozen=True, kw_only=True)
class ProfileUpdate:
    """Contact profile fields as last seen; None means not carried."""

    kind: ClassVar[str] = "profile_update"

    contact: str
    name: str | None = None
    photo: str | None = None
    about: str | None = None


@dataclass(frozen=True, kw_only=True)
class TemplateStatusChange:
    kind: ClassVar[str] = "template_status_change"

    template_id: str | None
    name: str | None
    language: str | None
    event: str
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class TemplateQualityChange:
    kind: ClassVar[str] = "template_quality_change"

    template_id: str | None
    name: str | None
    score: str
    previous_score: str | None = None
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class AccountAlert:
    kind: ClassVar[str] = "account_alert"

    alert_type: str
    severity: str
    title: str
    description: str
    raw: dict[str, Any] = field(default_factory=dict)
    entry_time: Any = None


@dataclass(frozen=True, kw_only=True)
class CapabilityChange:
    kind: ClassVar[str] = "capability_change"

    capability: str
    status: str
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class Echo:
    """A message the business sent from its own client, echoed back."""

    kind: ClassVar[str] = "echo"

    external_id: str
    contact: str
    timestamp: datetime
    content: Content


@dataclass(frozen=True, kw_only=True)
class TrackingEvent:
    kind: ClassVar[str] = "tracking_event"

    event_name: str
    event_id: str
    pixel_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class PreferenceChange:
    kind: ClassVar[str] = "preference_change"

    contact: str
    category: str
    value: str
    timestamp: datetime | None = None
    detail: str | None = None


@dataclass(frozen=True, kw_only=True)
class FlowSubmission:
    """Opaque flow response payload, deduplicated by flow token."""

    kind: ClassVar[str] = "flow_submission"

    flow_token: str
    response: dict[str, Any]
    flow_id: str | None = None
    contact: str | None = None
    external_id: str | None = None


CanonicalEvent = Union[
    InboundMessage,
    StatusUpdate,
    Reaction,
    ProfileUpdate,
    TemplateStatusChange,
    TemplateQualityChange,
    AccountAlert,
    CapabilityChange,
    Echo,
    TrackingEvent,
    PreferenceChange,
    FlowSubmission,
]


def event_ref(event: CanonicalEvent) -> str | None:
    """Identifier used in logs and failure reports (never PII)."""
    for attr in ("external_id", "template_id", "event_id", "flow_token"):
        value = getattr(event, attr, None)
        if value:
            return str(value)
    return None
