"""Alerts derived from account-level state changes."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

from convoy.whatsapp.events import AccountAlert, CapabilityChange, TemplateQualityChange, TemplateStatusChange

_TEMPLATE_ALERT_SEVERITY = {"REJECTED": "WARNING", "PAUSED": "WARNING", "DISABLED": "CRITICAL"}
_CAPABILITY_ALERT_SEVERITY = {"RESTRICTED": "WARNING", "DISABLED": "CRITICAL"}


@dataclass(frozen=True)
class AlertRecord:
    """Alert row as stored.

    Alerts raised by a state transition carry no ``delivery_key``: the
    conditional upsert that precedes them already absorbs redeliveries, and a
    later recurrence of the same transition is a new alert. Alerts delivered
    as-is by the platform are keyed by their delivery.
    """

    alert_type: str
    severity: str
    title: str
    description: str
    template_id: str | None = None
    delivery_key: str | None = None


def template_key(template_id: str | None, name: str | None, language: str | None) -> str:
    """Templates are keyed by platform id, else by name and language."""
    if template_id:
        return template_id
    return f"{name or ''}:{language or ''}"


def template_status_alert(event: TemplateStatusChange) -> AlertRecord | None:
    severity = _TEMPLATE_ALERT_SEVERITY.get(event.event)
    if severity is None:
        return None
    label = event.name or event.template_id or "template"
    return AlertRecord(
        alert_type=f"TEMPLATE_{event.event}",
        severity=severity,
        title=f"Template {event.event.lower()}: {label}",
        description=event.reason or f"Template {event.event.lower()}",
        template_id=event.template_id,
    )


def template_quality_alert(event: TemplateQualityChange) -> AlertRecord | None:
    if event.score == "GREEN":
        return None
    label = event.name or event.template_id or "template"
    return AlertRecord(
        alert_type="TEMPLATE_QUALITY",
        severity="CRITICAL" if event.score == "RED" else "WARNING",
        title=f"Template quality {event.score}: {label}",
        description=event.reason or "Quality score updated by WhatsApp",
        template_id=event.template_id,
    )


def capability_alert(event: CapabilityChange) -> AlertRecord | None:
    severity = _CAPABILITY_ALERT_SEVERITY.get(event.status)
    if severity is None:
        return None
    return AlertRecord(
        alert_type=f"CAPABILITY_{event.status}",
        severity=severity,
        title=f"{event.capability} {event.status.lower()}",
        description=event.reason or f"Capability {event.capability} is {event.status}",
    )


def alert_delivery_key(event: AccountAlert) -> str:
    """Hash of the raw change value and its entry time.

    The same payload redelivered by the platform maps to the same key; the
    same alert raised again later arrives with a new entry time.
    """
    data = json.dumps({"raw": event.raw, "time": event.entry_time}, sort_keys=True, default=str)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def alert_from_event(event: AccountAlert) -> AlertRecord:
    return AlertRecord(
        alert_type=event.alert_type,
        severity=event.severity,
        title=event.title,
        description=event.description,
        delivery_key=alert_delivery_key(event),
    )
