"""Account-level event store.

Template, capability, alert, tracking, preference and flow events are scoped
to a tenant rather than a conversation. Each operation is idempotent and
reports an ``Outcome``; redelivered events come back as DUPLICATE or
UNCHANGED.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from convoy.conversations.models import Outcome
from convoy.whatsapp.events import (
    AccountAlert,
    CanonicalEvent,
    CapabilityChange,
    FlowSubmission,
    PreferenceChange,
    TemplateQualityChange,
    TemplateStatusChange,
    TrackingEvent,
)

from .rules import (
    AlertRecord,
    alert_from_event,
    capability_alert,
    template_key,
    template_quality_alert,
    template_status_alert,
)

ACCOUNT_EVENT_TYPES = (
    TemplateStatusChange,
    TemplateQualityChange,
    AccountAlert,
    CapabilityChange,
    TrackingEvent,
    PreferenceChange,
    FlowSubmission,
)


class AccountEventStore(Protocol):
    def apply_template_status(self, tenant_id: str, event: TemplateStatusChange) -> Outcome: ...

    def apply_template_quality(self, tenant_id: str, event: TemplateQualityChange) -> Outcome: ...

    def record_alert(self, tenant_id: str, event: AccountAlert) -> Outcome: ...

    def apply_capability(self, tenant_id: str, event: CapabilityChange) -> Outcome: ...

    def record_tracking(self, tenant_id: str, event: TrackingEvent) -> Outcome: ...

    def apply_preference(self, tenant_id: str, event: PreferenceChange) -> Outcome: ...

    def record_flow_response(self, tenant_id: str, event: FlowSubmission) -> Outcome: ...


def apply_account_event(store: AccountEventStore, tenant_id: str, event: CanonicalEvent) -> Outcome:
    """Route an account-level event to its store operation.

    Raises:
        TypeError: If event is not an account-level event.
    """
    if isinstance(event, TemplateStatusChange):
        return store.apply_template_status(tenant_id, event)
    if isinstance(event, TemplateQualityChange):
        return store.apply_template_quality(tenant_id, event)
    if isinstance(event, AccountAlert):
        return store.record_alert(tenant_id, event)
    if isinstance(event, CapabilityChange):
        return store.apply_capability(tenant_id, event)
    if isinstance(event, TrackingEvent):
        return store.record_tracking(tenant_id, event)
    if isinstance(event, PreferenceChange):
        return store.apply_preference(tenant_id, event)
    if isinstance(event, FlowSubmission):
        return store.record_flow_response(tenant_id, event)
    raise TypeError(f"not an account event: {type(event).__name__}")


@dataclass
class _TenantAccount:
    templates: dict[str, dict[str, Any]] = field(default_factory=dict)
    alerts: list[AlertRecord] = field(default_factory=list)
    alert_keys: set[str] = field(default_factory=set)
    capabilities: dict[str, dict[str, Any]] = field(default_factory=dict)
    tracking: dict[str, TrackingEvent] = field(default_factory=dict)
    preferences: dict[tuple[str, str], str] = field(default_factory=dict)
    flows: dict[str, FlowSubmission] = field(default_factory=dict)


class InMemoryAccountEventStore:
    """Process-local account store. One lock; account events are rare."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tenants: dict[str, _TenantAccount] = {}

    def _account(self, tenant_id: str) -> _TenantAccount:
        return self._tenants.setdefault(tenant_id, _TenantAccount())

    def _add_alert(self, account: _TenantAccount, alert: AlertRecord | None) -> Outcome:
        if alert is None:
            return Outcome.UNCHANGED
        if alert.delivery_key is not None:
            if alert.delivery_key in account.alert_keys:
                return Outcome.DUPLICATE
            account.alert_keys.add(alert.delivery_key)
        account.alerts.append(alert)
        return Outcome.APPLIED

    def apply_template_status(self, tenant_id: str, event: TemplateStatusChange) -> Outcome:
        key = template_key(event.template_id, event.name, event.language)
        with self._lock:
            account = self._account(tenant_id)
            template = account.templates.setdefault(key, {"name": event.name, "language": event.language})
            if template.get("status") == event.event and template.get("reason") == event.reason:
                return Outcome.UNCHANGED
            template.update(status=event.event, reason=event.reason)
            self._add_alert(account, template_status_alert(event))
            return Outcome.APPLIED

    def apply_template_quality(self, tenant_id: str, event: TemplateQualityChange) -> Outcome:
        key = template_key(event.template_id, event.name, None)
        with self._lock:
            account = self._account(tenant_id)
            template = account.templates.setdefault(key, {"name": event.name, "language": None})
            if template.get("quality") == event.score:
                return Outcome.UNCHANGED
            template["quality"] = event.score
            self._add_alert(account, template_quality_alert(event))
            return Outcome.APPLIED

    def record_alert(self, tenant_id: str, event: AccountAlert) -> Outcome:
        with self._lock:
            return self._add_alert(self._account(tenant_id), alert_from_event(event))

    def apply_capability(self, tenant_id: str, event: CapabilityChange) -> Outcome:
        with self._lock:
            account = self._account(tenant_id)
            current = account.capabilities.get(event.capability)
            if current is not None and current["status"] == event.status:
                return Outcome.UNCHANGED
            account.capabilities[event.capability] = {"status": event.status, "reason": event.reason}
            self._add_alert(account, capability_alert(event))
            return Outcome.APPLIED

    def record_tracking(self, tenant_id: str, event: TrackingEvent) -> Outcome:
        with self._lock:
            tracking = self._account(tenant_id).tracking
            if event.event_id in tracking:
                return Outcome.DUPLICATE
            tracking[event.event_id] = event
            return Outcome.APPLIED

    def apply_preference(self, tenant_id: str, event: PreferenceChange) -> Outcome:
        with self._lock:
            preferences = self._account(tenant_id).preferences
            key = (event.contact, event.category)
            if preferences.get(key) == event.value:
                return Outcome.UNCHANGED
            preferences[key] = event.value
            return Outcome.APPLIED

    def record_flow_response(self, tenant_id: str, event: FlowSubmission) -> Outcome:
        with self._lock:
            flows = self._account(tenant_id).flows
            if event.flow_token in flows:
                return Outcome.DUPLICATE
            flows[event.flow_token] = event
            return Outcome.APPLIED

    # -- read helpers -------------------------------------------------------

    def alerts(self, tenant_id: str) -> list[AlertRecord]:
        with self._lock:
            return list(self._account(tenant_id).alerts)

    def template(self, tenant_id: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            template = self._account(tenant_id).templates.get(key)
            return dict(template) if template is not None else None

    def capability(self, tenant_id: str, capability: str) -> dict[str, Any] | None:
        with self._lock:
            current = self._account(tenant_id).capabilities.get(capability)
            return dict(current) if current is not None else None

    def preference(self, tenant_id: str, contact: str, category: str) -> str | None:
        with self._lock:
            return self._account(tenant_id).preferences.get((contact, category))
