"""PostgreSQL account event store.

Uses raw SQL with psycopg2 (no ORM). Idempotence comes from the tables'
unique keys: conditional upserts report whether a row actually changed,
and inserts use ON CONFLICT DO NOTHING.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from convoy.conversations.models import Outcome
from convoy.infra.db import txn
from convoy.whatsapp.events import (
    AccountAlert,
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


def _applied(cur: PgCursor) -> bool:
    return cur.rowcount == 1


def insert_alert(
    cur: PgCursor, tenant_id: str, alert: AlertRecord | None, raw: dict[str, Any] | None = None
) -> Outcome:
    """Insert an alert. Keyed deliveries already stored come back as DUPLICATE.

    Args:
        cur: Database cursor (within transaction).
        tenant_id: Owning tenant.
        alert: Alert to store; None is a no-op.
        raw: Original change value, kept for operators.
    """
    if alert is None:
        return Outcome.UNCHANGED
    cur.execute(
        """
        INSERT INTO account_alerts (
            tenant_id, delivery_key, alert_type, severity, title,
            description, template_id, raw
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (tenant_id, delivery_key) WHERE delivery_key IS NOT NULL DO NOTHING
        """,
        (
            tenant_id,
            alert.delivery_key,
            alert.alert_type,
            alert.severity,
            alert.title,
            alert.description,
            alert.template_id,
            Json(raw) if raw else None,
        ),
    )
    return Outcome.APPLIED if _applied(cur) else Outcome.DUPLICATE


class PostgresAccountEventStore:
    def __init__(self, dsn: str | None = None, **conn_kwargs: Any) -> None:
        self._conn_kwargs = dict(conn_kwargs, dsn=dsn)

    def apply_template_status(self, tenant_id: str, event: TemplateStatusChange) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO whatsapp_templates (
                    tenant_id, template_key, template_id, name, language, status, reason
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, template_key) DO UPDATE
                SET status = EXCLUDED.status,
                    reason = EXCLUDED.reason,
                    updated_at = now()
                WHERE whatsapp_templates.status IS DISTINCT FROM EXCLUDED.status
                   OR whatsapp_templates.reason IS DISTINCT FROM EXCLUDED.reason
                """,
                (
                    tenant_id,
                    template_key(event.template_id, event.name, event.language),
                    event.template_id,
                    event.name,
                    event.language,
                    event.event,
                    event.reason,
                ),
            )
            if not _applied(cur):
                return Outcome.UNCHANGED
            insert_alert(cur, tenant_id, template_status_alert(event))
            return Outcome.APPLIED

    def apply_template_quality(self, tenant_id: str, event: TemplateQualityChange) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO whatsapp_templates (tenant_id, template_key, template_id, name, quality)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, template_key) DO UPDATE
                SET quality = EXCLUDED.quality,
                    updated_at = now()
                WHERE whatsapp_templates.quality IS DISTINCT FROM EXCLUDED.quality
                """,
                (
                    tenant_id,
                    template_key(event.template_id, event.name, None),
                    event.template_id,
                    event.name,
                    event.score,
                ),
            )
            if not _applied(cur):
                return Outcome.UNCHANGED
            insert_alert(cur, tenant_id, template_quality_alert(event))
            return Outcome.APPLIED

    def record_alert(self, tenant_id: str, event: AccountAlert) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            return insert_alert(cur, tenant_id, alert_from_event(event), event.raw)

    def apply_capability(self, tenant_id: str, event: CapabilityChange) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO business_capabilities (tenant_id, capability, status, reason)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (tenant_id, capability) DO UPDATE
                SET status = EXCLUDED.status,
                    reason = EXCLUDED.reason,
                    updated_at = now()
                WHERE business_capabilities.status IS DISTINCT FROM EXCLUDED.status
                """,
                (tenant_id, event.capability, event.status, event.reason),
            )
            if not _applied(cur):
                return Outcome.UNCHANGED
            insert_alert(cur, tenant_id, capability_alert(event))
            return Outcome.APPLIED

    def record_tracking(self, tenant_id: str, event: TrackingEvent) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO tracking_events (tenant_id, event_id, event_name, pixel_id)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (tenant_id, event_id) DO NOTHING
                """,
                (tenant_id, event.event_id, event.event_name, event.pixel_id),
            )
            return Outcome.APPLIED if _applied(cur) else Outcome.DUPLICATE

    def apply_preference(self, tenant_id: str, event: PreferenceChange) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO user_preferences (tenant_id, contact_address, category, value, detail)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, contact_address, category) DO UPDATE
                SET value = EXCLUDED.value,
                    detail = EXCLUDED.detail,
                    updated_at = now()
                WHERE user_preferences.value IS DISTINCT FROM EXCLUDED.value
                """,
                (tenant_id, event.contact, event.category, event.value, event.detail),
            )
            return Outcome.APPLIED if _applied(cur) else Outcome.UNCHANGED

    def record_flow_response(self, tenant_id: str, event: FlowSubmission) -> Outcome:
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO flow_responses (
                    tenant_id, flow_token, flow_id, contact_address, external_id, response
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, flow_token) DO NOTHING
                """,
                (
                    tenant_id,
                    event.flow_token,
                    event.flow_id,
                    event.contact,
                    event.external_id,
                    Json(event.response),
                ),
            )
            return Outcome.APPLIED if _applied(cur) else Outcome.DUPLICATE
