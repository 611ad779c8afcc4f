"""Webhook ingestion engine.

Runs after the HTTP response has been sent. One request is processed in two
phases:

1. Routing: every change is paired with the tenant it belongs to and the
   request signature is checked once per tenant. A REJECTED signature aborts
   the whole request before anything is written.
2. Application: changes are normalized and every canonical event is applied
   on a worker thread. Failures are isolated to the event that raised them.

Benign outcomes (DUPLICATE, NOT_FOUND, TARGET_NOT_FOUND, UNCHANGED) are
counted but neither notified nor raised.
"""

from __future__ import annotations

import json
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any

from pydantic import ValidationError

from convoy.accounts.store import ACCOUNT_EVENT_TYPES, AccountEventStore, apply_account_event
from convoy.conversations import aggregate
from convoy.conversations.models import Outcome
from convoy.conversations.store import ConversationStore, MutationResult
from convoy.errors import BackingStoreUnavailable, TenantMismatchError
from convoy.notifications.notifier import Notification, Notifier, NullNotifier
from convoy.observability.correlation import get_correlation_id, reset_correlation_id, set_correlation_id
from convoy.observability.logging import get_logger
from convoy.observability.redaction import mask_address, safe_log_context
from convoy.tenants.directory import TenantDirectory
from convoy.tenants.models import Tenant, TenantKey
from convoy.whatsapp.content import ReactionContent
from convoy.whatsapp.events import (
    CanonicalEvent,
    Echo,
    FlowSubmission,
    InboundMessage,
    ProfileUpdate,
    Reaction,
    StatusUpdate,
    event_ref,
)
from convoy.whatsapp.normalizer import ChangeNormalizer, get_phone_number_id
from convoy.whatsapp.signature import SignatureVerifier, Verification

from .envelope import WebhookChange, WebhookEnvelope
from .report import EventFailure, IngestionReport
from .webhook_log import WebhookLogRepository

logger = get_logger(__name__)


class IngestionEngine:
    """Orchestrates tenant resolution, verification and event application.

    Args:
        directory: Tenant lookup (cache-fronted).
        verifier: Signature verifier carrying the missing-signature policy.
        normalizer: Raw change to canonical events.
        conversations: Conversation aggregate store.
        accounts: Account-level event store.
        notifier: Fire-and-forget downstream notifier.
        webhook_log: Audit log; None disables it.
        max_workers: Threads applying events concurrently.
        event_timeout_s: How long to wait for one event before recording it
            as failed. The event itself is bounded by store timeouts.
    """

    def __init__(
        self,
        *,
        directory: TenantDirectory,
        verifier: SignatureVerifier,
        normalizer: ChangeNormalizer,
        conversations: ConversationStore,
        accounts: AccountEventStore,
        notifier: Notifier | None = None,
        webhook_log: WebhookLogRepository | None = None,
        max_workers: int = 8,
        event_timeout_s: float = 10.0,
    ) -> None:
        self._directory = directory
        self._verifier = verifier
        self._normalizer = normalizer
        self._conversations = conversations
        self._accounts = accounts
        self._notifier = notifier or NullNotifier()
        self._webhook_log = webhook_log
        self._event_timeout = event_timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="convoy-ingest")

    @property
    def directory(self) -> TenantDirectory:
        return self._directory

    def close(self) -> None:
        """Finish in-flight events, then let the notifier drain its queue."""
        self._executor.shutdown(wait=True)
        close_notifier = getattr(self._notifier, "close", None)
        if close_notifier is not None:
            close_notifier(timeout=5.0)

    # -- subscription verification (GET) --------------------------------------

    def verify_subscription(self, mode: str, verify_token: str) -> bool:
        """True when mode is subscribe and an active tenant owns verify_token."""
        if mode != "subscribe":
            return False
        return self._directory.resolve(TenantKey.by_verify_token(verify_token)) is not None

    # -- event ingestion (POST) -----------------------------------------------

    def ingest(
        self,
        raw_body: bytes,
        signature_header: str | None,
        correlation_id: str | None = None,
    ) -> IngestionReport:
        """Process one webhook POST body. Never raises for payload problems.

        Args:
            raw_body: Request body exactly as received.
            signature_header: X-Hub-Signature-256 value, if any.
            correlation_id: Request correlation id to log under.
        """
        token = set_correlation_id(correlation_id) if correlation_id else None
        started = time.monotonic()
        report = IngestionReport()
        try:
            self._ingest(raw_body, signature_header, report)
        finally:
            report.duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "webhook processed",
                extra={
                    "extra_fields": {
                        "tenants": len(report.tenant_ids),
                        "outcomes": dict(report.outcomes),
                        "failures": len(report.failures),
                        "malformed": report.malformed,
                        "dropped_changes": report.dropped_changes,
                        "rejected": report.rejected,
                        "duration_ms": report.duration_ms,
                    }
                },
            )
            self._write_log(report)
            if token is not None:
                reset_correlation_id(token)
        return report

    def _ingest(self, raw_body: bytes, signature_header: str | None, report: IngestionReport) -> None:
        envelope = self._parse(raw_body)
        if envelope is None or not envelope.is_whatsapp:
            if envelope is not None:
                logger.info(
                    "webhook object ignored",
                    extra={"extra_fields": safe_log_context(object=envelope.object)},
                )
            report.ignored = True
            return

        routed = self._route(envelope, raw_body, signature_header, report)
        if routed is None:
            return

        pending: list[tuple[Tenant, CanonicalEvent, Future]] = []
        for tenant, change, entry_time in routed:
            normalized = self._normalizer.normalize_change(change.as_dict(), entry_time=entry_time)
            for error in normalized.errors:
                report.malformed += 1
                logger.warning(
                    "malformed sub-event dropped",
                    extra={
                        "extra_fields": safe_log_context(
                            tenant_id=tenant.id, field=change.field, kind=error.kind, error=str(error)
                        )
                    },
                )
            for event in normalized.events:
                future = self._executor.submit(self._apply, tenant, event, report, get_correlation_id())
                pending.append((tenant, event, future))

        for tenant, event, future in pending:
            try:
                future.result(timeout=self._event_timeout)
            except FuturesTimeout:
                report.record_failure(
                    EventFailure(event.kind, event_ref(event), f"timed out after {self._event_timeout}s")
                )
                logger.warning(
                    "event application timed out",
                    extra={"extra_fields": safe_log_context(tenant_id=tenant.id, kind=event.kind)},
                )

    def _parse(self, raw_body: bytes) -> WebhookEnvelope | None:
        try:
            data = json.loads(raw_body)
        except ValueError:
            logger.warning("webhook body is not valid JSON", extra={"extra_fields": {"size": len(raw_body)}})
            return None
        if not isinstance(data, dict):
            logger.warning("webhook body is not an object")
            return None
        try:
            return WebhookEnvelope.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "webhook envelope invalid",
                extra={"extra_fields": {"errors": e.error_count()}},
            )
            return None

    def _route(
        self,
        envelope: WebhookEnvelope,
        raw_body: bytes,
        signature_header: str | None,
        report: IngestionReport,
    ) -> list[tuple[Tenant, WebhookChange, Any]] | None:
        """Pair each change with its tenant and entry time. None means the request is rejected."""
        routed: list[tuple[Tenant, WebhookChange, Any]] = []
        verified: dict[str, Verification] = {}

        for entry in envelope.entry:
            for change in entry.changes:
                report.fields.append(change.field or "unknown")
                value = change.value if isinstance(change.value, dict) else {}
                phone_number_id = get_phone_number_id(value)

                try:
                    tenant = self._directory.resolve_change(phone_number_id, entry.id)
                except TenantMismatchError as e:
                    report.dropped_changes += 1
                    logger.warning(
                        "change dropped: tenant mismatch",
                        extra={"extra_fields": safe_log_context(field=change.field, error=str(e))},
                    )
                    continue
                except BackingStoreUnavailable as e:
                    report.dropped_changes += 1
                    report.record_failure(EventFailure("tenant_resolution", None, str(e)))
                    logger.error(
                        "change dropped: tenant lookup failed",
                        extra={"extra_fields": safe_log_context(field=change.field, error=str(e))},
                    )
                    continue

                if tenant is None:
                    report.dropped_changes += 1
                    logger.info(
                        "change dropped: no active tenant",
                        extra={
                            "extra_fields": safe_log_context(
                                field=change.field, phone_number_id=phone_number_id, account_id=entry.id
                            )
                        },
                    )
                    continue

                if tenant.id not in verified:
                    verified[tenant.id] = self._verifier.verify(tenant, raw_body, signature_header)
                    report.verifications[tenant.id] = verified[tenant.id].value
                if verified[tenant.id] is Verification.REJECTED:
                    report.rejected = True
                    logger.warning(
                        "signature rejected, request aborted",
                        extra={"extra_fields": safe_log_context(tenant_id=tenant.id)},
                    )
                    return None

                report.tenant_ids.add(tenant.id)
                routed.append((tenant, change, entry.time))
        return routed

    # -- per-event application (worker threads) ------------------------------

    def _apply(
        self,
        tenant: Tenant,
        event: CanonicalEvent,
        report: IngestionReport,
        correlation_id: str | None,
    ) -> None:
        token = set_correlation_id(correlation_id) if correlation_id else None
        try:
            outcome, data = self._dispatch(tenant, event)
            report.record_outcome(outcome)
            if outcome is Outcome.APPLIED:
                self._notify(Notification(event.kind, tenant.id, data, correlation_id), report)
            else:
                logger.debug(
                    "event not applied",
                    extra={
                        "extra_fields": safe_log_context(
                            tenant_id=tenant.id, kind=event.kind, ref=event_ref(event), outcome=outcome.value
                        )
                    },
                )
        except BackingStoreUnavailable as e:
            report.record_failure(EventFailure(event.kind, event_ref(event), str(e)))
            logger.error(
                "backing store unavailable",
                extra={"extra_fields": safe_log_context(tenant_id=tenant.id, kind=event.kind, error=str(e))},
            )
        except Exception as e:
            report.record_failure(EventFailure(event.kind, event_ref(event), repr(e)))
            logger.exception(
                "unexpected failure applying event",
                extra={"extra_fields": safe_log_context(tenant_id=tenant.id, kind=event.kind)},
            )
        finally:
            if token is not None:
                reset_correlation_id(token)

    def _notify(self, notification: Notification, report: IngestionReport) -> None:
        # The change is already committed; a notifier fault must not turn it into a failure
        try:
            self._notifier.publish(notification)
        except Exception:
            logger.warning(
                "notifier publish failed",
                exc_info=True,
                extra={"extra_fields": {"type": notification.type}},
            )
            return
        report.record_notified()

    def _dispatch(self, tenant: Tenant, event: CanonicalEvent) -> tuple[Outcome, dict[str, Any]]:
        if isinstance(event, InboundMessage):
            message = aggregate.build_message(event.external_id, "incoming", event.content, event.timestamp)
            result = self._conversations.append_inbound_message(tenant.id, event.contact, message)
            return result.outcome, _message_data(event, result, "incoming", event.contact_name)

        if isinstance(event, Echo):
            message = aggregate.build_message(event.external_id, "outgoing", event.content, event.timestamp)
            result = self._conversations.append_outbound_echo(tenant.id, event.contact, message)
            return result.outcome, _message_data(event, result, "outgoing", None)

        if isinstance(event, Reaction):
            return self._reaction(tenant, event)

        if isinstance(event, StatusUpdate):
            result = self._conversations.apply_status(
                event.external_id,
                event.status,
                event.timestamp,
                tenant_id=tenant.id,
                error=event.error,
                category=event.conversation_category,
            )
            return result.outcome, {
                "conversationId": result.conversation_id,
                "externalId": event.external_id,
                "status": event.status,
                "timestamp": event.timestamp.isoformat(),
                "error": event.error,
                "pricingCategory": event.pricing_category,
            }

        if isinstance(event, ProfileUpdate):
            profile = {"name": event.name, "photo": event.photo, "about": event.about}
            result = self._conversations.apply_profile_update(tenant.id, event.contact, profile)
            return result.outcome, {
                "conversationId": result.conversation_id,
                "contact": event.contact,
                "changed": sorted(result.changed_fields),
                **{name: profile[name] for name in result.changed_fields},
            }

        if isinstance(event, ACCOUNT_EVENT_TYPES):
            outcome = apply_account_event(self._accounts, tenant.id, event)
            return outcome, _account_data(event)

        raise TypeError(f"unhandled event type: {type(event).__name__}")

    def _reaction(self, tenant: Tenant, event: Reaction) -> tuple[Outcome, dict[str, Any]]:
        result = self._conversations.apply_reaction(
            tenant.id, event.contact, event.target_external_id, event.contact, event.emoji, event.timestamp
        )
        data = {
            "conversationId": result.conversation_id,
            "targetExternalId": event.target_external_id,
            "contact": event.contact,
            "emoji": event.emoji,
            "timestamp": event.timestamp.isoformat(),
        }
        if result.outcome is not Outcome.TARGET_NOT_FOUND or not event.emoji:
            return result.outcome, data

        # Orphan reaction: keep it as a standalone inbound message
        logger.info(
            "reaction target not found, storing orphan reaction",
            extra={"extra_fields": safe_log_context(tenant_id=tenant.id, contact=mask_address(event.contact))},
        )
        content = ReactionContent(
            text=event.emoji,
            target_external_id=event.target_external_id,
            emoji=event.emoji,
        )
        message = aggregate.build_message(event.external_id, "incoming", content, event.timestamp)
        appended = self._conversations.append_inbound_message(tenant.id, event.contact, message)
        return appended.outcome, dict(data, conversationId=appended.conversation_id, orphan=True)

    def _write_log(self, report: IngestionReport) -> None:
        if self._webhook_log is None or report.ignored:
            return
        try:
            self._webhook_log.write(report, get_correlation_id())
        except Exception:
            logger.warning("webhook log write failed", exc_info=True)


def _message_data(
    event: InboundMessage | Echo,
    result: MutationResult,
    direction: str,
    contact_name: str | None,
) -> dict[str, Any]:
    return {
        "conversationId": result.conversation_id,
        "created": result.created,
        "externalId": event.external_id,
        "contact": event.contact,
        "contactName": contact_name,
        "direction": direction,
        "type": event.content.type,
        "text": event.content.text,
        "timestamp": event.timestamp.isoformat(),
    }


def _account_data(event: CanonicalEvent) -> dict[str, Any]:
    if isinstance(event, FlowSubmission):
        return {"flowToken": event.flow_token, "flowId": event.flow_id, "externalId": event.external_id}
    data = {k: v for k, v in vars(event).items() if k != "raw"}
    for key, value in data.items():
        if hasattr(value, "isoformat"):
            data[key] = value.isoformat()
    return data
