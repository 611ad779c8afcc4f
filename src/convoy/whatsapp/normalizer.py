"""Meta Cloud API change normalizer.

Converts one webhook ``change`` ({"field": ..., "value": ...}) into canonical
events. A single change may yield several events (a ``messages`` change with
both ``messages`` and ``statuses`` arrays yields one event per item).

Dispatch uses the change's field tag when it is one we know; otherwise the
keys present in ``value`` decide, because the platform does not set the tag
consistently. A malformed sub-event is reported in ``NormalizedChange.errors``
and never prevents its siblings from being normalized.

Meta payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "id": "<account-id>",
    "changes": [{
      "field": "messages",
      "value": {
        "metadata": {"phone_number_id": "..."},
        "contacts": [{"wa_id": "...", "profile": {"name": "..."}}],
        "messages": [{"from": "PHONE", "id": "wamid...", "type": "text", ...}],
        "statuses": [{"id": "wamid...", "status": "delivered", ...}]
      }
    }]
  }]
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from convoy.errors import MalformedPayloadError
from convoy.infra.addresses import normalize_address
from convoy.infra.time import from_unix, utc_now
from convoy.observability.logging import get_logger
from convoy.observability.redaction import safe_log_context

from .content import (
    MEDIA_TYPES,
    ButtonReplyContent,
    ContactsContent,
    Content,
    FlowReplyContent,
    ListReplyContent,
    LocationContent,
    MediaContent,
    ReplyContext,
    TextContent,
    UnknownContent,
)
from .events import (
    DELIVERY_STATUSES,
    AccountAlert,
    CanonicalEvent,
    CapabilityChange,
    Echo,
    FlowSubmission,
    InboundMessage,
    PreferenceChange,
    ProfileUpdate,
    Reaction,
    StatusUpdate,
    TemplateQualityChange,
    TemplateStatusChange,
    TrackingEvent,
)

logger = get_logger(__name__)

_TEMPLATE_DEFAULT_REASONS = {
    "REJECTED": "Template rejected by WhatsApp",
    "PAUSED": "Template paused by WhatsApp",
    "DISABLED": "Template disabled",
}


@dataclass
class NormalizedChange:
    """Result of normalizing one change."""

    field: str | None
    entry_time: Any = None
    events: list[CanonicalEvent] = field(default_factory=list)
    errors: list[MalformedPayloadError] = field(default_factory=list)


def get_phone_number_id(value: dict[str, Any]) -> str | None:
    """Extract metadata.phone_number_id from a change value."""
    metadata = value.get("metadata")
    if not isinstance(metadata, dict):
        return None
    phone_number_id = metadata.get("phone_number_id")
    return str(phone_number_id) if phone_number_id else None


def map_alert_severity(raw: str | None) -> str:
    """Collapse vendor severities to INFO / WARNING / CRITICAL."""
    value = (raw or "").upper()
    if value in ("WARNING", "MEDIUM"):
        return "WARNING"
    if value in ("CRITICAL", "HIGH"):
        return "CRITICAL"
    return "INFO"


class ChangeNormalizer:
    """Stateless converter from raw changes to canonical events.

    Args:
        default_country_code: Passed to address normalization.
    """

    def __init__(self, default_country_code: str | None = None) -> None:
        self._country_code = default_country_code
        self._by_field: dict[str, Callable[[dict[str, Any], NormalizedChange], None]] = {
            "messages": self._messages,
            "contacts": self._messages,
            "message_template_status_update": self._template_status,
            "message_template_quality_update": self._template_quality,
            "account_alerts": self._account_alert,
            "account_update": self._account_update,
            "phone_number_quality_update": self._phone_quality,
            "business_capability_update": self._capability,
            "message_echoes": self._echoes,
            "smb_message_echoes": self._echoes,
            "flows": self._flows,
            "tracking_events": self._tracking,
            "user_preferences": self._preferences,
        }

    def normalize(self, change: dict[str, Any]) -> list[CanonicalEvent]:
        """Return canonical events for change, dropping malformed sub-events."""
        return self.normalize_change(change).events

    def normalize_change(self, change: dict[str, Any], entry_time: Any = None) -> NormalizedChange:
        """Normalize change, keeping per-sub-event errors.

        entry_time is the enclosing entry's ``time``; account alerts use it to
        tell a redelivery from a recurrence.
        """
        field_tag = change.get("field") if isinstance(change, dict) else None
        result = NormalizedChange(
            field=field_tag if isinstance(field_tag, str) else None, entry_time=entry_time
        )

        value = change.get("value") if isinstance(change, dict) else None
        if not isinstance(value, dict):
            result.errors.append(MalformedPayloadError("change has no value object"))
            return result

        handler = self._by_field.get(result.field or "") or self._handler_for_keys(value)
        if handler is None:
            logger.info(
                "unrecognized change shape ignored",
                extra={"extra_fields": safe_log_context(field=result.field or "missing", keys=value)},
            )
            return result

        try:
            handler(value, result)
        except MalformedPayloadError as e:
            result.errors.append(e)
        return result

    def _handler_for_keys(
        self, value: dict[str, Any]
    ) -> Callable[[dict[str, Any], NormalizedChange], None] | None:
        if any(k in value for k in ("messages", "statuses", "contacts")):
            return self._messages
        if "message_template_status_update" in value:
            return self._template_status
        if "message_echoes" in value:
            return self._echoes
        if "user_preferences" in value:
            return self._preferences
        if "message_template_id" in value or "message_template_name" in value:
            if "new_quality_score" in value or "quality_score" in value:
                return self._template_quality
            if "event" in value:
                return self._template_status
        if "flow_token" in value:
            return self._flows
        if "event_id" in value and "event_name" in value:
            return self._tracking
        if "capability" in value:
            return self._capability
        if "alert_type" in value or "alert_info" in value:
            return self._account_alert
        return None

    # -- messages / statuses / contacts -------------------------------------

    def _messages(self, value: dict[str, Any], result: NormalizedChange) -> None:
        names: dict[str, str] = {}
        for contact in _as_list(value.get("contacts")):
            self._collect(result, lambda: self._profile(contact, names))

        for message in _as_list(value.get("messages")):
            self._collect(result, lambda: self._message(message, names))

        for status in _as_list(value.get("statuses")):
            self._collect(result, lambda: [self._status(status)])

    def _collect(self, result: NormalizedChange, build: Callable[[], Iterable[CanonicalEvent]]) -> None:
        try:
            result.events.extend(build())
        except MalformedPayloadError as e:
            result.errors.append(e)

    def _profile(self, contact: Any, names: dict[str, str]) -> list[CanonicalEvent]:
        if not isinstance(contact, dict):
            raise MalformedPayloadError("contact entry is not an object", kind="profile_update")
        address = self._address(contact.get("wa_id"), "profile_update")
        profile = contact.get("profile") if isinstance(contact.get("profile"), dict) else {}
        name = profile.get("name") or None
        if name:
            names[address] = name
        photo = profile.get("photo") or contact.get("photo") or None
        about = profile.get("about") or contact.get("about") or None
        if name is None and photo is None and about is None:
            return []
        return [ProfileUpdate(contact=address, name=name, photo=photo, about=about)]

    def _message(self, message: Any, names: dict[str, str]) -> list[CanonicalEvent]:
        if not isinstance(message, dict):
            raise MalformedPayloadError("message entry is not an object", kind="inbound_message")

        external_id = message.get("id")
        if not external_id or not isinstance(external_id, str):
            raise MalformedPayloadError("missing or invalid message id", kind="inbound_message")

        contact = self._address(message.get("from"), "inbound_message")
        timestamp = from_unix(message.get("timestamp")) or utc_now()
        message_type = str(message.get("type") or "unknown")

        if message_type == "reaction":
            reaction = message.get("reaction") if isinstance(message.get("reaction"), dict) else {}
            target = reaction.get("message_id")
            if not target:
                raise MalformedPayloadError("reaction without target message id", kind="reaction")
            return [
                Reaction(
                    external_id=external_id,
                    target_external_id=str(target),
                    contact=contact,
                    emoji=reaction.get("emoji") or "",
                    timestamp=timestamp,
                    contact_name=names.get(contact),
                )
            ]

        content = build_content(message, message_type)
        events: list[CanonicalEvent] = [
            InboundMessage(
                external_id=external_id,
                contact=contact,
                timestamp=timestamp,
                content=content,
                contact_name=names.get(contact),
            )
        ]
        if isinstance(content, FlowReplyContent):
            events.append(
                FlowSubmission(
                    flow_token=content.flow_token or external_id,
                    response=content.response,
                    contact=contact,
                    external_id=external_id,
                )
            )
        return events

    def _status(self, status: Any) -> StatusUpdate:
        if not isinstance(status, dict):
            raise MalformedPayloadError("status entry is not an object", kind="status_update")

        external_id = status.get("id")
        if not external_id or not isinstance(external_id, str):
            raise MalformedPayloadError("status without message id", kind="status_update")

        value = str(status.get("status") or "").lower()
        if value not in DELIVERY_STATUSES:
            raise MalformedPayloadError(f"unsupported status {value!r}", kind="status_update")

        error = None
        errors = _as_list(status.get("errors"))
        if errors and isinstance(errors[0], dict):
            first = errors[0]
            error = {"code": first.get("code"), "title": first.get("title") or first.get("message")}

        conversation = status.get("conversation") if isinstance(status.get("conversation"), dict) else {}
        origin = conversation.get("origin") if isinstance(conversation.get("origin"), dict) else {}
        pricing = status.get("pricing") if isinstance(status.get("pricing"), dict) else {}

        try:
            recipient = normalize_address(status.get("recipient_id"), self._country_code)
        except MalformedPayloadError:
            recipient = None

        return StatusUpdate(
            external_id=external_id,
            status=value,  # type: ignore[arg-type]
            timestamp=from_unix(status.get("timestamp")) or utc_now(),
            recipient=recipient,
            error=error,
            conversation_id=conversation.get("id"),
            conversation_category=origin.get("type"),
            pricing_category=pricing.get("category"),
        )

    def _echoes(self, value: dict[str, Any], result: NormalizedChange) -> None:
        for echo in _as_list(value.get("message_echoes")):
            self._collect(result, lambda: [self._echo(echo)])

    def _echo(self, echo: Any) -> Echo:
        if not isinstance(echo, dict):
            raise MalformedPayloadError("echo entry is not an object", kind="echo")
        external_id = echo.get("id")
        if not external_id or not isinstance(external_id, str):
            raise MalformedPayloadError("echo without message id", kind="echo")
        message_type = str(echo.get("type") or "unknown")
        return Echo(
            external_id=external_id,
            contact=self._address(echo.get("to"), "echo"),
            timestamp=from_unix(echo.get("timestamp")) or utc_now(),
            content=build_content(echo, message_type),
        )

    # -- account-level changes ----------------------------------------------

    def _template_status(self, value: dict[str, Any], result: NormalizedChange) -> None:
        data = value.get("message_template_status_update", value)
        if not isinstance(data, dict) or not data.get("event"):
            raise MalformedPayloadError("template status update without event", kind="template_status_change")
        event = str(data["event"]).upper()
        reason = _reason(data.get("reason")) or _TEMPLATE_DEFAULT_REASONS.get(event)
        result.events.append(
            TemplateStatusChange(
                template_id=_opt_str(data.get("message_template_id")),
                name=data.get("message_template_name"),
                language=data.get("message_template_language"),
                event=event,
                reason=reason,
            )
        )

    def _template_quality(self, value: dict[str, Any], result: NormalizedChange) -> None:
        score = value.get("new_quality_score") or value.get("quality_score")
        if not score:
            raise MalformedPayloadError("template quality update without score", kind="template_quality_change")
        result.events.append(
            TemplateQualityChange(
                template_id=_opt_str(value.get("message_template_id")),
                name=value.get("message_template_name"),
                score=str(score).upper(),
                previous_score=value.get("previous_quality_score"),
                reason=_reason(value.get("reason")) or "Quality score updated by WhatsApp",
            )
        )

    def _account_alert(self, value: dict[str, Any], result: NormalizedChange) -> None:
        info = value.get("alert_info") if isinstance(value.get("alert_info"), dict) else {}
        result.events.append(
            AccountAlert(
                alert_type=value.get("alert_type") or info.get("alert_type") or "ACCOUNT_WARNING",
                severity=map_alert_severity(value.get("alert_severity") or info.get("alert_severity")),
                title=value.get("title") or info.get("alert_status") or "Account Alert",
                description=(
                    value.get("description") or info.get("alert_description") or "Alert from WhatsApp"
                ),
                raw=value,
                entry_time=result.entry_time,
            )
        )

    def _account_update(self, value: dict[str, Any], result: NormalizedChange) -> None:
        event = value.get("event") or "ACCOUNT_UPDATE"
        if "ban_info" in value:
            severity = "CRITICAL"
        elif "violation_info" in value or "restriction_info" in value:
            severity = "WARNING"
        else:
            severity = "INFO"
        result.events.append(
            AccountAlert(
                alert_type="ACCOUNT_UPDATE",
                severity=severity,
                title=f"Account {event}",
                description=_reason(value.get("reason")) or f"Account update: {event}",
                raw=value,
                entry_time=result.entry_time,
            )
        )

    def _phone_quality(self, value: dict[str, Any], result: NormalizedChange) -> None:
        score = str(value.get("quality_score") or "").upper() or None
        rating = value.get("quality_rating") or value.get("event") or score or "UNKNOWN"
        if score == "RED":
            severity = "CRITICAL"
        elif score == "YELLOW":
            severity = "WARNING"
        else:
            severity = "INFO"
        result.events.append(
            AccountAlert(
                alert_type="PHONE_NUMBER_QUALITY_UPDATE",
                severity=severity,
                title=f"Phone Quality: {score or rating}",
                description=f"Phone number quality rating is now {rating}",
                raw=value,
                entry_time=result.entry_time,
            )
        )

    def _capability(self, value: dict[str, Any], result: NormalizedChange) -> None:
        capability = value.get("capability")
        status = value.get("status")
        if not capability and "max_daily_conversation_per_phone" in value:
            capability = "MESSAGING_LIMIT"
            status = str(value["max_daily_conversation_per_phone"])
        if not capability or not status:
            raise MalformedPayloadError("capability update without capability/status", kind="capability_change")
        result.events.append(
            CapabilityChange(capability=str(capability).upper(), status=str(status).upper(), reason=value.get("reason"))
        )

    def _flows(self, value: dict[str, Any], result: NormalizedChange) -> None:
        token = value.get("flow_token") or value.get("flow_id")
        response = value.get("response")
        if not token or not isinstance(response, dict):
            raise MalformedPayloadError("flow event without token or response", kind="flow_submission")
        result.events.append(
            FlowSubmission(flow_token=str(token), response=response, flow_id=_opt_str(value.get("flow_id")))
        )

    def _tracking(self, value: dict[str, Any], result: NormalizedChange) -> None:
        if not value.get("event_name") or not value.get("event_id"):
            raise MalformedPayloadError("tracking event without name or id", kind="tracking_event")
        result.events.append(
            TrackingEvent(
                event_name=str(value["event_name"]),
                event_id=str(value["event_id"]),
                pixel_id=_opt_str(value.get("pixel_id")),
            )
        )

    def _preferences(self, value: dict[str, Any], result: NormalizedChange) -> None:
        for item in _as_list(value.get("user_preferences")):
            self._collect(result, lambda: [self._preference(item)])

    def _preference(self, item: Any) -> PreferenceChange:
        if not isinstance(item, dict) or not item.get("category") or not item.get("value"):
            raise MalformedPayloadError("user preference without category/value", kind="preference_change")
        return PreferenceChange(
            contact=self._address(item.get("wa_id"), "preference_change"),
            category=str(item["category"]),
            value=str(item["value"]),
            timestamp=from_unix(item.get("timestamp")),
            detail=item.get("detail"),
        )

    def _address(self, raw: Any, kind: str) -> str:
        try:
            return normalize_address(raw, self._country_code)
        except MalformedPayloadError as e:
            raise MalformedPayloadError(str(e), kind=kind) from e


def build_content(message: dict[str, Any], message_type: str) -> Content:
    """Map one vendor message object to a content variant."""
    context = None
    raw_context = message.get("context")
    if isinstance(raw_context, dict) and raw_context.get("id"):
        context = ReplyContext(quoted_external_id=raw_context["id"], quoted_sender=raw_context.get("from"))

    body = message.get(message_type) if isinstance(message.get(message_type), dict) else {}

    if message_type == "text":
        return TextContent(
            text=body.get("body") or "",
            preview_url=bool(body.get("preview_url", False)),
            context=context,
        )

    if message_type in MEDIA_TYPES:
        caption = body.get("caption")
        filename = body.get("filename")
        return MediaContent(
            type=message_type,
            text=caption or filename or f"[{message_type}]",
            media_id=body.get("id"),
            media_url=body.get("link") or body.get("url"),
            mime_type=body.get("mime_type"),
            sha256=body.get("sha256"),
            caption=caption,
            filename=filename,
            voice=bool(body.get("voice", False)),
            context=context,
        )

    if message_type == "location":
        return LocationContent(
            text=f"📍 {body.get('name') or 'Location'}",
            latitude=body.get("latitude"),
            longitude=body.get("longitude"),
            name=body.get("name"),
            address=body.get("address"),
            context=context,
        )

    if message_type == "contacts":
        cards = tuple(c for c in _as_list(message.get("contacts")) if isinstance(c, dict))
        first_name = None
        if cards and isinstance(cards[0].get("name"), dict):
            first_name = cards[0]["name"].get("formatted_name")
        return ContactsContent(text=f"👤 Contact: {first_name or 'Unknown'}", contacts=cards, context=context)

    if message_type == "interactive":
        return _interactive_content(body, context)

    if message_type == "button":
        return ButtonReplyContent(
            text=body.get("text") or "[Button Reply]",
            title=body.get("text"),
            payload=body.get("payload"),
            context=context,
        )

    return UnknownContent(type=message_type, text=f"[{message_type}]", raw=body, context=context)


def _interactive_content(interactive: dict[str, Any], context: ReplyContext | None) -> Content:
    kind = interactive.get("type")

    if kind == "button_reply":
        reply = interactive.get("button_reply") or {}
        return ButtonReplyContent(
            text=reply.get("title") or "[Button Reply]",
            button_id=reply.get("id"),
            title=reply.get("title"),
            context=context,
        )

    if kind == "list_reply":
        reply = interactive.get("list_reply") or {}
        return ListReplyContent(
            text=reply.get("title") or "[List Reply]",
            list_id=reply.get("id"),
            title=reply.get("title"),
            description=reply.get("description"),
            context=context,
        )

    if kind == "nfm_reply":
        reply = interactive.get("nfm_reply") or {}
        response = _parse_flow_response(reply.get("response_json"))
        return FlowReplyContent(
            text="[Flow Response]",
            flow_token=_opt_str(response.get("flow_token")),
            response=response,
            context=context,
        )

    return UnknownContent(type="interactive", text="[interactive]", raw=interactive, context=context)


def _parse_flow_response(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"raw": raw}
        return parsed if isinstance(parsed, dict) else {"raw": parsed}
    return {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _opt_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _reason(value: Any) -> str | None:
    # The platform sends the literal "NONE" when there is no reason
    if not value or str(value).upper() == "NONE":
        return None
    return str(value)


_default_normalizer = ChangeNormalizer()


def normalize(change: dict[str, Any]) -> list[CanonicalEvent]:
    """Normalize a change with default settings."""
    return _default_normalizer.normalize(change)
