"""Tests for account-level events: alert rules and the in-process store."""

import pytest

from convoy.accounts.rules import (
    alert_from_event,
    capability_alert,
    template_key,
    template_quality_alert,
    template_status_alert,
)
from convoy.accounts.store import apply_account_event
from convoy.conversations.models import Outcome
from convoy.whatsapp.events import (
    AccountAlert,
    CapabilityChange,
    FlowSubmission,
    PreferenceChange,
    ProfileUpdate,
    TemplateQualityChange,
    TemplateStatusChange,
    TrackingEvent,
)


def _status(event="REJECTED", reason="Template rejected by WhatsApp", template_id="123"):
    return TemplateStatusChange(
        template_id=template_id, name="welcome", language="en_US", event=event, reason=reason
    )


def _quality(score="RED"):
    return TemplateQualityChange(template_id="123", name="welcome", score=score, previous_score="GREEN")


def _banned(entry_time=None):
    return AccountAlert(
        alert_type="ACCOUNT_UPDATE",
        severity="CRITICAL",
        title="Banned",
        description="x",
        raw={"event": "DISABLED_UPDATE", "ban_info": {}},
        entry_time=entry_time,
    )


class TestRules:
    def test_template_key_prefers_id(self):
        assert template_key("123", "welcome", "en_US") == "123"
        assert template_key(None, "welcome", "en_US") == "welcome:en_US"

    @pytest.mark.parametrize(
        "event,severity",
        [("REJECTED", "WARNING"), ("PAUSED", "WARNING"), ("DISABLED", "CRITICAL"), ("APPROVED", None)],
    )
    def test_template_status_severity(self, event, severity):
        alert = template_status_alert(_status(event))
        assert (alert.severity if alert else None) == severity

    @pytest.mark.parametrize("score,severity", [("GREEN", None), ("YELLOW", "WARNING"), ("RED", "CRITICAL")])
    def test_template_quality_severity(self, score, severity):
        alert = template_quality_alert(_quality(score))
        assert (alert.severity if alert else None) == severity

    def test_capability_alerts(self):
        assert capability_alert(CapabilityChange(capability="MESSAGING", status="AVAILABLE")) is None
        alert = capability_alert(CapabilityChange(capability="MESSAGING", status="DISABLED"))
        assert alert.severity == "CRITICAL"

    def test_transition_alerts_are_unkeyed(self):
        assert template_status_alert(_status()).delivery_key is None
        assert template_quality_alert(_quality()).delivery_key is None
        restricted = CapabilityChange(capability="MESSAGING", status="RESTRICTED")
        assert capability_alert(restricted).delivery_key is None

    def test_delivery_key_follows_payload_and_entry_time(self):
        raw = {"alert_info": {"alert_type": "OBA_APPROVED"}}

        def key(raw, entry_time):
            event = AccountAlert(
                alert_type="OBA", severity="INFO", title="t", description="d", raw=raw, entry_time=entry_time
            )
            return alert_from_event(event).delivery_key

        assert key(raw, 1704067200) == key(dict(raw), 1704067200)
        assert key(raw, 1704067200) != key(raw, 1704153600)
        assert key(raw, 1704067200) != key({"alert_info": {}}, 1704067200)


class TestTemplates:
    def test_rejection_records_status_and_alert(self, accounts):
        assert accounts.apply_template_status("tenant-a", _status()) is Outcome.APPLIED

        template = accounts.template("tenant-a", "123")
        assert template["status"] == "REJECTED"
        assert template["reason"] == "Template rejected by WhatsApp"
        alerts = accounts.alerts("tenant-a")
        assert len(alerts) == 1
        assert alerts[0].severity == "WARNING"
        assert alerts[0].template_id == "123"

    def test_redelivery_is_unchanged(self, accounts):
        accounts.apply_template_status("tenant-a", _status())

        assert accounts.apply_template_status("tenant-a", _status()) is Outcome.UNCHANGED
        assert len(accounts.alerts("tenant-a")) == 1

    def test_approval_has_no_alert(self, accounts):
        accounts.apply_template_status("tenant-a", _status("APPROVED", reason=None))
        assert accounts.alerts("tenant-a") == []

    def test_template_without_id_keyed_by_name(self, accounts):
        accounts.apply_template_status("tenant-a", _status(template_id=None))
        assert accounts.template("tenant-a", "welcome:en_US")["status"] == "REJECTED"

    def test_quality_change(self, accounts):
        assert accounts.apply_template_quality("tenant-a", _quality("RED")) is Outcome.APPLIED
        assert accounts.apply_template_quality("tenant-a", _quality("RED")) is Outcome.UNCHANGED

        assert accounts.template("tenant-a", "123")["quality"] == "RED"
        assert [a.severity for a in accounts.alerts("tenant-a")] == ["CRITICAL"]

    def test_repeated_rejection_raises_second_alert(self, accounts):
        accounts.apply_template_status("tenant-a", _status("REJECTED"))
        accounts.apply_template_status("tenant-a", _status("APPROVED", reason=None))

        assert accounts.apply_template_status("tenant-a", _status("REJECTED")) is Outcome.APPLIED
        assert [a.alert_type for a in accounts.alerts("tenant-a")] == ["TEMPLATE_REJECTED", "TEMPLATE_REJECTED"]

    def test_quality_dropping_again_raises_second_alert(self, accounts):
        for score in ("YELLOW", "GREEN", "YELLOW"):
            assert accounts.apply_template_quality("tenant-a", _quality(score)) is Outcome.APPLIED

        assert [a.severity for a in accounts.alerts("tenant-a")] == ["WARNING", "WARNING"]


class TestAlertsAndCapabilities:
    def test_redelivered_alert_is_duplicate(self, accounts):
        event = _banned(entry_time=1704067200)

        assert accounts.record_alert("tenant-a", event) is Outcome.APPLIED
        assert accounts.record_alert("tenant-a", event) is Outcome.DUPLICATE
        assert len(accounts.alerts("tenant-a")) == 1

    def test_same_alert_raised_again_later_is_kept(self, accounts):
        assert accounts.record_alert("tenant-a", _banned(entry_time=1704067200)) is Outcome.APPLIED
        assert accounts.record_alert("tenant-a", _banned(entry_time=1704672000)) is Outcome.APPLIED

        assert [a.title for a in accounts.alerts("tenant-a")] == ["Banned", "Banned"]

    def test_alerts_per_tenant(self, accounts):
        event = AccountAlert(alert_type="ACCOUNT_UPDATE", severity="INFO", title="t", description="d")
        accounts.record_alert("tenant-a", event)
        assert accounts.record_alert("tenant-b", event) is Outcome.APPLIED

    def test_capability_transition(self, accounts):
        restricted = CapabilityChange(capability="MESSAGING", status="RESTRICTED")

        assert accounts.apply_capability("tenant-a", restricted) is Outcome.APPLIED
        assert accounts.apply_capability("tenant-a", restricted) is Outcome.UNCHANGED

        assert accounts.capability("tenant-a", "MESSAGING")["status"] == "RESTRICTED"
        assert accounts.alerts("tenant-a")[0].severity == "WARNING"

    def test_repeated_restriction_raises_second_alert(self, accounts):
        restricted = CapabilityChange(capability="MESSAGING", status="RESTRICTED")
        available = CapabilityChange(capability="MESSAGING", status="AVAILABLE")

        accounts.apply_capability("tenant-a", restricted)
        accounts.apply_capability("tenant-a", available)

        assert accounts.apply_capability("tenant-a", restricted) is Outcome.APPLIED
        assert len(accounts.alerts("tenant-a")) == 2


class TestTrackingPreferencesFlows:
    def test_tracking_deduplicated_by_event_id(self, accounts):
        event = TrackingEvent(event_name="Purchase", event_id="ev-1")
        assert accounts.record_tracking("tenant-a", event) is Outcome.APPLIED
        assert accounts.record_tracking("tenant-a", event) is Outcome.DUPLICATE

    def test_preference_last_value_wins(self, accounts):
        stop = PreferenceChange(contact="155", category="marketing_messages", value="stop")
        resume = PreferenceChange(contact="155", category="marketing_messages", value="resume")

        assert accounts.apply_preference("tenant-a", stop) is Outcome.APPLIED
        assert accounts.apply_preference("tenant-a", stop) is Outcome.UNCHANGED
        assert accounts.apply_preference("tenant-a", resume) is Outcome.APPLIED
        assert accounts.preference("tenant-a", "155", "marketing_messages") == "resume"

    def test_flow_deduplicated_by_token(self, accounts):
        event = FlowSubmission(flow_token="tok-1", response={"rating": "5"})
        assert accounts.record_flow_response("tenant-a", event) is Outcome.APPLIED
        assert accounts.record_flow_response("tenant-a", event) is Outcome.DUPLICATE


class TestDispatch:
    def test_routes_by_event_type(self, accounts):
        event = TrackingEvent(event_name="Lead", event_id="ev-9")
        assert apply_account_event(accounts, "tenant-a", event) is Outcome.APPLIED
        assert apply_account_event(accounts, "tenant-a", event) is Outcome.DUPLICATE

    def test_rejects_conversation_events(self, accounts):
        with pytest.raises(TypeError):
            apply_account_event(accounts, "tenant-a", ProfileUpdate(contact="155", name="Ana"))
