"""Tests for the PostgreSQL account event store and webhook log (mocked cursor)."""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

from convoy.accounts.pg_store import PostgresAccountEventStore, insert_alert
from convoy.accounts.rules import AlertRecord
from convoy.conversations.models import Outcome
from convoy.ingestion.report import EventFailure, IngestionReport
from convoy.ingestion.webhook_log import PostgresWebhookLogRepository
from convoy.whatsapp.events import AccountAlert, TemplateStatusChange, TrackingEvent


def _cursor(*rowcounts):
    """Cursor whose rowcount follows the given sequence, one per execute."""
    cur = MagicMock()
    counts = iter(rowcounts)

    def execute(query, params=None):
        cur.rowcount = next(counts)

    cur.execute.side_effect = execute
    return cur


@contextmanager
def _mock_txn(module, cur):
    @contextmanager
    def fake_txn(**kwargs):
        yield cur

    with patch(f"{module}.txn", fake_txn):
        yield


def _rejected():
    return TemplateStatusChange(
        template_id="123", name="welcome", language="en_US", event="REJECTED", reason="Bad format"
    )


class TestInsertAlert:
    def test_keyed_alert_applied(self):
        cur = _cursor(1)
        alert = AlertRecord("ACCOUNT_UPDATE", "CRITICAL", "Banned", "x", delivery_key="k1")

        assert insert_alert(cur, "tenant-a", alert) is Outcome.APPLIED
        sql, params = cur.execute.call_args.args
        assert "ON CONFLICT (tenant_id, delivery_key) WHERE delivery_key IS NOT NULL DO NOTHING" in sql
        assert params[1] == "k1"

    def test_keyed_conflict_is_duplicate(self):
        alert = AlertRecord("ACCOUNT_UPDATE", "CRITICAL", "Banned", "x", delivery_key="k1")
        assert insert_alert(_cursor(0), "tenant-a", alert) is Outcome.DUPLICATE

    def test_transition_alert_inserted_without_key(self):
        cur = _cursor(1)
        alert = AlertRecord("TEMPLATE_REJECTED", "WARNING", "Template rejected: welcome", "x")

        assert insert_alert(cur, "tenant-a", alert) is Outcome.APPLIED
        assert cur.execute.call_args.args[1][1] is None

    def test_no_alert_no_sql(self):
        cur = _cursor()
        assert insert_alert(cur, "tenant-a", None) is Outcome.UNCHANGED
        cur.execute.assert_not_called()


class TestPostgresAccountEventStore:
    def test_template_change_writes_alert(self):
        cur = _cursor(1, 1)

        with _mock_txn("convoy.accounts.pg_store", cur):
            outcome = PostgresAccountEventStore().apply_template_status("tenant-a", _rejected())

        assert outcome is Outcome.APPLIED
        statements = [c.args[0] for c in cur.execute.call_args_list]
        assert "INSERT INTO whatsapp_templates" in statements[0]
        assert "IS DISTINCT FROM" in statements[0]
        assert "INSERT INTO account_alerts" in statements[1]

    def test_repeated_rejection_inserts_alert_each_time(self):
        cur = _cursor(1, 1, 1, 1, 1)
        store = PostgresAccountEventStore()
        approved = TemplateStatusChange(
            template_id="123", name="welcome", language="en_US", event="APPROVED", reason=None
        )

        with _mock_txn("convoy.accounts.pg_store", cur):
            store.apply_template_status("tenant-a", _rejected())
            store.apply_template_status("tenant-a", approved)
            assert store.apply_template_status("tenant-a", _rejected()) is Outcome.APPLIED

        statements = [c.args[0] for c in cur.execute.call_args_list]
        assert sum("INSERT INTO account_alerts" in s for s in statements) == 2

    def test_unchanged_template_skips_alert(self):
        cur = _cursor(0)

        with _mock_txn("convoy.accounts.pg_store", cur):
            outcome = PostgresAccountEventStore().apply_template_status("tenant-a", _rejected())

        assert outcome is Outcome.UNCHANGED
        assert cur.execute.call_count == 1

    def test_record_alert_keeps_raw(self):
        cur = _cursor(1)
        event = AccountAlert(
            alert_type="OBA", severity="INFO", title="t", description="d", raw={"alert_info": {}}
        )

        with _mock_txn("convoy.accounts.pg_store", cur):
            assert PostgresAccountEventStore().record_alert("tenant-a", event) is Outcome.APPLIED

        params = cur.execute.call_args.args[1]
        assert params[-1].adapted == {"alert_info": {}}
        assert params[1] is not None

    def test_tracking_duplicate(self):
        cur = _cursor(0)

        with _mock_txn("convoy.accounts.pg_store", cur):
            outcome = PostgresAccountEventStore().record_tracking(
                "tenant-a", TrackingEvent(event_name="Lead", event_id="ev-1")
            )

        assert outcome is Outcome.DUPLICATE


class TestPostgresWebhookLog:
    def test_row_has_counts_not_payloads(self):
        cur = MagicMock()
        report = IngestionReport(tenant_ids={"tenant-b", "tenant-a"}, fields=["messages"])
        report.record_outcome(Outcome.APPLIED)
        report.record_failure(EventFailure("inbound_message", "m1", "statement timeout"))

        with _mock_txn("convoy.ingestion.webhook_log", cur):
            PostgresWebhookLogRepository().write(report, "req-1")

        sql, params = cur.execute.call_args.args
        assert "INSERT INTO webhook_logs" in sql
        assert params[0] == "req-1"
        assert params[1] == ["tenant-a", "tenant-b"]
        assert params[4].adapted == {"applied": 1}
        assert params[5].adapted == [{"kind": "inbound_message", "external_id": "m1", "error": "statement timeout"}]
