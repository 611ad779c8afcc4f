"""Webhook audit log - one row per processed POST.

Uses raw SQL with psycopg2 (no ORM). The row holds counts, ids and error
strings only; payload bodies are never stored.
"""

from __future__ import annotations

import threading
from typing import Any, Protocol

from psycopg2.extras import Json

from convoy.infra.db import txn

from .report import IngestionReport


class WebhookLogRepository(Protocol):
    def write(self, report: IngestionReport, correlation_id: str | None) -> None: ...


class PostgresWebhookLogRepository:
    def __init__(self, dsn: str | None = None, **conn_kwargs: Any) -> None:
        self._conn_kwargs = dict(conn_kwargs, dsn=dsn)

    def write(self, report: IngestionReport, correlation_id: str | None) -> None:
        data = report.to_dict()
        with txn(**self._conn_kwargs) as cur:
            cur.execute(
                """
                INSERT INTO webhook_logs (
                    correlation_id, tenant_ids, fields, verifications,
                    outcomes, failures, rejected, ignored, duration_ms
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    correlation_id,
                    data["tenant_ids"],
                    data["fields"],
                    Json(data["verifications"]),
                    Json(data["outcomes"]),
                    Json(data["failures"]),
                    report.rejected,
                    report.ignored,
                    report.duration_ms,
                ),
            )


class InMemoryWebhookLogRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows: list[dict[str, Any]] = []

    def write(self, report: IngestionReport, correlation_id: str | None) -> None:
        with self._lock:
            self.rows.append(dict(report.to_dict(), correlation_id=correlation_id))
