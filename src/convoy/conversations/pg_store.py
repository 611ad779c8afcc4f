"""PostgreSQL conversation store.

Uses raw SQL with psycopg2 (no ORM). One conversation is one row; contact,
messages, window and metrics are JSONB sub-documents.

Each operation is one short transaction:
1. INSERT ... ON CONFLICT DO NOTHING creates the row when needed.
2. SELECT ... FOR UPDATE locks it; concurrent mutations of the same
   conversation queue here (bounded by lock_timeout).
3. The pure aggregate mutation runs on the loaded document.
4. The row is written back and the transaction commits.

A second delivery of the same message therefore sees the first one's
committed append and reports DUPLICATE.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from convoy.infra.db import fetchone, for_update, txn
from convoy.infra.time import utc_now

from . import aggregate
from .models import Conversation, Message, Outcome
from .store import MutationResult

_SELECT = """
    SELECT id, tenant_id, contact, messages, last_message, last_message_at,
           window_state, metrics, status, is_deleted, created_at, updated_at
    FROM conversations
"""


class PostgresConversationStore:
    """Conversation aggregates in the ``conversations`` table.

    Args:
        dsn: Connection string; defaults to DATABASE_URL.
        profile_history_limit: Profile changes kept per contact.
        conn_kwargs: Timeouts forwarded to ``get_conn``.
    """

    def __init__(self, dsn: str | None = None, *, profile_history_limit: int = 10, **conn_kwargs: Any) -> None:
        self._conn_kwargs = dict(conn_kwargs, dsn=dsn)
        self._history_limit = profile_history_limit

    # -- row helpers --------------------------------------------------------

    def _ensure(self, cur: PgCursor, tenant_id: str, contact: str, now: datetime) -> bool:
        """Create the conversation row if absent. Returns True if created."""
        seed = aggregate.new_conversation(tenant_id, contact, now, conversation_id=str(uuid.uuid4()))
        cur.execute(
            """
            INSERT INTO conversations (
                id, tenant_id, contact_address, contact, messages, last_message,
                last_message_at, window_state, metrics, status, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, '[]'::jsonb, NULL, NULL, %s, %s, 'active', %s, %s)
            ON CONFLICT (tenant_id, contact_address) DO NOTHING
            """,
            (
                seed.id,
                tenant_id,
                contact,
                Json(seed.contact.to_dict()),
                Json(seed.window.to_dict()),
                Json(seed.metrics.to_dict()),
                now,
                now,
            ),
        )
        return cur.rowcount == 1

    def _lock_by_key(self, cur: PgCursor, tenant_id: str, contact: str) -> Conversation | None:
        row = for_update(cur, _SELECT + " WHERE tenant_id = %s AND contact_address = %s", (tenant_id, contact))
        return _row_to_conversation(row) if row else None

    def _lock_by_id(self, cur: PgCursor, conversation_id: str) -> Conversation | None:
        row = for_update(cur, _SELECT + " WHERE id = %s", (conversation_id,))
        return _row_to_conversation(row) if row else None

    def _write(self, cur: PgCursor, conversation: Conversation) -> None:
        doc = conversation.to_dict()
        cur.execute(
            """
            UPDATE conversations
            SET contact = %s, messages = %s, last_message = %s, last_message_at = %s,
                window_state = %s, metrics = %s, status = %s, updated_at = %s
            WHERE id = %s
            """,
            (
                Json(doc["contact"]),
                Json(doc["messages"]),
                Json(doc["last_message"]) if doc["last_message"] else None,
                conversation.last_message_at,
                Json(doc["window"]),
                Json(doc["metrics"]),
                conversation.status,
                conversation.updated_at,
                conversation.id,
            ),
        )

    # -- operations ---------------------------------------------------------

    def append_inbound_message(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        return self._append(tenant_id, contact, message)

    def append_outbound_echo(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        return self._append(tenant_id, contact, message)

    def _append(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        now = utc_now()
        with txn(**self._conn_kwargs) as cur:
            created = self._ensure(cur, tenant_id, contact, now)
            conversation = self._lock_by_key(cur, tenant_id, contact)
            outcome = aggregate.append_message(conversation, message, now)
            if outcome is Outcome.APPLIED:
                self._write(cur, conversation)
            return MutationResult(outcome, conversation.id, created=created)

    def apply_reaction(
        self,
        tenant_id: str,
        contact: str,
        target_external_id: str,
        reactor: str,
        emoji: str,
        timestamp: datetime,
    ) -> MutationResult:
        now = utc_now()
        with txn(**self._conn_kwargs) as cur:
            conversation = self._lock_by_key(cur, tenant_id, contact)
            if conversation is None:
                return MutationResult(Outcome.TARGET_NOT_FOUND)
            outcome = aggregate.apply_reaction(conversation, target_external_id, reactor, emoji, timestamp, now)
            if outcome is Outcome.APPLIED:
                self._write(cur, conversation)
            return MutationResult(outcome, conversation.id)

    def apply_status(
        self,
        external_id: str,
        status: str,
        timestamp: datetime,
        *,
        tenant_id: str | None = None,
        error: dict | None = None,
        category: str | None = None,
    ) -> MutationResult:
        now = utc_now()
        # Containment query served by the GIN index on messages
        containment = json.dumps([{"external_id": external_id}])
        with txn(**self._conn_kwargs) as cur:
            if tenant_id is None:
                row = fetchone(
                    cur,
                    "SELECT id FROM conversations WHERE messages @> %s::jsonb ORDER BY id LIMIT 1",
                    (containment,),
                )
            else:
                row = fetchone(
                    cur,
                    """
                    SELECT id FROM conversations
                    WHERE tenant_id = %s AND messages @> %s::jsonb
                    ORDER BY id LIMIT 1
                    """,
                    (tenant_id, containment),
                )
            if row is None:
                return MutationResult(Outcome.NOT_FOUND)

            conversation = self._lock_by_id(cur, str(row[0]))
            if conversation is None:
                return MutationResult(Outcome.NOT_FOUND)
            before = conversation.window.category
            outcome = aggregate.apply_status(
                conversation, external_id, status, timestamp, now, error=error, category=category
            )
            if outcome is Outcome.APPLIED or conversation.window.category != before:
                self._write(cur, conversation)
            return MutationResult(outcome, conversation.id)

    def apply_profile_update(
        self, tenant_id: str, contact: str, profile: dict[str, str | None]
    ) -> MutationResult:
        now = utc_now()
        with txn(**self._conn_kwargs) as cur:
            created = self._ensure(cur, tenant_id, contact, now)
            conversation = self._lock_by_key(cur, tenant_id, contact)
            changed = aggregate.apply_profile(conversation, profile, now, self._history_limit)
            if changed:
                self._write(cur, conversation)
            outcome = Outcome.APPLIED if changed else Outcome.UNCHANGED
            return MutationResult(outcome, conversation.id, frozenset(changed), created=created)

    def get(self, tenant_id: str, contact: str) -> Conversation | None:
        with txn(**self._conn_kwargs) as cur:
            row = fetchone(cur, _SELECT + " WHERE tenant_id = %s AND contact_address = %s", (tenant_id, contact))
        return _row_to_conversation(row) if row else None


def _row_to_conversation(row: tuple) -> Conversation:
    return Conversation.from_dict(
        {
            "id": row[0],
            "tenant_id": row[1],
            "contact": row[2],
            "messages": row[3],
            "last_message": row[4],
            "last_message_at": row[5],
            "window": row[6],
            "metrics": row[7],
            "status": row[8],
            "is_deleted": row[9],
            "created_at": row[10],
            "updated_at": row[11],
        }
    )
