"""Conversation store interface and in-process implementation.

Every operation is idempotent and safe under concurrent calls for the same
conversation: the read that feeds a decision and the write that follows it
happen under one per-conversation lock, never as two separate steps.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Protocol

from convoy.errors import BackingStoreUnavailable
from convoy.infra.time import utc_now

from . import aggregate
from .models import Conversation, Message, Outcome

ConversationKey = tuple[str, str]


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one store operation.

    Attributes:
        outcome: What happened.
        conversation_id: Set when a conversation was located.
        changed_fields: Profile fields written by apply_profile_update.
        created: A conversation was created by this call.
    """

    outcome: Outcome
    conversation_id: str | None = None
    changed_fields: frozenset[str] = field(default_factory=frozenset)
    created: bool = False


class ConversationStore(Protocol):
    """Idempotent mutations of conversation aggregates."""

    def append_inbound_message(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        """Append an incoming message; DUPLICATE if its external id exists."""
        ...

    def append_outbound_echo(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        """Append an outgoing (echoed) message; does not open the window."""
        ...

    def apply_reaction(
        self,
        tenant_id: str,
        contact: str,
        target_external_id: str,
        reactor: str,
        emoji: str,
        timestamp: datetime,
    ) -> MutationResult:
        """Set or remove reactor's reaction; TARGET_NOT_FOUND if no target."""
        ...

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
        """Advance a message's status wherever it is stored; NOT_FOUND if unknown."""
        ...

    def apply_profile_update(
        self, tenant_id: str, contact: str, profile: dict[str, str | None]
    ) -> MutationResult:
        """Diff and write profile fields; creates the conversation if needed."""
        ...

    def get(self, tenant_id: str, contact: str) -> Conversation | None:
        """Return a detached copy of the conversation, or None."""
        ...


class InMemoryConversationStore:
    """Thread-safe in-process store (STORE_BACKEND=memory, tests).

    Args:
        lock_timeout_s: Bounded wait for a conversation lock; a timeout is
            reported as BackingStoreUnavailable.
        profile_history_limit: Profile changes kept per contact.
        clock: Wall-clock source for updated_at and profile history.
    """

    def __init__(
        self,
        *,
        lock_timeout_s: float = 3.0,
        profile_history_limit: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lock_timeout = lock_timeout_s
        self._history_limit = profile_history_limit
        self._clock = clock
        self._conversations: dict[ConversationKey, Conversation] = {}
        self._locks: dict[ConversationKey, threading.Lock] = {}
        self._index: dict[str, set[ConversationKey]] = {}
        self._registry_lock = threading.Lock()

    # -- locking ------------------------------------------------------------

    @contextmanager
    def _locked(self, key: ConversationKey, *, create: bool) -> Iterator[tuple[Conversation | None, bool]]:
        with self._registry_lock:
            # Conversations are never removed, so an absent one needs no lock
            if not create and key not in self._conversations:
                lock = None
            else:
                lock = self._locks.setdefault(key, threading.Lock())
        if lock is None:
            yield None, False
            return
        if not lock.acquire(timeout=self._lock_timeout):
            raise BackingStoreUnavailable(f"timed out waiting for conversation lock after {self._lock_timeout}s")
        try:
            created = False
            with self._registry_lock:
                conversation = self._conversations.get(key)
                if conversation is None and create:
                    conversation = aggregate.new_conversation(key[0], key[1], self._clock())
                    self._conversations[key] = conversation
                    created = True
            yield conversation, created
        finally:
            lock.release()

    def _index_message(self, key: ConversationKey, external_id: str) -> None:
        with self._registry_lock:
            self._index.setdefault(external_id, set()).add(key)

    # -- operations ---------------------------------------------------------

    def append_inbound_message(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        return self._append((tenant_id, contact), message)

    def append_outbound_echo(self, tenant_id: str, contact: str, message: Message) -> MutationResult:
        return self._append((tenant_id, contact), message)

    def _append(self, key: ConversationKey, message: Message) -> MutationResult:
        with self._locked(key, create=True) as (conversation, created):
            outcome = aggregate.append_message(conversation, copy.deepcopy(message), self._clock())
            if outcome is Outcome.APPLIED:
                self._index_message(key, message.external_id)
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
        with self._locked((tenant_id, contact), create=False) as (conversation, _):
            if conversation is None:
                return MutationResult(Outcome.TARGET_NOT_FOUND)
            outcome = aggregate.apply_reaction(
                conversation, target_external_id, reactor, emoji, timestamp, self._clock()
            )
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
        with self._registry_lock:
            keys = [k for k in self._index.get(external_id, ()) if tenant_id is None or k[0] == tenant_id]
        if not keys:
            return MutationResult(Outcome.NOT_FOUND)

        with self._locked(sorted(keys)[0], create=False) as (conversation, _):
            outcome = aggregate.apply_status(
                conversation, external_id, status, timestamp, self._clock(), error=error, category=category
            )
            return MutationResult(outcome, conversation.id)

    def apply_profile_update(
        self, tenant_id: str, contact: str, profile: dict[str, str | None]
    ) -> MutationResult:
        with self._locked((tenant_id, contact), create=True) as (conversation, created):
            changed = aggregate.apply_profile(conversation, profile, self._clock(), self._history_limit)
            outcome = Outcome.APPLIED if changed else Outcome.UNCHANGED
            return MutationResult(outcome, conversation.id, frozenset(changed), created=created)

    def get(self, tenant_id: str, contact: str) -> Conversation | None:
        with self._locked((tenant_id, contact), create=False) as (conversation, _):
            return copy.deepcopy(conversation) if conversation is not None else None

    def count(self) -> int:
        with self._registry_lock:
            return len(self._conversations)
