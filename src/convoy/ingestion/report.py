"""Per-request ingestion summary."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from convoy.conversations.models import Outcome


@dataclass(frozen=True)
class EventFailure:
    kind: str
    external_id: str | None
    error: str


@dataclass
class IngestionReport:
    """What happened to one webhook request.

    Outcome counts and failures are recorded from worker threads, so writes
    go through ``record_*`` which hold the report's lock.
    """

    ignored: bool = False
    rejected: bool = False
    tenant_ids: set[str] = field(default_factory=set)
    fields: list[str] = field(default_factory=list)
    verifications: dict[str, str] = field(default_factory=dict)
    dropped_changes: int = 0
    malformed: int = 0
    outcomes: Counter = field(default_factory=Counter)
    failures: list[EventFailure] = field(default_factory=list)
    notified: int = 0
    duration_ms: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_outcome(self, outcome: Outcome) -> None:
        with self._lock:
            self.outcomes[outcome.value] += 1

    def record_failure(self, failure: EventFailure) -> None:
        with self._lock:
            self.failures.append(failure)

    def record_notified(self) -> None:
        with self._lock:
            self.notified += 1

    def count(self, outcome: Outcome) -> int:
        return self.outcomes.get(outcome.value, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ignored": self.ignored,
            "rejected": self.rejected,
            "tenant_ids": sorted(self.tenant_ids),
            "fields": list(self.fields),
            "verifications": dict(self.verifications),
            "dropped_changes": self.dropped_changes,
            "malformed": self.malformed,
            "outcomes": dict(self.outcomes),
            "failures": [
                {"kind": f.kind, "external_id": f.external_id, "error": f.error} for f in self.failures
            ],
            "notified": self.notified,
            "duration_ms": self.duration_ms,
        }
