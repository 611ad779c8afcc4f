"""In-process TTL cache of tenant snapshots.

Entries are immutable snapshots keyed by the identifier used for the lookup,
so a credential rotation becomes visible only after the TTL elapses or
``invalidate`` is called. Concurrent population is last-write-wins.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from .models import Tenant, TenantKey

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class _Entry:
    tenant: Tenant
    stored_at: float


class TenantCache:
    """TTL cache with an explicit lifecycle.

    Args:
        ttl_seconds: Entry lifetime.
        clock: Monotonic time source; tests inject a fake.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: TenantKey) -> Tenant | None:
        """Return a fresh cached tenant, evicting it if expired."""
        with self._lock:
            entry = self._entries.get(key.cache_key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self._ttl:
                del self._entries[key.cache_key]
                return None
            return entry.tenant

    def put(self, key: TenantKey, tenant: Tenant) -> None:
        with self._lock:
            self._entries[key.cache_key] = _Entry(tenant=tenant, stored_at=self._clock())

    def invalidate(self, tenant_id: str | None = None) -> int:
        """Drop every entry for tenant_id, or everything when None.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if tenant_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            stale = [k for k, e in self._entries.items() if e.tenant.id == tenant_id]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def stats(self) -> dict[str, Any]:
        """Size, TTL and cache keys (key values are identifiers, not secrets).

        Verify-token keys are masked because the token is a credential.
        """
        with self._lock:
            keys = [k if not k.startswith("token:") else "token:***" for k in self._entries]
            return {"size": len(self._entries), "ttl": self._ttl, "entries": keys}
