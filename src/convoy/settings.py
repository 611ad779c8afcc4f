"""Service settings loaded from the environment.

Defaults match the reference deployment: 5 minute tenant cache, accept
unsigned requests, notifications disabled until NOTIFIER_URL is set.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

StoreBackend = Literal["postgres", "memory"]
MissingSignaturePolicy = Literal["accept", "reject"]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Attributes:
        database_url: PostgreSQL DSN; required for the postgres backend.
        store_backend: Where tenants and conversations live.
        db_connect_timeout_s: psycopg2 connect_timeout.
        db_statement_timeout_ms: Per-statement timeout set on every connection.
        db_lock_timeout_ms: Maximum wait for a conversation row lock.
        tenant_cache_ttl_s: Tenant directory cache TTL.
        missing_signature_policy: What to do with unsigned POSTs.
        notifier_url: Downstream real-time endpoint; None disables notifications.
        notifier_secret: Sent as X-Webhook-Secret to the notifier endpoint.
        notifier_timeout_s: HTTP timeout for a single notification.
        ingest_max_workers: Thread pool size for concurrent event application.
        ingest_event_timeout_s: Upper bound on waiting for one event.
        profile_history_limit: Profile changes kept per contact.
        default_country_code: Prefixed to 10-digit contact addresses when set.
    """

    database_url: str | None = None
    store_backend: StoreBackend = "memory"
    db_connect_timeout_s: int = 5
    db_statement_timeout_ms: int = 5000
    db_lock_timeout_ms: int = 3000
    tenant_cache_ttl_s: float = 300.0
    missing_signature_policy: MissingSignaturePolicy = "accept"
    notifier_url: str | None = None
    notifier_secret: str | None = None
    notifier_timeout_s: float = 5.0
    ingest_max_workers: int = 8
    ingest_event_timeout_s: float = 10.0
    profile_history_limit: int = 10
    default_country_code: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables."""
        database_url = os.environ.get("DATABASE_URL") or None

        backend = os.environ.get("STORE_BACKEND") or ("postgres" if database_url else "memory")
        if backend not in ("postgres", "memory"):
            raise RuntimeError(f"Unknown STORE_BACKEND: {backend}")
        if backend == "postgres" and not database_url:
            raise RuntimeError("STORE_BACKEND=postgres requires DATABASE_URL")

        policy = os.environ.get("MISSING_SIGNATURE_POLICY", "accept").lower()
        if policy not in ("accept", "reject"):
            raise RuntimeError(f"Unknown MISSING_SIGNATURE_POLICY: {policy}")

        return cls(
            database_url=database_url,
            store_backend=backend,  # type: ignore[arg-type]
            db_connect_timeout_s=_env_int("DB_CONNECT_TIMEOUT_S", 5),
            db_statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT_MS", 5000),
            db_lock_timeout_ms=_env_int("DB_LOCK_TIMEOUT_MS", 3000),
            tenant_cache_ttl_s=_env_float("TENANT_CACHE_TTL_S", 300.0),
            missing_signature_policy=policy,  # type: ignore[arg-type]
            notifier_url=os.environ.get("NOTIFIER_URL") or None,
            notifier_secret=os.environ.get("NOTIFIER_SECRET") or None,
            notifier_timeout_s=_env_float("NOTIFIER_TIMEOUT_S", 5.0),
            ingest_max_workers=_env_int("INGEST_MAX_WORKERS", 8),
            ingest_event_timeout_s=_env_float("INGEST_EVENT_TIMEOUT_S", 10.0),
            profile_history_limit=_env_int("PROFILE_HISTORY_LIMIT", 10),
            default_country_code=os.environ.get("DEFAULT_COUNTRY_CODE") or None,
        )
