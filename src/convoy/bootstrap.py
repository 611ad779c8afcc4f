"""Build the ingestion engine and its collaborators from settings."""

from __future__ import annotations

from convoy.accounts.pg_store import PostgresAccountEventStore
from convoy.accounts.store import InMemoryAccountEventStore
from convoy.conversations.pg_store import PostgresConversationStore
from convoy.conversations.store import InMemoryConversationStore
from convoy.ingestion.engine import IngestionEngine
from convoy.ingestion.webhook_log import InMemoryWebhookLogRepository, PostgresWebhookLogRepository
from convoy.notifications.notifier import HttpNotifier, Notifier, NullNotifier
from convoy.observability.logging import get_logger
from convoy.settings import Settings
from convoy.tenants.cache import TenantCache
from convoy.tenants.directory import TenantDirectory
from convoy.tenants.repository import InMemoryTenantRepository, PostgresTenantRepository
from convoy.whatsapp.normalizer import ChangeNormalizer
from convoy.whatsapp.signature import SignatureVerifier

logger = get_logger(__name__)


def build_notifier(settings: Settings) -> Notifier:
    if not settings.notifier_url:
        return NullNotifier()
    return HttpNotifier(settings.notifier_url, settings.notifier_secret, settings.notifier_timeout_s)


def build_engine(settings: Settings, *, tenants: InMemoryTenantRepository | None = None) -> IngestionEngine:
    """Wire an engine for the configured backend.

    Args:
        settings: Runtime configuration.
        tenants: Seed repository for the memory backend (ignored for postgres).
    """
    if settings.store_backend == "postgres":
        conn_kwargs = {
            "connect_timeout_s": settings.db_connect_timeout_s,
            "statement_timeout_ms": settings.db_statement_timeout_ms,
            "lock_timeout_ms": settings.db_lock_timeout_ms,
        }
        dsn = settings.database_url
        repository = PostgresTenantRepository(dsn, **conn_kwargs)
        conversations = PostgresConversationStore(
            dsn, profile_history_limit=settings.profile_history_limit, **conn_kwargs
        )
        accounts = PostgresAccountEventStore(dsn, **conn_kwargs)
        webhook_log = PostgresWebhookLogRepository(dsn, **conn_kwargs)
    else:
        repository = tenants or InMemoryTenantRepository()
        conversations = InMemoryConversationStore(
            lock_timeout_s=settings.db_lock_timeout_ms / 1000,
            profile_history_limit=settings.profile_history_limit,
        )
        accounts = InMemoryAccountEventStore()
        webhook_log = InMemoryWebhookLogRepository()

    logger.info(
        "ingestion engine configured",
        extra={
            "extra_fields": {
                "store_backend": settings.store_backend,
                "missing_signature_policy": settings.missing_signature_policy,
                "notifier_enabled": bool(settings.notifier_url),
            }
        },
    )
    return IngestionEngine(
        directory=TenantDirectory(repository, TenantCache(ttl_seconds=settings.tenant_cache_ttl_s)),
        verifier=SignatureVerifier(reject_unsigned=settings.missing_signature_policy == "reject"),
        normalizer=ChangeNormalizer(settings.default_country_code),
        conversations=conversations,
        accounts=accounts,
        notifier=build_notifier(settings),
        webhook_log=webhook_log,
        max_workers=settings.ingest_max_workers,
        event_timeout_s=settings.ingest_event_timeout_s,
    )
