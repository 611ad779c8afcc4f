"""Shared pytest fixtures for Convoy tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from convoy.accounts.store import InMemoryAccountEventStore  # noqa: E402
from convoy.api import deps  # noqa: E402
from convoy.api.factory import create_app  # noqa: E402
from convoy.conversations.store import InMemoryConversationStore  # noqa: E402
from convoy.ingestion.engine import IngestionEngine  # noqa: E402
from convoy.ingestion.webhook_log import InMemoryWebhookLogRepository  # noqa: E402
from convoy.tenants.cache import TenantCache  # noqa: E402
from convoy.tenants.directory import TenantDirectory  # noqa: E402
from convoy.tenants.models import Tenant  # noqa: E402
from convoy.tenants.repository import InMemoryTenantRepository  # noqa: E402
from convoy.whatsapp.normalizer import ChangeNormalizer  # noqa: E402
from convoy.whatsapp.signature import SignatureVerifier  # noqa: E402

from tests.helpers import (  # noqa: E402
    ACCOUNT_A,
    ACCOUNT_B,
    PHONE_A,
    PHONE_B,
    SECRET_A,
    SECRET_B,
    TOKEN_A,
    FakeClock,
    RecordingNotifier,
)


@pytest.fixture
def tenant_a() -> Tenant:
    return Tenant(
        id="tenant-a",
        name="Tenant A",
        phone_number_id=PHONE_A,
        account_id=ACCOUNT_A,
        app_secret=SECRET_A,
        verify_token=TOKEN_A,
    )


@pytest.fixture
def tenant_b() -> Tenant:
    return Tenant(
        id="tenant-b",
        name="Tenant B",
        phone_number_id=PHONE_B,
        account_id=ACCOUNT_B,
        app_secret=SECRET_B,
    )


@pytest.fixture
def tenant_repo(tenant_a, tenant_b) -> InMemoryTenantRepository:
    return InMemoryTenantRepository([tenant_a, tenant_b])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def directory(tenant_repo, clock) -> TenantDirectory:
    return TenantDirectory(tenant_repo, TenantCache(ttl_seconds=300, clock=clock))


@pytest.fixture
def conversations() -> InMemoryConversationStore:
    return InMemoryConversationStore(lock_timeout_s=2.0)


@pytest.fixture
def accounts() -> InMemoryAccountEventStore:
    return InMemoryAccountEventStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def webhook_log() -> InMemoryWebhookLogRepository:
    return InMemoryWebhookLogRepository()


@pytest.fixture
def make_engine(directory, conversations, accounts, notifier, webhook_log):
    """Factory so tests can vary the verifier or notifier."""
    engines: list[IngestionEngine] = []

    def _make(**overrides) -> IngestionEngine:
        kwargs = dict(
            directory=directory,
            verifier=SignatureVerifier(),
            normalizer=ChangeNormalizer(),
            conversations=conversations,
            accounts=accounts,
            notifier=notifier,
            webhook_log=webhook_log,
            max_workers=4,
            event_timeout_s=5.0,
        )
        kwargs.update(overrides)
        engine = IngestionEngine(**kwargs)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture
def engine(make_engine) -> IngestionEngine:
    return make_engine()


@pytest.fixture
def client(engine):
    """Public-role app wired to the in-memory engine."""
    deps.set_engine(engine)
    try:
        yield TestClient(create_app(role="public"))
    finally:
        deps.set_engine(None)


@pytest.fixture
def worker_client(engine):
    deps.set_engine(engine)
    try:
        yield TestClient(create_app(role="worker"))
    finally:
        deps.set_engine(None)
