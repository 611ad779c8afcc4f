"""Tenant lookups against the backing store.

Uses raw SQL with psycopg2 (no ORM). Each lookup returns the tenant only when
it is active; suspended and deleted tenants read as missing.
"""

from __future__ import annotations

import threading
from typing import Protocol

from convoy.infra.db import fetchone, txn

from .models import KeyKind, Tenant, TenantKey

_COLUMNS = "id, name, phone_number_id, account_id, app_secret, verify_token, status, is_deleted"

_WHERE_BY_KIND: dict[KeyKind, str] = {
    KeyKind.PHONE_NUMBER_ID: "phone_number_id = %s",
    KeyKind.ACCOUNT_ID: "account_id = %s",
    KeyKind.VERIFY_TOKEN: "verify_token = %s",
}


class TenantRepository(Protocol):
    """Read side of the tenants collection."""

    def find_active(self, key: TenantKey) -> Tenant | None:
        """Return the active tenant matching key, or None."""
        ...


class PostgresTenantRepository:
    """Tenants table lookups."""

    def __init__(self, dsn: str | None = None, **conn_kwargs) -> None:
        self._conn_kwargs = dict(conn_kwargs, dsn=dsn)

    def find_active(self, key: TenantKey) -> Tenant | None:
        where = _WHERE_BY_KIND[key.kind]
        with txn(**self._conn_kwargs) as cur:
            row = fetchone(
                cur,
                f"""
                SELECT {_COLUMNS} FROM tenants
                WHERE {where} AND status = 'active' AND is_deleted = false
                LIMIT 1
                """,
                (key.value,),
            )
        return _row_to_tenant(row) if row else None


def _row_to_tenant(row: tuple) -> Tenant:
    return Tenant(
        id=str(row[0]),
        name=row[1],
        phone_number_id=row[2],
        account_id=row[3],
        app_secret=row[4],
        verify_token=row[5],
        status=row[6],
        is_deleted=bool(row[7]),
    )


class InMemoryTenantRepository:
    """Dict-backed repository for dev mode and tests.

    ``lookups`` counts calls so tests can assert cache behaviour.
    """

    def __init__(self, tenants: list[Tenant] | None = None) -> None:
        self._tenants: dict[str, Tenant] = {}
        self._lock = threading.Lock()
        self.lookups = 0
        for tenant in tenants or []:
            self.put(tenant)

    def put(self, tenant: Tenant) -> None:
        """Insert or replace a tenant (external administration path)."""
        with self._lock:
            self._tenants[tenant.id] = tenant

    def find_active(self, key: TenantKey) -> Tenant | None:
        with self._lock:
            self.lookups += 1
            for tenant in self._tenants.values():
                if not tenant.is_active:
                    continue
                if _matches(tenant, key):
                    return tenant
        return None


def _matches(tenant: Tenant, key: TenantKey) -> bool:
    if key.kind is KeyKind.PHONE_NUMBER_ID:
        return tenant.phone_number_id == key.value
    if key.kind is KeyKind.ACCOUNT_ID:
        return tenant.account_id == key.value
    return tenant.verify_token is not None and tenant.verify_token == key.value
