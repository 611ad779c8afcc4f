"""Tenant (business account) model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

TenantStatus = Literal["active", "suspended", "deleted"]


class KeyKind(str, Enum):
    """Identifier families a tenant can be looked up by."""

    PHONE_NUMBER_ID = "phone"
    ACCOUNT_ID = "account"
    VERIFY_TOKEN = "token"


@dataclass(frozen=True)
class TenantKey:
    """One lookup key. Cache entries are keyed by ``cache_key``."""

    kind: KeyKind
    value: str

    @classmethod
    def by_phone_id(cls, phone_number_id: str) -> TenantKey:
        return cls(KeyKind.PHONE_NUMBER_ID, phone_number_id)

    @classmethod
    def by_account_id(cls, account_id: str) -> TenantKey:
        return cls(KeyKind.ACCOUNT_ID, account_id)

    @classmethod
    def by_verify_token(cls, verify_token: str) -> TenantKey:
        return cls(KeyKind.VERIFY_TOKEN, verify_token)

    @property
    def cache_key(self) -> str:
        return f"{self.kind.value}:{self.value}"


@dataclass(frozen=True)
class Tenant:
    """Snapshot of a business account.

    Immutable for the duration of an ingestion. ``app_secret`` and
    ``verify_token`` never appear in logs or repr output.
    """

    id: str
    name: str
    phone_number_id: str
    account_id: str
    app_secret: str | None = None
    verify_token: str | None = None
    status: TenantStatus = "active"
    is_deleted: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == "active" and not self.is_deleted

    def __repr__(self) -> str:
        return (
            f"Tenant(id={self.id!r}, name={self.name!r}, "
            f"phone_number_id={self.phone_number_id!r}, status={self.status!r})"
        )
