"""Tenant directory - resolve inbound identifiers to active tenants."""

from __future__ import annotations

from convoy.errors import TenantMismatchError
from convoy.observability.logging import get_logger
from convoy.observability.redaction import safe_log_context

from .cache import TenantCache
from .models import Tenant, TenantKey
from .repository import TenantRepository

logger = get_logger(__name__)


class TenantDirectory:
    """Cache-fronted tenant resolution.

    On a cache miss the repository is queried and the result is cached under
    the identifier that was used. Misses are not cached, so a newly activated
    tenant is visible on its first webhook.
    """

    def __init__(self, repository: TenantRepository, cache: TenantCache) -> None:
        self._repository = repository
        self._cache = cache

    @property
    def cache(self) -> TenantCache:
        return self._cache

    def resolve(self, key: TenantKey) -> Tenant | None:
        """Resolve one key to an active tenant, or None (NotFound)."""
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        tenant = self._repository.find_active(key)
        if tenant is None:
            return None
        if not tenant.is_active:
            return None

        self._cache.put(key, tenant)
        logger.debug(
            "tenant cache populated",
            extra={"extra_fields": safe_log_context(key_kind=key.kind.value, tenant_id=tenant.id)},
        )
        return tenant

    def resolve_change(
        self,
        phone_number_id: str | None,
        account_id: str | None,
    ) -> Tenant | None:
        """Resolve the tenant for one webhook change.

        The phone-number id is authoritative: when present and unresolvable the
        change has no tenant. The account id alone is used when the change
        carries no metadata (template and account events).

        Raises:
            TenantMismatchError: Both ids resolve, but to different tenants.
        """
        by_account = self.resolve(TenantKey.by_account_id(account_id)) if account_id else None
        if not phone_number_id:
            return by_account

        by_phone = self.resolve(TenantKey.by_phone_id(phone_number_id))
        if by_phone is not None and by_account is not None and by_phone.id != by_account.id:
            raise TenantMismatchError(
                f"phone_number_id resolves to {by_phone.id}, account_id resolves to {by_account.id}"
            )
        return by_phone
