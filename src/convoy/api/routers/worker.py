"""Internal routes (APP_ROLE=worker): health and tenant cache operations."""

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict

from convoy.api import deps
from convoy.observability.logging import get_logger
from convoy.observability.redaction import safe_log_context

router = APIRouter(prefix="/internal", tags=["internal"])

logger = get_logger(__name__)


class InvalidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tenant_id: str | None = None


@router.get("/health")
def internal_health() -> dict:
    """Internal subsystem health check."""
    return {"status": "ok", "subsystem": "internal"}


@router.get("/tenant-cache")
def tenant_cache_stats() -> dict:
    """Tenant directory cache size, TTL and keys (tokens masked)."""
    return deps.get_engine().directory.cache.stats()


@router.post("/tenant-cache/invalidate")
def invalidate_tenant_cache(body: InvalidateRequest | None = None) -> dict:
    """Drop cached entries for one tenant, or all entries when tenant_id is omitted."""
    tenant_id = body.tenant_id if body else None
    removed = deps.get_engine().directory.cache.invalidate(tenant_id)
    logger.info(
        "tenant cache invalidated",
        extra={"extra_fields": safe_log_context(tenant_id=tenant_id or "all", removed=removed)},
    )
    return {"removed": removed, "tenant_id": tenant_id}
