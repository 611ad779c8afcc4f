"""WhatsApp webhook routes - Meta Cloud API, multi-tenant.

GET is the subscription handshake: echo hub.challenge when hub.verify_token
belongs to an active tenant.

POST always answers 200 EVENT_RECEIVED before any processing. The platform
retries on non-2xx or slow responses, so ingestion runs as a background task
after the response is sent and is idempotent on redelivery.
"""

from fastapi import APIRouter, BackgroundTasks, Header, Query, Request, Response

from convoy.api import deps
from convoy.errors import BackingStoreUnavailable
from convoy.observability.correlation import get_correlation_id
from convoy.observability.logging import get_logger
from convoy.observability.redaction import safe_log_context

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

ACK_BODY = "EVENT_RECEIVED"


@router.get("")
def verify_subscription(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
) -> Response:
    """Meta webhook verification (GET).

    Returns:
        200 with hub.challenge if the token matches an active tenant.
        400 if hub.mode or hub.verify_token is missing.
        403 otherwise.
    """
    if not hub_mode or not hub_verify_token:
        logger.warning(
            "webhook verification missing parameters",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode or "missing")},
        )
        return Response(status_code=400, content="missing parameters")

    try:
        ok = deps.get_engine().verify_subscription(hub_mode, hub_verify_token)
    except BackingStoreUnavailable as e:
        logger.error(
            "webhook verification lookup failed",
            extra={"extra_fields": safe_log_context(error=str(e))},
        )
        return Response(status_code=403, content="verification failed")

    if ok:
        logger.info(
            "webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return Response(status_code=200, content=hub_challenge or "")

    logger.warning(
        "webhook verification failed",
        extra={"extra_fields": safe_log_context(hub_mode=hub_mode, hub_verify_token=hub_verify_token)},
    )
    return Response(status_code=403, content="verification failed")


@router.post("")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> Response:
    """Receive webhook events (POST).

    IMPORTANT: Always return 200, even for bodies we cannot use.

    Args:
        request: FastAPI request object.
        background_tasks: Runs ingestion after the response is sent.
        x_hub_signature_256: HMAC signature from Meta.
    """
    correlation_id = get_correlation_id()

    try:
        body_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content=ACK_BODY)

    background_tasks.add_task(
        deps.get_engine().ingest,
        body_bytes,
        x_hub_signature_256,
        correlation_id,
    )
    logger.info(
        "webhook accepted",
        extra={"extra_fields": {"size": len(body_bytes), "signed": bool(x_hub_signature_256)}},
    )
    return Response(status_code=200, content=ACK_BODY)
