"""Best-effort notifications to downstream real-time subscribers.

The ingestion path only ever calls ``publish``, which hands the notification
to an unbounded queue and returns. A single daemon thread drains the queue
and POSTs each notification; delivery failures are logged and dropped.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from convoy.errors import NotifierUnavailable
from convoy.observability.logging import get_logger
from convoy.observability.redaction import safe_log_context

logger = get_logger(__name__)

NOTIFICATION_PATH = "/api/webhook/notification"

_STOP = object()


@dataclass(frozen=True)
class Notification:
    """One applied change, addressed to a tenant's subscribers.

    Attributes:
        type: Event kind (e.g. "inbound_message", "status_update").
        tenant_id: Tenant the change was applied to.
        data: Event-specific body.
        correlation_id: Request correlation id, forwarded as a header.
    """

    type: str
    tenant_id: str
    data: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "tenantId": self.tenant_id, "data": self.data}


class Notifier(Protocol):
    def publish(self, notification: Notification) -> None:
        """Enqueue a notification. Must not block or raise."""
        ...


class NullNotifier:
    """Used when NOTIFIER_URL is not configured."""

    def publish(self, notification: Notification) -> None:
        logger.debug(
            "notification dropped: notifier disabled",
            extra={"extra_fields": {"type": notification.type}},
        )


class HttpNotifier:
    """Queue-backed HTTP notifier.

    Args:
        base_url: Downstream service root; notifications go to
            ``{base_url}/api/webhook/notification``.
        secret: Sent as ``X-Webhook-Secret`` when set.
        timeout_s: Timeout for each POST.
    """

    def __init__(self, base_url: str, secret: str | None = None, timeout_s: float = 5.0) -> None:
        self._url = base_url.rstrip("/") + NOTIFICATION_PATH
        self._secret = secret
        self._timeout = timeout_s
        self._queue: queue.Queue[Any] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self.sent = 0
        self.failed = 0

    def publish(self, notification: Notification) -> None:
        self._ensure_worker()
        self._queue.put_nowait(notification)

    def close(self, timeout: float | None = None) -> None:
        """Stop the worker after it drains what is already queued."""
        thread = self._thread
        if thread is None:
            return
        self._queue.put_nowait(_STOP)
        thread.join(timeout)

    def _ensure_worker(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        with self._start_lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run, name="convoy-notifier", daemon=True)
                self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, notification: Notification) -> None:
        try:
            self.send(notification)
            self.sent += 1
        except NotifierUnavailable as e:
            self.failed += 1
            logger.warning(
                "notification delivery failed",
                extra={"extra_fields": safe_log_context(type=notification.type, error=str(e))},
            )
        except Exception:
            # The worker must outlive any single notification
            self.failed += 1
            logger.exception(
                "notification delivery crashed",
                extra={"extra_fields": {"type": notification.type}},
            )

    def send(self, notification: Notification) -> None:
        """POST one notification synchronously.

        Raises:
            NotifierUnavailable: On any transport error or non-2xx response.
        """
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers["X-Webhook-Secret"] = self._secret
        if notification.correlation_id:
            headers["X-Correlation-ID"] = notification.correlation_id

        try:
            response = requests.post(
                self._url,
                json=notification.to_payload(),
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotifierUnavailable(str(e)) from e
