"""Tests for the queue-backed HTTP notifier."""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from convoy.errors import NotifierUnavailable
from convoy.notifications.notifier import HttpNotifier, Notification, NullNotifier


def _notification(**overrides):
    data = dict(
        type="inbound_message",
        tenant_id="tenant-a",
        data={"conversationId": "conv-1"},
        correlation_id="req-123",
    )
    data.update(overrides)
    return Notification(**data)


class TestNotification:
    def test_payload_shape(self):
        assert _notification().to_payload() == {
            "type": "inbound_message",
            "tenantId": "tenant-a",
            "data": {"conversationId": "conv-1"},
        }


class TestSend:
    """Synchronous POST used by the worker thread."""

    def test_posts_payload_with_headers(self):
        notifier = HttpNotifier("https://app.example.com/", secret="shh", timeout_s=2.5)

        with patch("convoy.notifications.notifier.requests.post") as mock_post:
            notifier.send(_notification())

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == "https://app.example.com/api/webhook/notification"
        assert kwargs["json"]["tenantId"] == "tenant-a"
        assert kwargs["headers"]["X-Webhook-Secret"] == "shh"
        assert kwargs["headers"]["X-Correlation-ID"] == "req-123"
        assert kwargs["timeout"] == 2.5

    def test_secret_header_omitted_when_unset(self):
        notifier = HttpNotifier("https://app.example.com")

        with patch("convoy.notifications.notifier.requests.post") as mock_post:
            notifier.send(_notification(correlation_id=None))

        headers = mock_post.call_args.kwargs["headers"]
        assert "X-Webhook-Secret" not in headers
        assert "X-Correlation-ID" not in headers

    def test_http_error_raises_unavailable(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("503")

        with patch("convoy.notifications.notifier.requests.post", return_value=response):
            with pytest.raises(NotifierUnavailable):
                HttpNotifier("https://app.example.com").send(_notification())

    def test_connection_error_raises_unavailable(self):
        with patch(
            "convoy.notifications.notifier.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(NotifierUnavailable):
                HttpNotifier("https://app.example.com").send(_notification())


class TestPublish:
    """publish() never blocks or raises; the worker logs and drops failures."""

    def test_worker_delivers_queued_notifications(self):
        notifier = HttpNotifier("https://app.example.com")

        with patch("convoy.notifications.notifier.requests.post") as mock_post:
            notifier.publish(_notification())
            notifier.publish(_notification(type="status_update"))
            notifier.close(timeout=5)

        assert mock_post.call_count == 2
        assert notifier.sent == 2
        assert notifier.failed == 0

    def test_failures_are_counted_not_raised(self):
        notifier = HttpNotifier("https://app.example.com")

        with patch(
            "convoy.notifications.notifier.requests.post",
            side_effect=requests.Timeout("slow"),
        ):
            notifier.publish(_notification())
            notifier.publish(_notification())
            notifier.close(timeout=5)

        assert notifier.failed == 2
        assert notifier.sent == 0

    def test_unexpected_error_does_not_stop_worker(self):
        notifier = HttpNotifier("https://app.example.com")
        workers = []

        def post(*args, **kwargs):
            workers.append(threading.get_ident())
            if len(workers) == 1:
                raise TypeError("Object of type bytes is not JSON serializable")
            return MagicMock()

        with patch("convoy.notifications.notifier.requests.post", side_effect=post):
            notifier.publish(_notification())
            notifier.publish(_notification(type="status_update"))
            notifier.close(timeout=5)

        assert notifier.failed == 1
        assert notifier.sent == 1
        assert len(workers) == 2
        assert workers[0] == workers[1]

    def test_close_without_publish_is_noop(self):
        HttpNotifier("https://app.example.com").close(timeout=1)

    def test_null_notifier_accepts_anything(self):
        NullNotifier().publish(_notification())
