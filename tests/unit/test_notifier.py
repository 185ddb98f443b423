"""Unit tests for Notifier and NotificationClient."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import httpx
import pytest

from courier_escrow_service.clients.notification_client import NotificationClient
from courier_escrow_service.core.exceptions import UpstreamUnavailable
from courier_escrow_service.services.notifier import Notifier


def _client_with_transport(transport: httpx.MockTransport) -> NotificationClient:
    client = NotificationClient(
        base_url="http://dispatcher.test",
        dispatch_path="/notifications",
        timeout_seconds=5,
    )
    client._client = httpx.AsyncClient(base_url="http://dispatcher.test", transport=transport)
    return client


@pytest.mark.unit
class TestNotifier:
    async def test_dispatches_once_per_distinct_recipient(self) -> None:
        client = AsyncMock()
        notifier = Notifier(client=client)

        notifier.notify(["usr-a", None, "usr-b", "usr-a"], "Title", "Body", "bids", "job-1")
        await notifier.drain()

        recipients = [call.args[0]["recipient_id"] for call in client.dispatch.await_args_list]
        assert recipients == ["usr-a", "usr-b"]
        assert client.dispatch.await_args_list[0].args[0] == {
            "recipient_id": "usr-a",
            "title": "Title",
            "message": "Body",
            "category": "bids",
            "reference_id": "job-1",
        }

    async def test_delivery_failure_is_logged_not_raised(
        self, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        client = AsyncMock()
        client.dispatch.side_effect = UpstreamUnavailable(
            "NOTIFICATIONS_UNAVAILABLE", "down", 502
        )
        notifier = Notifier(client=client)
        monkeypatch.setattr(logging.getLogger("courier_escrow_service"), "propagate", True)

        with caplog.at_level(logging.WARNING, logger="courier_escrow_service"):
            notifier.notify(["usr-a"], "Title", "Body", "bids", "job-1")
            await notifier.drain()

        assert "Notification delivery failed" in caplog.text

    async def test_without_client_only_logs(self) -> None:
        notifier = Notifier(client=None)
        notifier.notify(["usr-a"], "Title", "Body", "bids", "job-1")
        await notifier.drain()
        await notifier.close()

    def test_without_running_loop_drops_quietly(self) -> None:
        client = AsyncMock()
        notifier = Notifier(client=client)
        notifier.notify(["usr-a"], "Title", "Body", "bids", "job-1")
        client.dispatch.assert_not_called()

    async def test_close_drains_and_closes_client(self) -> None:
        client = AsyncMock()
        notifier = Notifier(client=client)
        notifier.notify(["usr-a"], "Title", "Body", "bids", "job-1")

        await notifier.close()

        client.dispatch.assert_awaited_once()
        client.close.assert_awaited_once()


@pytest.mark.unit
class TestNotificationClient:
    async def test_posts_notification(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"status": "queued"})

        client = _client_with_transport(httpx.MockTransport(handler))
        await client.dispatch({"recipient_id": "usr-a"})
        await client.close()

        assert seen[0].url.path == "/notifications"
        assert seen[0].method == "POST"

    async def test_error_status_raises_upstream_unavailable(self) -> None:
        client = _client_with_transport(
            httpx.MockTransport(lambda _request: httpx.Response(503))
        )
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.dispatch({"recipient_id": "usr-a"})
        await client.close()

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == {"upstream_status": 503}

    async def test_connection_error_raises_upstream_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client_with_transport(httpx.MockTransport(handler))
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.dispatch({"recipient_id": "usr-a"})
        await client.close()

        assert exc_info.value.error == "NOTIFICATIONS_UNAVAILABLE"
        assert exc_info.value.kind == "upstream"
