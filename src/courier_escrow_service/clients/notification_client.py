"""Async HTTP client for the notification dispatcher."""

from __future__ import annotations

from typing import Any

import httpx

from courier_escrow_service.core.exceptions import UpstreamUnavailable
from courier_escrow_service.logging import get_logger


class NotificationClient:
    """
    Posts notification payloads to the dispatcher.

    Each call sends one notification for one recipient:
    {"recipient_id", "title", "message", "category", "reference_id"}.
    """

    def __init__(self, base_url: str, dispatch_path: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._dispatch_path = dispatch_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def dispatch(self, notification: dict[str, Any]) -> None:
        """
        Deliver a single notification.

        Raises:
            UpstreamUnavailable: NOTIFICATIONS_UNAVAILABLE (502) on connection,
                timeout or non-2xx responses.
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(self._dispatch_path, json=notification)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Notification dispatcher connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamUnavailable(
                error="NOTIFICATIONS_UNAVAILABLE",
                message="Cannot connect to notification dispatcher",
                status_code=502,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Notification dispatcher HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamUnavailable(
                error="NOTIFICATIONS_UNAVAILABLE",
                message="Notification dispatcher request failed",
                status_code=502,
            ) from exc

        if response.status_code >= 300:
            raise UpstreamUnavailable(
                error="NOTIFICATIONS_UNAVAILABLE",
                message=f"Notification dispatcher returned {response.status_code}",
                status_code=502,
                details={"upstream_status": response.status_code},
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
