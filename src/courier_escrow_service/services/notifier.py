"""Best-effort transition notifications."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from courier_escrow_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from courier_escrow_service.clients.notification_client import NotificationClient


class Notifier:
    """
    Fire-and-forget notification dispatch.

    notify() never raises and never blocks the caller: delivery runs as a
    background task on the running event loop, and delivery failures are
    logged at WARNING. Without a client configured, notifications are only
    logged.
    """

    def __init__(self, client: NotificationClient | None) -> None:
        self._client = client
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = get_logger(__name__)

    def notify(
        self,
        recipient_ids: Iterable[str | None],
        title: str,
        message: str,
        category: str,
        reference_id: str,
    ) -> None:
        notifications = [
            {
                "recipient_id": recipient_id,
                "title": title,
                "message": message,
                "category": category,
                "reference_id": reference_id,
            }
            for recipient_id in dict.fromkeys(recipient_ids)
            if recipient_id is not None
        ]
        if not notifications:
            return

        self._logger.info(
            "Notification queued",
            extra={
                "category": category,
                "reference_id": reference_id,
                "recipients": [n["recipient_id"] for n in notifications],
            },
        )
        if self._client is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning(
                "No running event loop, notification dropped",
                extra={"category": category, "reference_id": reference_id},
            )
            return

        task = loop.create_task(self._send(notifications))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, notifications: list[dict[str, Any]]) -> None:
        if self._client is None:
            return
        for notification in notifications:
            try:
                await self._client.dispatch(notification)
            except Exception as exc:
                self._logger.warning(
                    "Notification delivery failed",
                    extra={
                        "recipient_id": notification["recipient_id"],
                        "category": notification["category"],
                        "reference_id": notification["reference_id"],
                        "error": str(exc),
                    },
                )

    async def drain(self) -> None:
        """Wait for every queued delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.drain()
        if self._client is not None:
            await self._client.close()
