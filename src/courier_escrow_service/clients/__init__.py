"""HTTP clients for external service communication."""

from courier_escrow_service.clients.notification_client import NotificationClient

__all__ = ["NotificationClient"]
