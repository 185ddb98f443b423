"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from courier_escrow_service.clients.notification_client import NotificationClient
from courier_escrow_service.config import get_safe_config, get_settings
from courier_escrow_service.core.state import init_app_state
from courier_escrow_service.logging import get_logger, setup_logging
from courier_escrow_service.services.bid_ledger import BidLedger
from courier_escrow_service.services.cancellation import CancellationCoordinator
from courier_escrow_service.services.commission import CommissionRates
from courier_escrow_service.services.database import Database
from courier_escrow_service.services.dispute_resolver import DisputeResolver
from courier_escrow_service.services.escrow_manager import EscrowManager
from courier_escrow_service.services.job_state_machine import JobStateMachine
from courier_escrow_service.services.notifier import Notifier
from courier_escrow_service.services.session_manager import SessionManager
from courier_escrow_service.services.user_registry import UserRegistry
from courier_escrow_service.services.wallet_ledger import WalletLedger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    database = Database(db_path=settings.database.path)
    state.database = database

    # Notifications are only logged when no dispatcher is configured
    notification_client = None
    if settings.notifications.base_url:
        notification_client = NotificationClient(
            base_url=settings.notifications.base_url,
            dispatch_path=settings.notifications.dispatch_path,
            timeout_seconds=settings.notifications.timeout_seconds,
        )
    notifier = Notifier(client=notification_client)
    state.notifier = notifier

    wallet_ledger = WalletLedger(database=database)
    commission_rates = CommissionRates(
        database=database,
        default_rate_pct=settings.escrow.default_commission_rate_pct,
    )
    escrow_manager = EscrowManager(
        database=database,
        wallet_ledger=wallet_ledger,
        commission_rates=commission_rates,
    )
    job_state_machine = JobStateMachine(
        database=database,
        escrow=escrow_manager,
        notifier=notifier,
    )
    bid_ledger = BidLedger(
        database=database,
        jobs=job_state_machine,
        escrow=escrow_manager,
        notifier=notifier,
    )
    state.wallet_ledger = wallet_ledger
    state.commission_rates = commission_rates
    state.escrow_manager = escrow_manager
    state.job_state_machine = job_state_machine
    state.bid_ledger = bid_ledger
    state.cancellation = CancellationCoordinator(
        database=database,
        jobs=job_state_machine,
        bids=bid_ledger,
        escrow=escrow_manager,
        notifier=notifier,
    )
    state.dispute_resolver = DisputeResolver(
        database=database,
        jobs=job_state_machine,
        escrow=escrow_manager,
        notifier=notifier,
    )

    user_registry = UserRegistry(database=database)
    for public_key in settings.auth.admin_public_keys:
        admin = user_registry.ensure_admin(public_key)
        logger.info("Admin provisioned", extra={"user_id": admin["user_id"]})
    state.user_registry = user_registry
    state.session_manager = SessionManager(
        user_registry=user_registry,
        secret=settings.auth.session_secret,
        ttl_seconds=settings.auth.session_ttl_seconds,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "config": get_safe_config(),
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    # Let queued notifications finish, then close the dispatcher client
    await notifier.close()
    database.close()
