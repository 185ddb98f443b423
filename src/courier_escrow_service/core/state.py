"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
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


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    database: Database | None = None
    notifier: Notifier | None = None
    wallet_ledger: WalletLedger | None = None
    commission_rates: CommissionRates | None = None
    escrow_manager: EscrowManager | None = None
    job_state_machine: JobStateMachine | None = None
    bid_ledger: BidLedger | None = None
    cancellation: CancellationCoordinator | None = None
    dispute_resolver: DisputeResolver | None = None
    user_registry: UserRegistry | None = None
    session_manager: SessionManager | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
