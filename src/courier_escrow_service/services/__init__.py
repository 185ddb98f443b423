"""Service layer components."""

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

__all__ = [
    "BidLedger",
    "CancellationCoordinator",
    "CommissionRates",
    "Database",
    "DisputeResolver",
    "EscrowManager",
    "JobStateMachine",
    "Notifier",
    "SessionManager",
    "UserRegistry",
    "WalletLedger",
]
