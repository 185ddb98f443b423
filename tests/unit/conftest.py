"""Unit test fixtures."""

from __future__ import annotations

import os
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from courier_escrow_service.config import clear_settings_cache
from courier_escrow_service.core.state import reset_app_state
from courier_escrow_service.services.bid_ledger import BidLedger
from courier_escrow_service.services.cancellation import CancellationCoordinator
from courier_escrow_service.services.commission import CommissionRates
from courier_escrow_service.services.database import Database
from courier_escrow_service.services.dispute_resolver import DisputeResolver
from courier_escrow_service.services.escrow_manager import EscrowManager
from courier_escrow_service.services.job_state_machine import JobStateMachine
from courier_escrow_service.services.wallet_ledger import WalletLedger
from tests.helpers import CLIENT, DRIVER, OTHER_DRIVER, job_details

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()
    os.environ.pop("CONFIG_PATH", None)


@pytest.fixture
def database(tmp_path) -> Iterator[Database]:
    db = Database(db_path=str(tmp_path / "escrow.db"))
    yield db
    db.close()


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def wallet_ledger(database: Database) -> WalletLedger:
    return WalletLedger(database=database)


@pytest.fixture
def commission_rates(database: Database) -> CommissionRates:
    return CommissionRates(database=database, default_rate_pct=Decimal("15"))


@pytest.fixture
def escrow(
    database: Database,
    wallet_ledger: WalletLedger,
    commission_rates: CommissionRates,
) -> EscrowManager:
    return EscrowManager(
        database=database,
        wallet_ledger=wallet_ledger,
        commission_rates=commission_rates,
    )


@pytest.fixture
def jobs(database: Database, escrow: EscrowManager, notifier: MagicMock) -> JobStateMachine:
    return JobStateMachine(database=database, escrow=escrow, notifier=notifier)


@pytest.fixture
def bids(
    database: Database,
    jobs: JobStateMachine,
    escrow: EscrowManager,
    notifier: MagicMock,
) -> BidLedger:
    return BidLedger(database=database, jobs=jobs, escrow=escrow, notifier=notifier)


@pytest.fixture
def cancellation(
    database: Database,
    jobs: JobStateMachine,
    bids: BidLedger,
    escrow: EscrowManager,
    notifier: MagicMock,
) -> CancellationCoordinator:
    return CancellationCoordinator(
        database=database, jobs=jobs, bids=bids, escrow=escrow, notifier=notifier
    )


@pytest.fixture
def disputes(
    database: Database,
    jobs: JobStateMachine,
    escrow: EscrowManager,
    notifier: MagicMock,
) -> DisputeResolver:
    return DisputeResolver(database=database, jobs=jobs, escrow=escrow, notifier=notifier)


@pytest.fixture
async def open_job(jobs: JobStateMachine) -> dict[str, Any]:
    """A $50-$100 job in status 'open'."""
    return await jobs.create_job(CLIENT, job_details())


@pytest.fixture
async def bidding_job(bids: BidLedger, open_job: dict[str, Any]) -> dict[str, Any]:
    """The open job after two drivers bid $70 and $90."""
    winning = await bids.submit_bid(open_job["job_id"], DRIVER, "70.00", "Can do today")
    losing = await bids.submit_bid(open_job["job_id"], OTHER_DRIVER, "90.00")
    return {"job": open_job, "winning_bid": winning, "losing_bid": losing}


@pytest.fixture
async def assigned_job(bids: BidLedger, bidding_job: dict[str, Any]) -> dict[str, Any]:
    """The job after the client accepted the $70 bid. Returns {job, transaction, ...}."""
    result = await bids.accept_bid(bidding_job["winning_bid"]["bid_id"], CLIENT)
    return {**bidding_job, **result}
