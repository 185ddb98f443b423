"""Escrow transaction manager, the single writer of financial state."""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import TYPE_CHECKING, Any, NamedTuple

from courier_escrow_service.core.exceptions import FinancialIntegrityError, NotFound
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.database import new_id, now_iso
from courier_escrow_service.services.lifecycle import (
    ENTRY_ESCROW_REFUND,
    ENTRY_ESCROW_RELEASE,
    PAYMENT_HELD,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
)
from courier_escrow_service.services.money import to_money

if TYPE_CHECKING:
    from courier_escrow_service.services.commission import CommissionRates
    from courier_escrow_service.services.database import Database
    from courier_escrow_service.services.wallet_ledger import WalletLedger

_TRANSACTION_COLUMNS_SQL = (
    "transaction_id, job_id, client_id, driver_id, total_amount, commission_rate, "
    "commission_amount, driver_payout, payment_status, held_at, released_at, refunded_at"
)


class Settlement(NamedTuple):
    """Outcome of release/refund. applied is False when the call was a no-op."""

    transaction: dict[str, Any]
    applied: bool


def split_commission(total_amount: Decimal, rate_pct: Decimal) -> tuple[Decimal, Decimal]:
    """Return (commission_amount, driver_payout) for a total at rate_pct percent."""
    commission = to_money(total_amount * rate_pct / Decimal(100))
    return commission, to_money(total_amount) - commission


class EscrowManager:
    """
    Holds, releases and refunds the escrow entry tied to a job.

    payment_status starts as 'held' and moves exactly once to 'paid' or
    'refunded'. The move and the wallet credit it causes are committed in
    one atomic() unit, and repeating a settlement on a terminal entry is a
    no-op that credits nobody.
    """

    def __init__(
        self,
        database: Database,
        wallet_ledger: WalletLedger,
        commission_rates: CommissionRates,
    ) -> None:
        self._database = database
        self._wallet_ledger = wallet_ledger
        self._commission_rates = commission_rates
        self._logger = get_logger(__name__)

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "transaction_id": row["transaction_id"],
            "job_id": row["job_id"],
            "client_id": row["client_id"],
            "driver_id": row["driver_id"],
            "total_amount": Decimal(row["total_amount"]),
            "commission_rate": Decimal(row["commission_rate"]),
            "commission_amount": Decimal(row["commission_amount"]),
            "driver_payout": Decimal(row["driver_payout"]),
            "payment_status": row["payment_status"],
            "held_at": row["held_at"],
            "released_at": row["released_at"],
            "refunded_at": row["refunded_at"],
        }

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(
            f"SELECT {_TRANSACTION_COLUMNS_SQL} FROM transactions "  # nosec B608
            "WHERE transaction_id = ?",
            (transaction_id,),
        )
        return self._row_to_transaction(row) if row is not None else None

    def get_transaction_for_job(self, job_id: str) -> dict[str, Any] | None:
        row = self._database.fetch_one(
            f"SELECT {_TRANSACTION_COLUMNS_SQL} FROM transactions WHERE job_id = ?",  # nosec B608
            (job_id,),
        )
        return self._row_to_transaction(row) if row is not None else None

    def hold(self, job: dict[str, Any], bid: dict[str, Any]) -> dict[str, Any]:
        """
        Create the held escrow entry for a job from its accepted bid.

        Raises:
            FinancialIntegrityError: ESCROW_ALREADY_HELD if the job already has an entry.
        """
        total_amount = to_money(bid["amount"])
        rate = self._commission_rates.current_rate()
        commission_amount, driver_payout = split_commission(total_amount, rate)
        transaction_id = new_id("txn")
        held_at = now_iso()

        with self._database.atomic() as db:
            existing = db.execute(
                "SELECT transaction_id FROM transactions WHERE job_id = ?",
                (job["job_id"],),
            ).fetchone()
            if existing is not None:
                raise FinancialIntegrityError(
                    "ESCROW_ALREADY_HELD",
                    "This job already has an escrow transaction",
                    409,
                    {"transaction_id": existing["transaction_id"]},
                )
            try:
                db.execute(
                    f"INSERT INTO transactions ({_TRANSACTION_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        transaction_id,
                        job["job_id"],
                        job["client_id"],
                        bid["driver_id"],
                        str(total_amount),
                        str(rate),
                        str(commission_amount),
                        str(driver_payout),
                        PAYMENT_HELD,
                        held_at,
                        None,
                        None,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise FinancialIntegrityError(
                    "ESCROW_ALREADY_HELD",
                    "This job already has an escrow transaction",
                    409,
                ) from exc

        self._logger.info(
            "Escrow held",
            extra={
                "transaction_id": transaction_id,
                "job_id": job["job_id"],
                "total_amount": str(total_amount),
                "commission_amount": str(commission_amount),
            },
        )
        return {
            "transaction_id": transaction_id,
            "job_id": job["job_id"],
            "client_id": job["client_id"],
            "driver_id": bid["driver_id"],
            "total_amount": total_amount,
            "commission_rate": rate,
            "commission_amount": commission_amount,
            "driver_payout": driver_payout,
            "payment_status": PAYMENT_HELD,
            "held_at": held_at,
            "released_at": None,
            "refunded_at": None,
        }

    def release(self, transaction_id: str) -> Settlement:
        """Pay the driver their payout. No-op if the entry is already paid or refunded."""
        return self._settle(
            transaction_id,
            PAYMENT_PAID,
            "released_at",
            ENTRY_ESCROW_RELEASE,
        )

    def refund(self, transaction_id: str) -> Settlement:
        """Return the full amount to the client. No-op if the entry is already terminal."""
        return self._settle(
            transaction_id,
            PAYMENT_REFUNDED,
            "refunded_at",
            ENTRY_ESCROW_REFUND,
        )

    def _settle(
        self,
        transaction_id: str,
        target_status: str,
        timestamp_column: str,
        entry_type: str,
    ) -> Settlement:
        with self._database.atomic() as db:
            now = now_iso()
            cursor = db.execute(
                f"UPDATE transactions SET payment_status = ?, {timestamp_column} = ? "  # nosec B608
                "WHERE transaction_id = ? AND payment_status = ?",
                (target_status, now, transaction_id, PAYMENT_HELD),
            )
            transaction = self.get_transaction(transaction_id)
            if transaction is None:
                raise NotFound("TRANSACTION_NOT_FOUND", "Escrow transaction not found", 404)

            if cursor.rowcount != 1:
                self._logger.info(
                    "Escrow settlement skipped, already terminal",
                    extra={
                        "transaction_id": transaction_id,
                        "payment_status": transaction["payment_status"],
                        "requested": target_status,
                    },
                )
                return Settlement(transaction, applied=False)

            if target_status == PAYMENT_PAID:
                recipient_id = transaction["driver_id"]
                amount = transaction["driver_payout"]
            else:
                recipient_id = transaction["client_id"]
                amount = transaction["total_amount"]
            self._wallet_ledger.credit(recipient_id, amount, transaction_id, entry_type)

        self._logger.info(
            "Escrow settled",
            extra={
                "transaction_id": transaction_id,
                "payment_status": target_status,
                "recipient_id": recipient_id,
                "amount": str(amount),
            },
        )
        return Settlement(transaction, applied=True)
