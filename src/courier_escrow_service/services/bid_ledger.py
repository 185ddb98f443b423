"""Bid ledger: submission, acceptance with escrow hold, and simple bid status writes."""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from courier_escrow_service.core.exceptions import (
    Forbidden,
    NotFound,
    StateConflict,
    ValidationFailed,
)
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.database import new_id, now_iso
from courier_escrow_service.services.lifecycle import (
    BID_ACCEPTED,
    BID_ACTIVE,
    BID_PENDING,
    BID_REJECTED,
    BID_SHORTLISTED,
    BID_WITHDRAWN,
    BIDDABLE,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_DRIVER,
    placeholders,
)
from courier_escrow_service.services.money import parse_amount

if TYPE_CHECKING:
    from courier_escrow_service.services.actor import Actor
    from courier_escrow_service.services.database import Database
    from courier_escrow_service.services.escrow_manager import EscrowManager
    from courier_escrow_service.services.job_state_machine import JobStateMachine
    from courier_escrow_service.services.notifier import Notifier

_BID_COLUMNS_SQL = "bid_id, job_id, driver_id, amount, message, status, created_at, updated_at"

_MAX_MESSAGE_LENGTH = 2000


class BidLedger:
    """
    Manages bids against jobs.

    Acceptance is the only path to 'assigned': the bid, the competing bids,
    the job and the escrow hold are written in one unit of work, so a bid is
    never accepted without a held transaction and vice versa.
    """

    def __init__(
        self,
        database: Database,
        jobs: JobStateMachine,
        escrow: EscrowManager,
        notifier: Notifier,
    ) -> None:
        self._database = database
        self._jobs = jobs
        self._escrow = escrow
        self._notifier = notifier
        self._logger = get_logger(__name__)

    @staticmethod
    def _row_to_bid(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "bid_id": row["bid_id"],
            "job_id": row["job_id"],
            "driver_id": row["driver_id"],
            "amount": Decimal(row["amount"]),
            "message": row["message"],
            "status": row["status"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def _load_bid(self, bid_id: str) -> dict[str, Any]:
        row = self._database.fetch_one(
            f"SELECT {_BID_COLUMNS_SQL} FROM bids WHERE bid_id = ?",  # nosec B608
            (bid_id,),
        )
        if row is None:
            raise NotFound("BID_NOT_FOUND", "Bid not found", 404)
        return self._row_to_bid(row)

    def _set_status(
        self,
        db: sqlite3.Connection,
        bid_id: str,
        from_statuses: tuple[str, ...],
        to_status: str,
    ) -> None:
        cursor = db.execute(
            f"UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
            f"WHERE bid_id = ? AND status IN ({placeholders(from_statuses)})",
            (to_status, now_iso(), bid_id, *from_statuses),
        )
        if cursor.rowcount != 1:
            current = db.execute("SELECT status FROM bids WHERE bid_id = ?", (bid_id,)).fetchone()
            raise StateConflict(
                "INVALID_BID_STATUS",
                f"Cannot move bid from {current['status'] if current else 'unknown'} "
                f"to {to_status}",
                409,
                {"bid_id": bid_id, "current_status": current["status"] if current else None},
            )

    def _require_job_client(self, job: dict[str, Any], actor: Actor, action: str) -> None:
        if actor.role != ROLE_CLIENT or job["client_id"] != actor.user_id:
            raise Forbidden("FORBIDDEN", f"Only the job's client can {action} bids", 403)

    # ------------------------------------------------------------------
    # Submission and reads
    # ------------------------------------------------------------------

    async def submit_bid(
        self,
        job_id: str,
        actor: Actor,
        amount: object,
        message: object = None,
    ) -> dict[str, Any]:
        """
        Place a pending bid on a job that is open or taking bids.

        The first bid on an 'open' job moves it to 'bidding' in the same unit.

        Raises:
            Forbidden: if the actor is not a driver.
            ValidationFailed: INVALID_AMOUNT for a non-positive amount.
            StateConflict: JOB_NOT_BIDDABLE, or DUPLICATE_BID if the driver
                already has an active bid on the job.
        """
        if actor.role != ROLE_DRIVER:
            raise Forbidden("FORBIDDEN", "Only drivers can submit bids", 403)
        bid_amount = parse_amount(amount, "amount")
        if message is not None and not isinstance(message, str):
            raise ValidationFailed(
                "INVALID_FIELD", "message must be a string", 400, {"field": "message"}
            )
        bid_message = message.strip() if isinstance(message, str) else None
        if bid_message is not None and len(bid_message) > _MAX_MESSAGE_LENGTH:
            raise ValidationFailed(
                "INVALID_FIELD",
                f"message must be at most {_MAX_MESSAGE_LENGTH} characters",
                400,
                {"field": "message"},
            )

        job = self._jobs.load_job(job_id)
        bid_id = new_id("bid")
        now = now_iso()
        with self._database.atomic() as db:
            status_row = db.execute(
                "SELECT status FROM jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
            if status_row["status"] not in BIDDABLE:
                raise StateConflict(
                    "JOB_NOT_BIDDABLE",
                    "Job is not accepting bids",
                    409,
                    {"job_id": job_id, "current_status": status_row["status"]},
                )
            try:
                db.execute(
                    f"INSERT INTO bids ({_BID_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        bid_id,
                        job_id,
                        actor.user_id,
                        str(bid_amount),
                        bid_message or None,
                        BID_PENDING,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise StateConflict(
                    "DUPLICATE_BID",
                    "You already have an active bid on this job",
                    409,
                    {"job_id": job_id},
                ) from exc
            self._jobs.open_for_bidding(db, job_id, actor)

        self._logger.info(
            "Bid submitted",
            extra={"bid_id": bid_id, "job_id": job_id, "driver_id": actor.user_id},
        )
        self._notifier.notify(
            [job["client_id"]],
            f"New bid on job {job['job_number']}",
            f"A driver bid {bid_amount} on your job",
            "bids",
            job_id,
        )
        return self._load_bid(bid_id)

    async def list_bids(self, job_id: str, actor: Actor) -> list[dict[str, Any]]:
        """
        List bids on a job, oldest first.

        The job's client and admins see every bid; a driver sees only their own.
        """
        job = self._jobs.load_job(job_id)
        if actor.role == ROLE_DRIVER:
            rows = self._database.fetch_all(
                f"SELECT {_BID_COLUMNS_SQL} FROM bids "  # nosec B608
                "WHERE job_id = ? AND driver_id = ? ORDER BY created_at, bid_id",
                (job_id, actor.user_id),
            )
        else:
            if actor.role != ROLE_ADMIN and job["client_id"] != actor.user_id:
                raise Forbidden("FORBIDDEN", "You are not a party to this job", 403)
            rows = self._database.fetch_all(
                f"SELECT {_BID_COLUMNS_SQL} FROM bids "  # nosec B608
                "WHERE job_id = ? ORDER BY created_at, bid_id",
                (job_id,),
            )
        return [self._row_to_bid(row) for row in rows]

    async def get_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        bid = self._load_bid(bid_id)
        if actor.role == ROLE_ADMIN or bid["driver_id"] == actor.user_id:
            return bid
        job = self._jobs.load_job(bid["job_id"])
        if job["client_id"] != actor.user_id:
            raise Forbidden("FORBIDDEN", "You are not a party to this bid", 403)
        return bid

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------

    async def accept_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        """
        Accept a bid: assign the job, reject competing bids, hold escrow.

        Returns:
            {"job": ..., "transaction": ...}

        Raises:
            Forbidden: if the actor is not the job's client.
            StateConflict: BID_NOT_ACCEPTABLE if the bid is not pending or
                shortlisted, INVALID_TRANSITION if the job is not open or bidding.
            FinancialIntegrityError: ESCROW_ALREADY_HELD if the job already
                has an escrow transaction.
        """
        bid = self._load_bid(bid_id)
        job = self._jobs.load_job(bid["job_id"])
        self._require_job_client(job, actor, "accept")

        with self._database.atomic() as db:
            cursor = db.execute(
                f"UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
                f"WHERE bid_id = ? AND status IN ({placeholders(BID_ACTIVE)})",
                (BID_ACCEPTED, now_iso(), bid_id, *BID_ACTIVE),
            )
            if cursor.rowcount != 1:
                current = db.execute(
                    "SELECT status FROM bids WHERE bid_id = ?", (bid_id,)
                ).fetchone()
                raise StateConflict(
                    "BID_NOT_ACCEPTABLE",
                    f"Bid is {current['status']} and cannot be accepted",
                    409,
                    {"bid_id": bid_id, "current_status": current["status"]},
                )
            self._jobs.mark_assigned(db, job["job_id"], bid, actor)
            rejected = db.execute(
                f"UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
                f"WHERE job_id = ? AND bid_id != ? AND status IN ({placeholders(BID_ACTIVE)})",
                (BID_REJECTED, now_iso(), job["job_id"], bid_id, *BID_ACTIVE),
            ).rowcount
            transaction = self._escrow.hold(job, bid)

        self._logger.info(
            "Bid accepted",
            extra={
                "bid_id": bid_id,
                "job_id": job["job_id"],
                "driver_id": bid["driver_id"],
                "rejected_bids": rejected,
                "transaction_id": transaction["transaction_id"],
            },
        )
        updated_job = self._jobs.load_job(job["job_id"])
        self._notifier.notify(
            [bid["driver_id"]],
            f"Bid accepted for job {job['job_number']}",
            f"Your bid of {bid['amount']} was accepted",
            "bids",
            job["job_id"],
        )
        return {"job": updated_job, "transaction": transaction}

    # ------------------------------------------------------------------
    # Simple status writes
    # ------------------------------------------------------------------

    async def shortlist_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        bid = self._load_bid(bid_id)
        job = self._jobs.load_job(bid["job_id"])
        self._require_job_client(job, actor, "shortlist")
        with self._database.atomic() as db:
            self._set_status(db, bid_id, (BID_PENDING,), BID_SHORTLISTED)
        self._logger.info("Bid shortlisted", extra={"bid_id": bid_id, "job_id": job["job_id"]})
        self._notifier.notify(
            [bid["driver_id"]],
            f"Bid shortlisted for job {job['job_number']}",
            "Your bid was shortlisted",
            "bids",
            job["job_id"],
        )
        return self._load_bid(bid_id)

    async def reject_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        bid = self._load_bid(bid_id)
        job = self._jobs.load_job(bid["job_id"])
        self._require_job_client(job, actor, "reject")
        with self._database.atomic() as db:
            self._set_status(db, bid_id, BID_ACTIVE, BID_REJECTED)
        self._logger.info("Bid rejected", extra={"bid_id": bid_id, "job_id": job["job_id"]})
        self._notifier.notify(
            [bid["driver_id"]],
            f"Bid rejected for job {job['job_number']}",
            "Your bid was not selected",
            "bids",
            job["job_id"],
        )
        return self._load_bid(bid_id)

    async def withdraw_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        """Withdraw the caller's own pending or shortlisted bid. The row is kept."""
        bid = self._load_bid(bid_id)
        if actor.role != ROLE_DRIVER or bid["driver_id"] != actor.user_id:
            raise Forbidden("FORBIDDEN", "Only the bidding driver can withdraw a bid", 403)
        with self._database.atomic() as db:
            self._set_status(db, bid_id, BID_ACTIVE, BID_WITHDRAWN)
        self._logger.info("Bid withdrawn", extra={"bid_id": bid_id, "job_id": bid["job_id"]})
        return self._load_bid(bid_id)

    def reject_open_bids(self, db: sqlite3.Connection, job_id: str) -> int:
        """Reject every active bid on a job. Must run inside Database.atomic()."""
        return int(
            db.execute(
                f"UPDATE bids SET status = ?, updated_at = ? "  # nosec B608
                f"WHERE job_id = ? AND status IN ({placeholders(BID_ACTIVE)})",
                (BID_REJECTED, now_iso(), job_id, *BID_ACTIVE),
            ).rowcount
        )
