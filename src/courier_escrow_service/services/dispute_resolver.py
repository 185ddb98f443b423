"""Dispute lifecycle: open, take under review, resolve with escrow settlement."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from courier_escrow_service.core.exceptions import (
    FinancialIntegrityError,
    Forbidden,
    NotFound,
    StateConflict,
    ValidationFailed,
)
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.database import new_id, now_iso
from courier_escrow_service.services.lifecycle import (
    DISPUTABLE,
    DISPUTE_OPEN,
    DISPUTE_REASONS,
    DISPUTE_RESOLVED,
    DISPUTE_UNDER_REVIEW,
    JOB_CANCELLED,
    JOB_CONFIRMED,
    PAYMENT_HELD,
    RESOLUTION_REFUND_CLIENT,
    RESOLUTIONS,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_DRIVER,
)

if TYPE_CHECKING:
    from courier_escrow_service.services.actor import Actor
    from courier_escrow_service.services.database import Database
    from courier_escrow_service.services.escrow_manager import EscrowManager
    from courier_escrow_service.services.job_state_machine import JobStateMachine
    from courier_escrow_service.services.notifier import Notifier

_DISPUTE_COLUMNS_SQL = (
    "dispute_id, job_id, opened_by, opened_by_role, reason, description, status, "
    "resolution, admin_notes, reviewed_by, resolved_by, opened_at, reviewed_at, resolved_at"
)

_MAX_DESCRIPTION_LENGTH = 5000
_MAX_NOTES_LENGTH = 5000


class DisputeResolver:
    """
    Manages disputes raised against jobs whose escrow is still held.

    An active dispute (open or under_review) freezes the job: driver
    progress, confirmation, completion and cancellation are refused until
    an admin resolves it. Resolution settles the escrow entry and the job
    in the same unit of work: refund_client refunds and cancels the job,
    release_driver pays out and confirms it.
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
    def _row_to_dispute(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "dispute_id": row["dispute_id"],
            "job_id": row["job_id"],
            "opened_by": row["opened_by"],
            "opened_by_role": row["opened_by_role"],
            "reason": row["reason"],
            "description": row["description"],
            "status": row["status"],
            "resolution": row["resolution"],
            "admin_notes": row["admin_notes"],
            "reviewed_by": row["reviewed_by"],
            "resolved_by": row["resolved_by"],
            "opened_at": row["opened_at"],
            "reviewed_at": row["reviewed_at"],
            "resolved_at": row["resolved_at"],
        }

    def _load_dispute(self, dispute_id: str) -> dict[str, Any]:
        row = self._database.fetch_one(
            f"SELECT {_DISPUTE_COLUMNS_SQL} FROM disputes WHERE dispute_id = ?",  # nosec B608
            (dispute_id,),
        )
        if row is None:
            raise NotFound("DISPUTE_NOT_FOUND", "Dispute not found", 404)
        return self._row_to_dispute(row)

    @staticmethod
    def _require_admin(actor: Actor, action: str) -> None:
        if actor.role != ROLE_ADMIN:
            raise Forbidden("FORBIDDEN", f"Only admins can {action} disputes", 403)

    @staticmethod
    def _is_party(job: dict[str, Any], actor: Actor) -> bool:
        if actor.role == ROLE_CLIENT:
            return bool(job["client_id"] == actor.user_id)
        if actor.role == ROLE_DRIVER:
            return bool(job["assigned_driver_id"] == actor.user_id)
        return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: str, actor: Actor) -> dict[str, Any]:
        dispute = self._load_dispute(dispute_id)
        if actor.role != ROLE_ADMIN:
            job = self._jobs.load_job(dispute["job_id"])
            if not self._is_party(job, actor):
                raise Forbidden("FORBIDDEN", "You are not a party to this dispute", 403)
        return dispute

    async def list_disputes(
        self,
        actor: Actor,
        status: str | None = None,
        job_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """List disputes visible to the actor, newest first."""
        if status is not None and status not in (
            DISPUTE_OPEN,
            DISPUTE_UNDER_REVIEW,
            DISPUTE_RESOLVED,
        ):
            raise ValidationFailed(
                "INVALID_STATUS", f"Unknown dispute status: {status}", 400, {"status": status}
            )

        clauses: list[str] = []
        params: list[Any] = []
        if actor.role == ROLE_CLIENT:
            clauses.append("job_id IN (SELECT job_id FROM jobs WHERE client_id = ?)")
            params.append(actor.user_id)
        elif actor.role == ROLE_DRIVER:
            clauses.append("job_id IN (SELECT job_id FROM jobs WHERE assigned_driver_id = ?)")
            params.append(actor.user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)

        query = f"SELECT {_DISPUTE_COLUMNS_SQL} FROM disputes"  # nosec B608
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY opened_at DESC, dispute_id"
        return [self._row_to_dispute(row) for row in self._database.fetch_all(query, tuple(params))]

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        job_id: str,
        actor: Actor,
        reason: object,
        description: object,
    ) -> dict[str, Any]:
        """
        Open a dispute on a job in progress.

        The opener's role comes from the session. The job must be
        pickup_confirmed, in_transit or delivered with its escrow held, and
        may have at most one active dispute.

        Raises:
            Forbidden: if the actor is not the job's client or assigned driver.
            ValidationFailed: INVALID_REASON, MISSING_FIELD.
            StateConflict: JOB_NOT_DISPUTABLE, ESCROW_NOT_HELD, DISPUTE_ALREADY_ACTIVE.
        """
        if not isinstance(reason, str) or reason not in DISPUTE_REASONS:
            raise ValidationFailed(
                "INVALID_REASON",
                f"reason must be one of: {', '.join(sorted(DISPUTE_REASONS))}",
                400,
                {"field": "reason"},
            )
        if not isinstance(description, str) or not description.strip():
            raise ValidationFailed(
                "MISSING_FIELD",
                "Missing required field: description",
                400,
                {"field": "description"},
            )
        if len(description) > _MAX_DESCRIPTION_LENGTH:
            raise ValidationFailed(
                "INVALID_FIELD",
                f"description must be at most {_MAX_DESCRIPTION_LENGTH} characters",
                400,
                {"field": "description"},
            )

        job = self._jobs.load_job(job_id)
        if not self._is_party(job, actor):
            raise Forbidden(
                "FORBIDDEN", "Only the job's client or assigned driver can open a dispute", 403
            )

        dispute_id = new_id("dsp")
        with self._database.atomic() as db:
            current = db.execute("SELECT status FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
            if current["status"] not in DISPUTABLE:
                raise StateConflict(
                    "JOB_NOT_DISPUTABLE",
                    f"Cannot open a dispute on a job that is {current['status']}",
                    409,
                    {"job_id": job_id, "current_status": current["status"]},
                )
            payment = db.execute(
                "SELECT payment_status FROM transactions WHERE job_id = ?", (job_id,)
            ).fetchone()
            if payment is None or payment["payment_status"] != PAYMENT_HELD:
                raise StateConflict(
                    "ESCROW_NOT_HELD",
                    "Disputes can only be opened while escrow is held",
                    409,
                    {"payment_status": payment["payment_status"] if payment else None},
                )
            try:
                db.execute(
                    f"INSERT INTO disputes ({_DISPUTE_COLUMNS_SQL}) "  # nosec B608
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        dispute_id,
                        job_id,
                        actor.user_id,
                        actor.role,
                        reason,
                        description.strip(),
                        DISPUTE_OPEN,
                        None,
                        None,
                        None,
                        None,
                        now_iso(),
                        None,
                        None,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise StateConflict(
                    "DISPUTE_ALREADY_ACTIVE",
                    "This job already has an active dispute",
                    409,
                    {"job_id": job_id},
                ) from exc

        self._logger.info(
            "Dispute opened",
            extra={
                "dispute_id": dispute_id,
                "job_id": job_id,
                "opened_by_role": actor.role,
                "reason": reason,
            },
        )
        other_party = job["assigned_driver_id"] if actor.role == ROLE_CLIENT else job["client_id"]
        self._notifier.notify(
            [other_party],
            f"Dispute opened on job {job['job_number']}",
            f"A dispute was opened: {reason.replace('_', ' ')}",
            "disputes",
            dispute_id,
        )
        return self._load_dispute(dispute_id)

    # ------------------------------------------------------------------
    # Admin review and resolution
    # ------------------------------------------------------------------

    async def take_under_review(self, dispute_id: str, actor: Actor) -> dict[str, Any]:
        """open -> under_review. No escrow effect."""
        self._require_admin(actor, "review")
        dispute = self._load_dispute(dispute_id)
        with self._database.atomic() as db:
            cursor = db.execute(
                "UPDATE disputes SET status = ?, reviewed_by = ?, reviewed_at = ? "
                "WHERE dispute_id = ? AND status = ?",
                (DISPUTE_UNDER_REVIEW, actor.user_id, now_iso(), dispute_id, DISPUTE_OPEN),
            )
            if cursor.rowcount != 1:
                raise StateConflict(
                    "DISPUTE_NOT_OPEN",
                    f"Dispute is {dispute['status']}, not open",
                    409,
                    {"dispute_id": dispute_id, "current_status": dispute["status"]},
                )

        self._logger.info(
            "Dispute under review",
            extra={"dispute_id": dispute_id, "job_id": dispute["job_id"]},
        )
        job = self._jobs.load_job(dispute["job_id"])
        self._notifier.notify(
            [job["client_id"], job["assigned_driver_id"]],
            f"Dispute on job {job['job_number']} under review",
            "An admin is reviewing the dispute",
            "disputes",
            dispute_id,
        )
        return self._load_dispute(dispute_id)

    async def resolve(
        self,
        dispute_id: str,
        resolution: object,
        admin_notes: object,
        actor: Actor,
    ) -> dict[str, Any]:
        """
        Resolve a dispute that is under review.

        refund_client refunds the client and cancels the job (cancelled_by
        admin); release_driver pays the driver and confirms the job. The
        escrow settlement, the dispute and the job commit together.

        Returns:
            {"dispute": ..., "transaction": ...}

        Raises:
            Forbidden: if the actor is not an admin.
            ValidationFailed: INVALID_RESOLUTION for anything but the two resolutions.
            StateConflict: DISPUTE_NOT_UNDER_REVIEW (including already resolved),
                ESCROW_NOT_HELD if the settlement was a no-op.
        """
        self._require_admin(actor, "resolve")
        if not isinstance(resolution, str) or resolution not in RESOLUTIONS:
            raise ValidationFailed(
                "INVALID_RESOLUTION",
                f"resolution must be one of: {', '.join(sorted(RESOLUTIONS))}",
                400,
                {"field": "resolution"},
            )
        if admin_notes is not None and not isinstance(admin_notes, str):
            raise ValidationFailed(
                "INVALID_FIELD", "admin_notes must be a string", 400, {"field": "admin_notes"}
            )
        if isinstance(admin_notes, str) and len(admin_notes) > _MAX_NOTES_LENGTH:
            raise ValidationFailed(
                "INVALID_FIELD",
                f"admin_notes must be at most {_MAX_NOTES_LENGTH} characters",
                400,
                {"field": "admin_notes"},
            )

        dispute = self._load_dispute(dispute_id)
        job_id = dispute["job_id"]
        with self._database.atomic() as db:
            current = db.execute(
                "SELECT status FROM disputes WHERE dispute_id = ?", (dispute_id,)
            ).fetchone()
            if current["status"] != DISPUTE_UNDER_REVIEW:
                raise StateConflict(
                    "DISPUTE_NOT_UNDER_REVIEW",
                    f"Dispute is {current['status']}, not under review",
                    409,
                    {"dispute_id": dispute_id, "current_status": current["status"]},
                )

            held = self._escrow.get_transaction_for_job(job_id)
            if held is None:
                raise FinancialIntegrityError(
                    "ESCROW_MISSING", "Disputed job has no escrow transaction", 409
                )
            if resolution == RESOLUTION_REFUND_CLIENT:
                settlement = self._escrow.refund(held["transaction_id"])
            else:
                settlement = self._escrow.release(held["transaction_id"])
            if not settlement.applied:
                raise StateConflict(
                    "ESCROW_NOT_HELD",
                    "Escrow is no longer held",
                    409,
                    {"payment_status": settlement.transaction["payment_status"]},
                )

            cursor = db.execute(
                "UPDATE disputes SET status = ?, resolution = ?, admin_notes = ?, "
                "resolved_by = ?, resolved_at = ? WHERE dispute_id = ? AND status = ?",
                (
                    DISPUTE_RESOLVED,
                    resolution,
                    admin_notes,
                    actor.user_id,
                    now_iso(),
                    dispute_id,
                    DISPUTE_UNDER_REVIEW,
                ),
            )
            if cursor.rowcount != 1:
                raise StateConflict(
                    "DISPUTE_NOT_UNDER_REVIEW",
                    "Dispute is no longer under review",
                    409,
                    {"dispute_id": dispute_id},
                )

            if resolution == RESOLUTION_REFUND_CLIENT:
                self._jobs.transition(
                    db,
                    job_id,
                    DISPUTABLE,
                    JOB_CANCELLED,
                    actor.user_id,
                    actor.role,
                    columns={"cancelled_by": ROLE_ADMIN},
                )
            else:
                self._jobs.transition(
                    db, job_id, DISPUTABLE, JOB_CONFIRMED, actor.user_id, actor.role
                )

        self._logger.info(
            "Dispute resolved",
            extra={
                "dispute_id": dispute_id,
                "job_id": job_id,
                "resolution": resolution,
                "transaction_id": settlement.transaction["transaction_id"],
                "payment_status": settlement.transaction["payment_status"],
            },
        )
        job = self._jobs.load_job(job_id)
        self._notifier.notify(
            [job["client_id"], job["assigned_driver_id"]],
            f"Dispute on job {job['job_number']} resolved",
            f"Resolution: {resolution.replace('_', ' ')}",
            "disputes",
            dispute_id,
        )
        return {"dispute": self._load_dispute(dispute_id), "transaction": settlement.transaction}
