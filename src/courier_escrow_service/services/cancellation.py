"""Job cancellation, with escrow refund when funds are held."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier_escrow_service.core.exceptions import (
    FinancialIntegrityError,
    Forbidden,
    StateConflict,
)
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.lifecycle import (
    BIDDABLE,
    CLIENT_CANCELLABLE,
    ESCROW_HELD_JOB_STATUSES,
    JOB_CANCELLED,
    ROLE_ADMIN,
    ROLE_CLIENT,
    TERMINAL,
)

if TYPE_CHECKING:
    from courier_escrow_service.services.actor import Actor
    from courier_escrow_service.services.bid_ledger import BidLedger
    from courier_escrow_service.services.database import Database
    from courier_escrow_service.services.escrow_manager import EscrowManager
    from courier_escrow_service.services.job_state_machine import JobStateMachine
    from courier_escrow_service.services.notifier import Notifier


class CancellationCoordinator:
    """
    Cancels jobs.

    Before assignment there is no escrow and the job is simply cancelled
    (outstanding bids are rejected). Once escrow is held the refund runs
    first and the job is cancelled in the same unit only if the refund
    actually moved the entry from 'held' to 'refunded'. A refund that turns
    out to be a no-op rolls the whole cancellation back as a conflict.
    """

    def __init__(
        self,
        database: Database,
        jobs: JobStateMachine,
        bids: BidLedger,
        escrow: EscrowManager,
        notifier: Notifier,
    ) -> None:
        self._database = database
        self._jobs = jobs
        self._bids = bids
        self._escrow = escrow
        self._notifier = notifier
        self._logger = get_logger(__name__)

    def _authorize(self, job: dict[str, Any], actor: Actor) -> None:
        if actor.role == ROLE_ADMIN:
            return
        if actor.role != ROLE_CLIENT or job["client_id"] != actor.user_id:
            raise Forbidden("FORBIDDEN", "Only the job's client or an admin can cancel it", 403)
        if job["status"] not in CLIENT_CANCELLABLE and job["status"] not in TERMINAL:
            raise Forbidden(
                "FORBIDDEN",
                f"Clients cannot cancel a job that is {job['status']}",
                403,
                {"current_status": job["status"]},
            )

    async def cancel(self, job_id: str, actor: Actor) -> dict[str, Any]:
        """
        Cancel a job on behalf of its client or an admin.

        Returns:
            {"job": ..., "transaction": ... or None}

        Raises:
            Forbidden: drivers, other clients, or a client past pickup.
            StateConflict: NOTHING_TO_CANCEL for confirmed, completed or
                cancelled jobs; ESCROW_NOT_HELD if the refund was a no-op;
                DISPUTE_ACTIVE while a dispute is open or under review.
        """
        allowed = CLIENT_CANCELLABLE if actor.role == ROLE_CLIENT else None
        transaction = None
        with self._database.atomic() as db:
            # Read under the write lock; the status picks the refund branch
            job = self._jobs.load_job(job_id)
            self._authorize(job, actor)
            if job["status"] in TERMINAL:
                raise StateConflict(
                    "NOTHING_TO_CANCEL",
                    f"Job is already {job['status']}",
                    409,
                    {"job_id": job_id, "current_status": job["status"]},
                )

            if job["status"] in BIDDABLE:
                self._jobs.transition(
                    db,
                    job_id,
                    BIDDABLE,
                    JOB_CANCELLED,
                    actor.user_id,
                    actor.role,
                    columns={"cancelled_by": actor.role},
                )
                self._bids.reject_open_bids(db, job_id)
            else:
                if self._jobs.has_active_dispute(job_id):
                    raise StateConflict(
                        "DISPUTE_ACTIVE",
                        "The job has an active dispute",
                        409,
                        {"job_id": job_id, "current_status": job["status"]},
                    )
                held = self._escrow.get_transaction_for_job(job_id)
                if held is None:
                    raise FinancialIntegrityError(
                        "ESCROW_MISSING", "Assigned job has no escrow transaction", 409
                    )
                settlement = self._escrow.refund(held["transaction_id"])
                if not settlement.applied:
                    raise StateConflict(
                        "ESCROW_NOT_HELD",
                        "Escrow is no longer held",
                        409,
                        {"payment_status": settlement.transaction["payment_status"]},
                    )
                self._jobs.transition(
                    db,
                    job_id,
                    tuple(
                        s for s in ESCROW_HELD_JOB_STATUSES if allowed is None or s in allowed
                    ),
                    JOB_CANCELLED,
                    actor.user_id,
                    actor.role,
                    columns={"cancelled_by": actor.role},
                )
                transaction = settlement.transaction

        self._logger.info(
            "Job cancelled",
            extra={
                "job_id": job_id,
                "cancelled_by": actor.role,
                "previous_status": job["status"],
                "refunded": transaction is not None,
            },
        )
        updated = self._jobs.load_job(job_id)
        self._notifier.notify(
            [updated["client_id"], updated["assigned_driver_id"]],
            f"Job {updated['job_number']} cancelled",
            f"The job was cancelled by {actor.role}",
            "job_updates",
            job_id,
        )
        return {"job": updated, "transaction": transaction}
