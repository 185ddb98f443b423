"""Job lifecycle: creation, bidding trigger, driver progress, confirmation, completion."""

from __future__ import annotations

import secrets
import sqlite3
from datetime import UTC, datetime
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
    BIDDABLE,
    DEFAULT_ITEM_CATEGORY,
    DEFAULT_URGENCY,
    DISPUTE_ACTIVE,
    DRIVER_PROGRESS,
    JOB_ASSIGNED,
    JOB_BIDDING,
    JOB_COMPLETED,
    JOB_CONFIRMED,
    JOB_DELIVERED,
    JOB_OPEN,
    JOB_PICKUP_CONFIRMED,
    JOB_STATUSES,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_DRIVER,
    SIZE_TIERS,
    STATUS_ALIASES,
    STATUS_TIMESTAMP_COLUMNS,
    URGENCIES,
    placeholders,
)
from courier_escrow_service.services.money import money_or_none, parse_amount

if TYPE_CHECKING:
    from decimal import Decimal

    from courier_escrow_service.services.actor import Actor
    from courier_escrow_service.services.database import Database
    from courier_escrow_service.services.escrow_manager import EscrowManager
    from courier_escrow_service.services.notifier import Notifier

_JOB_COLUMNS_SQL = (
    "job_id, job_number, client_id, assigned_driver_id, assigned_bid_id, status, "
    "item_description, item_category, urgency, pickup_address, delivery_address, "
    "budget_min, budget_max, final_amount, notes, size_tier, estimated_fare, "
    "pickup_photo_url, delivery_photo_url, created_at, assigned_at, pickup_confirmed_at, "
    "in_transit_at, delivered_at, confirmed_at, completed_at, cancelled_at, cancelled_by"
)

_NO_ACTIVE_DISPUTE_SQL = (
    "NOT EXISTS (SELECT 1 FROM disputes WHERE disputes.job_id = jobs.job_id "
    "AND disputes.status IN ('open', 'under_review'))"
)

_REQUIRED_TEXT_FIELDS = ("item_description", "pickup_address", "delivery_address")

_MAX_ADDONS = 20


def _new_job_number() -> str:
    """Human-readable job number: EX-YYMMDD-XXXXXX."""
    return f"EX-{datetime.now(UTC):%y%m%d}-{secrets.token_hex(3).upper()}"


def _optional_text(value: object, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed("INVALID_FIELD", f"{field} must be a string", 400, {"field": field})
    stripped = value.strip()
    return stripped or None


class JobStateMachine:
    """
    Sole writer of jobs.status.

    Every transition is a guarded UPDATE whose WHERE clause restates the
    precondition (current status, and for most transitions the absence of
    an active dispute). A zero rowcount is reported as a state conflict;
    nothing is ever corrected or retried. Each successful transition also
    appends a job_events row in the same unit of work.
    """

    def __init__(self, database: Database, escrow: EscrowManager, notifier: Notifier) -> None:
        self._database = database
        self._escrow = escrow
        self._notifier = notifier
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row_to_job(self, row: sqlite3.Row, addons: list[str]) -> dict[str, Any]:
        return {
            "job_id": row["job_id"],
            "job_number": row["job_number"],
            "client_id": row["client_id"],
            "assigned_driver_id": row["assigned_driver_id"],
            "assigned_bid_id": row["assigned_bid_id"],
            "status": row["status"],
            "item_description": row["item_description"],
            "item_category": row["item_category"],
            "urgency": row["urgency"],
            "pickup_address": row["pickup_address"],
            "delivery_address": row["delivery_address"],
            "budget_min": money_or_none(row["budget_min"]),
            "budget_max": money_or_none(row["budget_max"]),
            "final_amount": money_or_none(row["final_amount"]),
            "fare": {
                "notes": row["notes"],
                "size_tier": row["size_tier"],
                "addons": addons,
                "estimated_fare": money_or_none(row["estimated_fare"]),
            },
            "pickup_photo_url": row["pickup_photo_url"],
            "delivery_photo_url": row["delivery_photo_url"],
            "created_at": row["created_at"],
            "assigned_at": row["assigned_at"],
            "pickup_confirmed_at": row["pickup_confirmed_at"],
            "in_transit_at": row["in_transit_at"],
            "delivered_at": row["delivered_at"],
            "confirmed_at": row["confirmed_at"],
            "completed_at": row["completed_at"],
            "cancelled_at": row["cancelled_at"],
            "cancelled_by": row["cancelled_by"],
        }

    def _addons(self, job_id: str) -> list[str]:
        rows = self._database.fetch_all(
            "SELECT addon FROM job_addons WHERE job_id = ? ORDER BY position",
            (job_id,),
        )
        return [row["addon"] for row in rows]

    def load_job(self, job_id: str) -> dict[str, Any]:
        """Fetch a job without visibility checks. Raises NotFound."""
        row = self._database.fetch_one(
            f"SELECT {_JOB_COLUMNS_SQL} FROM jobs WHERE job_id = ?",  # nosec B608
            (job_id,),
        )
        if row is None:
            raise NotFound("JOB_NOT_FOUND", "Job not found", 404)
        return self._row_to_job(row, self._addons(job_id))

    def has_active_dispute(self, job_id: str) -> bool:
        row = self._database.fetch_one(
            f"SELECT 1 FROM disputes WHERE job_id = ? "  # nosec B608
            f"AND status IN ({placeholders(DISPUTE_ACTIVE)})",
            (job_id, *DISPUTE_ACTIVE),
        )
        return row is not None

    @staticmethod
    def can_view(job: dict[str, Any], actor: Actor) -> bool:
        if actor.role == ROLE_ADMIN:
            return True
        if actor.role == ROLE_CLIENT:
            return bool(job["client_id"] == actor.user_id)
        return job["assigned_driver_id"] == actor.user_id or job["status"] in BIDDABLE

    async def get_job(self, job_id: str, actor: Actor) -> dict[str, Any]:
        job = self.load_job(job_id)
        if not self.can_view(job, actor):
            raise Forbidden("FORBIDDEN", "You are not a party to this job", 403)
        return job

    async def list_jobs(self, actor: Actor, status: str | None = None) -> list[dict[str, Any]]:
        """
        List jobs visible to the actor, newest first.

        Clients see their own jobs and admins see everything. Drivers see
        jobs assigned to them, or the open marketplace when filtering by a
        biddable status.
        """
        if status is not None:
            status = STATUS_ALIASES.get(status, status)
            if status not in JOB_STATUSES:
                raise ValidationFailed(
                    "INVALID_STATUS", f"Unknown job status: {status}", 400, {"status": status}
                )

        clauses: list[str] = []
        params: list[Any] = []
        if actor.role == ROLE_CLIENT:
            clauses.append("client_id = ?")
            params.append(actor.user_id)
        elif actor.role == ROLE_DRIVER and status not in BIDDABLE:
            clauses.append("assigned_driver_id = ?")
            params.append(actor.user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)

        query = f"SELECT {_JOB_COLUMNS_SQL} FROM jobs"  # nosec B608
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, job_id"
        rows = self._database.fetch_all(query, tuple(params))
        return [self._row_to_job(row, self._addons(row["job_id"])) for row in rows]

    async def list_events(self, job_id: str, actor: Actor) -> list[dict[str, Any]]:
        await self.get_job(job_id, actor)
        rows = self._database.fetch_all(
            "SELECT event_id, job_id, from_status, to_status, actor_id, actor_role, created_at "
            "FROM job_events WHERE job_id = ? ORDER BY created_at, rowid",
            (job_id,),
        )
        return [dict(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        rows = self._database.fetch_all("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status")
        return {row["status"]: int(row["n"]) for row in rows}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_job(self, actor: Actor, details: dict[str, Any]) -> dict[str, Any]:
        """
        Create a job in status 'open' owned by the calling client.

        Raises:
            Forbidden: if the actor is not a client.
            ValidationFailed: on missing or invalid fields.
        """
        if actor.role != ROLE_CLIENT:
            raise Forbidden("FORBIDDEN", "Only clients can create jobs", 403)

        values: dict[str, Any] = {}
        for field in _REQUIRED_TEXT_FIELDS:
            text = _optional_text(details.get(field), field)
            if text is None:
                raise ValidationFailed(
                    "MISSING_FIELD", f"Missing required field: {field}", 400, {"field": field}
                )
            values[field] = text

        values["item_category"] = (
            _optional_text(details.get("item_category"), "item_category") or DEFAULT_ITEM_CATEGORY
        )
        urgency = _optional_text(details.get("urgency"), "urgency") or DEFAULT_URGENCY
        if urgency not in URGENCIES:
            raise ValidationFailed(
                "INVALID_FIELD", f"Unknown urgency: {urgency}", 400, {"field": "urgency"}
            )
        values["urgency"] = urgency

        budget_min = details.get("budget_min")
        budget_max = details.get("budget_max")
        values["budget_min"] = (
            parse_amount(budget_min, "budget_min") if budget_min is not None else None
        )
        values["budget_max"] = (
            parse_amount(budget_max, "budget_max") if budget_max is not None else None
        )
        if (
            values["budget_min"] is not None
            and values["budget_max"] is not None
            and values["budget_min"] > values["budget_max"]
        ):
            raise ValidationFailed(
                "INVALID_BUDGET", "budget_min must not exceed budget_max", 400
            )

        fare = details.get("fare")
        if fare is None:
            fare = {}
        if not isinstance(fare, dict):
            raise ValidationFailed(
                "INVALID_FIELD", "fare must be an object", 400, {"field": "fare"}
            )
        unknown = sorted(set(fare) - {"notes", "size_tier", "addons", "estimated_fare"})
        if unknown:
            raise ValidationFailed(
                "INVALID_FIELD",
                f"Unknown fare fields: {', '.join(unknown)}",
                400,
                {"fields": unknown},
            )
        notes = _optional_text(fare.get("notes"), "fare.notes")
        size_tier = _optional_text(fare.get("size_tier"), "fare.size_tier")
        if size_tier is not None and size_tier not in SIZE_TIERS:
            raise ValidationFailed(
                "INVALID_FIELD",
                f"Unknown size tier: {size_tier}",
                400,
                {"field": "fare.size_tier"},
            )
        addons = fare.get("addons") or []
        if (
            not isinstance(addons, list)
            or len(addons) > _MAX_ADDONS
            or not all(isinstance(a, str) and a.strip() for a in addons)
        ):
            raise ValidationFailed(
                "INVALID_FIELD",
                "fare.addons must be a list of strings",
                400,
                {"field": "fare.addons"},
            )
        estimated_fare = fare.get("estimated_fare")
        estimated: Decimal | None = (
            parse_amount(estimated_fare, "fare.estimated_fare", allow_zero=True)
            if estimated_fare is not None
            else None
        )

        job_id = new_id("job")
        job_number = _new_job_number()
        created_at = now_iso()
        with self._database.atomic() as db:
            db.execute(
                "INSERT INTO jobs (job_id, job_number, client_id, status, item_description, "
                "item_category, urgency, pickup_address, delivery_address, budget_min, "
                "budget_max, notes, size_tier, estimated_fare, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    job_id,
                    job_number,
                    actor.user_id,
                    JOB_OPEN,
                    values["item_description"],
                    values["item_category"],
                    values["urgency"],
                    values["pickup_address"],
                    values["delivery_address"],
                    str(values["budget_min"]) if values["budget_min"] is not None else None,
                    str(values["budget_max"]) if values["budget_max"] is not None else None,
                    notes,
                    size_tier,
                    str(estimated) if estimated is not None else None,
                    created_at,
                ),
            )
            db.executemany(
                "INSERT INTO job_addons (job_id, position, addon) VALUES (?, ?, ?)",
                [(job_id, position, addon.strip()) for position, addon in enumerate(addons)],
            )
            self._record_event(db, job_id, None, JOB_OPEN, actor.user_id, actor.role, created_at)

        self._logger.info(
            "Job created",
            extra={"job_id": job_id, "job_number": job_number, "client_id": actor.user_id},
        )
        return self.load_job(job_id)

    # ------------------------------------------------------------------
    # Guarded transitions
    # ------------------------------------------------------------------

    @staticmethod
    def _record_event(
        db: sqlite3.Connection,
        job_id: str,
        from_status: str | None,
        to_status: str,
        actor_id: str,
        actor_role: str,
        created_at: str,
    ) -> None:
        db.execute(
            "INSERT INTO job_events "
            "(event_id, job_id, from_status, to_status, actor_id, actor_role, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (new_id("evt"), job_id, from_status, to_status, actor_id, actor_role, created_at),
        )

    def transition(
        self,
        db: sqlite3.Connection,
        job_id: str,
        from_statuses: tuple[str, ...],
        to_status: str,
        actor_id: str,
        actor_role: str,
        *,
        columns: dict[str, Any] | None = None,
        block_on_dispute: bool = True,
    ) -> str:
        """
        Move a job to to_status if its current status is in from_statuses.

        Must be called inside Database.atomic(). Returns the previous status.

        Raises:
            StateConflict: INVALID_TRANSITION when the job is not in one of
                from_statuses, DISPUTE_ACTIVE when blocked by an active dispute.
        """
        current = db.execute("SELECT status FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if current is None:
            raise NotFound("JOB_NOT_FOUND", "Job not found", 404)
        from_status = current["status"]

        now = now_iso()
        assignments = {"status": to_status}
        timestamp_column = STATUS_TIMESTAMP_COLUMNS.get(to_status)
        if timestamp_column is not None:
            assignments[timestamp_column] = now
        if columns:
            assignments.update(columns)

        set_sql = ", ".join(f"{column} = ?" for column in assignments)
        where_sql = f"job_id = ? AND status IN ({placeholders(from_statuses)})"
        if block_on_dispute:
            where_sql += f" AND {_NO_ACTIVE_DISPUTE_SQL}"
        cursor = db.execute(
            f"UPDATE jobs SET {set_sql} WHERE {where_sql}",  # nosec B608
            (*assignments.values(), job_id, *from_statuses),
        )
        if cursor.rowcount != 1:
            if from_status in from_statuses:
                raise StateConflict(
                    "DISPUTE_ACTIVE",
                    "The job has an active dispute",
                    409,
                    {"job_id": job_id, "current_status": from_status},
                )
            raise StateConflict(
                "INVALID_TRANSITION",
                f"Cannot move job from {from_status} to {to_status}",
                409,
                {"job_id": job_id, "current_status": from_status, "requested": to_status},
            )

        self._record_event(db, job_id, from_status, to_status, actor_id, actor_role, now)
        self._logger.info(
            "Job transitioned",
            extra={
                "job_id": job_id,
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": actor_id,
            },
        )
        return str(from_status)

    def _notify_parties(self, job: dict[str, Any], title: str, message: str) -> None:
        self._notifier.notify(
            [job["client_id"], job["assigned_driver_id"]],
            title,
            message,
            "job_updates",
            job["job_id"],
        )

    # ------------------------------------------------------------------
    # Bidding trigger
    # ------------------------------------------------------------------

    def open_for_bidding(self, db: sqlite3.Connection, job_id: str, actor: Actor) -> bool:
        """
        Named trigger for open -> bidding.

        Fired by the first bid on a job (inside the bid's unit of work) and by
        an explicit client request. Returns False if the job was not 'open'.
        """
        cursor = db.execute(
            "UPDATE jobs SET status = ? WHERE job_id = ? AND status = ?",
            (JOB_BIDDING, job_id, JOB_OPEN),
        )
        if cursor.rowcount != 1:
            return False
        self._record_event(db, job_id, JOB_OPEN, JOB_BIDDING, actor.user_id, actor.role, now_iso())
        self._logger.info("Job open for bidding", extra={"job_id": job_id})
        return True

    async def start_bidding(self, job_id: str, actor: Actor) -> dict[str, Any]:
        job = self.load_job(job_id)
        if not (actor.role == ROLE_ADMIN or job["client_id"] == actor.user_id):
            raise Forbidden("FORBIDDEN", "Only the job's client can start bidding", 403)
        with self._database.atomic() as db:
            if not self.open_for_bidding(db, job_id, actor):
                raise StateConflict(
                    "INVALID_TRANSITION",
                    f"Cannot move job from {job['status']} to {JOB_BIDDING}",
                    409,
                    {"job_id": job_id, "current_status": job["status"]},
                )
        return self.load_job(job_id)

    # ------------------------------------------------------------------
    # Progress, confirmation, completion
    # ------------------------------------------------------------------

    async def advance(
        self,
        job_id: str,
        next_status: str,
        actor: Actor,
        proof_photo_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Advance a job to next_status.

        Driver progress (pickup_confirmed, in_transit, delivered) requires the
        immediately preceding status. 'bidding', 'confirmed' and 'completed'
        are routed to their dedicated operations. 'assigned' and 'cancelled'
        are only reachable through bid acceptance and cancellation.
        """
        if not isinstance(next_status, str) or not next_status:
            raise ValidationFailed("MISSING_FIELD", "Missing required field: status", 400)
        status = STATUS_ALIASES.get(next_status, next_status)
        if status not in JOB_STATUSES:
            raise ValidationFailed(
                "INVALID_STATUS", f"Unknown job status: {next_status}", 400, {"status": next_status}
            )

        if status == JOB_BIDDING:
            return await self.start_bidding(job_id, actor)
        if status == JOB_CONFIRMED:
            result = await self.confirm_delivery(job_id, actor)
            return dict(result["job"])
        if status == JOB_COMPLETED:
            return await self.complete(job_id, actor)
        if status not in DRIVER_PROGRESS:
            raise ValidationFailed(
                "INVALID_STATUS",
                f"Status {status} cannot be set directly",
                400,
                {"status": status},
            )

        photo = _optional_text(proof_photo_url, "proof_photo_url")
        job = self.load_job(job_id)
        if actor.role != ROLE_DRIVER or job["assigned_driver_id"] != actor.user_id:
            raise Forbidden("FORBIDDEN", "Only the assigned driver can report progress", 403)

        columns: dict[str, Any] = {}
        if photo is not None and status == JOB_PICKUP_CONFIRMED:
            columns["pickup_photo_url"] = photo
        elif photo is not None and status == JOB_DELIVERED:
            columns["delivery_photo_url"] = photo

        with self._database.atomic() as db:
            self.transition(
                db,
                job_id,
                (DRIVER_PROGRESS[status],),
                status,
                actor.user_id,
                actor.role,
                columns=columns,
            )

        updated = self.load_job(job_id)
        self._notify_parties(
            updated,
            f"Job {updated['job_number']} status updated",
            f"Status changed to: {status.replace('_', ' ')}",
        )
        return updated

    async def confirm_delivery(self, job_id: str, actor: Actor) -> dict[str, Any]:
        """
        delivered -> confirmed, releasing escrow to the driver in the same unit.

        Raises:
            Forbidden: if the actor is not the job's client.
            StateConflict: if the job is not delivered, a dispute is active,
                or the escrow entry is no longer held.
        """
        job = self.load_job(job_id)
        if actor.role != ROLE_CLIENT or job["client_id"] != actor.user_id:
            raise Forbidden("FORBIDDEN", "Only the job's client can confirm delivery", 403)

        with self._database.atomic() as db:
            self.transition(db, job_id, (JOB_DELIVERED,), JOB_CONFIRMED, actor.user_id, actor.role)
            transaction = self._escrow.get_transaction_for_job(job_id)
            if transaction is None:
                raise FinancialIntegrityError(
                    "ESCROW_MISSING", "Delivered job has no escrow transaction", 409
                )
            settlement = self._escrow.release(transaction["transaction_id"])
            if not settlement.applied:
                raise StateConflict(
                    "ESCROW_NOT_HELD",
                    "Escrow is no longer held",
                    409,
                    {"payment_status": settlement.transaction["payment_status"]},
                )

        updated = self.load_job(job_id)
        self._notify_parties(
            updated,
            f"Job {updated['job_number']} delivery confirmed",
            f"Payment of {settlement.transaction['driver_payout']} released to driver",
        )
        return {"job": updated, "transaction": settlement.transaction}

    async def complete(self, job_id: str, actor: Actor) -> dict[str, Any]:
        """confirmed -> completed. Client of the job or an admin."""
        job = self.load_job(job_id)
        is_client = actor.role == ROLE_CLIENT and job["client_id"] == actor.user_id
        if not (is_client or actor.role == ROLE_ADMIN):
            raise Forbidden("FORBIDDEN", "Only the job's client or an admin can complete it", 403)

        with self._database.atomic() as db:
            self.transition(db, job_id, (JOB_CONFIRMED,), JOB_COMPLETED, actor.user_id, actor.role)

        updated = self.load_job(job_id)
        self._notify_parties(
            updated,
            f"Job {updated['job_number']} completed",
            "The job has been completed",
        )
        return updated

    # ------------------------------------------------------------------
    # Assignment (called by the bid ledger inside its unit of work)
    # ------------------------------------------------------------------

    def mark_assigned(
        self,
        db: sqlite3.Connection,
        job_id: str,
        bid: dict[str, Any],
        actor: Actor,
    ) -> None:
        self.transition(
            db,
            job_id,
            BIDDABLE,
            JOB_ASSIGNED,
            actor.user_id,
            actor.role,
            columns={
                "assigned_driver_id": bid["driver_id"],
                "assigned_bid_id": bid["bid_id"],
                "final_amount": str(bid["amount"]),
            },
            block_on_dispute=False,
        )
