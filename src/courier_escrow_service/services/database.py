"""SQLite database shared by every engine component."""

from __future__ import annotations

import contextlib
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    role TEXT NOT NULL,
    public_key TEXT NOT NULL UNIQUE,
    registered_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    job_number TEXT NOT NULL UNIQUE,
    client_id TEXT NOT NULL,
    assigned_driver_id TEXT,
    assigned_bid_id TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    item_description TEXT NOT NULL,
    item_category TEXT NOT NULL,
    urgency TEXT NOT NULL,
    pickup_address TEXT NOT NULL,
    delivery_address TEXT NOT NULL,
    budget_min TEXT,
    budget_max TEXT,
    final_amount TEXT,
    notes TEXT,
    size_tier TEXT,
    estimated_fare TEXT,
    pickup_photo_url TEXT,
    delivery_photo_url TEXT,
    created_at TEXT NOT NULL,
    assigned_at TEXT,
    pickup_confirmed_at TEXT,
    in_transit_at TEXT,
    delivered_at TEXT,
    confirmed_at TEXT,
    completed_at TEXT,
    cancelled_at TEXT,
    cancelled_by TEXT
);

CREATE TABLE IF NOT EXISTS job_addons (
    job_id TEXT NOT NULL REFERENCES jobs(job_id),
    position INTEGER NOT NULL,
    addon TEXT NOT NULL,
    PRIMARY KEY (job_id, position)
);

CREATE TABLE IF NOT EXISTS job_events (
    event_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(job_id),
    from_status TEXT,
    to_status TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    actor_role TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(job_id),
    driver_id TEXT NOT NULL,
    amount TEXT NOT NULL,
    message TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    transaction_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL UNIQUE REFERENCES jobs(job_id),
    client_id TEXT NOT NULL,
    driver_id TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    commission_rate TEXT NOT NULL,
    commission_amount TEXT NOT NULL,
    driver_payout TEXT NOT NULL,
    payment_status TEXT NOT NULL DEFAULT 'held',
    held_at TEXT NOT NULL,
    released_at TEXT,
    refunded_at TEXT
);

CREATE TABLE IF NOT EXISTS disputes (
    dispute_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(job_id),
    opened_by TEXT NOT NULL,
    opened_by_role TEXT NOT NULL,
    reason TEXT NOT NULL,
    description TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    resolution TEXT,
    admin_notes TEXT,
    reviewed_by TEXT,
    resolved_by TEXT,
    opened_at TEXT NOT NULL,
    reviewed_at TEXT,
    resolved_at TEXT
);

CREATE TABLE IF NOT EXISTS wallets (
    user_id TEXT PRIMARY KEY,
    balance TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS wallet_entries (
    entry_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES wallets(user_id),
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    balance_after TEXT NOT NULL,
    reference TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS platform_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_accepted_bid_per_job
    ON bids(job_id)
    WHERE status = 'accepted';

CREATE UNIQUE INDEX IF NOT EXISTS ux_active_bid_per_driver
    ON bids(job_id, driver_id)
    WHERE status IN ('pending', 'shortlisted');

CREATE UNIQUE INDEX IF NOT EXISTS ux_active_dispute_per_job
    ON disputes(job_id)
    WHERE status IN ('open', 'under_review');

CREATE UNIQUE INDEX IF NOT EXISTS ux_wallet_entry_reference
    ON wallet_entries(user_id, reference, type);

CREATE INDEX IF NOT EXISTS ix_bids_job ON bids(job_id, created_at);
CREATE INDEX IF NOT EXISTS ix_job_events_job ON job_events(job_id, created_at);
CREATE INDEX IF NOT EXISTS ix_jobs_client ON jobs(client_id, created_at);
CREATE INDEX IF NOT EXISTS ix_wallet_entries_user ON wallet_entries(user_id, created_at);
"""


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


class Database:
    """
    SQLite connection plus the unit-of-work every mutation runs in.

    atomic() holds an in-process RLock and a BEGIN IMMEDIATE write lock,
    so guarded UPDATEs issued inside it cannot interleave with another
    writer, in this process or any other.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        with self._lock:
            self._db.executescript(_SCHEMA)

    @contextlib.contextmanager
    def atomic(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed statements as one transaction.

        Nested calls join the outermost transaction. Any exception rolls
        back everything written since the outermost BEGIN.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._db
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            else:
                self._db.execute("COMMIT")
            finally:
                self._depth = 0

    def fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
        return row

    def fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._db.execute(query, params).fetchall())

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
