"""Unit tests for the Database unit of work."""

from __future__ import annotations

import sqlite3

import pytest

from courier_escrow_service.services.database import Database, new_id, now_iso


def _insert_setting(db: sqlite3.Connection, key: str) -> None:
    db.execute(
        "INSERT INTO platform_settings (key, value, updated_at) VALUES (?, ?, ?)",
        (key, "1", now_iso()),
    )


@pytest.mark.unit
class TestAtomic:
    def test_commits_on_success(self, database: Database) -> None:
        with database.atomic() as db:
            _insert_setting(db, "a")
        assert database.fetch_one("SELECT key FROM platform_settings WHERE key = 'a'") is not None

    def test_rolls_back_on_exception(self, database: Database) -> None:
        with pytest.raises(RuntimeError), database.atomic() as db:
            _insert_setting(db, "a")
            raise RuntimeError("boom")
        assert database.fetch_one("SELECT key FROM platform_settings WHERE key = 'a'") is None

    def test_nested_unit_joins_outer_and_rolls_back_together(self, database: Database) -> None:
        with pytest.raises(RuntimeError), database.atomic() as outer:
            _insert_setting(outer, "outer")
            with database.atomic() as inner:
                _insert_setting(inner, "inner")
            raise RuntimeError("boom")
        assert database.fetch_all("SELECT key FROM platform_settings") == []

    def test_usable_after_rollback(self, database: Database) -> None:
        with pytest.raises(RuntimeError), database.atomic() as db:
            _insert_setting(db, "a")
            raise RuntimeError("boom")
        with database.atomic() as db:
            _insert_setting(db, "b")
        rows = database.fetch_all("SELECT key FROM platform_settings")
        assert [row["key"] for row in rows] == ["b"]

    def test_unit_holds_write_lock_against_other_connections(
        self, database: Database, tmp_path
    ) -> None:
        other = sqlite3.connect(str(tmp_path / "escrow.db"), timeout=0, isolation_level=None)
        try:
            with database.atomic() as db:
                _insert_setting(db, "a")
                with pytest.raises(sqlite3.OperationalError, match="locked"):
                    other.execute("BEGIN IMMEDIATE")

            other.execute("BEGIN IMMEDIATE")
            assert other.execute("SELECT key FROM platform_settings").fetchall() == [("a",)]
            other.execute("ROLLBACK")
        finally:
            other.close()


@pytest.mark.unit
class TestSchemaConstraints:
    def test_single_accepted_bid_per_job(self, database: Database) -> None:
        now = now_iso()
        with database.atomic() as db:
            db.execute(
                "INSERT INTO jobs (job_id, job_number, client_id, item_description, "
                "item_category, urgency, pickup_address, delivery_address, created_at) "
                "VALUES ('job-1', 'EX-1', 'c', 'd', 'general', 'standard', 'p', 'q', ?)",
                (now,),
            )
            db.execute(
                "INSERT INTO bids VALUES ('bid-1', 'job-1', 'd1', '10.00', NULL, 'accepted', ?, ?)",
                (now, now),
            )
        with pytest.raises(sqlite3.IntegrityError), database.atomic() as db:
            db.execute(
                "INSERT INTO bids VALUES ('bid-2', 'job-1', 'd2', '10.00', NULL, 'accepted', ?, ?)",
                (now, now),
            )


@pytest.mark.unit
def test_new_id_uses_prefix() -> None:
    assert new_id("job").startswith("job-")
    assert new_id("job") != new_id("job")


@pytest.mark.unit
def test_now_iso_is_utc_with_z_suffix() -> None:
    assert now_iso().endswith("Z")
