"""Settlement balances credited by escrow release and refund."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from courier_escrow_service.core.exceptions import ValidationFailed
from courier_escrow_service.services.database import new_id, now_iso
from courier_escrow_service.services.money import to_money

if TYPE_CHECKING:
    import sqlite3

    from courier_escrow_service.services.database import Database


class WalletLedger:
    """
    Per-user balances with an append-only entry log.

    A credit is keyed by (user_id, reference, type); crediting the same
    reference twice returns the first entry instead of moving money again.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def credit(
        self,
        user_id: str,
        amount: Decimal,
        reference: str,
        entry_type: str,
    ) -> dict[str, Any]:
        """
        Add funds to a user's balance and record the entry.

        Joins the caller's atomic() unit when there is one.

        Raises:
            ValidationFailed: INVALID_AMOUNT if amount is negative.
        """
        amount = to_money(amount)
        if amount < 0:
            raise ValidationFailed("INVALID_AMOUNT", "Credit amount must be non-negative", 400)

        with self._database.atomic() as db:
            existing = db.execute(
                "SELECT entry_id, amount, balance_after FROM wallet_entries "
                "WHERE user_id = ? AND reference = ? AND type = ?",
                (user_id, reference, entry_type),
            ).fetchone()
            if existing is not None:
                return {
                    "entry_id": existing["entry_id"],
                    "amount": Decimal(existing["amount"]),
                    "balance_after": Decimal(existing["balance_after"]),
                    "duplicate": True,
                }

            now = now_iso()
            balance = self._ensure_wallet(db, user_id, now)
            new_balance = balance + amount
            db.execute(
                "UPDATE wallets SET balance = ? WHERE user_id = ?",
                (str(new_balance), user_id),
            )
            entry_id = new_id("we")
            db.execute(
                "INSERT INTO wallet_entries "
                "(entry_id, user_id, type, amount, balance_after, reference, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (entry_id, user_id, entry_type, str(amount), str(new_balance), reference, now),
            )

        return {
            "entry_id": entry_id,
            "amount": amount,
            "balance_after": new_balance,
            "duplicate": False,
        }

    def _ensure_wallet(self, db: sqlite3.Connection, user_id: str, now: str) -> Decimal:
        row = db.execute("SELECT balance FROM wallets WHERE user_id = ?", (user_id,)).fetchone()
        if row is not None:
            return Decimal(row["balance"])
        db.execute(
            "INSERT INTO wallets (user_id, balance, created_at) VALUES (?, ?, ?)",
            (user_id, "0.00", now),
        )
        return to_money(0)

    def get_balance(self, user_id: str) -> Decimal:
        row = self._database.fetch_one("SELECT balance FROM wallets WHERE user_id = ?", (user_id,))
        if row is None:
            return to_money(0)
        return Decimal(row["balance"])

    def get_wallet(self, user_id: str) -> dict[str, Any]:
        """Balance plus entry history, oldest first."""
        rows = self._database.fetch_all(
            "SELECT entry_id, type, amount, balance_after, reference, created_at "
            "FROM wallet_entries WHERE user_id = ? ORDER BY created_at, entry_id",
            (user_id,),
        )
        return {
            "user_id": user_id,
            "balance": self.get_balance(user_id),
            "entries": [
                {
                    "entry_id": row["entry_id"],
                    "type": row["type"],
                    "amount": Decimal(row["amount"]),
                    "balance_after": Decimal(row["balance_after"]),
                    "reference": row["reference"],
                    "created_at": row["created_at"],
                }
                for row in rows
            ],
        }
