"""Platform commission rate lookup."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from courier_escrow_service.core.exceptions import ValidationFailed
from courier_escrow_service.logging import get_logger
from courier_escrow_service.services.database import now_iso

if TYPE_CHECKING:
    from courier_escrow_service.services.database import Database

COMMISSION_RATE_KEY = "commission_rate"


def parse_rate(value: object) -> Decimal:
    """Parse a commission percentage in [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValidationFailed("INVALID_COMMISSION_RATE", "Commission rate must be a number", 400)
    try:
        rate = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationFailed(
            "INVALID_COMMISSION_RATE",
            "Commission rate must be a number",
            400,
        ) from exc
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationFailed(
            "INVALID_COMMISSION_RATE",
            "Commission rate must be between 0 and 100",
            400,
        )
    return rate


class CommissionRates:
    """Reads the platform commission percentage, falling back to the configured default."""

    def __init__(self, database: Database, default_rate_pct: Decimal) -> None:
        self._database = database
        self._default_rate_pct = parse_rate(default_rate_pct)
        self._logger = get_logger(__name__)

    def current_rate(self) -> Decimal:
        row = self._database.fetch_one(
            "SELECT value FROM platform_settings WHERE key = ?",
            (COMMISSION_RATE_KEY,),
        )
        if row is None:
            return self._default_rate_pct
        try:
            return parse_rate(row["value"])
        except ValidationFailed:
            self._logger.warning(
                "Stored commission rate is invalid, using default",
                extra={"stored_value": row["value"]},
            )
            return self._default_rate_pct

    def set_rate(self, value: object) -> Decimal:
        rate = parse_rate(value)
        with self._database.atomic() as db:
            db.execute(
                "INSERT INTO platform_settings (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (COMMISSION_RATE_KEY, str(rate), now_iso()),
            )
        self._logger.info("Commission rate updated", extra={"rate_pct": str(rate)})
        return rate
