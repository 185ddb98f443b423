"""Money amounts: decimal, two places, half-up rounding."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from courier_escrow_service.core.exceptions import ValidationFailed

CENTS = Decimal("0.01")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize an amount to cents."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def money_or_none(value: str | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value)


def parse_amount(value: object, field: str, *, allow_zero: bool = False) -> Decimal:
    """
    Parse a JSON amount (number or numeric string) into a cent-quantized Decimal.

    Floats go through str() so 70.1 stays 70.10 rather than its binary expansion.

    Raises:
        ValidationFailed: INVALID_AMOUNT if the value is not a finite number, has
            more than two decimal places, or is not positive (or negative when
            allow_zero).
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValidationFailed("INVALID_AMOUNT", f"{field} must be a number", 400, {"field": field})
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationFailed(
            "INVALID_AMOUNT", f"{field} must be a number", 400, {"field": field}
        ) from exc
    if not amount.is_finite():
        raise ValidationFailed("INVALID_AMOUNT", f"{field} must be a number", 400, {"field": field})
    if amount != amount.quantize(CENTS, rounding=ROUND_HALF_UP):
        raise ValidationFailed(
            "INVALID_AMOUNT",
            f"{field} must have at most two decimal places",
            400,
            {"field": field},
        )
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationFailed(
            "INVALID_AMOUNT",
            f"{field} must be positive" if not allow_zero else f"{field} must not be negative",
            400,
            {"field": field},
        )
    return to_money(amount)
