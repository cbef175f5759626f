from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_decimal(amount) -> Decimal:
    """Parse ``amount`` as a Decimal; unparseable input becomes zero.

    Raises ValueError for NaN and infinities, which no money field may hold.
    """
    if isinstance(amount, Decimal):
        parsed = amount
    else:
        try:
            parsed = Decimal(str(amount if amount is not None else 0))
        except (InvalidOperation, ValueError):
            return Decimal("0")
    if not parsed.is_finite():
        raise ValueError(f"non-finite amount: {amount!r}")
    return parsed


def quantize_money(amount) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def money_major_to_minor(amount) -> int:
    minor = (to_decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    parsed = int(minor)
    return parsed if parsed > 0 else 0


def money_minor_to_major(minor) -> float:
    try:
        parsed = Decimal(int(minor or 0))
    except (TypeError, ValueError):
        parsed = Decimal("0")
    return float((parsed / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP))


def bps_of_minor(amount_minor: int, bps: int) -> int:
    """Basis-point share of a minor-unit amount, rounded half-up."""
    amt = Decimal(max(0, int(amount_minor or 0)))
    rate = Decimal(max(0, int(bps or 0)))
    raw = (amt * rate) / Decimal("10000")
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
