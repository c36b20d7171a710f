"""
Fixed-point money helpers.

Amounts enter and leave the ledger as `Decimal` with two fractional digits
and are stored as integer cents. Floats never touch a balance: 0.1 + 0.2
is not 0.3 in IEEE 754, and a ledger can't afford that drift.
"""

from decimal import Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def from_cents(cents: int | None) -> Decimal:
    """Integer cents -> two-place Decimal. None (no rows) becomes 0.00."""
    if cents is None:
        return ZERO
    return (Decimal(int(cents)) / 100).quantize(CENT)


def to_cents(amount: Decimal) -> int:
    """
    Two-place Decimal -> integer cents.

    Raises:
        ValueError: If the amount isn't a finite Decimal with at most two
            fractional digits. Rounding money silently is never correct.
    """
    if isinstance(amount, float):
        raise ValueError("Amounts must be Decimal, not float")
    try:
        amount = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Not a decimal amount: {amount!r}") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be finite")
    try:
        # quantize raises once the cent-scaled value needs more digits than
        # the context precision (e.g. 1E+30)
        quantized = amount.quantize(CENT)
    except InvalidOperation as exc:
        raise ValueError(f"Amount out of range: {amount!r}") from exc
    if amount != quantized:
        raise ValueError("Amount has more than two fractional digits")
    # scaleb only shifts the exponent, so no digits are rounded away
    return int(quantized.scaleb(2))
