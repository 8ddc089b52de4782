"""
Display amount ↔ base unit conversion.

Amounts on the host ledger are non-negative integers in the smallest unit.
Callers may quote amounts as display values ("2.0" with 6 decimals is
2_000_000 base units). Conversion is exact: anything finer than one base
unit is rejected rather than rounded.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from workescrow.core.exceptions import ValidationError

DEFAULT_DECIMALS = 6

Amount = Union[int, float, str, Decimal]


def to_base_units(amount: Amount, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a display amount to an integer count of base units.

    Floats go through str() first so 2.0 means exactly 2.0, not the
    nearest binary fraction.

    Raises:
        ValidationError: negative, non-numeric, or finer than one base unit.
    """
    if isinstance(amount, bool):
        raise ValidationError("Amount must be numeric", {"amount": amount})
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValidationError("Amount must be numeric", {"amount": amount}) from exc

    if not value.is_finite():
        raise ValidationError("Amount must be finite", {"amount": amount})
    if value < 0:
        raise ValidationError("Amount must be non-negative", {"amount": amount})

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount has more than {decimals} decimal places",
            {"amount": amount},
        )
    return int(scaled)


def from_base_units(units: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """Convert base units back to a display Decimal."""
    return Decimal(units).scaleb(-decimals)
