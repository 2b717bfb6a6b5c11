"""Amount parsing and smallest-unit conversion."""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

from walletbot.errors import ValidationError

AmountLike = Union[Decimal, str, int]


def _to_decimal(value: AmountLike) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value).strip())


def to_smallest_unit(amount: AmountLike, decimals: int) -> int:
    """Scale a human amount to integer smallest units, truncating extra precision.

    Example: ``to_smallest_unit("1.5", 9) == 1500000000``.
    """
    scaled = _to_decimal(amount).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_smallest_unit(raw: Union[int, str], decimals: int) -> str:
    """Convert integer smallest units back to a plain decimal string.

    Trailing zeros are dropped and no exponent notation is used:
    ``from_smallest_unit(200000000, 6) == "200"``.
    """
    value = Decimal(int(raw)).scaleb(-decimals)
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def format_amount(amount: Decimal) -> str:
    """Plain decimal string for an amount, without exponent or grouping.

    ``format_amount(Decimal("1E+1")) == "10"``
    """
    return format(amount, "f")


def parse_amount(text: str, available: AmountLike, symbol: str) -> Decimal:
    """Parse user input as a positive amount not exceeding ``available``.

    Raises:
        ValidationError: with a message suitable for re-prompting the user
    """
    try:
        amount = Decimal(text.strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Please enter a valid amount greater than 0.")

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Please enter a valid amount greater than 0.")

    try:
        limit = _to_decimal(available)
    except (InvalidOperation, ValueError):
        limit = Decimal("0")

    if amount > limit:
        raise ValidationError(
            f"Insufficient balance. You only have {available} {symbol} available."
        )

    return amount
