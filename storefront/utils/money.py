# storefront/utils/money.py
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value, field: str = "amount") -> Decimal:
    """Accepts 12, 12.5, "12.50" and returns Decimal with 2 places."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return quantize(amount)


