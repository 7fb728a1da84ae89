# nexticket/domain/money.py

from decimal import Decimal, InvalidOperation

from nexticket.domain.exceptions import ValidationFailedError

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount) -> int:
    """
    Convert a major-unit amount (e.g. ``450.5`` taka) to integer minor units.
    Sub-minor precision is rejected rather than rounded.
    """
    try:
        value = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    except InvalidOperation as exc:
        raise ValidationFailedError(f"Invalid amount: {amount!r}") from exc

    if value != value.to_integral_value():
        raise ValidationFailedError(f"Amount {amount!r} has sub-minor precision")
    return int(value)


def to_major_units(amount_minor: int) -> Decimal:
    return Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR


def total_price(price_per_unit_minor: int, quantity: int) -> int:
    if price_per_unit_minor <= 0:
        raise ValidationFailedError("Price per unit must be positive")
    if quantity <= 0:
        raise ValidationFailedError("Quantity must be positive")
    return price_per_unit_minor * quantity
