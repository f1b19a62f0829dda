"""Amount parsing and display helpers."""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from ledgerpay.ledger.errors import InvalidAmountError

LEDGER_DECIMALS = 18

# Preset amounts offered next to deposit inputs
QUICK_AMOUNTS = ("0.001", "0.01", "0.1", "1.0")


def parse_amount(value: Optional[Union[str, Decimal]], field: str = "amount") -> Decimal:
    """Parse a user-entered amount.

    Raises:
        InvalidAmountError: If the amount is empty, malformed or not positive
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidAmountError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmountError(f"{field} is not a number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(f"{field} must be greater than zero")
    if amount.as_tuple().exponent < -LEDGER_DECIMALS:
        raise InvalidAmountError(f"{field} has more than {LEDGER_DECIMALS} decimal places")
    return amount


def to_base_units(amount: Decimal, decimals: int = LEDGER_DECIMALS) -> int:
    """Convert a decimal amount to smallest units."""
    return int(amount * (Decimal(10) ** decimals))


def format_base_units(raw: int, decimals: int = LEDGER_DECIMALS) -> str:
    """Convert smallest units to a plain decimal string (no exponent)."""
    value = Decimal(raw) / (Decimal(10) ** decimals)
    text = format(value.normalize(), "f")
    return text if text else "0"


def format_time_remaining(seconds: Union[int, str]) -> str:
    """Format a countdown as '1h 2m 3s', '2m 3s' or '3s'."""
    secs = max(0, int(seconds))
    hours, rest = divmod(secs, 3600)
    minutes, remaining = divmod(rest, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {remaining}s"
    if minutes > 0:
        return f"{minutes}m {remaining}s"
    return f"{remaining}s"


def format_amount(display: str, unit: str) -> str:
    return f"{display} {unit}"
