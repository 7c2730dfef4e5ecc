"""
Shared column helpers
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import Numeric

CENT = Decimal("0.01")


def Money():
    """Monetary column type: two fixed decimal places"""
    return Numeric(12, 2, asdecimal=True)


def to_money(value) -> Decimal:
    """Normalize int/float/str/Decimal to a cent-quantized Decimal"""
    if isinstance(value, Decimal):
        amount = value
    else:
        # str() first so 0.1 stays 0.1 and not 0.1000000000000000055511151231257827
        amount = Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Bring a client-supplied timestamp into the stored format"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
