"""
Platform commission derivation.

Flat percentage only: no tiers, no minimum fee.
"""
from decimal import Decimal, ROUND_HALF_UP

from manpower.db.types import CENT, to_money

HUNDRED = Decimal("100")


def calculate_commission(amount, rate) -> tuple[Decimal, Decimal]:
    """
    Split a gross amount into (platform_commission, worker_amount).

    commission = round(amount * rate / 100, 2), half-up.
    worker_amount = amount - commission, so the two always add back to amount.

    Args:
        amount: gross payment amount (>= 0)
        rate: commission percentage (0-100)
    """
    gross = to_money(amount)
    rate_decimal = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    commission = (gross * rate_decimal / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
    return commission, gross - commission
