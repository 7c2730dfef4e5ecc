"""
Payout Provider - how money actually leaves the platform for a completed withdrawal
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from manpower.core.logging import get_logger
from manpower.db.models.withdrawal import Withdrawal

logger = get_logger(__name__)


class BasePayoutProvider(ABC):
    """Dispatches a payout and returns the transfer reference"""

    @abstractmethod
    async def dispatch(self, withdrawal: Withdrawal, reference: Optional[str] = None) -> Optional[str]:
        """
        Send ``withdrawal.amount`` to the worker's destination.

        Args:
            withdrawal: the pending withdrawal being completed.
            reference: transfer reference supplied by the operator, if any.

        Returns:
            Reference stored as the withdrawal's transaction_id, or None when
            the provider has none to report.
        """


class ManualPayoutProvider(BasePayoutProvider):
    """
    Payouts are wired by an admin outside the system.

    The reference the admin typed in is stored as-is. Nothing is generated
    here, so a completion without one leaves transaction_id empty.
    """

    async def dispatch(self, withdrawal: Withdrawal, reference: Optional[str] = None) -> Optional[str]:
        reference = (reference or "").strip() or None
        if reference is None:
            logger.warning(
                "Manual payout completed without a transfer reference",
                extra_data={"withdrawal_id": withdrawal.id, "worker_id": withdrawal.worker_id},
            )
        logger.info(
            "Manual payout recorded",
            extra_data={
                "withdrawal_id": withdrawal.id,
                "worker_id": withdrawal.worker_id,
                "method": withdrawal.method.value,
                "amount": str(withdrawal.amount),
                "reference": reference,
            },
        )
        return reference


def get_payout_provider() -> BasePayoutProvider:
    return ManualPayoutProvider()
