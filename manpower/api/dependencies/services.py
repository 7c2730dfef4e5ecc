"""
Service dependencies - external collaborators are constructed here and
injected, so tests can swap them through ``app.dependency_overrides``.
"""
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.db.database import get_db
from manpower.domain.services.payment_processor import BasePaymentProcessor, get_payment_processor
from manpower.domain.services.payment_service import PaymentService
from manpower.domain.services.payout_provider import BasePayoutProvider, get_payout_provider
from manpower.domain.services.realtime import RealtimeHub, get_realtime_hub


def get_processor() -> Optional[BasePaymentProcessor]:
    return get_payment_processor()


def get_payout() -> BasePayoutProvider:
    return get_payout_provider()


def get_hub() -> RealtimeHub:
    return get_realtime_hub()


async def get_payment_service(
    db: AsyncSession = Depends(get_db),
    processor: Optional[BasePaymentProcessor] = Depends(get_processor),
    payout_provider: BasePayoutProvider = Depends(get_payout),
) -> PaymentService:
    return PaymentService(db, processor=processor, payout_provider=payout_provider)
