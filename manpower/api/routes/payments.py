"""
Payment & Wallet API Routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.api.dependencies.auth import get_current_user, require_role
from manpower.api.dependencies.services import get_payment_service
from manpower.api.routes.schemas import (
    ApiResponse,
    CreatePaymentData,
    CreatePaymentRequest,
    PaginationOut,
    PaymentData,
    PaymentOut,
    WalletOut,
    WithdrawalData,
    WithdrawalOut,
    WithdrawalRequest,
)
from manpower.db.database import get_db
from manpower.db.models.payment import PaymentStatus
from manpower.db.models.user import User, UserRole
from manpower.db.models.withdrawal import WithdrawalStatus
from manpower.domain.services.payment_service import PaymentService
from manpower.domain.services.wallet_service import WalletService

router = APIRouter()


@router.post(
    "/create",
    response_model=ApiResponse[CreatePaymentData],
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment intent",
    description="Creates a processor intent and a pending payment. Business only.",
)
async def create_payment(
    body: CreatePaymentRequest,
    user: User = Depends(require_role(UserRole.BUSINESS)),
    service: PaymentService = Depends(get_payment_service),
):
    payment, client_secret = await service.create_payment_intent(
        job_id=body.job_id,
        worker_id=body.worker_id,
        business_id=user.id,
        amount=body.amount,
    )
    return ApiResponse(
        message="Payment intent created",
        data=CreatePaymentData(
            payment=PaymentOut.model_validate(payment),
            client_secret=client_secret,
        ),
    )


@router.post(
    "/{payment_id}/confirm",
    response_model=ApiResponse[PaymentData],
    summary="Confirm a payment",
    description="Marks the payment completed and credits the worker's wallet once.",
)
async def confirm_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.confirm_payment(payment_id, user)
    return ApiResponse(
        message="Payment confirmed successfully",
        data=PaymentData(payment=PaymentOut.model_validate(payment)),
    )


@router.get(
    "/history",
    response_model=ApiResponse[List[PaymentOut]],
    summary="Payment history",
    description="Payments received (worker) or made (business), newest first.",
)
async def payment_history(
    status_filter: Optional[PaymentStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payments, pagination = await service.get_payment_history(
        user.id, user.role, status=status_filter, page=page, limit=limit
    )
    return ApiResponse(
        data=[PaymentOut.model_validate(p) for p in payments],
        pagination=PaginationOut(**pagination.to_dict()),
    )


@router.post(
    "/withdraw",
    response_model=ApiResponse[WithdrawalData],
    status_code=status.HTTP_201_CREATED,
    summary="Request a withdrawal",
    description="Reserves the amount from the available balance. Worker only.",
)
async def request_withdrawal(
    body: WithdrawalRequest,
    user: User = Depends(require_role(UserRole.WORKER)),
    service: PaymentService = Depends(get_payment_service),
):
    withdrawal = await service.request_withdrawal(
        user.id,
        body.amount,
        body.method,
        bank_details=body.bank_details.model_dump() if body.bank_details else None,
        paypal_email=body.paypal_email,
        stripe_account_id=body.stripe_account_id,
        notes=body.notes,
    )
    return ApiResponse(
        message="Withdrawal request submitted successfully",
        data=WithdrawalData(withdrawal=WithdrawalOut.model_validate(withdrawal)),
    )


@router.get(
    "/withdrawals",
    response_model=ApiResponse[List[WithdrawalOut]],
    summary="Withdrawal history",
)
async def withdrawal_history(
    status_filter: Optional[WithdrawalStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(require_role(UserRole.WORKER)),
    service: PaymentService = Depends(get_payment_service),
):
    withdrawals, pagination = await service.get_withdrawal_history(
        user.id, status=status_filter, page=page, limit=limit
    )
    return ApiResponse(
        data=[WithdrawalOut.model_validate(w) for w in withdrawals],
        pagination=PaginationOut(**pagination.to_dict()),
    )


@router.get(
    "/wallet",
    response_model=ApiResponse[WalletOut],
    summary="Wallet balance",
    description="Available, pending and lifetime amounts. Created on first access.",
)
async def get_wallet(
    user: User = Depends(require_role(UserRole.WORKER)),
    db: AsyncSession = Depends(get_db),
):
    summary = await WalletService(db).get_wallet_summary(user.id)
    return ApiResponse(data=WalletOut(**summary))
