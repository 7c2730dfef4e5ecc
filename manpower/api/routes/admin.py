"""
Admin API Routes - payment oversight and withdrawal processing
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from manpower.api.dependencies.auth import require_role
from manpower.api.dependencies.services import get_payment_service
from manpower.api.routes.schemas import (
    AdminPaymentListResponse,
    ApiResponse,
    PaginationOut,
    PaymentOut,
    PaymentStatsOut,
    ProcessWithdrawalRequest,
    WithdrawalData,
    WithdrawalOut,
)
from manpower.db.models.payment import PaymentStatus
from manpower.db.models.user import User, UserRole
from manpower.db.models.withdrawal import WithdrawalStatus
from manpower.domain.services.payment_service import PaymentService

router = APIRouter()

require_admin = require_role(UserRole.ADMIN)

# Admin lists page in twenties
ADMIN_PAGE_SIZE = 20


@router.get(
    "/payments",
    response_model=AdminPaymentListResponse,
    summary="All payments",
    description="Filter by status and a created-at window; stats total the whole filtered set.",
)
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=ADMIN_PAGE_SIZE, ge=1, le=100),
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payments, pagination, stats = await service.list_payments(
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return AdminPaymentListResponse(
        data=[PaymentOut.model_validate(p) for p in payments],
        pagination=PaginationOut(**pagination.to_dict()),
        stats=PaymentStatsOut(**stats),
    )


@router.get(
    "/withdrawals",
    response_model=ApiResponse[List[WithdrawalOut]],
    summary="All withdrawals",
)
async def list_withdrawals(
    status_filter: Optional[WithdrawalStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=ADMIN_PAGE_SIZE, ge=1, le=100),
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    withdrawals, pagination = await service.list_withdrawals(status=status_filter, page=page, limit=limit)
    return ApiResponse(
        data=[WithdrawalOut.model_validate(w) for w in withdrawals],
        pagination=PaginationOut(**pagination.to_dict()),
    )


@router.put(
    "/withdrawals/{withdrawal_id}/process",
    response_model=ApiResponse[WithdrawalData],
    summary="Complete or reject a pending withdrawal",
)
async def process_withdrawal(
    withdrawal_id: int,
    body: ProcessWithdrawalRequest,
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    withdrawal = await service.process_withdrawal(
        withdrawal_id,
        admin.id,
        WithdrawalStatus(body.status),
        rejection_reason=body.rejection_reason,
        transaction_reference=body.transaction_reference,
    )
    return ApiResponse(
        message=f"Withdrawal {withdrawal.status.value} successfully",
        data=WithdrawalData(withdrawal=WithdrawalOut.model_validate(withdrawal)),
    )
