"""
Request/response schemas shared by the API routes

JSON uses camelCase field names; Python code uses snake_case.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from manpower.db.models.chat import MAX_MESSAGE_LENGTH
from manpower.db.models.notification import NotificationType, NotificationPriority
from manpower.db.models.payment import PaymentMethod, PaymentStatus
from manpower.db.models.withdrawal import WithdrawalMethod, WithdrawalStatus

# Amounts are Decimal internally and plain JSON numbers on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PaginationOut(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class ApiResponse(CamelModel, Generic[T]):
    """Success envelope"""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    pagination: Optional[PaginationOut] = None


class CountOut(CamelModel):
    count: int


# ==================== Payments ====================


class CreatePaymentRequest(CamelModel):
    job_id: int
    worker_id: int
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class PaymentOut(CamelModel):
    id: int
    job_id: int
    worker_id: int
    business_id: int
    amount: Money
    platform_commission_rate: Money
    platform_commission: Money
    worker_amount: Money
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    stripe_payment_intent_id: Optional[str] = None
    transaction_id: Optional[str] = None
    description: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CreatePaymentData(CamelModel):
    payment: PaymentOut
    client_secret: str


class PaymentData(CamelModel):
    payment: PaymentOut


class PaymentStatsOut(CamelModel):
    total_amount: Money
    total_commission: Money
    total_worker_amount: Money


class AdminPaymentListResponse(ApiResponse[List[PaymentOut]]):
    stats: PaymentStatsOut


# ==================== Withdrawals ====================


class BankDetails(CamelModel):
    account_name: Optional[str] = Field(default=None, max_length=100)
    account_number: Optional[str] = Field(default=None, max_length=50)
    bank_name: Optional[str] = Field(default=None, max_length=100)
    routing_number: Optional[str] = Field(default=None, max_length=50)
    swift_code: Optional[str] = Field(default=None, max_length=20)


class WithdrawalRequest(CamelModel):
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    method: WithdrawalMethod
    bank_details: Optional[BankDetails] = None
    paypal_email: Optional[str] = Field(default=None, max_length=255)
    stripe_account_id: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("paypal_email")
    @classmethod
    def validate_paypal_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid PayPal email")
        return v


class WithdrawalOut(CamelModel):
    id: int
    worker_id: int
    amount: Money
    currency: str
    method: WithdrawalMethod
    status: WithdrawalStatus
    bank_details: Optional[BankDetails] = None
    paypal_email: Optional[str] = None
    stripe_account_id: Optional[str] = None
    transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class WithdrawalData(CamelModel):
    withdrawal: WithdrawalOut


class ProcessWithdrawalRequest(CamelModel):
    status: Literal["completed", "rejected"]
    rejection_reason: Optional[str] = Field(default=None, max_length=500)
    transaction_reference: Optional[str] = Field(default=None, max_length=255)


class WalletOut(CamelModel):
    balance: Money
    pending_balance: Money
    total_earnings: Money
    total_withdrawals: Money


# ==================== Chat ====================


class CreateConversationRequest(CamelModel):
    participant_id: int
    job_id: Optional[int] = None


class ConversationOut(CamelModel):
    id: int
    job_id: Optional[int] = None
    participant_ids: List[int]
    last_message_content: Optional[str] = None
    last_message_sender_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SendMessageRequest(CamelModel):
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


class MessageOut(CamelModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ==================== Notifications ====================


class NotificationOut(CamelModel):
    id: int
    user_id: int
    type: NotificationType
    title: str
    message: str
    related_id: Optional[int] = None
    related_model: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    action_url: Optional[str] = None
    priority: NotificationPriority
    created_at: Optional[datetime] = None


class NotificationListResponse(ApiResponse[List[NotificationOut]]):
    unread_count: int = 0


class SendNotificationRequest(CamelModel):
    user_id: int
    type: NotificationType
    title: str = Field(min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=500)
    related_id: Optional[int] = None
    related_model: Optional[str] = Field(default=None, max_length=50)
    action_url: Optional[str] = Field(default=None, max_length=500)
    priority: NotificationPriority = NotificationPriority.MEDIUM
