"""
Payment Model - one business→worker charge for a job

platform_commission and worker_amount are derived: they are recomputed whenever
amount or platform_commission_rate is assigned, and again right before every
INSERT/UPDATE so a row can never be written with a stale split.
"""
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, JSON, Index,
    CheckConstraint, event,
)
from sqlalchemy.orm import validates

from manpower.core.config import settings
from manpower.core.exceptions import ValidationException
from manpower.db.database import Base
from manpower.db.types import Money, to_money, utcnow
from manpower.domain.commission import calculate_commission


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


def _default_commission_rate():
    return settings.PLATFORM_COMMISSION_RATE


class Payment(Base):
    """Job payment"""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint(
            "platform_commission_rate >= 0 AND platform_commission_rate <= 100",
            name="ck_payments_commission_rate_range",
        ),
        Index("ix_payments_worker_status", "worker_id", "status"),
        Index("ix_payments_business_status", "business_id", "status"),
        Index("ix_payments_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    worker_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    business_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    amount = Column(Money(), nullable=False)
    platform_commission_rate = Column(Money(), nullable=False, default=_default_commission_rate)
    platform_commission = Column(Money(), nullable=False)
    worker_amount = Column(Money(), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    payment_method = Column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status = Column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=lambda x: [e.value for e in x]),
        default=PaymentStatus.PENDING,
        nullable=False,
    )

    transaction_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    paypal_order_id = Column(String(255), nullable=True)
    description = Column(String(500), nullable=True)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    refund_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @validates("currency")
    def _normalize_currency(self, key, value):
        return value.upper() if value else value

    @validates("amount", "platform_commission_rate")
    def _validate_and_split(self, key, value):
        if value is None:
            raise ValidationException(f"{key} is required", field=key)
        value = to_money(value)
        if key == "amount" and value < 0:
            raise ValidationException("Amount cannot be negative", field="amount")
        if key == "platform_commission_rate" and not (0 <= value <= 100):
            raise ValidationException(
                "Commission rate must be between 0 and 100", field="platform_commission_rate"
            )

        amount = value if key == "amount" else self.amount
        rate = value if key == "platform_commission_rate" else self.platform_commission_rate
        if amount is not None:
            if rate is None:
                rate = _default_commission_rate()
            self.platform_commission, self.worker_amount = calculate_commission(amount, rate)
        return value


@event.listens_for(Payment, "before_insert")
@event.listens_for(Payment, "before_update")
def _recompute_split(mapper, connection, target: Payment) -> None:
    if target.platform_commission_rate is None:
        target.platform_commission_rate = _default_commission_rate()
    target.platform_commission, target.worker_amount = calculate_commission(
        target.amount, target.platform_commission_rate
    )
