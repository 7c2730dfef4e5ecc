"""
Withdrawal Model - worker request to move available funds out of the platform

pending -> completed | rejected. Both outcomes are terminal.
"""
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import validates

from manpower.core.exceptions import ValidationException
from manpower.db.database import Base
from manpower.db.types import Money, to_money, utcnow


class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class WithdrawalMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    STRIPE = "stripe"


class Withdrawal(Base):
    """Payout request"""

    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint("amount >= 1", name="ck_withdrawals_amount_min"),
        Index("ix_withdrawals_worker_status", "worker_id", "status"),
        Index("ix_withdrawals_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    amount = Column(Money(), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    method = Column(
        SQLEnum(WithdrawalMethod, name="withdrawal_method", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status = Column(
        SQLEnum(WithdrawalStatus, name="withdrawal_status", values_callable=lambda x: [e.value for e in x]),
        default=WithdrawalStatus.PENDING,
        nullable=False,
    )

    # Destination (which group is filled depends on method)
    bank_account_name = Column(String(100), nullable=True)
    bank_account_number = Column(String(50), nullable=True)
    bank_name = Column(String(100), nullable=True)
    bank_routing_number = Column(String(50), nullable=True)
    bank_swift_code = Column(String(20), nullable=True)
    paypal_email = Column(String(255), nullable=True)
    stripe_account_id = Column(String(255), nullable=True)

    transaction_id = Column(String(255), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(String(500), nullable=True)
    notes = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @validates("amount")
    def _validate_amount(self, key, value):
        if value is None:
            raise ValidationException("Amount is required", field="amount")
        value = to_money(value)
        if value < 1:
            raise ValidationException("Amount must be at least 1", field="amount")
        return value

    @validates("currency")
    def _normalize_currency(self, key, value):
        return value.upper() if value else value

    @property
    def bank_details(self) -> dict | None:
        if self.method != WithdrawalMethod.BANK_TRANSFER:
            return None
        return {
            "account_name": self.bank_account_name,
            "account_number": self.bank_account_number,
            "bank_name": self.bank_name,
            "routing_number": self.bank_routing_number,
            "swift_code": self.bank_swift_code,
        }
