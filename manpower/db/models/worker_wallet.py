"""
Worker Wallet Model - cached balance aggregate per worker

Not a ledger of record: every change also writes a WalletLedger row, and the
counters here are what the API reads. ``version`` is the optimistic-lock token;
an UPDATE that matches zero rows raises StaleDataError.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from manpower.db.database import Base
from manpower.db.types import Money, utcnow


class WorkerWallet(Base):
    """Available, pending and lifetime funds of one worker"""

    __tablename__ = "worker_wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_worker_wallets_balance_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_worker_wallets_pending_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    balance = Column(Money(), default=Decimal("0.00"), nullable=False)
    pending_balance = Column(Money(), default=Decimal("0.00"), nullable=False)
    total_earnings = Column(Money(), default=Decimal("0.00"), nullable=False)
    total_withdrawals = Column(Money(), default=Decimal("0.00"), nullable=False)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    worker = relationship("User", back_populates="wallet")

    __mapper_args__ = {"version_id_col": version}
