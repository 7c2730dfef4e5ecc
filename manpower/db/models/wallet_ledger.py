"""
Wallet Ledger Model - Immutable Transaction History
"""
import enum

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String, Enum as SQLEnum, UniqueConstraint

from manpower.db.database import Base
from manpower.db.types import Money, utcnow


class LedgerEntryType(str, enum.Enum):
    PAYMENT_CREDIT = "payment_credit"
    WITHDRAWAL_RESERVE = "withdrawal_reserve"
    WITHDRAWAL_RELEASE = "withdrawal_release"
    WITHDRAWAL_SETTLE = "withdrawal_settle"


class WalletLedger(Base):
    """One row per wallet mutation"""

    __tablename__ = "wallet_ledger"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("worker_wallets.id"), nullable=False, index=True)
    worker_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    withdrawal_id = Column(Integer, ForeignKey("withdrawals.id"), nullable=True)

    entry_type = Column(
        SQLEnum(LedgerEntryType, name="ledger_entry_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount = Column(Money(), nullable=False)  # Signed: + funds in, - funds out of balance/pending
    balance_after = Column(Money(), nullable=False)
    pending_balance_after = Column(Money(), nullable=False)

    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # A payment is credited once, a withdrawal is reserved/released/settled once
    __table_args__ = (
        UniqueConstraint("wallet_id", "payment_id", "entry_type", name="uq_wallet_payment_type"),
        UniqueConstraint("wallet_id", "withdrawal_id", "entry_type", name="uq_wallet_withdrawal_type"),
    )
