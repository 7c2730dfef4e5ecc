"""
Wallet Service - the only code path that mutates worker wallet counters

Every mutation writes one WalletLedger row and flushes, but never commits:
the calling service owns the transaction so a status change and its wallet
effect land (or roll back) together.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from manpower.core.exceptions import (
    InsufficientFundsError,
    InsufficientPendingBalanceError,
    ValidationException,
    WalletConflictError,
)
from manpower.core.logging import get_logger
from manpower.db.models.wallet_ledger import WalletLedger, LedgerEntryType
from manpower.db.models.worker_wallet import WorkerWallet
from manpower.db.types import to_money

logger = get_logger(__name__)

ZERO = Decimal("0.00")


class WalletService:
    """Service for managing worker wallets"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_or_create_wallet(
        self, worker_id: int, for_update: bool = False
    ) -> WorkerWallet:
        """Get existing wallet or create an all-zero one (flushed, not committed)"""
        query = select(WorkerWallet).where(WorkerWallet.worker_id == worker_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        wallet = result.scalar_one_or_none()

        if not wallet:
            wallet = WorkerWallet(
                worker_id=worker_id,
                balance=ZERO,
                pending_balance=ZERO,
                total_earnings=ZERO,
                total_withdrawals=ZERO,
            )
            self.db.add(wallet)
            await self.db.flush()

        return wallet

    async def get_wallet_summary(self, worker_id: int) -> dict:
        """Balance counters as shown on the worker dashboard"""
        wallet = await self.get_or_create_wallet(worker_id)
        # Persist a lazily created wallet
        await self.db.commit()
        return {
            "balance": wallet.balance,
            "pending_balance": wallet.pending_balance,
            "total_earnings": wallet.total_earnings,
            "total_withdrawals": wallet.total_withdrawals,
        }

    async def credit(self, worker_id: int, amount, payment_id: int) -> WalletLedger:
        """Credit a completed payment: balance and total_earnings grow by amount"""
        amount = self._positive(amount)
        wallet = await self.get_or_create_wallet(worker_id, for_update=True)

        wallet.balance = wallet.balance + amount
        wallet.total_earnings = wallet.total_earnings + amount

        return await self._record(
            wallet,
            entry_type=LedgerEntryType.PAYMENT_CREDIT,
            amount=amount,
            payment_id=payment_id,
            description=f"Payment #{payment_id} credited",
        )

    async def reserve(self, worker_id: int, amount, withdrawal_id: Optional[int] = None) -> WalletLedger:
        """Move amount from balance into pending_balance for a new withdrawal"""
        amount = self._positive(amount)
        wallet = await self.get_or_create_wallet(worker_id, for_update=True)

        if wallet.balance < amount:
            raise InsufficientFundsError(worker_id, wallet.balance, amount)

        wallet.balance = wallet.balance - amount
        wallet.pending_balance = wallet.pending_balance + amount

        return await self._record(
            wallet,
            entry_type=LedgerEntryType.WITHDRAWAL_RESERVE,
            amount=-amount,
            withdrawal_id=withdrawal_id,
            description=f"Withdrawal #{withdrawal_id} reserved",
        )

    async def release(self, worker_id: int, amount, withdrawal_id: int) -> WalletLedger:
        """Rejected withdrawal: pending funds return to the available balance"""
        amount = self._positive(amount)
        wallet = await self.get_or_create_wallet(worker_id, for_update=True)
        self._check_pending(wallet, amount)

        wallet.pending_balance = wallet.pending_balance - amount
        wallet.balance = wallet.balance + amount

        return await self._record(
            wallet,
            entry_type=LedgerEntryType.WITHDRAWAL_RELEASE,
            amount=amount,
            withdrawal_id=withdrawal_id,
            description=f"Withdrawal #{withdrawal_id} rejected, funds released",
        )

    async def settle(self, worker_id: int, amount, withdrawal_id: int) -> WalletLedger:
        """Completed withdrawal: pending funds leave the platform"""
        amount = self._positive(amount)
        wallet = await self.get_or_create_wallet(worker_id, for_update=True)
        self._check_pending(wallet, amount)

        wallet.pending_balance = wallet.pending_balance - amount
        wallet.total_withdrawals = wallet.total_withdrawals + amount

        return await self._record(
            wallet,
            entry_type=LedgerEntryType.WITHDRAWAL_SETTLE,
            amount=-amount,
            withdrawal_id=withdrawal_id,
            description=f"Withdrawal #{withdrawal_id} paid out",
        )

    async def get_ledger_history(
        self,
        worker_id: int,
        limit: int = 20
    ) -> list:
        """Get transaction history for worker"""
        result = await self.db.execute(
            select(WalletLedger)
            .where(WalletLedger.worker_id == worker_id)
            .order_by(WalletLedger.created_at.desc(), WalletLedger.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def _positive(amount) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationException("Amount must be positive", field="amount")
        return amount

    @staticmethod
    def _check_pending(wallet: WorkerWallet, amount: Decimal) -> None:
        if wallet.pending_balance < amount:
            raise InsufficientPendingBalanceError(wallet.worker_id, wallet.pending_balance, amount)

    async def _record(
        self,
        wallet: WorkerWallet,
        *,
        entry_type: LedgerEntryType,
        amount: Decimal,
        payment_id: Optional[int] = None,
        withdrawal_id: Optional[int] = None,
        description: str,
    ) -> WalletLedger:
        entry = WalletLedger(
            wallet_id=wallet.id,
            worker_id=wallet.worker_id,
            payment_id=payment_id,
            withdrawal_id=withdrawal_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=wallet.balance,
            pending_balance_after=wallet.pending_balance,
            description=description,
        )
        self.db.add(entry)

        try:
            await self.db.flush()
        except StaleDataError as e:
            logger.warning(
                "Wallet version conflict",
                extra_data={"worker_id": wallet.worker_id, "entry_type": entry_type.value},
            )
            raise WalletConflictError(wallet.worker_id) from e

        logger.info(
            "Wallet updated",
            extra_data={
                "worker_id": wallet.worker_id,
                "entry_type": entry_type.value,
                "amount": str(amount),
                "balance": str(wallet.balance),
                "pending_balance": str(wallet.pending_balance),
                "payment_id": payment_id,
                "withdrawal_id": withdrawal_id,
            },
        )
        return entry
