"""
Payment Service - payment intents, confirmation and the withdrawal state machine

Every state transition runs in one database transaction together with its
wallet mutation, the worker notification and the queued realtime push:

1. Lock the Payment/Withdrawal row (SELECT ... FOR UPDATE)
2. Verify its current status
3. Mutate the wallet through WalletService (ledger row + version check)
4. Write notification + outbox rows
5. Commit, or roll everything back
"""
from datetime import datetime
from decimal import ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.core.config import settings
from manpower.core.exceptions import (
    BelowMinimumWithdrawalError,
    ForbiddenError,
    InsufficientFundsError,
    JobNotFoundError,
    PaymentAlreadyCompletedError,
    PaymentNotFoundError,
    PaymentProcessorUnavailableError,
    PaymentStatusError,
    UserNotFoundError,
    ValidationException,
    WithdrawalAlreadyProcessedError,
    WithdrawalNotFoundError,
)
from manpower.core.logging import get_logger, log_async_operation
from manpower.db.models.job import Job
from manpower.db.models.notification import NotificationType, NotificationPriority
from manpower.db.models.payment import Payment, PaymentStatus, PaymentMethod
from manpower.db.models.user import User, UserRole
from manpower.db.models.withdrawal import Withdrawal, WithdrawalStatus, WithdrawalMethod
from manpower.db.types import as_naive_utc, to_money, utcnow
from manpower.domain.pagination import Pagination, build_pagination, normalize_page, offset_for
from manpower.domain.services.notification_service import NotificationService
from manpower.domain.services.outbox_service import OutboxService
from manpower.domain.services.payment_processor import BasePaymentProcessor
from manpower.domain.services.payout_provider import BasePayoutProvider, ManualPayoutProvider
from manpower.domain.services.wallet_service import WalletService

logger = get_logger(__name__)

CONFIRMABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)
TERMINAL_WITHDRAWAL_STATUSES = (WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED)


class PaymentService:
    """Ledger-side operations for payments and withdrawals"""

    def __init__(
        self,
        db: AsyncSession,
        processor: Optional[BasePaymentProcessor] = None,
        payout_provider: Optional[BasePayoutProvider] = None,
    ):
        self.db = db
        self.processor = processor
        self.payout_provider = payout_provider or ManualPayoutProvider()
        self.wallet_service = WalletService(db)
        self.notification_service = NotificationService(db)
        self.outbox_service = OutboxService(db)

    # ==================== Payments ====================

    @log_async_operation("create_payment_intent")
    async def create_payment_intent(
        self,
        job_id: int,
        worker_id: int,
        business_id: int,
        amount,
    ) -> tuple[Payment, str]:
        """
        Create a processor intent and a pending Payment for it.

        Returns:
            (payment, client_secret) - the secret is handed to the browser to
            complete the charge and is not stored.
        """
        job = await self.db.get(Job, job_id)
        if not job:
            raise JobNotFoundError(job_id)

        worker = await self.db.get(User, worker_id)
        business = await self.db.get(User, business_id)
        if not worker or not business or not worker.is_worker or not business.is_business:
            raise UserNotFoundError(
                worker_id if not worker else business_id,
                message="Worker or business not found",
            )

        if job.business_id != business_id:
            raise ForbiddenError("You can only pay for your own jobs")

        if self.processor is None:
            raise PaymentProcessorUnavailableError()

        amount = to_money(amount)
        if amount <= 0:
            raise ValidationException("Amount must be greater than 0", field="amount")

        amount_minor = int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))
        intent = await self.processor.create_payment_intent(
            amount_minor=amount_minor,
            currency=settings.PAYMENT_CURRENCY,
            metadata={"job_id": job_id, "worker_id": worker_id, "business_id": business_id},
        )

        try:
            payment = Payment(
                job_id=job_id,
                worker_id=worker_id,
                business_id=business_id,
                amount=amount,
                platform_commission_rate=settings.PLATFORM_COMMISSION_RATE,
                currency=settings.PAYMENT_CURRENCY,
                payment_method=PaymentMethod.STRIPE,
                status=PaymentStatus.PENDING,
                stripe_payment_intent_id=intent.id,
                description=f"Payment for job: {job.title}",
            )
            self.db.add(payment)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Payment intent created",
            extra_data={
                "payment_id": payment.id,
                "job_id": job_id,
                "worker_id": worker_id,
                "business_id": business_id,
                "amount": str(payment.amount),
                "platform_commission": str(payment.platform_commission),
                "intent_id": intent.id,
            },
        )
        return payment, intent.client_secret

    async def confirm_payment(self, payment_id: int, actor: User) -> Payment:
        """
        Mark a payment completed and credit worker_amount to the worker.

        A second confirmation fails with PaymentAlreadyCompletedError, so the
        wallet is credited at most once per payment.
        """
        try:
            result = await self.db.execute(
                select(Payment).where(Payment.id == payment_id).with_for_update()
            )
            payment = result.scalar_one_or_none()
            if not payment:
                raise PaymentNotFoundError(payment_id)

            if not actor.is_admin and actor.id not in (payment.business_id, payment.worker_id):
                raise ForbiddenError("Not authorized to confirm this payment")

            if payment.status == PaymentStatus.COMPLETED:
                raise PaymentAlreadyCompletedError(payment_id)
            if payment.status not in CONFIRMABLE_STATUSES:
                raise PaymentStatusError(payment_id, payment.status.value)

            payment.status = PaymentStatus.COMPLETED
            payment.paid_at = utcnow()
            await self.db.flush()

            if payment.worker_amount > 0:
                await self.wallet_service.credit(payment.worker_id, payment.worker_amount, payment.id)

            await self.notification_service.create_notification(
                payment.worker_id,
                NotificationType.PAYMENT,
                "Payment Received",
                f"You received ${payment.worker_amount} for a completed job",
                related_id=payment.id,
                related_model="Payment",
                priority=NotificationPriority.HIGH,
                commit=False,
            )
            await self._queue_wallet_update(payment.worker_id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Payment confirmed",
            extra_data={
                "payment_id": payment.id,
                "worker_id": payment.worker_id,
                "worker_amount": str(payment.worker_amount),
                "confirmed_by": actor.id,
            },
        )
        return payment

    async def get_payment(self, payment_id: int) -> Payment:
        payment = await self.db.get(Payment, payment_id)
        if not payment:
            raise PaymentNotFoundError(payment_id)
        return payment

    async def get_payment_history(
        self,
        user_id: int,
        role: UserRole,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> tuple[list[Payment], Pagination]:
        """Payments received (worker) or made (business), newest first"""
        if role == UserRole.WORKER:
            conditions = [Payment.worker_id == user_id]
        elif role == UserRole.BUSINESS:
            conditions = [Payment.business_id == user_id]
        else:
            raise ValidationException("Invalid user role for payment history", field="role")

        if status is not None:
            conditions.append(Payment.status == status)
        return await self._paginate(Payment, conditions, page, limit)

    async def list_payments(
        self,
        status: Optional[PaymentStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> tuple[list[Payment], Pagination, dict]:
        """
        All payments (admin), newest first, with totals over the filtered set.

        ``start_date``/``end_date`` bound ``created_at`` inclusively. The totals
        ignore pagination.
        """
        conditions = []
        if status is not None:
            conditions.append(Payment.status == status)
        if start_date is not None:
            conditions.append(Payment.created_at >= as_naive_utc(start_date))
        if end_date is not None:
            conditions.append(Payment.created_at <= as_naive_utc(end_date))

        payments, pagination = await self._paginate(Payment, conditions, page, limit)

        totals = (
            await self.db.execute(
                select(
                    func.sum(Payment.amount),
                    func.sum(Payment.platform_commission),
                    func.sum(Payment.worker_amount),
                ).where(*conditions)
            )
        ).one()
        stats = {
            "total_amount": to_money(totals[0] or 0),
            "total_commission": to_money(totals[1] or 0),
            "total_worker_amount": to_money(totals[2] or 0),
        }
        return payments, pagination, stats

    # ==================== Withdrawals ====================

    async def request_withdrawal(
        self,
        worker_id: int,
        amount,
        method: WithdrawalMethod,
        *,
        bank_details: Optional[dict] = None,
        paypal_email: Optional[str] = None,
        stripe_account_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Withdrawal:
        """
        Create a pending withdrawal and reserve its amount.

        Checks run in this order: balance, minimum, destination. Nothing is
        written when any of them fails.
        """
        amount = to_money(amount)

        worker = await self.db.get(User, worker_id)
        if not worker or not worker.is_worker:
            raise UserNotFoundError(worker_id, message="Worker not found")

        try:
            wallet = await self.wallet_service.get_or_create_wallet(worker_id, for_update=True)
            if wallet.balance < amount:
                raise InsufficientFundsError(worker_id, wallet.balance, amount)

            minimum = to_money(settings.MIN_WITHDRAWAL_AMOUNT)
            if amount < minimum:
                raise BelowMinimumWithdrawalError(worker_id, amount, minimum)

            destination = self._destination_fields(
                method, bank_details, paypal_email, stripe_account_id
            )

            withdrawal = Withdrawal(
                worker_id=worker_id,
                amount=amount,
                currency=settings.PAYMENT_CURRENCY,
                method=method,
                status=WithdrawalStatus.PENDING,
                notes=notes,
                **destination,
            )
            self.db.add(withdrawal)
            await self.db.flush()

            await self.wallet_service.reserve(worker_id, amount, withdrawal.id)
            await self._queue_wallet_update(worker_id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Withdrawal requested",
            extra_data={
                "withdrawal_id": withdrawal.id,
                "worker_id": worker_id,
                "amount": str(amount),
                "method": method.value,
            },
        )
        return withdrawal

    @log_async_operation("process_withdrawal")
    async def process_withdrawal(
        self,
        withdrawal_id: int,
        admin_id: int,
        status: WithdrawalStatus,
        rejection_reason: Optional[str] = None,
        transaction_reference: Optional[str] = None,
    ) -> Withdrawal:
        """
        Admin decision on a pending withdrawal.

        completed: payout dispatched, reserved funds settled.
        rejected: reserved funds released back to the balance.
        """
        status = WithdrawalStatus(status)
        if status not in TERMINAL_WITHDRAWAL_STATUSES:
            raise ValidationException(
                "Status must be either completed or rejected", field="status"
            )

        try:
            result = await self.db.execute(
                select(Withdrawal).where(Withdrawal.id == withdrawal_id).with_for_update()
            )
            withdrawal = result.scalar_one_or_none()
            if not withdrawal:
                raise WithdrawalNotFoundError(withdrawal_id)

            if withdrawal.status != WithdrawalStatus.PENDING:
                raise WithdrawalAlreadyProcessedError(withdrawal_id, withdrawal.status.value)

            if status == WithdrawalStatus.COMPLETED:
                withdrawal.transaction_id = await self.payout_provider.dispatch(
                    withdrawal, transaction_reference
                )
                await self.wallet_service.settle(withdrawal.worker_id, withdrawal.amount, withdrawal.id)
                title = "Withdrawal Completed"
                message = f"Your withdrawal of ${withdrawal.amount} has been processed"
            else:
                withdrawal.rejection_reason = rejection_reason
                await self.wallet_service.release(withdrawal.worker_id, withdrawal.amount, withdrawal.id)
                title = "Withdrawal Rejected"
                message = f"Your withdrawal of ${withdrawal.amount} was rejected"
                if rejection_reason:
                    message = f"{message}: {rejection_reason}"

            withdrawal.status = status
            withdrawal.processed_at = utcnow()
            withdrawal.processed_by = admin_id

            await self.notification_service.create_notification(
                withdrawal.worker_id,
                NotificationType.PAYMENT,
                title,
                message[:500],
                related_id=withdrawal.id,
                related_model="Withdrawal",
                priority=NotificationPriority.HIGH,
                commit=False,
            )
            await self._queue_wallet_update(withdrawal.worker_id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Withdrawal processed",
            extra_data={
                "withdrawal_id": withdrawal.id,
                "worker_id": withdrawal.worker_id,
                "amount": str(withdrawal.amount),
                "status": status.value,
                "processed_by": admin_id,
            },
        )
        return withdrawal

    async def get_withdrawal_history(
        self,
        worker_id: int,
        status: Optional[WithdrawalStatus] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> tuple[list[Withdrawal], Pagination]:
        conditions = [Withdrawal.worker_id == worker_id]
        if status is not None:
            conditions.append(Withdrawal.status == status)
        return await self._paginate(Withdrawal, conditions, page, limit)

    async def list_withdrawals(
        self,
        status: Optional[WithdrawalStatus] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> tuple[list[Withdrawal], Pagination]:
        """All withdrawals (admin)"""
        conditions = [Withdrawal.status == status] if status is not None else []
        return await self._paginate(Withdrawal, conditions, page, limit)

    # ==================== Helpers ====================

    async def _paginate(self, model, conditions: list, page: int, limit: Optional[int]):
        page, limit = normalize_page(page, limit)
        total = await self.db.scalar(
            select(func.count()).select_from(model).where(*conditions)
        )
        result = await self.db.execute(
            select(model)
            .where(*conditions)
            .order_by(model.created_at.desc(), model.id.desc())
            .offset(offset_for(page, limit))
            .limit(limit)
        )
        return list(result.scalars().all()), build_pagination(page, limit, total or 0)

    async def _queue_wallet_update(self, worker_id: int) -> None:
        wallet = await self.wallet_service.get_or_create_wallet(worker_id)
        await self.outbox_service.queue_user_event(
            worker_id,
            "wallet:updated",
            {
                "balance": str(wallet.balance),
                "pendingBalance": str(wallet.pending_balance),
                "totalEarnings": str(wallet.total_earnings),
                "totalWithdrawals": str(wallet.total_withdrawals),
            },
        )

    @staticmethod
    def _destination_fields(
        method: WithdrawalMethod,
        bank_details: Optional[dict],
        paypal_email: Optional[str],
        stripe_account_id: Optional[str],
    ) -> dict:
        """Column values for the payout destination; the one matching ``method`` is required"""
        fields: dict = {}
        if bank_details:
            fields.update(
                bank_account_name=bank_details.get("account_name"),
                bank_account_number=bank_details.get("account_number"),
                bank_name=bank_details.get("bank_name"),
                bank_routing_number=bank_details.get("routing_number"),
                bank_swift_code=bank_details.get("swift_code"),
            )
        if paypal_email:
            fields["paypal_email"] = paypal_email
        if stripe_account_id:
            fields["stripe_account_id"] = stripe_account_id

        if method == WithdrawalMethod.BANK_TRANSFER and not (
            fields.get("bank_account_number") and fields.get("bank_name")
        ):
            raise ValidationException(
                "Bank account number and bank name are required for bank transfers",
                field="bank_details",
            )
        if method == WithdrawalMethod.PAYPAL and not paypal_email:
            raise ValidationException("PayPal email is required", field="paypal_email")
        if method == WithdrawalMethod.STRIPE and not stripe_account_id:
            raise ValidationException("Stripe account id is required", field="stripe_account_id")
        return fields
