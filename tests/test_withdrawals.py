"""
Withdrawal state machine: request, complete, reject.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from manpower.core.exceptions import (
    BelowMinimumWithdrawalError,
    InsufficientFundsError,
    UserNotFoundError,
    ValidationException,
    WithdrawalAlreadyProcessedError,
    WithdrawalNotFoundError,
)
from manpower.db.models.notification import Notification
from manpower.db.models.user import UserRole
from manpower.db.models.wallet_ledger import LedgerEntryType
from manpower.db.models.withdrawal import Withdrawal, WithdrawalMethod, WithdrawalStatus
from manpower.domain.services.payment_service import PaymentService
from manpower.domain.services.payout_provider import BasePayoutProvider
from manpower.domain.services.wallet_service import WalletService

BANK = {"account_name": "Dana Worker", "account_number": "12345678", "bank_name": "First Bank"}


async def _wallet(db_session, worker_id):
    wallet = await WalletService(db_session).get_or_create_wallet(worker_id)
    await db_session.refresh(wallet)
    return wallet


async def _withdrawal_count(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(Withdrawal))


class RecordingPayoutProvider(BasePayoutProvider):
    def __init__(self, reference: str = "PAYOUT-001") -> None:
        self.reference = reference
        self.dispatched: list[int] = []

    async def dispatch(self, withdrawal, reference=None):
        self.dispatched.append(withdrawal.id)
        return reference or self.reference


# ============================================================================
# request_withdrawal
# ============================================================================


@pytest.mark.unit
async def test_request_withdrawal_reserves_amount(db_session, worker, wallet_factory):
    await wallet_factory(worker.id, balance="100.00")

    withdrawal = await PaymentService(db_session).request_withdrawal(
        worker.id, Decimal("50"), WithdrawalMethod.BANK_TRANSFER, bank_details=BANK
    )

    assert withdrawal.status == WithdrawalStatus.PENDING
    assert withdrawal.amount == Decimal("50.00")
    assert withdrawal.bank_details == {
        "account_name": "Dana Worker",
        "account_number": "12345678",
        "bank_name": "First Bank",
        "routing_number": None,
        "swift_code": None,
    }
    wallet = await _wallet(db_session, worker.id)
    assert wallet.balance == Decimal("50.00")
    assert wallet.pending_balance == Decimal("50.00")

    entries = await WalletService(db_session).get_ledger_history(worker.id)
    assert entries[0].entry_type == LedgerEntryType.WITHDRAWAL_RESERVE
    assert entries[0].withdrawal_id == withdrawal.id


@pytest.mark.unit
async def test_request_more_than_balance_changes_nothing(db_session, worker, wallet_factory):
    await wallet_factory(worker.id, balance="100.00")

    with pytest.raises(InsufficientFundsError):
        await PaymentService(db_session).request_withdrawal(
            worker.id, Decimal("100.01"), WithdrawalMethod.PAYPAL, paypal_email="dana@example.com"
        )

    assert await _withdrawal_count(db_session) == 0
    wallet = await _wallet(db_session, worker.id)
    assert wallet.balance == Decimal("100.00")
    assert wallet.pending_balance == Decimal("0")
    assert wallet.version == 1


@pytest.mark.unit
async def test_request_below_minimum(db_session, worker, wallet_factory):
    await wallet_factory(worker.id, balance="100.00")

    with pytest.raises(BelowMinimumWithdrawalError) as exc_info:
        await PaymentService(db_session).request_withdrawal(
            worker.id, Decimal("9.99"), WithdrawalMethod.PAYPAL, paypal_email="dana@example.com"
        )

    assert exc_info.value.message == "Minimum withdrawal amount is $10.00"
    assert await _withdrawal_count(db_session) == 0


@pytest.mark.unit
async def test_balance_check_runs_before_minimum_check(db_session, worker):
    # Empty wallet and a sub-minimum amount: insufficient funds wins
    with pytest.raises(InsufficientFundsError):
        await PaymentService(db_session).request_withdrawal(
            worker.id, Decimal("5"), WithdrawalMethod.PAYPAL, paypal_email="dana@example.com"
        )


@pytest.mark.unit
@pytest.mark.parametrize(
    "method, kwargs",
    [
        (WithdrawalMethod.BANK_TRANSFER, {}),
        (WithdrawalMethod.BANK_TRANSFER, {"bank_details": {"account_name": "Dana"}}),
        (WithdrawalMethod.PAYPAL, {"stripe_account_id": "acct_1"}),
        (WithdrawalMethod.STRIPE, {"paypal_email": "dana@example.com"}),
    ],
)
async def test_request_requires_destination_for_method(method, kwargs, db_session, worker, wallet_factory):
    await wallet_factory(worker.id, balance="100.00")

    with pytest.raises(ValidationException):
        await PaymentService(db_session).request_withdrawal(worker.id, Decimal("20"), method, **kwargs)

    assert await _withdrawal_count(db_session) == 0
    wallet = await _wallet(db_session, worker.id)
    assert wallet.balance == Decimal("100.00")


@pytest.mark.unit
async def test_request_by_non_worker(db_session, business):
    with pytest.raises(UserNotFoundError) as exc_info:
        await PaymentService(db_session).request_withdrawal(
            business.id, Decimal("20"), WithdrawalMethod.STRIPE, stripe_account_id="acct_1"
        )
    assert exc_info.value.message == "Worker not found"


@pytest.mark.unit
async def test_request_keeps_notes_and_stripe_account(db_session, worker, wallet_factory):
    await wallet_factory(worker.id, balance="100.00")

    withdrawal = await PaymentService(db_session).request_withdrawal(
        worker.id, Decimal("10"), WithdrawalMethod.STRIPE,
        stripe_account_id="acct_123", notes="Weekly payout",
    )

    assert withdrawal.stripe_account_id == "acct_123"
    assert withdrawal.notes == "Weekly payout"
    assert withdrawal.currency == "USD"
    assert withdrawal.bank_details is None


# ============================================================================
# process_withdrawal
# ============================================================================


async def _pending_withdrawal(db_session, worker, wallet_factory, **service_kwargs):
    await wallet_factory(worker.id, balance="100.00")
    service = PaymentService(db_session, **service_kwargs)
    withdrawal = await service.request_withdrawal(
        worker.id, Decimal("50"), WithdrawalMethod.PAYPAL, paypal_email="dana@example.com"
    )
    return service, withdrawal


@pytest.mark.unit
async def test_complete_withdrawal_settles(db_session, worker, admin, wallet_factory):
    service, withdrawal = await _pending_withdrawal(db_session, worker, wallet_factory)

    processed = await service.process_withdrawal(
        withdrawal.id, admin.id, WithdrawalStatus.COMPLETED, transaction_reference=" WIRE-889 "
    )

    assert processed.status == WithdrawalStatus.COMPLETED
    assert processed.transaction_id == "WIRE-889"
    assert processed.processed_by == admin.id
    assert processed.processed_at is not None
    wallet = await _wallet(db_session, worker.id)
    assert wallet.balance == Decimal("50.00")
    assert wallet.pending_balance == Decimal("0")
    assert wallet.total_withdrawals == Decimal("50.00")


@pytest.mark.unit
async def test_complete_without_reference_leaves_transaction_id_empty(
    db_session, worker, admin, wallet_factory
):
    service, withdrawal = await _pending_withdrawal(db_session, worker, wallet_factory)

    processed = await service.process_withdrawal(withdrawal.id, admin.id, WithdrawalStatus.COMPLETED)

    assert processed.transaction_id is None


@pytest.mark.unit
async def test_complete_uses_injected_payout_provider(db_session, worker, admin, wallet_factory):
    provider = RecordingPayoutProvider(reference="PO-42")
    service, withdrawal = await _pending_withdrawal(
        db_session, worker, wallet_factory, payout_provider=provider
    )

    processed = await service.process_withdrawal(withdrawal.id, admin.id, "completed")

    assert provider.dispatched == [withdrawal.id]
    assert processed.transaction_id == "PO-42"


@pytest.mark.unit
async def test_reject_withdrawal_releases(db_session, worker, admin, wallet_factory):
    provider = RecordingPayoutProvider()
    service, withdrawal = await _pending_withdrawal(
        db_session, worker, wallet_factory, payout_provider=provider
    )

    processed = await service.process_withdrawal(
        withdrawal.id, admin.id, WithdrawalStatus.REJECTED, rejection_reason="Account name mismatch"
    )

    assert processed.status == WithdrawalStatus.REJECTED
    assert processed.rejection_reason == "Account name mismatch"
    assert provider.dispatched == []
    wallet = await _wallet(db_session, worker.id)
    assert wallet.balance == Decimal("100.00")
    assert wallet.pending_balance == Decimal("0")
    assert wallet.total_withdrawals == Decimal("0")

    notification = (await db_session.execute(
        select(Notification).where(Notification.related_id == withdrawal.id)
    )).scalar_one()
    assert notification.title == "Withdrawal Rejected"
    assert notification.message.endswith("Account name mismatch")


@pytest.mark.unit
@pytest.mark.parametrize("first", [WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED])
@pytest.mark.parametrize("second", [WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED])
async def test_terminal_withdrawal_cannot_be_processed_again(
    first, second, db_session, worker, admin, wallet_factory
):
    service, withdrawal = await _pending_withdrawal(db_session, worker, wallet_factory)
    await service.process_withdrawal(withdrawal.id, admin.id, first)
    before = await _wallet(db_session, worker.id)
    snapshot = (before.balance, before.pending_balance, before.total_withdrawals)

    with pytest.raises(WithdrawalAlreadyProcessedError) as exc_info:
        await service.process_withdrawal(withdrawal.id, admin.id, second)

    assert exc_info.value.details["current_status"] == first.value
    after = await _wallet(db_session, worker.id)
    assert (after.balance, after.pending_balance, after.total_withdrawals) == snapshot


@pytest.mark.unit
async def test_process_requires_terminal_target_status(db_session, worker, admin, wallet_factory):
    service, withdrawal = await _pending_withdrawal(db_session, worker, wallet_factory)

    with pytest.raises(ValidationException):
        await service.process_withdrawal(withdrawal.id, admin.id, WithdrawalStatus.PROCESSING)
    with pytest.raises(ValueError):
        await service.process_withdrawal(withdrawal.id, admin.id, "approved")

    await db_session.refresh(withdrawal)
    assert withdrawal.status == WithdrawalStatus.PENDING


@pytest.mark.unit
async def test_process_missing_withdrawal(db_session, admin):
    with pytest.raises(WithdrawalNotFoundError):
        await PaymentService(db_session).process_withdrawal(9999, admin.id, WithdrawalStatus.COMPLETED)


# ============================================================================
# History
# ============================================================================


@pytest.mark.unit
async def test_withdrawal_history(db_session, worker, admin, wallet_factory, user_factory):
    await wallet_factory(worker.id, balance="100.00")
    service = PaymentService(db_session)
    first = await service.request_withdrawal(
        worker.id, Decimal("10"), WithdrawalMethod.PAYPAL, paypal_email="dana@example.com"
    )
    second = await service.request_withdrawal(
        worker.id, Decimal("20"), WithdrawalMethod.PAYPAL, paypal_email="dana@example.com"
    )
    await service.process_withdrawal(first.id, admin.id, WithdrawalStatus.REJECTED)

    everything, pagination = await service.get_withdrawal_history(worker.id)
    pending, _ = await service.get_withdrawal_history(worker.id, status=WithdrawalStatus.PENDING)
    other_worker = await user_factory(role=UserRole.WORKER)
    nothing, _ = await service.get_withdrawal_history(other_worker.id)

    assert [w.id for w in everything] == [second.id, first.id]
    assert pagination.total == 2
    assert [w.id for w in pending] == [second.id]
    assert nothing == []

    all_rejected, _ = await service.list_withdrawals(status=WithdrawalStatus.REJECTED)
    assert [w.id for w in all_rejected] == [first.id]
