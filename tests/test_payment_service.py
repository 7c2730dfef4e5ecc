"""
PaymentService: payment intents, confirmation and payment history.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from manpower.core.exceptions import (
    ForbiddenError,
    JobNotFoundError,
    PaymentAlreadyCompletedError,
    PaymentNotFoundError,
    PaymentProcessorUnavailableError,
    PaymentStatusError,
    UserNotFoundError,
    ValidationException,
)
from manpower.db.models.notification import Notification, NotificationType
from manpower.db.models.outbox_message import OutboxMessage
from manpower.db.models.payment import PaymentStatus
from manpower.db.models.user import UserRole
from manpower.domain.services.payment_service import PaymentService
from manpower.domain.services.wallet_service import WalletService


# ============================================================================
# create_payment_intent
# ============================================================================


@pytest.mark.unit
async def test_create_payment_intent(db_session, fake_processor, job, worker, business):
    service = PaymentService(db_session, processor=fake_processor)

    payment, client_secret = await service.create_payment_intent(
        job.id, worker.id, business.id, Decimal("100")
    )

    assert client_secret == "pi_test_1_secret_abc"
    assert payment.id is not None
    assert payment.status == PaymentStatus.PENDING
    assert payment.stripe_payment_intent_id == "pi_test_1"
    assert payment.platform_commission_rate == Decimal("10")
    assert payment.platform_commission == Decimal("10.00")
    assert payment.worker_amount == Decimal("90.00")
    assert payment.description == f"Payment for job: {job.title}"
    assert fake_processor.calls == [
        {
            "amount_minor": 10000,
            "currency": "usd",
            "metadata": {"job_id": job.id, "worker_id": worker.id, "business_id": business.id},
        }
    ]


@pytest.mark.unit
async def test_create_payment_intent_amount_in_cents(db_session, fake_processor, job, worker, business):
    service = PaymentService(db_session, processor=fake_processor)

    await service.create_payment_intent(job.id, worker.id, business.id, "19.99")

    assert fake_processor.calls[0]["amount_minor"] == 1999


@pytest.mark.unit
async def test_create_payment_intent_unknown_job(db_session, fake_processor, worker, business):
    service = PaymentService(db_session, processor=fake_processor)

    with pytest.raises(JobNotFoundError):
        await service.create_payment_intent(9999, worker.id, business.id, Decimal("10"))
    assert fake_processor.calls == []


@pytest.mark.unit
async def test_create_payment_intent_unknown_worker(db_session, fake_processor, job, business):
    service = PaymentService(db_session, processor=fake_processor)

    with pytest.raises(UserNotFoundError) as exc_info:
        await service.create_payment_intent(job.id, 9999, business.id, Decimal("10"))
    assert exc_info.value.message == "Worker or business not found"


@pytest.mark.unit
async def test_create_payment_intent_payee_must_be_worker(
    db_session, fake_processor, job, business, user_factory
):
    other_business = await user_factory(role=UserRole.BUSINESS)
    service = PaymentService(db_session, processor=fake_processor)

    with pytest.raises(UserNotFoundError):
        await service.create_payment_intent(job.id, other_business.id, business.id, Decimal("10"))


@pytest.mark.unit
async def test_create_payment_intent_for_someone_elses_job(
    db_session, fake_processor, job, worker, user_factory
):
    other_business = await user_factory(role=UserRole.BUSINESS)
    service = PaymentService(db_session, processor=fake_processor)

    with pytest.raises(ForbiddenError):
        await service.create_payment_intent(job.id, worker.id, other_business.id, Decimal("10"))


@pytest.mark.unit
async def test_create_payment_intent_without_processor(db_session, job, worker, business):
    service = PaymentService(db_session, processor=None)

    with pytest.raises(PaymentProcessorUnavailableError) as exc_info:
        await service.create_payment_intent(job.id, worker.id, business.id, Decimal("10"))
    assert exc_info.value.status_code == 400


@pytest.mark.unit
async def test_processor_check_runs_after_existence_checks(db_session, worker, business):
    service = PaymentService(db_session, processor=None)

    with pytest.raises(JobNotFoundError):
        await service.create_payment_intent(9999, worker.id, business.id, Decimal("10"))


@pytest.mark.unit
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
async def test_create_payment_intent_rejects_non_positive_amount(
    amount, db_session, fake_processor, job, worker, business
):
    service = PaymentService(db_session, processor=fake_processor)

    with pytest.raises(ValidationException):
        await service.create_payment_intent(job.id, worker.id, business.id, amount)
    assert fake_processor.calls == []


# ============================================================================
# confirm_payment
# ============================================================================


@pytest.mark.unit
async def test_confirm_payment_credits_worker_once(db_session, payment_factory, job, worker, business):
    payment = await payment_factory(job.id, worker.id, business.id, amount="100")
    service = PaymentService(db_session)

    confirmed = await service.confirm_payment(payment.id, business)

    assert confirmed.status == PaymentStatus.COMPLETED
    assert confirmed.paid_at is not None
    wallet = await WalletService(db_session).get_or_create_wallet(worker.id)
    assert wallet.balance == Decimal("90.00")
    assert wallet.total_earnings == Decimal("90.00")

    with pytest.raises(PaymentAlreadyCompletedError):
        await service.confirm_payment(payment.id, business)

    await db_session.refresh(wallet)
    assert wallet.balance == Decimal("90.00")
    assert wallet.total_earnings == Decimal("90.00")
    entries = await WalletService(db_session).get_ledger_history(worker.id)
    assert len(entries) == 1


@pytest.mark.unit
async def test_confirm_payment_notifies_worker_and_queues_pushes(
    db_session, payment_factory, job, worker, business
):
    payment = await payment_factory(job.id, worker.id, business.id, amount="50")

    await PaymentService(db_session).confirm_payment(payment.id, worker)

    notifications = (await db_session.execute(
        select(Notification).where(Notification.user_id == worker.id)
    )).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.PAYMENT
    assert notifications[0].title == "Payment Received"
    assert notifications[0].related_id == payment.id

    outbox = (await db_session.execute(
        select(OutboxMessage).order_by(OutboxMessage.id)
    )).scalars().all()
    assert [(m.channel, m.event) for m in outbox] == [
        (f"user:{worker.id}", "notification:new"),
        (f"user:{worker.id}", "wallet:updated"),
    ]
    assert outbox[1].payload["balance"] == "45.00"


@pytest.mark.unit
async def test_confirm_payment_by_admin(db_session, payment_factory, job, worker, business, admin):
    payment = await payment_factory(job.id, worker.id, business.id)

    confirmed = await PaymentService(db_session).confirm_payment(payment.id, admin)

    assert confirmed.status == PaymentStatus.COMPLETED


@pytest.mark.unit
async def test_confirm_payment_by_stranger_is_forbidden(
    db_session, payment_factory, job, worker, business, user_factory
):
    payment = await payment_factory(job.id, worker.id, business.id)
    stranger = await user_factory(role=UserRole.BUSINESS)

    with pytest.raises(ForbiddenError):
        await PaymentService(db_session).confirm_payment(payment.id, stranger)

    await db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.unit
async def test_confirm_missing_payment(db_session, business):
    with pytest.raises(PaymentNotFoundError):
        await PaymentService(db_session).confirm_payment(9999, business)


@pytest.mark.unit
@pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.REFUNDED])
async def test_confirm_payment_from_terminal_status(
    status, db_session, payment_factory, job, worker, business
):
    payment = await payment_factory(job.id, worker.id, business.id, status=status)

    with pytest.raises(PaymentStatusError) as exc_info:
        await PaymentService(db_session).confirm_payment(payment.id, business)
    assert exc_info.value.details["current_status"] == status.value


@pytest.mark.unit
async def test_confirm_processing_payment(db_session, payment_factory, job, worker, business):
    payment = await payment_factory(job.id, worker.id, business.id, status=PaymentStatus.PROCESSING)

    confirmed = await PaymentService(db_session).confirm_payment(payment.id, business)

    assert confirmed.status == PaymentStatus.COMPLETED


@pytest.mark.unit
async def test_confirm_zero_worker_amount_skips_credit(
    db_session, payment_factory, job, worker, business
):
    payment = await payment_factory(job.id, worker.id, business.id, amount="0")

    await PaymentService(db_session).confirm_payment(payment.id, business)

    wallet = await WalletService(db_session).get_or_create_wallet(worker.id)
    assert wallet.total_earnings == Decimal("0")
    assert await WalletService(db_session).get_ledger_history(worker.id) == []


# ============================================================================
# History
# ============================================================================


@pytest.mark.unit
async def test_payment_history_by_role(
    db_session, payment_factory, job, worker, business, user_factory
):
    other_worker = await user_factory(role=UserRole.WORKER)
    first = await payment_factory(job.id, worker.id, business.id, amount="10")
    second = await payment_factory(job.id, worker.id, business.id, amount="20")
    await payment_factory(job.id, other_worker.id, business.id, amount="30")
    service = PaymentService(db_session)

    worker_payments, worker_page = await service.get_payment_history(worker.id, UserRole.WORKER)
    business_payments, business_page = await service.get_payment_history(business.id, UserRole.BUSINESS)

    assert [p.id for p in worker_payments] == [second.id, first.id]
    assert worker_page.total == 2
    assert business_page.total == 3
    assert len(business_payments) == 3


@pytest.mark.unit
async def test_payment_history_filters_and_paginates(
    db_session, payment_factory, job, worker, business
):
    for _ in range(5):
        await payment_factory(job.id, worker.id, business.id)
    await payment_factory(job.id, worker.id, business.id, status=PaymentStatus.COMPLETED)
    service = PaymentService(db_session)

    payments, pagination = await service.get_payment_history(
        worker.id, UserRole.WORKER, status=PaymentStatus.PENDING, page=2, limit=2
    )

    assert len(payments) == 2
    assert pagination.to_dict() == {"page": 2, "limit": 2, "total": 5, "pages": 3}


@pytest.mark.unit
async def test_payment_history_for_admin_role_is_rejected(db_session, admin):
    with pytest.raises(ValidationException) as exc_info:
        await PaymentService(db_session).get_payment_history(admin.id, UserRole.ADMIN)
    assert exc_info.value.message == "Invalid user role for payment history"


@pytest.mark.unit
async def test_list_payments(db_session, payment_factory, job, worker, business):
    await payment_factory(job.id, worker.id, business.id, amount="40.00")
    await payment_factory(job.id, worker.id, business.id, amount="60.00", status=PaymentStatus.COMPLETED)
    service = PaymentService(db_session)

    everything, _, all_stats = await service.list_payments()
    completed, pagination, completed_stats = await service.list_payments(status=PaymentStatus.COMPLETED)

    assert len(everything) == 2
    assert all_stats["total_amount"] == Decimal("100.00")
    assert len(completed) == 1
    assert pagination.total == 1
    assert completed_stats == {
        "total_amount": Decimal("60.00"),
        "total_commission": Decimal("6.00"),
        "total_worker_amount": Decimal("54.00"),
    }


@pytest.mark.unit
async def test_list_payments_date_bounds_are_inclusive(db_session, payment_factory, job, worker, business):
    first = await payment_factory(job.id, worker.id, business.id)
    second = await payment_factory(job.id, worker.id, business.id)
    first.created_at = datetime(2026, 3, 1, 9, 0)
    second.created_at = datetime(2026, 3, 2, 9, 0)
    await db_session.commit()
    service = PaymentService(db_session)

    exact, _, _ = await service.list_payments(
        start_date=datetime(2026, 3, 1, 9, 0), end_date=datetime(2026, 3, 1, 9, 0)
    )
    # Aware timestamps are compared in UTC
    aware, _, stats = await service.list_payments(
        start_date=datetime(2026, 3, 2, 11, 0, tzinfo=timezone(timedelta(hours=2)))
    )
    empty, _, empty_stats = await service.list_payments(end_date=datetime(2026, 2, 28))

    assert [p.id for p in exact] == [first.id]
    assert [p.id for p in aware] == [second.id]
    assert stats["total_amount"] == Decimal("100.00")
    assert empty == []
    assert empty_stats["total_amount"] == Decimal("0.00")


@pytest.mark.unit
async def test_get_payment(db_session, payment_factory, job, worker, business):
    payment = await payment_factory(job.id, worker.id, business.id)
    service = PaymentService(db_session)

    assert (await service.get_payment(payment.id)).id == payment.id
    with pytest.raises(PaymentNotFoundError):
        await service.get_payment(9999)
