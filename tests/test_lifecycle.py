import pytest
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.core.exceptions import ConflictError, ForbiddenError, NotFoundError, StateViolationError, ValidationInputError
from access_hub.models.audit import AuditLog
from access_hub.models.enums import PlanType, Role, TimeSlot, TimeUnit
from access_hub.models.notification import NotificationLog
from access_hub.models.subscription import PaymentReceipt, Subscription
from access_hub.models.subscription_enums import PaymentMethod, PaymentStatus, SubscriptionStatus
from access_hub.services.access_code_service import AccessCodeService
from access_hub.services.subscription_lifecycle_service import (
    SubscriptionLifecycleService,
    apply_time_transition,
    compute_end_date,
    compute_grace_end_date,
    resolve_status,
    transition,
)
from access_hub.services.timezone_service import as_aware


def test_hourly_plan_end_date_has_no_grace():
    start = datetime(2025, 1, 5, 8, 0)
    end = compute_end_date(start, TimeUnit.HOURS, 4)
    assert end == datetime(2025, 1, 5, 12, 0)
    assert compute_grace_end_date(end, PlanType.DAILY) is None


def test_monthly_plan_gets_seven_day_grace():
    end = compute_end_date(datetime(2025, 1, 1), TimeUnit.MONTH, 1)
    assert end == datetime(2025, 2, 1)
    assert compute_grace_end_date(end, PlanType.MONTHLY) == datetime(2025, 2, 8)


def test_week_duration_adds_calendar_days():
    start = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert compute_end_date(start, TimeUnit.WEEK, 2) - start == timedelta(days=14)


def test_month_end_clamps_to_shorter_month():
    assert compute_end_date(datetime(2025, 1, 31), TimeUnit.MONTH, 1) == datetime(2025, 2, 28)
    assert compute_end_date(datetime(2024, 2, 29), TimeUnit.YEAR, 1) == datetime(2025, 2, 28)


@pytest.mark.parametrize("unit", list(TimeUnit))
def test_end_date_is_monotonic_in_duration(unit):
    start = datetime(2025, 1, 31, 6, 15, tzinfo=timezone.utc)
    ends = [compute_end_date(start, unit, duration) for duration in range(1, 14)]
    assert start < ends[0]
    assert ends == sorted(ends)
    assert len(set(ends)) == len(ends)


def test_grace_only_for_monthly_plans():
    end = datetime(2025, 6, 1, tzinfo=timezone.utc)
    assert compute_grace_end_date(end, PlanType.DAILY) is None
    assert compute_grace_end_date(end, PlanType.WEEKLY) is None
    assert compute_grace_end_date(end, PlanType.MONTHLY) == end + timedelta(days=7)


def test_non_positive_duration_is_rejected():
    with pytest.raises(ValidationInputError):
        compute_end_date(datetime(2025, 1, 1), TimeUnit.DAYS, 0)


@pytest.mark.asyncio
async def test_long_expired_monthly_reads_expired(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan()
    end = now - timedelta(days=10)
    subscription = await make_subscription(
        user, plan,
        start_date=end - timedelta(days=30),
        end_date=end,
        grace_end_date=end + timedelta(days=7),
    )

    assert resolve_status(subscription, now) == SubscriptionStatus.EXPIRED
    assert apply_time_transition(subscription, now) is True
    assert subscription.status == SubscriptionStatus.EXPIRED


@pytest.mark.asyncio
async def test_status_never_moves_backwards(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan()
    subscription = await make_subscription(
        user, plan,
        status=SubscriptionStatus.IN_GRACE_PERIOD,
        end_date=now - timedelta(days=1),
        grace_end_date=now + timedelta(days=6),
    )
    # Reading with an earlier clock must not put it back to ACTIVE.
    assert resolve_status(subscription, now - timedelta(days=5)) == SubscriptionStatus.IN_GRACE_PERIOD

    transition(subscription, SubscriptionStatus.EXPIRED, now)
    with pytest.raises(StateViolationError):
        transition(subscription, SubscriptionStatus.ACTIVE, now)
    with pytest.raises(StateViolationError):
        transition(subscription, SubscriptionStatus.IN_GRACE_PERIOD, now)


@pytest.mark.asyncio
async def test_create_subscription_is_pending_with_six_digit_code(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan()

    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )

    assert subscription.status == SubscriptionStatus.PENDING
    assert len(subscription.access_code) == 6 and subscription.access_code.isdigit()
    assert 100000 <= int(subscription.access_code) <= 999999
    assert subscription.qr_token is None
    assert as_aware(subscription.start_date) == now
    assert as_aware(subscription.end_date) == datetime(2025, 2, 6, 9, 30, tzinfo=timezone.utc)
    assert as_aware(subscription.grace_end_date) == datetime(2025, 2, 13, 9, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_future_start_date_begins_at_midnight(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan(name="Morning Plan (Daily)", time_unit=TimeUnit.DAYS, plan_type=PlanType.DAILY)

    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=date(2025, 1, 10), now=now
    )

    assert as_aware(subscription.start_date) == datetime(2025, 1, 10, tzinfo=timezone.utc)
    assert as_aware(subscription.end_date) == datetime(2025, 1, 11, tzinfo=timezone.utc)
    assert subscription.grace_end_date is None


@pytest.mark.asyncio
async def test_past_start_date_is_rejected(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan()
    with pytest.raises(ValidationInputError):
        await SubscriptionLifecycleService.create_subscription(
            db_session, user_id=user.id, plan_id=plan.id, start_date=date(2025, 1, 5), now=now
        )
    result = await db_session.execute(select(Subscription))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_inactive_plan_is_rejected(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan()
    plan.is_active = False
    await db_session.commit()

    with pytest.raises(NotFoundError):
        await SubscriptionLifecycleService.create_subscription(
            db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
        )


@pytest.mark.asyncio
async def test_default_time_slot_comes_from_plan(db_session: AsyncSession, make_user, make_plan, now):
    premium = await make_plan(name="Premium Monthly", default_time_slot=TimeSlot.ALL)
    standard = await make_plan(name="Standard Monthly")
    first = await make_user()
    second = await make_user()

    premium_sub = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=first.id, plan_id=premium.id, start_date=now.date(), now=now
    )
    standard_sub = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=second.id, plan_id=standard.id, start_date=now.date(),
        time_slot=TimeSlot.NIGHT, now=now,
    )

    assert premium_sub.time_slot == TimeSlot.ALL
    assert standard_sub.time_slot == TimeSlot.NIGHT


@pytest.mark.asyncio
@pytest.mark.parametrize("slot", [None, TimeSlot.ALL])
async def test_slot_required_plan_rejects_all_day_access(db_session: AsyncSession, make_user, make_plan, now, slot):
    plan = await make_plan(name="Standard Monthly", requires_time_slot=True)
    user = await make_user()

    with pytest.raises(ValidationInputError, match="Time slot is required"):
        await SubscriptionLifecycleService.create_subscription(
            db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), time_slot=slot, now=now
        )

    result = await db_session.execute(select(Subscription).where(Subscription.user_id == user.id))
    assert result.scalars().all() == []

    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(),
        time_slot=TimeSlot.AFTERNOON, now=now,
    )
    assert subscription.time_slot == TimeSlot.AFTERNOON


@pytest.mark.asyncio
async def test_second_open_subscription_conflicts(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan()
    await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )

    with pytest.raises(ConflictError):
        await SubscriptionLifecycleService.create_subscription(
            db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
        )


@pytest.mark.asyncio
async def test_stale_open_subscription_is_expired_on_create(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan(name="Night Plan (Daily)", time_unit=TimeUnit.DAYS, plan_type=PlanType.DAILY)
    stale = await make_subscription(
        user, plan,
        start_date=now - timedelta(days=3),
        end_date=now - timedelta(days=2),
    )

    fresh = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )

    await db_session.refresh(stale)
    assert stale.status == SubscriptionStatus.EXPIRED
    assert fresh.status == SubscriptionStatus.PENDING


@pytest.mark.asyncio
async def test_code_collision_retries(db_session: AsyncSession, make_user, make_plan, make_subscription, now, monkeypatch):
    taken_owner = await make_user()
    plan = await make_plan()
    await make_subscription(taken_owner, plan, access_code="123456")
    user = await make_user()

    codes = iter(["123456", "123456", "654321"])
    monkeypatch.setattr(AccessCodeService, "random_code", staticmethod(lambda: next(codes)))

    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )
    assert subscription.access_code == "654321"


@pytest.mark.asyncio
async def test_admin_direct_activation_records_approved_receipt(db_session: AsyncSession, make_user, make_plan, admin, now):
    user = await make_user()
    plan = await make_plan(price="40000")

    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session,
        user_id=user.id,
        plan_id=plan.id,
        start_date=now.date(),
        payment_method=PaymentMethod.CARD,
        activate_by=admin.id,
        now=now,
    )

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.approved_by == admin.id
    receipts = (await db_session.execute(select(PaymentReceipt))).scalars().all()
    assert len(receipts) == 1
    assert receipts[0].status == PaymentStatus.APPROVED
    assert receipts[0].amount == Decimal("40000")


@pytest.mark.asyncio
async def test_direct_activation_requires_admin(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    not_admin = await make_user()
    plan = await make_plan()

    with pytest.raises(ForbiddenError):
        await SubscriptionLifecycleService.create_subscription(
            db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(),
            activate_by=not_admin.id, now=now,
        )


@pytest.mark.asyncio
async def test_approval_activates_subscription_and_receipt_together(db_session: AsyncSession, make_user, make_plan, admin, now):
    user = await make_user(full_name="Ada")
    plan = await make_plan()
    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )
    receipt = await SubscriptionLifecycleService.submit_payment_receipt(
        db_session, subscription_id=subscription.id, amount="30000", payment_method=PaymentMethod.TRANSFER
    )

    approved = await SubscriptionLifecycleService.approve_payment(db_session, receipt.id, admin.id, "paid", now=now)

    assert approved.status == SubscriptionStatus.ACTIVE
    assert as_aware(approved.approved_at) == now
    await db_session.refresh(receipt)
    assert receipt.status == PaymentStatus.APPROVED
    assert receipt.processed_by == admin.id

    notifications = (await db_session.execute(select(NotificationLog))).scalars().all()
    assert [log.event_type for log in notifications] == ["SUBSCRIPTION_APPROVED"]
    assert subscription.access_code in notifications[0].message

    audit = (await db_session.execute(select(AuditLog).where(AuditLog.action == "PAYMENT_APPROVED"))).scalars().all()
    assert len(audit) == 1

    with pytest.raises(StateViolationError):
        await SubscriptionLifecycleService.approve_payment(db_session, receipt.id, admin.id, now=now)


@pytest.mark.asyncio
async def test_non_admin_cannot_approve(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan()
    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )
    receipt = await SubscriptionLifecycleService.submit_payment_receipt(
        db_session, subscription_id=subscription.id, amount=100
    )

    with pytest.raises(ForbiddenError):
        await SubscriptionLifecycleService.approve_payment(db_session, receipt.id, user.id, now=now)

    await db_session.refresh(subscription)
    await db_session.refresh(receipt)
    assert subscription.status == SubscriptionStatus.PENDING
    assert receipt.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_rejection_keeps_subscription_pending(db_session: AsyncSession, make_user, make_plan, admin, now):
    user = await make_user()
    plan = await make_plan()
    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )
    receipt = await SubscriptionLifecycleService.submit_payment_receipt(
        db_session, subscription_id=subscription.id, amount=100
    )

    rejected = await SubscriptionLifecycleService.reject_payment(db_session, receipt.id, admin.id, "blurry photo", now=now)

    assert rejected.status == PaymentStatus.REJECTED
    await db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.PENDING
    assert await SubscriptionLifecycleService.list_pending_payments(db_session) == []

    resubmitted = await SubscriptionLifecycleService.submit_payment_receipt(
        db_session, subscription_id=subscription.id, amount=100
    )
    pending = await SubscriptionLifecycleService.list_pending_payments(db_session)
    assert [r.id for r in pending] == [resubmitted.id]


@pytest.mark.asyncio
async def test_receipt_amount_must_be_positive(db_session: AsyncSession, make_user, make_plan, now):
    user = await make_user()
    plan = await make_plan()
    subscription = await SubscriptionLifecycleService.create_subscription(
        db_session, user_id=user.id, plan_id=plan.id, start_date=now.date(), now=now
    )
    with pytest.raises(ValidationInputError):
        await SubscriptionLifecycleService.submit_payment_receipt(
            db_session, subscription_id=subscription.id, amount="0"
        )


@pytest.mark.asyncio
async def test_renewing_active_subscription_expires_source(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan()
    source = await make_subscription(user, plan, time_slot=TimeSlot.MORNING)

    renewed = await SubscriptionLifecycleService.renew_subscription(db_session, source.id, now=now)

    await db_session.refresh(source)
    assert source.status == SubscriptionStatus.EXPIRED
    assert renewed.status == SubscriptionStatus.PENDING
    assert renewed.id != source.id
    assert renewed.access_code != source.access_code
    assert renewed.time_slot == TimeSlot.MORNING
    assert as_aware(renewed.start_date) == now
    assert as_aware(renewed.end_date) == datetime(2025, 2, 6, 9, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_renewing_pending_subscription_is_rejected(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan()
    pending = await make_subscription(user, plan, status=SubscriptionStatus.PENDING)

    with pytest.raises(StateViolationError):
        await SubscriptionLifecycleService.renew_subscription(db_session, pending.id, now=now)


@pytest.mark.asyncio
async def test_renewing_expired_subscription(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan()
    expired = await make_subscription(
        user, plan,
        status=SubscriptionStatus.EXPIRED,
        start_date=now - timedelta(days=60),
        end_date=now - timedelta(days=30),
    )

    renewed = await SubscriptionLifecycleService.renew_subscription(db_session, expired.id, now=now)
    assert renewed.status == SubscriptionStatus.PENDING
    assert renewed.user_id == user.id


@pytest.mark.asyncio
async def test_renewal_resolves_lapsed_status_first(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    plan = await make_plan()
    # Stored ACTIVE but past its end date and inside the grace window.
    in_grace = await make_subscription(
        await make_user(), plan,
        start_date=now - timedelta(days=33),
        end_date=now - timedelta(days=2),
        grace_end_date=now + timedelta(days=5),
    )
    # Stored ACTIVE but past the grace window too.
    lapsed = await make_subscription(
        await make_user(), plan,
        start_date=now - timedelta(days=45),
        end_date=now - timedelta(days=14),
        grace_end_date=now - timedelta(days=7),
    )

    with pytest.raises(StateViolationError):
        await SubscriptionLifecycleService.renew_subscription(db_session, in_grace.id, now=now)
    await db_session.refresh(in_grace)
    assert in_grace.status == SubscriptionStatus.IN_GRACE_PERIOD

    renewed = await SubscriptionLifecycleService.renew_subscription(db_session, lapsed.id, now=now)
    await db_session.refresh(lapsed)
    assert lapsed.status == SubscriptionStatus.EXPIRED
    assert renewed.status == SubscriptionStatus.PENDING


@pytest.mark.asyncio
async def test_qr_token_is_lazy_and_stable(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    user = await make_user()
    plan = await make_plan()
    subscription = await make_subscription(user, plan)

    first = await SubscriptionLifecycleService.issue_qr_token(db_session, subscription.id, now=now)
    second = await SubscriptionLifecycleService.issue_qr_token(db_session, subscription.id, now=now)

    assert first == second
    assert AccessCodeService.decode_qr_token(first) == subscription.id


@pytest.mark.asyncio
async def test_qr_token_refused_for_pending_and_expired(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    plan = await make_plan(plan_type=PlanType.WEEKLY, time_unit=TimeUnit.WEEK)
    pending = await make_subscription(await make_user(), plan, status=SubscriptionStatus.PENDING)
    lapsed = await make_subscription(
        await make_user(), plan,
        start_date=now - timedelta(days=8),
        end_date=now - timedelta(days=1),
    )

    with pytest.raises(StateViolationError):
        await SubscriptionLifecycleService.issue_qr_token(db_session, pending.id, now=now)
    with pytest.raises(StateViolationError):
        await SubscriptionLifecycleService.issue_qr_token(db_session, lapsed.id, now=now)

    await db_session.refresh(lapsed)
    assert lapsed.status == SubscriptionStatus.EXPIRED


@pytest.mark.asyncio
async def test_lookup_by_access_code(db_session: AsyncSession, make_user, make_plan, make_subscription):
    user = await make_user(full_name="Grace Hopper")
    plan = await make_plan(name="Premium Monthly")
    await make_subscription(user, plan, access_code="246810")

    found = await SubscriptionLifecycleService.get_by_access_code(db_session, " 246810 ")
    assert found.user.full_name == "Grace Hopper"
    assert found.plan.name == "Premium Monthly"

    with pytest.raises(NotFoundError):
        await SubscriptionLifecycleService.get_by_access_code(db_session, "999999")


@pytest.mark.asyncio
async def test_unknown_subscription_raises_not_found(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await SubscriptionLifecycleService.get_subscription(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_role_based_admin_check(db_session: AsyncSession, make_user):
    super_admin = await make_user(role=Role.SUPER_ADMIN)
    assert (await SubscriptionLifecycleService.require_admin(db_session, super_admin.id)).id == super_admin.id
    with pytest.raises(ForbiddenError):
        await SubscriptionLifecycleService.require_admin(db_session, None)
