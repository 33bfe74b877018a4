from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
import logging
from typing import Any
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StateViolationError,
    ValidationInputError,
)
from access_hub.models.enums import PlanType, TimeSlot, TimeUnit
from access_hub.models.plan import Plan
from access_hub.models.subscription import PaymentReceipt, Subscription
from access_hub.models.subscription_enums import (
    ALLOWED_TRANSITIONS,
    OPEN_STATUSES,
    PaymentMethod,
    PaymentStatus,
    SubscriptionStatus,
)
from access_hub.models.user import User
from access_hub.services import notification_templates
from access_hub.services.access_code_service import AccessCodeService
from access_hub.services.access_policy import policy_for
from access_hub.services.audit_service import AuditService
from access_hub.services.notification_service import NotificationService
from access_hub.services.timezone_service import (
    as_aware,
    get_facility_timezone,
    local_date,
    local_midnight,
    to_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

RENEWABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED)
QR_ELIGIBLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.IN_GRACE_PERIOD)

_STATUS_RANK = {
    SubscriptionStatus.PENDING: 0,
    SubscriptionStatus.ACTIVE: 1,
    SubscriptionStatus.IN_GRACE_PERIOD: 2,
    SubscriptionStatus.EXPIRED: 3,
}


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _add_calendar_days(value: datetime, days: int) -> datetime:
    # Aware values step through facility wall-clock days so DST shifts keep the local time.
    if value.tzinfo is None:
        return value + timedelta(days=days)
    local = value.astimezone(get_facility_timezone())
    return (local + timedelta(days=days)).astimezone(value.tzinfo)


def compute_end_date(start: datetime, time_unit: TimeUnit, duration: int) -> datetime:
    if duration <= 0:
        raise ValidationInputError("Duration must be a positive integer")

    if time_unit == TimeUnit.MINUTES:
        return start + timedelta(minutes=duration)
    if time_unit == TimeUnit.HOURS:
        return start + timedelta(hours=duration)
    if time_unit == TimeUnit.DAYS:
        return _add_calendar_days(start, duration)
    if time_unit == TimeUnit.WEEK:
        return _add_calendar_days(start, 7 * duration)

    months = duration if time_unit == TimeUnit.MONTH else 12 * duration
    if start.tzinfo is None:
        return add_months(start, months)
    local = start.astimezone(get_facility_timezone())
    return add_months(local, months).astimezone(start.tzinfo)


def compute_grace_end_date(end_date: datetime, plan_type: PlanType) -> datetime | None:
    if plan_type != PlanType.MONTHLY:
        return None
    return _add_calendar_days(end_date, settings.GRACE_PERIOD_DAYS)


def resolve_status(subscription: Subscription, now: datetime) -> SubscriptionStatus:
    """Status the subscription should carry at ``now``.

    PENDING and EXPIRED are decided by explicit actions, never by the clock.
    The result never moves backwards along the lifecycle.
    """
    current = subscription.status
    if current not in QR_ELIGIBLE_STATUSES:
        return current
    target = policy_for(subscription).time_status(now)
    if _STATUS_RANK[target] > _STATUS_RANK[current]:
        return target
    return current


def transition(subscription: Subscription, target: SubscriptionStatus, now: datetime | None = None) -> None:
    if target not in ALLOWED_TRANSITIONS[subscription.status]:
        raise StateViolationError(
            f"Cannot move subscription from {subscription.status.value} to {target.value}"
        )
    subscription.status = target
    subscription.updated_at = now or utcnow()


def apply_time_transition(subscription: Subscription, now: datetime) -> bool:
    """Move the subscription along the clock-driven edges. The caller commits."""
    target = resolve_status(subscription, now)
    if target == subscription.status:
        return False
    logger.info("Subscription %s: %s -> %s", subscription.id, subscription.status.value, target.value)
    transition(subscription, target, now)
    return True


def resolve_start_date(start_date: date | datetime, now: datetime) -> datetime:
    """Start instant for a new subscription, in UTC.

    A bare date of today starts immediately; a later date starts at facility
    midnight. Anything before today's facility-local date is rejected.
    """
    today = local_date(now)
    if isinstance(start_date, datetime):
        start = to_utc(start_date)
        if local_date(start) < today:
            raise ValidationInputError("Start date cannot be in the past")
        return start
    if start_date < today:
        raise ValidationInputError("Start date cannot be in the past")
    if start_date == today:
        return now
    return local_midnight(start_date).astimezone(timezone.utc)


def default_time_slot(plan: Plan, requested: TimeSlot | None) -> TimeSlot | None:
    if plan.is_custom:
        return None
    if plan.requires_time_slot and requested in (None, TimeSlot.ALL):
        raise ValidationInputError(f"Time slot is required for {plan.name} plan")
    if requested is not None:
        return requested
    return plan.default_time_slot


def _parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationInputError("Amount must be a number")
    if amount <= 0:
        raise ValidationInputError("Amount must be greater than zero")
    return amount


class SubscriptionLifecycleService:
    @staticmethod
    async def require_admin(db: AsyncSession, admin_id: uuid.UUID | None) -> User:
        if admin_id is None:
            raise ForbiddenError("Admin identity is required")
        admin = await db.get(User, admin_id)
        if not admin or not admin.is_admin:
            raise ForbiddenError("Not authorized to manage subscriptions")
        return admin

    @staticmethod
    async def get_subscription(db: AsyncSession, subscription_id: uuid.UUID) -> Subscription:
        subscription = await db.get(Subscription, subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    @staticmethod
    async def get_by_access_code(db: AsyncSession, access_code: str) -> Subscription:
        result = await db.execute(select(Subscription).where(Subscription.access_code == access_code.strip()))
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    @staticmethod
    async def list_user_subscriptions(db: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
        result = await db.execute(
            select(Subscription).where(Subscription.user_id == user_id).order_by(Subscription.created_at.desc())
        )
        return list(result.scalars().unique().all())

    @staticmethod
    async def _find_open_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
        result = await db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status.in_(OPEN_STATUSES),
            )
        )
        return result.scalars().first()

    @staticmethod
    async def _release_open_subscription(db: AsyncSession, user_id: uuid.UUID, now: datetime) -> None:
        """Expire the user's open subscription if its time is up, otherwise refuse."""
        existing = await SubscriptionLifecycleService._find_open_subscription(db, user_id)
        if existing is None:
            return

        if existing.status == SubscriptionStatus.PENDING:
            still_open = now <= as_aware(existing.end_date)
        else:
            still_open = resolve_status(existing, now) != SubscriptionStatus.EXPIRED

        if still_open:
            raise ConflictError(
                f"User already has a {existing.status.value.lower().replace('_', ' ')} subscription"
            )

        transition(existing, SubscriptionStatus.EXPIRED, now)
        logger.info("Subscription %s expired before creating a new one for user %s", existing.id, user_id)
        await db.flush()

    @staticmethod
    async def _commit_new_subscription(
        db: AsyncSession,
        build,
        user_id: uuid.UUID,
    ) -> Subscription:
        """Insert the subscription built by ``build(code)`` under a fresh access code.

        A losing race on the code's unique index retries with a new code; a
        losing race on the one-open-subscription index is a conflict.
        """
        for attempt in range(1, settings.ACCESS_CODE_MAX_ATTEMPTS + 1):
            code = await AccessCodeService.generate_unique_code(db)
            subscription = await build(code)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if await AccessCodeService.code_in_use(db, code):
                    logger.info("Access code %s taken concurrently, retrying (attempt %s)", code, attempt)
                    continue
                if await SubscriptionLifecycleService._find_open_subscription(db, user_id):
                    raise ConflictError("User already has an open subscription")
                raise
            await db.refresh(subscription)
            return subscription
        raise ConflictError("Could not allocate a unique access code")

    @staticmethod
    async def create_subscription(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        plan_id: uuid.UUID,
        start_date: date | datetime,
        time_slot: TimeSlot | None = None,
        payment_method: PaymentMethod | None = None,
        admin_notes: str | None = None,
        activate_by: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Create a subscription for ``user_id``.

        Self-service creation leaves it PENDING until a receipt is approved.
        When ``activate_by`` names an admin, the subscription starts ACTIVE and
        an approved receipt for the plan price is recorded in the same commit.
        """
        now = now or utcnow()
        start = resolve_start_date(start_date, now)

        plan = await db.get(Plan, plan_id)
        if not plan or not plan.is_active:
            raise NotFoundError("Plan not found or inactive")
        user = await db.get(User, user_id)
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        if activate_by is not None:
            await SubscriptionLifecycleService.require_admin(db, activate_by)

        end_date = compute_end_date(start, plan.time_unit, plan.duration)
        grace_end_date = compute_grace_end_date(end_date, plan.plan_type)
        slot = default_time_slot(plan, time_slot)
        # A retried commit rolls back and expires loaded instances; keep plain values.
        plan_pk, plan_name, plan_price = plan.id, plan.name, plan.price

        async def build(code: str) -> Subscription:
            await SubscriptionLifecycleService._release_open_subscription(db, user_id, now)
            subscription = Subscription(
                id=uuid.uuid4(),
                user_id=user_id,
                plan_id=plan_pk,
                access_code=code,
                time_slot=slot,
                start_date=start,
                end_date=end_date,
                grace_end_date=grace_end_date,
                status=SubscriptionStatus.PENDING,
                payment_method=payment_method,
                admin_notes=admin_notes,
                created_at=now,
            )
            db.add(subscription)
            if activate_by is not None:
                subscription.status = SubscriptionStatus.ACTIVE
                subscription.approved_at = now
                subscription.approved_by = activate_by
                db.add(PaymentReceipt(
                    subscription_id=subscription.id,
                    amount=plan_price,
                    payment_method=payment_method or PaymentMethod.CASH,
                    status=PaymentStatus.APPROVED,
                    uploaded_at=now,
                    processed_at=now,
                    processed_by=activate_by,
                    admin_notes=admin_notes,
                ))
                await AuditService.log_action(
                    db,
                    activate_by,
                    "SUBSCRIPTION_CREATED_ACTIVE",
                    str(subscription.id),
                    f"Plan {plan_name} for user {user_id}",
                )
            return subscription

        subscription = await SubscriptionLifecycleService._commit_new_subscription(db, build, user_id)
        logger.info(
            "Created %s subscription %s for user %s on plan %s",
            subscription.status.value, subscription.id, user_id, plan_pk,
        )
        return subscription

    @staticmethod
    async def submit_payment_receipt(
        db: AsyncSession,
        *,
        subscription_id: uuid.UUID,
        amount: Any,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        receipt_url: str | None = None,
        now: datetime | None = None,
    ) -> PaymentReceipt:
        subscription = await SubscriptionLifecycleService.get_subscription(db, subscription_id)
        if subscription.status != SubscriptionStatus.PENDING:
            raise StateViolationError("Receipts can only be submitted for pending subscriptions")

        receipt = PaymentReceipt(
            subscription_id=subscription.id,
            amount=_parse_amount(amount),
            payment_method=payment_method,
            receipt_url=receipt_url,
            status=PaymentStatus.PENDING,
            uploaded_at=now or utcnow(),
        )
        db.add(receipt)
        await db.commit()
        await db.refresh(receipt)
        return receipt

    @staticmethod
    async def _get_pending_receipt(db: AsyncSession, receipt_id: uuid.UUID) -> PaymentReceipt:
        receipt = await db.get(PaymentReceipt, receipt_id)
        if not receipt:
            raise NotFoundError("Payment receipt not found")
        if receipt.status != PaymentStatus.PENDING:
            raise StateViolationError("Payment receipt has already been processed")
        return receipt

    @staticmethod
    async def approve_payment(
        db: AsyncSession,
        receipt_id: uuid.UUID,
        admin_id: uuid.UUID,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Approve a receipt and activate its subscription in one transaction."""
        now = now or utcnow()
        admin = await SubscriptionLifecycleService.require_admin(db, admin_id)
        receipt = await SubscriptionLifecycleService._get_pending_receipt(db, receipt_id)
        subscription = receipt.subscription
        if subscription.status != SubscriptionStatus.PENDING:
            raise StateViolationError("Only pending subscriptions can be approved")

        receipt.status = PaymentStatus.APPROVED
        receipt.processed_at = now
        receipt.processed_by = admin.id
        receipt.admin_notes = notes

        transition(subscription, SubscriptionStatus.ACTIVE, now)
        subscription.approved_at = now
        subscription.approved_by = admin.id
        subscription.payment_method = receipt.payment_method
        if notes:
            subscription.admin_notes = notes

        await AuditService.log_action(
            db, admin.id, "PAYMENT_APPROVED", str(receipt.id), f"Subscription {subscription.id} activated"
        )
        await db.commit()
        logger.info("Admin %s approved receipt %s; subscription %s is active", admin.id, receipt.id, subscription.id)

        await SubscriptionLifecycleService._notify_safely(
            db,
            subscription,
            event_type="SUBSCRIPTION_APPROVED",
            template_key="subscription_approved",
            message=notification_templates.subscription_approved(
                subscription.user.full_name, subscription.plan.name, subscription.access_code
            ),
            idempotency_key=f"subscription-approved:{subscription.id}",
        )
        return subscription

    @staticmethod
    async def reject_payment(
        db: AsyncSession,
        receipt_id: uuid.UUID,
        admin_id: uuid.UUID,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> PaymentReceipt:
        """Reject a receipt. The subscription stays PENDING so a new receipt can be sent."""
        now = now or utcnow()
        admin = await SubscriptionLifecycleService.require_admin(db, admin_id)
        receipt = await SubscriptionLifecycleService._get_pending_receipt(db, receipt_id)

        receipt.status = PaymentStatus.REJECTED
        receipt.processed_at = now
        receipt.processed_by = admin.id
        receipt.admin_notes = notes
        await AuditService.log_action(db, admin.id, "PAYMENT_REJECTED", str(receipt.id), notes)
        await db.commit()

        subscription = receipt.subscription
        await SubscriptionLifecycleService._notify_safely(
            db,
            subscription,
            event_type="PAYMENT_REJECTED",
            template_key="payment_rejected",
            message=notification_templates.payment_rejected(subscription.user.full_name, notes),
            idempotency_key=f"payment-rejected:{receipt.id}",
        )
        return receipt

    @staticmethod
    async def list_pending_payments(db: AsyncSession) -> list[PaymentReceipt]:
        result = await db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.status == PaymentStatus.PENDING)
            .order_by(PaymentReceipt.uploaded_at.asc())
        )
        return list(result.scalars().unique().all())

    @staticmethod
    async def renew_subscription(
        db: AsyncSession,
        subscription_id: uuid.UUID,
        now: datetime | None = None,
    ) -> Subscription:
        """Open a new PENDING period on the same plan, starting now.

        An ACTIVE source is expired in the same commit.
        """
        now = now or utcnow()
        source = await SubscriptionLifecycleService.get_subscription(db, subscription_id)
        if apply_time_transition(source, now):
            await db.commit()
        if source.status not in RENEWABLE_STATUSES:
            raise StateViolationError(
                f"Cannot renew a subscription in {source.status.value} status"
            )
        plan = source.plan
        if not plan.is_active:
            raise StateViolationError("Plan is no longer available")

        end_date = compute_end_date(now, plan.time_unit, plan.duration)
        grace_end_date = compute_grace_end_date(end_date, plan.plan_type)

        async def build(code: str) -> Subscription:
            await db.refresh(source)
            if source.status == SubscriptionStatus.ACTIVE:
                transition(source, SubscriptionStatus.EXPIRED, now)
                await db.flush()
            renewed = Subscription(
                user_id=source.user_id,
                plan_id=source.plan_id,
                access_code=code,
                time_slot=source.time_slot,
                start_date=now,
                end_date=end_date,
                grace_end_date=grace_end_date,
                status=SubscriptionStatus.PENDING,
                payment_method=source.payment_method,
                created_at=now,
            )
            db.add(renewed)
            return renewed

        renewed = await SubscriptionLifecycleService._commit_new_subscription(db, build, source.user_id)
        logger.info("Renewed subscription %s as %s", source.id, renewed.id)
        return renewed

    @staticmethod
    async def issue_qr_token(
        db: AsyncSession,
        subscription_id: uuid.UUID,
        now: datetime | None = None,
    ) -> str:
        now = now or utcnow()
        subscription = await SubscriptionLifecycleService.get_subscription(db, subscription_id)
        if subscription.status not in QR_ELIGIBLE_STATUSES:
            raise StateViolationError("QR codes are only issued for active subscriptions")
        if apply_time_transition(subscription, now) and subscription.status == SubscriptionStatus.EXPIRED:
            await db.commit()
            raise StateViolationError("Subscription expired")

        if subscription.qr_token is None:
            subscription.qr_token = AccessCodeService.generate_qr_token(subscription.id)
        await db.commit()
        return subscription.qr_token

    @staticmethod
    async def _notify_safely(
        db: AsyncSession,
        subscription: Subscription,
        *,
        event_type: str,
        template_key: str,
        message: str,
        idempotency_key: str | None = None,
    ) -> None:
        # The lifecycle change is already committed; a failed notification must not undo it.
        try:
            await NotificationService.notify(
                db=db,
                user=subscription.user,
                event_type=event_type,
                template_key=template_key,
                message=message,
                subscription_id=subscription.id,
                idempotency_key=idempotency_key,
            )
        except Exception:
            logger.exception("Failed to record %s notification for subscription %s", event_type, subscription.id)
            await db.rollback()
