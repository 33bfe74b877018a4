from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.models.access import AccessLog
from access_hub.models.enums import AccessAction, ValidationResult
from access_hub.models.subscription import Subscription
from access_hub.models.subscription_enums import SubscriptionStatus
from access_hub.services.access_code_service import AccessCodeService, is_access_code
from access_hub.services.access_policy import policy_for
from access_hub.services.capacity_service import CapacityService
from access_hub.services.subscription_lifecycle_service import apply_time_transition
from access_hub.services.timezone_service import local_time_of_day, utcnow

logger = logging.getLogger(__name__)

ENTRY_MESSAGES = {
    ValidationResult.SUCCESS: "Access granted - Welcome!",
    ValidationResult.DENIED: "Access denied - Invalid QR code",
    ValidationResult.EXPIRED: "Subscription expired",
    ValidationResult.INVALID_TIME: "Access not allowed at this time",
    ValidationResult.CAPACITY_FULL: "Hub at full capacity",
}
EXIT_MESSAGES = {
    **ENTRY_MESSAGES,
    ValidationResult.SUCCESS: "Exit recorded - Goodbye!",
    ValidationResult.DENIED: "Exit denied - Invalid QR code",
}


@dataclass
class AccessDecision:
    result: ValidationResult
    action: AccessAction
    message: str
    access_log_id: uuid.UUID
    subscription: Subscription | None = None

    @property
    def granted(self) -> bool:
        return self.result == ValidationResult.SUCCESS

    @property
    def user_name(self) -> str | None:
        if self.subscription is None:
            return None
        return self.subscription.user.full_name

    @property
    def plan_name(self) -> str | None:
        if self.subscription is None:
            return None
        return self.subscription.plan.name


class AccessService:
    @staticmethod
    async def resolve_subscription(db: AsyncSession, token: str) -> Subscription | None:
        """Find the subscription behind a 6-digit access code or a signed QR token."""
        token = (token or "").strip()
        if not token:
            return None
        if is_access_code(token):
            stmt = select(Subscription).where(Subscription.access_code == token)
        else:
            subscription_id = AccessCodeService.decode_qr_token(token)
            if subscription_id is None:
                return None
            # Only the most recently issued token for the subscription is honored.
            stmt = select(Subscription).where(
                Subscription.id == subscription_id,
                Subscription.qr_token == token,
            )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def _next_scan_number(db: AsyncSession, subscription_id: uuid.UUID) -> int:
        stmt = select(func.coalesce(func.max(AccessLog.scan_number), 0)).where(
            AccessLog.subscription_id == subscription_id
        )
        return (await db.execute(stmt)).scalar_one() + 1

    @staticmethod
    async def _evaluate(
        db: AsyncSession,
        subscription: Subscription,
        action: AccessAction,
        now: datetime,
    ) -> ValidationResult:
        """Ordered checks before any capacity change; the first failure wins."""
        if subscription.status == SubscriptionStatus.PENDING:
            return ValidationResult.DENIED
        if subscription.status == SubscriptionStatus.EXPIRED:
            return ValidationResult.EXPIRED

        apply_time_transition(subscription, now)
        if subscription.status == SubscriptionStatus.EXPIRED:
            return ValidationResult.EXPIRED

        if action == AccessAction.EXIT:
            return ValidationResult.SUCCESS

        policy = policy_for(subscription)
        if not policy.has_started(now):
            return ValidationResult.INVALID_TIME
        if not policy.allows_time_of_day(local_time_of_day(now)):
            return ValidationResult.INVALID_TIME
        if settings.ENFORCE_FACILITY_CAPACITY and not await CapacityService.facility_has_room(db):
            return ValidationResult.CAPACITY_FULL
        return ValidationResult.SUCCESS

    @staticmethod
    async def validate_access(
        db: AsyncSession,
        token: str,
        action: AccessAction,
        scanner_location: str | None = None,
        now: datetime | None = None,
    ) -> AccessDecision:
        """Validate one scan, adjust occupancy and record the attempt.

        Every outcome writes an AccessLog row; the capacity change and the log
        row are committed together.
        """
        now = now or utcnow()
        subscription = await AccessService.resolve_subscription(db, token)

        if subscription is None:
            result = ValidationResult.DENIED
        else:
            result = await AccessService._evaluate(db, subscription, action, now)

        if result == ValidationResult.SUCCESS:
            inside = await CapacityService.is_inside(db, subscription.id)
            if action == AccessAction.ENTRY:
                if inside:
                    logger.info("Repeated entry for subscription %s; occupancy unchanged", subscription.id)
                elif not await CapacityService.try_increment(db, subscription.plan_id):
                    result = ValidationResult.CAPACITY_FULL
            elif inside:
                await CapacityService.decrement(db, subscription.plan_id)
            else:
                logger.info("Exit without recorded entry for subscription %s; occupancy unchanged", subscription.id)

        access_log = AccessLog(
            user_id=subscription.user_id if subscription else None,
            subscription_id=subscription.id if subscription else None,
            action=action,
            validation_result=result,
            scanner_location=scanner_location,
            timestamp=now,
            scan_number=await AccessService._next_scan_number(db, subscription.id) if subscription else None,
        )
        db.add(access_log)
        await db.commit()

        messages = ENTRY_MESSAGES if action == AccessAction.ENTRY else EXIT_MESSAGES
        logger.log(
            logging.DEBUG if result == ValidationResult.SUCCESS else logging.INFO,
            "%s scan at %s: %s (subscription %s)",
            action.value, scanner_location or "unknown", result.value,
            subscription.id if subscription else None,
        )
        return AccessDecision(
            result=result,
            action=action,
            message=messages[result],
            access_log_id=access_log.id,
            subscription=subscription,
        )

    @staticmethod
    async def recent_logs(db: AsyncSession, limit: int = 100) -> list[AccessLog]:
        result = await db.execute(select(AccessLog).order_by(AccessLog.timestamp.desc()).limit(limit))
        return list(result.scalars().unique().all())
