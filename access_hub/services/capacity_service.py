from __future__ import annotations

from dataclasses import dataclass
import logging
import uuid

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.core.exceptions import NotFoundError
from access_hub.models.access import AccessLog
from access_hub.models.enums import AccessAction, ValidationResult
from access_hub.models.plan import Plan
from access_hub.models.subscription import Subscription
from access_hub.models.subscription_enums import SubscriptionStatus

logger = logging.getLogger(__name__)

# Subscriptions whose holders may currently be inside.
OCCUPYING_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.IN_GRACE_PERIOD)


@dataclass
class CapacitySnapshot:
    facility_capacity: int
    total_current_occupancy: int
    plan_based_capacity: int
    breakdown: list[dict]


class CapacityService:
    """Sole writer of Plan.current_capacity.

    Increments and decrements are single conditional UPDATE statements, so the
    0 <= current_capacity <= max_capacity bound holds under concurrent scans
    without a read-then-write. Callers commit together with their AccessLog row.
    """

    @staticmethod
    async def _refresh_plan(db: AsyncSession, plan_id: uuid.UUID) -> None:
        # Bulk UPDATEs bypass the identity map; reload so loaded Plan objects see the new count.
        await db.get(Plan, plan_id, populate_existing=True)

    @staticmethod
    async def try_increment(db: AsyncSession, plan_id: uuid.UUID) -> bool:
        stmt = (
            update(Plan)
            .where(
                Plan.id == plan_id,
                or_(Plan.max_capacity.is_(None), Plan.current_capacity < Plan.max_capacity),
            )
            .values(current_capacity=Plan.current_capacity + 1)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        changed = result.rowcount == 1
        await CapacityService._refresh_plan(db, plan_id)
        return changed

    @staticmethod
    async def decrement(db: AsyncSession, plan_id: uuid.UUID) -> bool:
        stmt = (
            update(Plan)
            .where(Plan.id == plan_id, Plan.current_capacity > 0)
            .values(current_capacity=Plan.current_capacity - 1)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        changed = result.rowcount == 1
        await CapacityService._refresh_plan(db, plan_id)
        return changed

    @staticmethod
    async def current_occupancy(db: AsyncSession, plan_id: uuid.UUID | None = None) -> int:
        if plan_id is not None:
            result = await db.execute(select(Plan.current_capacity).where(Plan.id == plan_id))
            occupancy = result.scalar_one_or_none()
            if occupancy is None:
                raise NotFoundError("Plan not found")
            return occupancy
        result = await db.execute(
            select(func.coalesce(func.sum(Plan.current_capacity), 0)).where(Plan.is_active.is_(True))
        )
        return int(result.scalar_one())

    @staticmethod
    async def facility_has_room(db: AsyncSession) -> bool:
        return await CapacityService.current_occupancy(db) < settings.FACILITY_CAPACITY

    @staticmethod
    async def is_inside(db: AsyncSession, subscription_id: uuid.UUID) -> bool:
        """A holder is inside when their latest successful scan was an ENTRY."""
        stmt = (
            select(AccessLog.action)
            .where(
                AccessLog.subscription_id == subscription_id,
                AccessLog.validation_result == ValidationResult.SUCCESS,
            )
            .order_by(AccessLog.timestamp.desc(), AccessLog.scan_number.desc().nulls_last())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() == AccessAction.ENTRY

    @staticmethod
    async def count_inside(db: AsyncSession, plan_id: uuid.UUID) -> int:
        stmt = select(Subscription.id).where(
            Subscription.plan_id == plan_id,
            Subscription.status.in_(OCCUPYING_STATUSES),
        )
        subscription_ids = (await db.execute(stmt)).scalars().all()
        inside = 0
        for subscription_id in subscription_ids:
            if await CapacityService.is_inside(db, subscription_id):
                inside += 1
        return inside

    @staticmethod
    async def reconcile(db: AsyncSession, plan_id: uuid.UUID) -> int:
        """Rebuild current_capacity from the access log and return the new value."""
        plan_result = await db.execute(select(Plan.max_capacity, Plan.current_capacity).where(Plan.id == plan_id))
        row = plan_result.one_or_none()
        if row is None:
            raise NotFoundError("Plan not found")
        max_capacity, old_capacity = row

        actual = await CapacityService.count_inside(db, plan_id)
        if max_capacity is not None and actual > max_capacity:
            logger.warning(
                "Plan %s has %s holders inside but max capacity %s; clamping",
                plan_id, actual, max_capacity,
            )
            actual = max_capacity

        if actual != old_capacity:
            await db.execute(
                update(Plan)
                .where(Plan.id == plan_id)
                .values(current_capacity=actual)
                .execution_options(synchronize_session=False)
            )
            logger.info("Reconciled plan %s capacity: %s -> %s", plan_id, old_capacity, actual)
            await CapacityService._refresh_plan(db, plan_id)
        await db.commit()
        return actual

    @staticmethod
    async def reconcile_all(db: AsyncSession) -> dict[str, int]:
        plan_ids = (await db.execute(select(Plan.id).where(Plan.is_active.is_(True)))).scalars().all()
        return {str(plan_id): await CapacityService.reconcile(db, plan_id) for plan_id in plan_ids}

    @staticmethod
    async def snapshot(db: AsyncSession) -> CapacitySnapshot:
        stmt = (
            select(Plan)
            .where(Plan.is_active.is_(True))
            .order_by(Plan.name)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        plans = result.scalars().all()
        breakdown = [
            {
                "id": str(plan.id),
                "name": plan.name,
                "max_capacity": plan.max_capacity,
                "current_capacity": plan.current_capacity,
            }
            for plan in plans
        ]
        return CapacitySnapshot(
            facility_capacity=settings.FACILITY_CAPACITY,
            total_current_occupancy=sum(plan.current_capacity for plan in plans),
            plan_based_capacity=sum(plan.max_capacity or 0 for plan in plans),
            breakdown=breakdown,
        )
