from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.core.exceptions import ForbiddenError, NotFoundError, ValidationInputError
from access_hub.models.enums import PlanType, TimeSlot, TimeUnit
from access_hub.models.plan import Plan
from access_hub.services.audit_service import AuditService
from access_hub.services.timezone_service import as_aware, to_utc, utcnow

UNIT_ORDER = {unit: index for index, unit in enumerate(TimeUnit)}

# Patch keys accepted by update_plan. current_capacity is owned by CapacityService.
UPDATABLE_FIELDS = frozenset({
    "name",
    "price",
    "time_unit",
    "duration",
    "max_capacity",
    "default_time_slot",
    "notes",
    "start_datetime",
    "end_datetime",
    "is_active",
})


def parse_time_unit(value: Any) -> TimeUnit:
    try:
        return TimeUnit(value)
    except ValueError:
        allowed = ", ".join(unit.value for unit in TimeUnit)
        raise ValidationInputError(f"Invalid time unit. Must be one of: {allowed}")


def parse_duration(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationInputError("Duration must be a positive integer")
    try:
        duration = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationInputError("Duration must be a positive integer")
    if duration <= 0:
        raise ValidationInputError("Duration must be a positive integer")
    return duration


def parse_price(value: Any) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationInputError("Price must be a number")
    if not price.is_finite() or price < 0:
        raise ValidationInputError("Price must be non-negative")
    return price


def parse_max_capacity(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationInputError("Max capacity must be a positive integer or null")
    return value


def plan_type_for(time_unit: TimeUnit) -> PlanType:
    """Grace eligibility follows the billing cadence: month and year plans are MONTHLY."""
    if time_unit in (TimeUnit.MONTH, TimeUnit.YEAR):
        return PlanType.MONTHLY
    if time_unit == TimeUnit.WEEK:
        return PlanType.WEEKLY
    return PlanType.DAILY


def _validate_window(start: datetime | None, end: datetime | None) -> tuple[datetime | None, datetime | None]:
    start = to_utc(start) if start else None
    end = to_utc(end) if end else None
    if start and end and end <= start:
        raise ValidationInputError("Custom plan window must end after it starts")
    return start, end


def _stored(value: datetime | None) -> datetime | None:
    return as_aware(value) if value else None


class PlanCatalogService:
    @staticmethod
    async def get_plan(db: AsyncSession, plan_id: uuid.UUID) -> Plan:
        result = await db.execute(select(Plan).where(Plan.id == plan_id))
        plan = result.scalar_one_or_none()
        if not plan:
            raise NotFoundError("Plan not found")
        return plan

    @staticmethod
    async def create_plan(
        db: AsyncSession,
        *,
        name: str,
        price: Any,
        time_unit: Any,
        duration: Any,
        notes: str | None = None,
        max_capacity: int | None = None,
        default_time_slot: TimeSlot | None = None,
        start_datetime: datetime | None = None,
        end_datetime: datetime | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> Plan:
        """Create an admin-defined (custom) plan."""
        if not name or not name.strip():
            raise ValidationInputError("Plan name is required")
        unit = parse_time_unit(time_unit)
        start, end = _validate_window(start_datetime, end_datetime)
        plan = Plan(
            name=name.strip(),
            price=parse_price(price),
            time_unit=unit,
            duration=parse_duration(duration),
            plan_type=plan_type_for(unit),
            default_time_slot=default_time_slot,
            max_capacity=parse_max_capacity(max_capacity),
            current_capacity=0,
            is_custom=True,
            is_active=True,
            notes=notes,
            start_datetime=start,
            end_datetime=end,
        )
        db.add(plan)
        await db.flush()
        await AuditService.log_action(db, actor_id, "PLAN_CREATED", str(plan.id), plan.name)
        await db.commit()
        return plan

    @staticmethod
    async def update_plan(
        db: AsyncSession,
        plan_id: uuid.UUID,
        patch: dict[str, Any],
        actor_id: uuid.UUID | None = None,
    ) -> Plan:
        plan = await PlanCatalogService.get_plan(db, plan_id)
        if not plan.is_custom:
            raise ForbiddenError("System plans cannot be modified")

        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationInputError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        if "name" in patch:
            if not patch["name"] or not str(patch["name"]).strip():
                raise ValidationInputError("Plan name is required")
            plan.name = str(patch["name"]).strip()
        if "price" in patch:
            plan.price = parse_price(patch["price"])
        if "time_unit" in patch:
            plan.time_unit = parse_time_unit(patch["time_unit"])
            plan.plan_type = plan_type_for(plan.time_unit)
        if "duration" in patch:
            plan.duration = parse_duration(patch["duration"])
        if "max_capacity" in patch:
            max_capacity = parse_max_capacity(patch["max_capacity"])
            if max_capacity is not None and plan.current_capacity > max_capacity:
                raise ValidationInputError("Max capacity cannot be lower than current occupancy")
            plan.max_capacity = max_capacity
        if "default_time_slot" in patch:
            slot = patch["default_time_slot"]
            plan.default_time_slot = TimeSlot(slot) if slot is not None else None
        if "notes" in patch:
            plan.notes = patch["notes"]
        if "start_datetime" in patch or "end_datetime" in patch:
            start = patch["start_datetime"] if "start_datetime" in patch else _stored(plan.start_datetime)
            end = patch["end_datetime"] if "end_datetime" in patch else _stored(plan.end_datetime)
            plan.start_datetime, plan.end_datetime = _validate_window(start, end)
        if "is_active" in patch:
            plan.is_active = bool(patch["is_active"])

        plan.updated_at = utcnow()
        await AuditService.log_action(db, actor_id, "PLAN_UPDATED", str(plan.id), ", ".join(sorted(patch)))
        await db.commit()
        return plan

    @staticmethod
    async def deactivate_plan(db: AsyncSession, plan_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> Plan:
        plan = await PlanCatalogService.get_plan(db, plan_id)
        if not plan.is_custom:
            raise ForbiddenError("System plans cannot be deleted")
        plan.is_active = False
        plan.updated_at = utcnow()
        await AuditService.log_action(db, actor_id, "PLAN_DEACTIVATED", str(plan.id), plan.name)
        await db.commit()
        return plan

    @staticmethod
    async def list_active_plans(db: AsyncSession) -> list[Plan]:
        result = await db.execute(select(Plan).where(Plan.is_active.is_(True)))
        plans = list(result.scalars().all())
        plans.sort(key=lambda plan: (UNIT_ORDER[plan.time_unit], plan.price))
        return plans

    @staticmethod
    def group_by_unit(plans: list[Plan]) -> dict[str, list[Plan]]:
        grouped: dict[str, list[Plan]] = {}
        for plan in plans:
            grouped.setdefault(plan.time_unit.value, []).append(plan)
        return grouped
