"""Per-plan access rules.

System plans grant access from a relative end date, an optional grace window
and a recurring daily time slot. Custom plans with an explicit window grant
access inside that absolute window and ignore time slots. Both variants answer
the same questions so callers never branch on ``Plan.is_custom``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Union

from access_hub.models.enums import TimeSlot
from access_hub.models.subscription import Subscription
from access_hub.models.subscription_enums import SubscriptionStatus
from access_hub.services.timezone_service import as_aware

TIME_SLOT_WINDOWS: dict[TimeSlot, tuple[time, time]] = {
    TimeSlot.MORNING: (time(8, 0), time(12, 0)),
    TimeSlot.AFTERNOON: (time(12, 0), time(17, 0)),
    TimeSlot.NIGHT: (time(17, 0), time(23, 59, 59, 999999)),
}


def time_slot_allows(slot: TimeSlot | None, local_time: time) -> bool:
    """Slot bounds are inclusive on both ends; no slot or ALL means all day."""
    if slot is None or slot == TimeSlot.ALL:
        return True
    start, end = TIME_SLOT_WINDOWS[slot]
    return start <= local_time <= end


@dataclass(frozen=True)
class SystemPlanPolicy:
    end_date: datetime
    grace_end_date: datetime | None
    time_slot: TimeSlot | None

    def time_status(self, now: datetime) -> SubscriptionStatus:
        if now <= self.end_date:
            return SubscriptionStatus.ACTIVE
        if self.grace_end_date is not None and now <= self.grace_end_date:
            return SubscriptionStatus.IN_GRACE_PERIOD
        return SubscriptionStatus.EXPIRED

    def has_started(self, now: datetime) -> bool:
        return True

    def allows_time_of_day(self, local_time: time) -> bool:
        return time_slot_allows(self.time_slot, local_time)


@dataclass(frozen=True)
class CustomPlanPolicy:
    window_start: datetime | None
    window_end: datetime

    def time_status(self, now: datetime) -> SubscriptionStatus:
        if now > self.window_end:
            return SubscriptionStatus.EXPIRED
        return SubscriptionStatus.ACTIVE

    def has_started(self, now: datetime) -> bool:
        return self.window_start is None or now >= self.window_start

    def allows_time_of_day(self, local_time: time) -> bool:
        return True


AccessPolicy = Union[SystemPlanPolicy, CustomPlanPolicy]


def policy_for(subscription: Subscription) -> AccessPolicy:
    plan = subscription.plan
    if plan.has_explicit_window:
        return CustomPlanPolicy(
            window_start=as_aware(plan.start_datetime) if plan.start_datetime else None,
            window_end=as_aware(plan.end_datetime),
        )
    return SystemPlanPolicy(
        end_date=as_aware(subscription.end_date),
        grace_end_date=as_aware(subscription.grace_end_date) if subscription.grace_end_date else None,
        time_slot=None if plan.is_custom else subscription.time_slot,
    )
