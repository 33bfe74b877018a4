from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import uuid

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.database import is_postgres
from access_hub.models.subscription import Subscription
from access_hub.models.subscription_enums import SubscriptionStatus
from access_hub.services import notification_templates
from access_hub.services.audit_service import AuditService
from access_hub.services.capacity_service import CapacityService
from access_hub.services.notification_service import NotificationService
from access_hub.services.subscription_lifecycle_service import apply_time_transition
from access_hub.services.timezone_service import as_aware, get_facility_timezone, utcnow

logger = logging.getLogger(__name__)

SWEEPER_LOCK_KEY = 731942285
LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.IN_GRACE_PERIOD)


@dataclass
class SweepSummary:
    started_at: str
    finished_at: str = ""
    duration_seconds: float = 0.0
    reason: str = "scheduled"
    scanned: int = 0
    expiring_soon_notified: int = 0
    moved_to_grace: int = 0
    expired: int = 0
    plans_reconciled: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)


class ExpirationSweeper:
    _run_lock = asyncio.Lock()
    _last_run: dict = {
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
        "last_summary": None,
    }

    @staticmethod
    async def _ids(db: AsyncSession, stmt) -> list[uuid.UUID]:
        return list((await db.execute(stmt)).scalars().all())

    @staticmethod
    async def _notify_expiring_soon(db: AsyncSession, subscription: Subscription) -> None:
        await NotificationService.notify(
            db=db,
            user=subscription.user,
            event_type="SUBSCRIPTION_EXPIRING_SOON",
            template_key="subscription_expiring_soon",
            message=notification_templates.subscription_expiring_soon(
                subscription.user.full_name,
                subscription.plan.name,
                subscription.access_code,
                settings.EXPIRING_SOON_WINDOW_MINUTES,
            ),
            subscription_id=subscription.id,
        )

    @staticmethod
    async def _notify_transition(db: AsyncSession, subscription: Subscription) -> None:
        user_name = subscription.user.full_name
        if subscription.status == SubscriptionStatus.IN_GRACE_PERIOD:
            grace_end = as_aware(subscription.grace_end_date).astimezone(get_facility_timezone())
            event_type = "GRACE_PERIOD_STARTED"
            template_key = "grace_period_started"
            message = notification_templates.grace_period_started(
                user_name, subscription.plan.name, grace_end.strftime("%Y-%m-%d %H:%M")
            )
        else:
            event_type = "SUBSCRIPTION_EXPIRED"
            template_key = "subscription_expired"
            message = notification_templates.subscription_expired(user_name, subscription.plan.name)
        await NotificationService.notify(
            db=db,
            user=subscription.user,
            event_type=event_type,
            template_key=template_key,
            message=message,
            subscription_id=subscription.id,
            idempotency_key=f"{template_key}:{subscription.id}",
        )

    @staticmethod
    def _record_transition(summary: SweepSummary, subscription: Subscription) -> None:
        if subscription.status == SubscriptionStatus.IN_GRACE_PERIOD:
            summary.moved_to_grace += 1
        else:
            summary.expired += 1

    @staticmethod
    async def _expire_one(db: AsyncSession, subscription_id: uuid.UUID, now: datetime, summary: SweepSummary) -> None:
        subscription = await db.get(Subscription, subscription_id)
        if subscription is None or subscription.status not in LIVE_STATUSES:
            return
        if apply_time_transition(subscription, now):
            await db.commit()
            ExpirationSweeper._record_transition(summary, subscription)
            await ExpirationSweeper._notify_transition(db, subscription)

    @staticmethod
    async def _isolated(db: AsyncSession, summary: SweepSummary, subscription_id: uuid.UUID, step, *args) -> None:
        """Run one per-subscription step; a failure is logged and never stops the run."""
        try:
            await step(db, subscription_id, *args)
        except Exception as exc:
            logger.exception("Sweeper failed on subscription %s", subscription_id)
            summary.errors.append(f"{subscription_id}: {exc}")
            await db.rollback()

    @staticmethod
    async def run_once(db: AsyncSession, now: datetime | None = None, reason: str = "scheduled") -> SweepSummary:
        """Narrow sweep: expiring-soon notices, then just-expired transitions."""
        now = now or utcnow()
        summary = SweepSummary(started_at=utcnow().isoformat(), reason=reason)

        soon_ids = await ExpirationSweeper._ids(
            db,
            select(Subscription.id).where(
                Subscription.status.in_(LIVE_STATUSES),
                Subscription.end_date >= now,
                Subscription.end_date <= now + timedelta(minutes=settings.EXPIRING_SOON_WINDOW_MINUTES),
            ),
        )

        async def expiring_soon(session: AsyncSession, subscription_id: uuid.UUID) -> None:
            subscription = await session.get(Subscription, subscription_id)
            if subscription is not None:
                await ExpirationSweeper._notify_expiring_soon(session, subscription)
                summary.expiring_soon_notified += 1

        for subscription_id in soon_ids:
            await ExpirationSweeper._isolated(db, summary, subscription_id, expiring_soon)

        expired_ids = await ExpirationSweeper._ids(
            db,
            select(Subscription.id).where(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.end_date < now,
                Subscription.end_date >= now - timedelta(minutes=settings.JUST_EXPIRED_WINDOW_MINUTES),
            ),
        )
        for subscription_id in expired_ids:
            await ExpirationSweeper._isolated(
                db, summary, subscription_id, ExpirationSweeper._expire_one, now, summary
            )

        summary.scanned = len(soon_ids) + len(expired_ids)
        return await ExpirationSweeper._finish(db, summary)

    @staticmethod
    async def run_maintenance(db: AsyncSession, now: datetime | None = None, reason: str = "maintenance") -> SweepSummary:
        """Full pass over every live subscription followed by capacity reconciliation."""
        now = now or utcnow()
        summary = SweepSummary(started_at=utcnow().isoformat(), reason=reason)

        live_ids = await ExpirationSweeper._ids(
            db, select(Subscription.id).where(Subscription.status.in_(LIVE_STATUSES))
        )
        for subscription_id in live_ids:
            await ExpirationSweeper._isolated(
                db, summary, subscription_id, ExpirationSweeper._expire_one, now, summary
            )
        summary.scanned = len(live_ids)

        try:
            reconciled = await CapacityService.reconcile_all(db)
            summary.plans_reconciled = len(reconciled)
        except Exception as exc:
            logger.exception("Capacity reconciliation failed")
            summary.errors.append(f"reconcile: {exc}")
            await db.rollback()

        return await ExpirationSweeper._finish(db, summary)

    @staticmethod
    async def _finish(db: AsyncSession, summary: SweepSummary) -> SweepSummary:
        finished = utcnow()
        summary.finished_at = finished.isoformat()
        summary.duration_seconds = round(
            (finished - datetime.fromisoformat(summary.started_at)).total_seconds(), 3
        )
        summary.errors = summary.errors[:100]

        ExpirationSweeper._last_run["last_run_at"] = summary.finished_at
        ExpirationSweeper._last_run["last_summary"] = summary.__dict__
        if summary.errors:
            ExpirationSweeper._last_run["last_error"] = summary.errors[0]
        else:
            ExpirationSweeper._last_run["last_success_at"] = summary.finished_at
            ExpirationSweeper._last_run["last_error"] = None

        await AuditService.log_action(
            db,
            None,
            "EXPIRATION_SWEEP_RUN",
            details=(
                f"reason={summary.reason}, scanned={summary.scanned}, "
                f"expiring_soon={summary.expiring_soon_notified}, grace={summary.moved_to_grace}, "
                f"expired={summary.expired}, reconciled={summary.plans_reconciled}, "
                f"errors={len(summary.errors)}"
            ),
            timestamp=finished,
        )
        await db.commit()
        logger.info(
            "Sweep (%s) complete: scanned=%s expiring_soon=%s grace=%s expired=%s reconciled=%s errors=%s",
            summary.reason,
            summary.scanned,
            summary.expiring_soon_notified,
            summary.moved_to_grace,
            summary.expired,
            summary.plans_reconciled,
            len(summary.errors),
        )
        return summary

    @staticmethod
    async def run_guarded(
        db: AsyncSession,
        *,
        maintenance: bool = False,
        now: datetime | None = None,
        reason: str = "scheduled",
    ) -> SweepSummary:
        """Run a sweep unless one is already in progress.

        Overlapping calls in this process return a skipped summary; on
        PostgreSQL an advisory lock also skips when another process is sweeping.
        """
        if ExpirationSweeper._run_lock.locked():
            logger.info("Sweeper still running; skipping this tick")
            return SweepSummary(started_at=utcnow().isoformat(), reason=reason, skipped=True)

        async with ExpirationSweeper._run_lock:
            use_advisory_lock = is_postgres(db)
            if use_advisory_lock:
                locked = bool((await db.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": SWEEPER_LOCK_KEY})).scalar())
                if not locked:
                    logger.info("Sweeper lock busy; skipping this tick")
                    return SweepSummary(started_at=utcnow().isoformat(), reason=reason, skipped=True)
            try:
                if maintenance:
                    return await ExpirationSweeper.run_maintenance(db, now=now, reason=reason)
                return await ExpirationSweeper.run_once(db, now=now, reason=reason)
            finally:
                if use_advisory_lock:
                    await db.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": SWEEPER_LOCK_KEY})
                    await db.commit()

    @staticmethod
    def status() -> dict:
        return {
            "enabled": settings.SWEEPER_ENABLED,
            "interval_seconds": settings.SWEEPER_INTERVAL_SECONDS,
            "maintenance_interval_seconds": settings.MAINTENANCE_INTERVAL_SECONDS,
            "running": ExpirationSweeper._run_lock.locked(),
            **ExpirationSweeper._last_run,
        }
