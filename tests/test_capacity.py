import pytest
import uuid
from datetime import timedelta
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.core.exceptions import NotFoundError
from access_hub.models.access import AccessLog
from access_hub.models.enums import AccessAction, ValidationResult
from access_hub.models.subscription_enums import SubscriptionStatus
from access_hub.services.capacity_service import CapacityService


def _scan(subscription, action, result, at):
    return AccessLog(
        user_id=subscription.user_id,
        subscription_id=subscription.id,
        action=action,
        validation_result=result,
        timestamp=at,
    )


@pytest.mark.asyncio
async def test_increment_stops_at_max(db_session: AsyncSession, make_plan):
    plan = await make_plan(max_capacity=2)

    assert await CapacityService.try_increment(db_session, plan.id) is True
    assert await CapacityService.try_increment(db_session, plan.id) is True
    assert await CapacityService.try_increment(db_session, plan.id) is False
    await db_session.commit()

    assert plan.current_capacity == 2
    assert await CapacityService.current_occupancy(db_session, plan.id) == 2


@pytest.mark.asyncio
async def test_unbounded_plan_always_has_room(db_session: AsyncSession, make_plan):
    plan = await make_plan(max_capacity=None, current_capacity=500)
    assert await CapacityService.try_increment(db_session, plan.id) is True
    assert plan.current_capacity == 501


@pytest.mark.asyncio
async def test_decrement_never_goes_negative(db_session: AsyncSession, make_plan):
    plan = await make_plan(current_capacity=0)
    assert await CapacityService.decrement(db_session, plan.id) is False
    assert plan.current_capacity == 0


@pytest.mark.asyncio
async def test_is_inside_follows_latest_successful_scan(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    plan = await make_plan()
    subscription = await make_subscription(await make_user(), plan)
    assert await CapacityService.is_inside(db_session, subscription.id) is False

    db_session.add_all([
        _scan(subscription, AccessAction.ENTRY, ValidationResult.SUCCESS, now - timedelta(hours=2)),
        _scan(subscription, AccessAction.EXIT, ValidationResult.SUCCESS, now - timedelta(hours=1)),
        _scan(subscription, AccessAction.ENTRY, ValidationResult.SUCCESS, now - timedelta(minutes=10)),
        # A later denial does not change who is inside.
        _scan(subscription, AccessAction.EXIT, ValidationResult.EXPIRED, now - timedelta(minutes=5)),
    ])
    await db_session.commit()

    assert await CapacityService.is_inside(db_session, subscription.id) is True


@pytest.mark.asyncio
async def test_reconcile_rebuilds_from_access_log(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    plan = await make_plan(max_capacity=10, current_capacity=7)
    inside = await make_subscription(await make_user(), plan)
    left = await make_subscription(await make_user(), plan)
    expired_inside = await make_subscription(await make_user(), plan, status=SubscriptionStatus.EXPIRED)
    db_session.add_all([
        _scan(inside, AccessAction.ENTRY, ValidationResult.SUCCESS, now - timedelta(hours=1)),
        _scan(left, AccessAction.ENTRY, ValidationResult.SUCCESS, now - timedelta(hours=2)),
        _scan(left, AccessAction.EXIT, ValidationResult.SUCCESS, now - timedelta(hours=1)),
        _scan(expired_inside, AccessAction.ENTRY, ValidationResult.SUCCESS, now - timedelta(hours=3)),
    ])
    await db_session.commit()

    assert await CapacityService.reconcile(db_session, plan.id) == 1
    assert plan.current_capacity == 1


@pytest.mark.asyncio
async def test_reconcile_clamps_to_max(db_session: AsyncSession, make_user, make_plan, make_subscription, now):
    plan = await make_plan(max_capacity=1, current_capacity=0)
    for _ in range(3):
        subscription = await make_subscription(await make_user(), plan)
        db_session.add(_scan(subscription, AccessAction.ENTRY, ValidationResult.SUCCESS, now))
    await db_session.commit()

    assert await CapacityService.reconcile(db_session, plan.id) == 1
    assert plan.current_capacity == 1


@pytest.mark.asyncio
async def test_reconcile_unknown_plan(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await CapacityService.reconcile(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_snapshot_totals_active_plans(db_session: AsyncSession, make_plan, monkeypatch):
    monkeypatch.setattr(settings, "FACILITY_CAPACITY", 40)
    await make_plan(name="Morning Plan (Daily)", max_capacity=10, current_capacity=4)
    await make_plan(name="Premium Monthly", max_capacity=None, current_capacity=2)
    retired = await make_plan(name="Old Plan", max_capacity=50, current_capacity=9)
    retired.is_active = False
    await db_session.commit()

    snapshot = await CapacityService.snapshot(db_session)

    assert snapshot.facility_capacity == 40
    assert snapshot.total_current_occupancy == 6
    assert snapshot.plan_based_capacity == 10
    assert [entry["name"] for entry in snapshot.breakdown] == ["Morning Plan (Daily)", "Premium Monthly"]


@pytest.mark.asyncio
async def test_capacity_endpoint(client: AsyncClient, make_plan):
    await make_plan(name="Night Plan (Daily)", max_capacity=20, current_capacity=5)

    response = await client.get("/api/v1/access/capacity")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_current_occupancy"] == 5
    assert data["plan_based_capacity"] == 20
    assert data["breakdown"][0]["current_capacity"] == 5
