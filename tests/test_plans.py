import pytest
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.core.exceptions import ForbiddenError, NotFoundError, ValidationInputError
from access_hub.models.enums import PlanType, TimeSlot, TimeUnit
from access_hub.services.plan_catalog_service import PlanCatalogService, plan_type_for


def test_plan_type_follows_time_unit():
    assert plan_type_for(TimeUnit.MINUTES) == PlanType.DAILY
    assert plan_type_for(TimeUnit.DAYS) == PlanType.DAILY
    assert plan_type_for(TimeUnit.WEEK) == PlanType.WEEKLY
    assert plan_type_for(TimeUnit.MONTH) == PlanType.MONTHLY
    assert plan_type_for(TimeUnit.YEAR) == PlanType.MONTHLY


@pytest.mark.asyncio
async def test_create_custom_plan(db_session: AsyncSession):
    plan = await PlanCatalogService.create_plan(
        db_session,
        name="  Team Night Plan ",
        price="15000",
        time_unit="HOURS",
        duration="6",
        max_capacity=12,
        notes="Weekend league",
    )

    assert plan.name == "Team Night Plan"
    assert plan.price == Decimal("15000")
    assert plan.time_unit == TimeUnit.HOURS
    assert plan.duration == 6
    assert plan.plan_type == PlanType.DAILY
    assert plan.is_custom is True
    assert plan.current_capacity == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"time_unit": "FORTNIGHT"},
        {"duration": 0},
        {"duration": "abc"},
        {"price": "-1"},
        {"price": "free"},
        {"max_capacity": 0},
        {"name": "   "},
    ],
)
async def test_create_plan_rejects_bad_input(db_session: AsyncSession, overrides):
    fields = {"name": "Custom", "price": "100", "time_unit": "DAYS", "duration": 1}
    fields.update(overrides)
    with pytest.raises(ValidationInputError):
        await PlanCatalogService.create_plan(db_session, **fields)


@pytest.mark.asyncio
async def test_custom_window_must_end_after_start(db_session: AsyncSession, now):
    with pytest.raises(ValidationInputError):
        await PlanCatalogService.create_plan(
            db_session,
            name="Event",
            price="0",
            time_unit="DAYS",
            duration=1,
            start_datetime=now + timedelta(days=2),
            end_datetime=now + timedelta(days=1),
        )


@pytest.mark.asyncio
async def test_naive_window_is_read_as_facility_time(db_session: AsyncSession):
    plan = await PlanCatalogService.create_plan(
        db_session,
        name="Open Day",
        price="0",
        time_unit="HOURS",
        duration=8,
        start_datetime=datetime(2025, 3, 1, 9, 0),
        end_datetime=datetime(2025, 3, 1, 17, 0),
    )
    assert plan.start_datetime == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert plan.has_explicit_window is True


@pytest.mark.asyncio
async def test_system_plans_are_immutable(db_session: AsyncSession, make_plan):
    plan = await make_plan(name="Premium Monthly", default_time_slot=TimeSlot.ALL)

    with pytest.raises(ForbiddenError):
        await PlanCatalogService.update_plan(db_session, plan.id, {"price": "1"})
    with pytest.raises(ForbiddenError):
        await PlanCatalogService.deactivate_plan(db_session, plan.id)

    await db_session.refresh(plan)
    assert plan.price == Decimal("30000")
    assert plan.is_active is True


@pytest.mark.asyncio
async def test_update_custom_plan(db_session: AsyncSession, make_plan):
    plan = await make_plan(name="Custom", time_unit=TimeUnit.DAYS, plan_type=PlanType.DAILY, is_custom=True, current_capacity=3)

    updated = await PlanCatalogService.update_plan(
        db_session, plan.id, {"time_unit": "WEEK", "duration": 2, "default_time_slot": "NIGHT"}
    )
    assert updated.time_unit == TimeUnit.WEEK
    assert updated.plan_type == PlanType.WEEKLY
    assert updated.duration == 2
    assert updated.default_time_slot == TimeSlot.NIGHT
    assert updated.updated_at is not None

    with pytest.raises(ValidationInputError):
        await PlanCatalogService.update_plan(db_session, plan.id, {"max_capacity": 2})
    with pytest.raises(ValidationInputError):
        await PlanCatalogService.update_plan(db_session, plan.id, {"current_capacity": 0})


@pytest.mark.asyncio
async def test_deactivated_plan_leaves_the_catalog(db_session: AsyncSession, make_plan):
    plan = await make_plan(name="Custom", is_custom=True)
    await PlanCatalogService.deactivate_plan(db_session, plan.id)

    assert await PlanCatalogService.list_active_plans(db_session) == []
    # Still resolvable for existing subscriptions.
    assert (await PlanCatalogService.get_plan(db_session, plan.id)).is_active is False


@pytest.mark.asyncio
async def test_catalog_ordering_and_grouping(db_session: AsyncSession, make_plan):
    await make_plan(name="Standard Monthly", price="30000")
    await make_plan(name="Night Plan (Daily)", time_unit=TimeUnit.DAYS, plan_type=PlanType.DAILY, price="5000")
    await make_plan(name="Morning Plan (Weekly)", time_unit=TimeUnit.WEEK, plan_type=PlanType.WEEKLY, price="8000")
    await make_plan(name="Morning Plan (Daily)", time_unit=TimeUnit.DAYS, plan_type=PlanType.DAILY, price="2000")

    plans = await PlanCatalogService.list_active_plans(db_session)
    assert [plan.name for plan in plans] == [
        "Morning Plan (Daily)",
        "Night Plan (Daily)",
        "Morning Plan (Weekly)",
        "Standard Monthly",
    ]

    grouped = PlanCatalogService.group_by_unit(plans)
    assert list(grouped) == ["DAYS", "WEEK", "MONTH"]
    assert len(grouped["DAYS"]) == 2


@pytest.mark.asyncio
async def test_plan_routes(client: AsyncClient, make_user, admin, make_plan):
    await make_plan(name="Morning Plan (Daily)", time_unit=TimeUnit.DAYS, plan_type=PlanType.DAILY, price="2000")
    member = await make_user()
    payload = {"name": "Team Night Plan", "price": "12000", "time_unit": "DAYS", "duration": 1, "max_capacity": 10}

    # 1. Only admins create plans
    missing = await client.post("/api/v1/plans", json=payload)
    assert missing.status_code == 422
    forbidden = await client.post("/api/v1/plans", json=payload, headers={"X-User-Id": str(member.id)})
    assert forbidden.status_code == 403

    created = await client.post("/api/v1/plans", json=payload, headers={"X-User-Id": str(admin.id)})
    assert created.status_code == 201
    plan = created.json()["data"]
    assert plan["is_custom"] is True
    assert plan["plan_type"] == "DAILY"

    # 2. Public listing
    listing = await client.get("/api/v1/plans")
    assert listing.status_code == 200
    assert [p["name"] for p in listing.json()["data"]] == ["Morning Plan (Daily)", "Team Night Plan"]

    grouped = await client.get("/api/v1/plans/grouped")
    assert list(grouped.json()["data"]) == ["DAYS"]

    # 3. Patch and deactivate
    patched = await client.patch(
        f"/api/v1/plans/{plan['id']}", json={"max_capacity": 20}, headers={"X-User-Id": str(admin.id)}
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["max_capacity"] == 20

    bad_unit = await client.patch(
        f"/api/v1/plans/{plan['id']}", json={"time_unit": "DECADE"}, headers={"X-User-Id": str(admin.id)}
    )
    assert bad_unit.status_code == 422

    deleted = await client.delete(f"/api/v1/plans/{plan['id']}", headers={"X-User-Id": str(admin.id)})
    assert deleted.status_code == 200
    assert deleted.json()["data"]["is_active"] is False

    fetched = await client.get(f"/api/v1/plans/{plan['id']}")
    assert fetched.status_code == 200


@pytest.mark.asyncio
async def test_unknown_plan_is_404(db_session: AsyncSession, client: AsyncClient):
    response = await client.get(f"/api/v1/plans/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"

    with pytest.raises(NotFoundError):
        await PlanCatalogService.get_plan(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_plan_changes_are_audited(client: AsyncClient, admin):
    headers = {"X-User-Id": str(admin.id)}
    created = await client.post(
        "/api/v1/plans",
        json={"name": "Corporate", "price": "9000", "time_unit": "WEEK", "duration": 1},
        headers=headers,
    )
    plan_id = created.json()["data"]["id"]
    await client.patch(f"/api/v1/plans/{plan_id}", json={"price": "9500", "notes": "Q3"}, headers=headers)
    await client.delete(f"/api/v1/plans/{plan_id}", headers=headers)

    response = await client.get("/api/v1/admin/audit", headers=headers)
    assert response.status_code == 200
    entries = response.json()["data"]
    assert {entry["action"] for entry in entries} == {"PLAN_CREATED", "PLAN_UPDATED", "PLAN_DEACTIVATED"}
    assert all(entry["target_id"] == plan_id for entry in entries)
    assert all(entry["user_id"] == str(admin.id) for entry in entries)

    updates = await client.get("/api/v1/admin/audit", params={"action": "PLAN_UPDATED"}, headers=headers)
    assert [entry["details"] for entry in updates.json()["data"]] == ["notes, price"]
