import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-access-hub-suite")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("NOTIFICATION_PROVIDER", "in_app")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from access_hub.config import settings
from access_hub.core.rate_limit import reset_rate_limiter_state
from access_hub.database import Base, get_db
from access_hub.main import app
from access_hub import models  # noqa: F401
from access_hub.models.enums import PlanType, Role, TimeSlot, TimeUnit
from access_hub.models.plan import Plan
from access_hub.models.subscription import Subscription
from access_hub.models.subscription_enums import SubscriptionStatus
from access_hub.models.user import User

# Monday, 09:30 UTC: inside the MORNING slot.
BASE_NOW = datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return BASE_NOW


@pytest.fixture(scope="function")
async def db_engine():
    url = settings.SQLALCHEMY_DATABASE_URI
    if url.startswith("sqlite"):
        engine = create_async_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_async_engine(url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )
    async with async_session() as session:
        yield session


@pytest.fixture(scope="function")
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    await reset_rate_limiter_state()

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    await reset_rate_limiter_state()


@pytest.fixture
def make_user(db_session: AsyncSession):
    async def _make_user(role: Role = Role.CUSTOMER, full_name: str = "Test User") -> User:
        user = User(
            email=f"user_{uuid.uuid4().hex[:10]}@example.com",
            full_name=full_name,
            role=role,
            is_active=True,
        )
        db_session.add(user)
        await db_session.commit()
        return user
    return _make_user


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user(role=Role.ADMIN, full_name="Admin User")


@pytest.fixture
def make_plan(db_session: AsyncSession):
    async def _make_plan(
        *,
        name: str = "Standard Monthly",
        time_unit: TimeUnit = TimeUnit.MONTH,
        duration: int = 1,
        plan_type: PlanType = PlanType.MONTHLY,
        price: str = "30000",
        default_time_slot: TimeSlot | None = None,
        requires_time_slot: bool = False,
        max_capacity: int | None = None,
        current_capacity: int = 0,
        is_custom: bool = False,
        start_datetime: datetime | None = None,
        end_datetime: datetime | None = None,
    ) -> Plan:
        plan = Plan(
            name=name,
            price=Decimal(price),
            time_unit=time_unit,
            duration=duration,
            plan_type=plan_type,
            default_time_slot=default_time_slot,
            requires_time_slot=requires_time_slot,
            max_capacity=max_capacity,
            current_capacity=current_capacity,
            is_custom=is_custom,
            is_active=True,
            start_datetime=start_datetime,
            end_datetime=end_datetime,
        )
        db_session.add(plan)
        await db_session.commit()
        return plan
    return _make_plan


@pytest.fixture
def make_subscription(db_session: AsyncSession):
    """Insert a subscription row directly, bypassing the lifecycle engine."""
    counter = {"value": 100000}

    async def _make_subscription(
        user: User,
        plan: Plan,
        *,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        start_date: datetime = BASE_NOW - timedelta(days=1),
        end_date: datetime = BASE_NOW + timedelta(days=29),
        grace_end_date: datetime | None = None,
        time_slot: TimeSlot | None = None,
        access_code: str | None = None,
    ) -> Subscription:
        counter["value"] += 1
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            access_code=access_code or str(counter["value"]),
            time_slot=time_slot,
            start_date=start_date,
            end_date=end_date,
            grace_end_date=grace_end_date,
            status=status,
            created_at=start_date,
        )
        db_session.add(subscription)
        await db_session.commit()
        await db_session.refresh(subscription)
        return subscription
    return _make_subscription
