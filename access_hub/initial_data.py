import asyncio
import logging
from decimal import Decimal

from sqlalchemy import select

from access_hub.database import AsyncSessionLocal
from access_hub.models.enums import PlanType, Role, TimeSlot, TimeUnit
from access_hub.models.plan import Plan
from access_hub.models.user import User

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# System catalog. These rows are immutable through the plan API.
SYSTEM_PLANS = [
    # Daily
    {"name": "Morning Plan (Daily)", "price": "2000", "time_unit": TimeUnit.DAYS, "default_time_slot": TimeSlot.MORNING},
    {"name": "Afternoon Plan (Daily)", "price": "3000", "time_unit": TimeUnit.DAYS, "default_time_slot": TimeSlot.AFTERNOON},
    {"name": "Night Plan (Daily)", "price": "5000", "time_unit": TimeUnit.DAYS, "default_time_slot": TimeSlot.NIGHT},
    # Weekly
    {"name": "Morning Plan (Weekly)", "price": "8000", "time_unit": TimeUnit.WEEK, "default_time_slot": TimeSlot.MORNING},
    {"name": "Afternoon Plan (Weekly)", "price": "12000", "time_unit": TimeUnit.WEEK, "default_time_slot": TimeSlot.AFTERNOON},
    {"name": "Night Plan (Weekly)", "price": "20000", "time_unit": TimeUnit.WEEK, "default_time_slot": TimeSlot.NIGHT},
    # Monthly
    {"name": "Standard Monthly", "price": "30000", "time_unit": TimeUnit.MONTH, "default_time_slot": None, "requires_time_slot": True},
    {"name": "Premium Monthly", "price": "40000", "time_unit": TimeUnit.MONTH, "default_time_slot": TimeSlot.ALL},
]

PLAN_TYPES = {
    TimeUnit.DAYS: PlanType.DAILY,
    TimeUnit.WEEK: PlanType.WEEKLY,
    TimeUnit.MONTH: PlanType.MONTHLY,
}

USERS = [
    {
        "email": "admin@access-hub.local",
        "full_name": "System Administrator",
        "role": Role.SUPER_ADMIN,
    },
]


async def seed_data():
    async with AsyncSessionLocal() as session:
        for user_data in USERS:
            result = await session.execute(select(User).where(User.email == user_data["email"]))
            if result.scalar_one_or_none():
                logger.info("User already exists: %s", user_data["email"])
                continue
            session.add(User(is_active=True, **user_data))
            logger.info("Created user: %s", user_data["email"])

        for plan_data in SYSTEM_PLANS:
            result = await session.execute(
                select(Plan).where(Plan.name == plan_data["name"], Plan.is_custom.is_(False))
            )
            if result.scalar_one_or_none():
                logger.info("Plan already exists: %s", plan_data["name"])
                continue
            session.add(
                Plan(
                    name=plan_data["name"],
                    price=Decimal(plan_data["price"]),
                    time_unit=plan_data["time_unit"],
                    duration=1,
                    plan_type=PLAN_TYPES[plan_data["time_unit"]],
                    default_time_slot=plan_data["default_time_slot"],
                    requires_time_slot=plan_data.get("requires_time_slot", False),
                    max_capacity=None,
                    current_capacity=0,
                    is_custom=False,
                    is_active=True,
                )
            )
            logger.info("Created plan: %s", plan_data["name"])

        await session.commit()
    logger.info("Seeding complete.")


if __name__ == "__main__":
    asyncio.run(seed_data())
