import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum as SAEnum, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from access_hub.database import Base
from access_hub.models.enums import PlanType, TimeSlot, TimeUnit

class Plan(Base):
    __tablename__ = "plans"
    __table_args__ = (
        CheckConstraint("duration > 0", name="ck_plans_duration_positive"),
        CheckConstraint("current_capacity >= 0", name="ck_plans_current_capacity_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    time_unit: Mapped[TimeUnit] = mapped_column(SAEnum(TimeUnit, native_enum=False), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    plan_type: Mapped[PlanType] = mapped_column(SAEnum(PlanType, native_enum=False), nullable=False)
    default_time_slot: Mapped[TimeSlot | None] = mapped_column(SAEnum(TimeSlot, native_enum=False), nullable=True)
    # Subscribers must pick a MORNING, AFTERNOON or NIGHT slot.
    requires_time_slot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Only mutated through CapacityService.
    current_capacity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Explicit access window, custom plans only
    start_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def has_explicit_window(self) -> bool:
        return self.is_custom and self.end_datetime is not None
