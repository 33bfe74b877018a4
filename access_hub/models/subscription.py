import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from access_hub.database import Base
from access_hub.models.enums import TimeSlot
from access_hub.models.subscription_enums import PaymentMethod, PaymentStatus, SubscriptionStatus

_OPEN_STATUS_FILTER = "status IN ('PENDING', 'ACTIVE', 'IN_GRACE_PERIOD')"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one open subscription per user
        Index(
            "uq_subscriptions_open_user_id",
            "user_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_FILTER),
            sqlite_where=text(_OPEN_STATUS_FILTER),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("plans.id"), nullable=False, index=True)
    access_code: Mapped[str] = mapped_column(String(6), nullable=False, unique=True, index=True)
    qr_token: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    time_slot: Mapped[TimeSlot | None] = mapped_column(SAEnum(TimeSlot, native_enum=False), nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    grace_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[SubscriptionStatus] = mapped_column(
        SAEnum(SubscriptionStatus, native_enum=False), default=SubscriptionStatus.PENDING, nullable=False, index=True
    )
    payment_method: Mapped[PaymentMethod | None] = mapped_column(SAEnum(PaymentMethod, native_enum=False), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user = relationship("User", foreign_keys=[user_id], lazy="joined")
    plan = relationship("Plan", lazy="joined")


class PaymentReceipt(Base):
    __tablename__ = "payment_receipts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscriptions.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod, native_enum=False), default=PaymentMethod.CASH, nullable=False
    )
    receipt_url: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, native_enum=False), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    subscription = relationship("Subscription", lazy="joined")
