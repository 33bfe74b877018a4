import uuid
from datetime import datetime, timezone
from sqlalchemy import String, ForeignKey, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from access_hub.database import Base

class AuditLog(Base):
    """Admin decisions and sweeper runs. Scans are recorded in AccessLog instead."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True) # None for sweeper runs
    action: Mapped[str] = mapped_column(String, nullable=False, index=True) # e.g. "PAYMENT_APPROVED", "PLAN_UPDATED"
    target_id: Mapped[str | None] = mapped_column(String, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True
    )
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
