import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Enum as SAEnum, ForeignKey, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from access_hub.database import Base
from access_hub.models.enums import AccessAction, ValidationResult

class AccessLog(Base):
    """Append-only scan record. Unknown tokens are logged with null user and subscription."""

    __tablename__ = "access_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("subscriptions.id"), nullable=True, index=True)
    action: Mapped[AccessAction] = mapped_column(SAEnum(AccessAction, native_enum=False), nullable=False)
    validation_result: Mapped[ValidationResult] = mapped_column(SAEnum(ValidationResult, native_enum=False), nullable=False)
    scanner_location: Mapped[str | None] = mapped_column(String, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    # Per-subscription scan counter; orders scans that share a timestamp.
    scan_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    user = relationship("User")
