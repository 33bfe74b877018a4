import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Enum as SAEnum, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from access_hub.database import Base
from access_hub.models.enums import Role

ADMIN_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


class User(Base):
    """Subscription holder or staff member. Credentials live with the upstream identity provider."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String, nullable=True)
    # Delivery target for the webhook notification provider
    phone_number: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[Role] = mapped_column(SAEnum(Role, native_enum=False), default=Role.CUSTOMER, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.is_active and self.role in ADMIN_ROLES
