from datetime import datetime
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.models.audit import AuditLog
from access_hub.services.timezone_service import utcnow


class AuditService:
    @staticmethod
    async def log_action(
        db: AsyncSession,
        user_id: uuid.UUID | None,
        action: str,
        target_id: str | None = None,
        details: str | None = None,
        timestamp: datetime | None = None,
    ) -> AuditLog:
        """Stage an audit row in the caller's transaction; it persists only with the audited change."""
        entry = AuditLog(
            user_id=user_id,
            action=action,
            target_id=target_id,
            details=details,
            timestamp=timestamp or utcnow(),
        )
        db.add(entry)
        return entry

    @staticmethod
    async def recent(db: AsyncSession, action: str | None = None, limit: int = 100) -> list[AuditLog]:
        stmt = select(AuditLog).order_by(AuditLog.timestamp.desc()).limit(limit)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        result = await db.execute(stmt)
        return list(result.scalars().all())
