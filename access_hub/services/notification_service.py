from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import uuid

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.models.notification import NotificationLog
from access_hub.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    status: str
    provider_message_id: str | None = None
    error_message: str | None = None


class NotificationProvider:
    async def send(self, user: User, event_type: str, message: str) -> SendResult:
        raise NotImplementedError


class InAppNotificationProvider(NotificationProvider):
    """The NotificationLog row is the in-app inbox; delivery is the write itself."""

    async def send(self, user: User, event_type: str, message: str) -> SendResult:
        if not settings.NOTIFICATIONS_ENABLED:
            return SendResult(status="SKIPPED", error_message="Notifications disabled")
        return SendResult(status="SENT", provider_message_id="in-app")


class WebhookNotificationProvider(NotificationProvider):
    async def send(self, user: User, event_type: str, message: str) -> SendResult:
        if not settings.NOTIFICATIONS_ENABLED:
            return SendResult(status="SKIPPED", error_message="Notifications disabled")
        if not settings.NOTIFICATION_WEBHOOK_URL:
            return SendResult(status="FAILED", error_message="Missing notification webhook configuration")

        payload = {
            "user_id": str(user.id),
            "email": user.email,
            "phone_number": user.phone_number,
            "event_type": event_type,
            "message": message,
        }
        headers = {}
        if settings.NOTIFICATION_WEBHOOK_TOKEN:
            headers["Authorization"] = f"Bearer {settings.NOTIFICATION_WEBHOOK_TOKEN}"
        try:
            async with httpx.AsyncClient(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS) as client:
                response = await client.post(settings.NOTIFICATION_WEBHOOK_URL, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            return SendResult(status="FAILED", error_message=str(exc))
        if response.status_code >= 400:
            return SendResult(status="FAILED", error_message=f"HTTP {response.status_code}")

        response_data = response.json() if response.content else {}
        return SendResult(status="SENT", provider_message_id=str(response_data.get("message_id", "webhook")))


def _get_provider() -> NotificationProvider:
    if settings.NOTIFICATION_PROVIDER.lower() == "http":
        return WebhookNotificationProvider()
    return InAppNotificationProvider()


class NotificationService:
    @staticmethod
    async def notify(
        *,
        db: AsyncSession,
        user: User,
        event_type: str,
        template_key: str,
        message: str,
        subscription_id: uuid.UUID | None = None,
        idempotency_key: str | None = None,
    ) -> NotificationLog:
        """Record and deliver one notification, committing the log row.

        Without an idempotency key every call delivers; the sweeper relies on this.
        """
        if idempotency_key:
            existing = await db.execute(
                select(NotificationLog).where(NotificationLog.idempotency_key == idempotency_key)
            )
            existing_log = existing.scalar_one_or_none()
            if existing_log:
                return existing_log

        log = NotificationLog(
            user_id=user.id,
            subscription_id=subscription_id,
            event_type=event_type,
            template_key=template_key,
            message=message,
            idempotency_key=idempotency_key,
            status="QUEUED",
        )
        db.add(log)
        await db.flush()

        result = await _get_provider().send(user, event_type, message)
        now = datetime.now(timezone.utc)
        if result.status == "SENT":
            log.status = "SENT"
            log.provider_message_id = result.provider_message_id
            log.sent_at = now
        else:
            log.status = result.status
            log.error_message = result.error_message
            log.failed_at = now
            logger.warning("Notification %s for user %s not delivered: %s", event_type, user.id, result.error_message)

        await db.commit()
        return log
