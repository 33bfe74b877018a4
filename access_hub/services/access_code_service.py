import logging
import secrets
import uuid

from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.core.exceptions import ConflictError
from access_hub.models.subscription import Subscription

logger = logging.getLogger(__name__)

ACCESS_CODE_MIN = 100000
ACCESS_CODE_MAX = 999999
QR_TOKEN_TYPE = "qr_access"


def _qr_signing_key() -> str:
    return settings.QR_SIGNING_KEY or settings.SECRET_KEY


def is_access_code(value: str) -> bool:
    return len(value) == 6 and value.isdigit()


class AccessCodeService:
    @staticmethod
    def random_code() -> str:
        return str(ACCESS_CODE_MIN + secrets.randbelow(ACCESS_CODE_MAX - ACCESS_CODE_MIN + 1))

    @staticmethod
    async def code_in_use(db: AsyncSession, code: str) -> bool:
        result = await db.execute(select(Subscription.id).where(Subscription.access_code == code).limit(1))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def generate_unique_code(db: AsyncSession) -> str:
        """Draw codes until one is free against the current table state."""
        for attempt in range(1, settings.ACCESS_CODE_MAX_ATTEMPTS + 1):
            code = AccessCodeService.random_code()
            if not await AccessCodeService.code_in_use(db, code):
                return code
            logger.info("Access code collision on attempt %s", attempt)
        raise ConflictError("Could not allocate a unique access code")

    @staticmethod
    def generate_qr_token(subscription_id: uuid.UUID) -> str:
        """Signed, non-expiring token bound to one subscription. Scanners treat it as opaque."""
        to_encode = {"sub": str(subscription_id), "type": QR_TOKEN_TYPE, "jti": uuid.uuid4().hex}
        return jwt.encode(to_encode, _qr_signing_key(), algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_qr_token(token: str) -> uuid.UUID | None:
        try:
            payload = jwt.decode(token, _qr_signing_key(), algorithms=[settings.ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != QR_TOKEN_TYPE or not payload.get("sub"):
            return None
        try:
            return uuid.UUID(payload["sub"])
        except ValueError:
            return None
