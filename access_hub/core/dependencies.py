"""Caller identity for the HTTP layer.

Authentication happens upstream; the gateway forwards the acting user's id in
``X-User-Id``. These dependencies only resolve that id and check its role.
"""
from typing import Annotated, List
import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.database import get_db
from access_hub.models.enums import Role
from access_hub.models.user import ADMIN_ROLES, User


async def get_current_user(
    x_user_id: Annotated[uuid.UUID, Header()],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    user = await db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    return user


class RoleChecker:
    def __init__(self, allowed_roles: List[Role]):
        self.allowed_roles = allowed_roles

    def __call__(self, user: Annotated[User, Depends(get_current_user)]):
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted"
            )
        return user


get_current_admin = RoleChecker(list(ADMIN_ROLES))
