from datetime import datetime
from typing import Annotated
import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.config import settings
from access_hub.core.dependencies import get_current_admin
from access_hub.core.rate_limit import enforce_scan_rate_limit
from access_hub.core.responses import StandardResponse
from access_hub.database import get_db
from access_hub.models.enums import AccessAction, ValidationResult
from access_hub.models.user import User
from access_hub.services.access_service import AccessService
from access_hub.services.capacity_service import CapacityService

router = APIRouter()


class AccessValidateRequest(BaseModel):
    token: str = Field(min_length=1, max_length=2048)
    action: AccessAction
    scanner_location: str | None = Field(
        default=None, min_length=1, max_length=64, pattern=r"^[A-Za-z0-9][A-Za-z0-9._: -]*$"
    )


class AccessUserSummary(BaseModel):
    name: str | None = None
    plan: str


class AccessValidateResponse(BaseModel):
    validation_result: ValidationResult = Field(serialization_alias="validationResult")
    message: str
    user: AccessUserSummary | None = None


class AccessLogResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    subscription_id: uuid.UUID | None = None
    action: AccessAction
    validation_result: ValidationResult
    scanner_location: str | None = None
    timestamp: datetime

    class Config:
        from_attributes = True


class PlanCapacityResponse(BaseModel):
    id: uuid.UUID
    name: str
    max_capacity: int | None = None
    current_capacity: int


class CapacityResponse(BaseModel):
    facility_capacity: int
    total_current_occupancy: int
    plan_based_capacity: int
    breakdown: list[PlanCapacityResponse]


@router.post("/validate", response_model=StandardResponse[AccessValidateResponse], response_model_by_alias=True)
async def validate_access(
    scan: AccessValidateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await enforce_scan_rate_limit(
        scan.scanner_location or "default",
        limit=settings.SCAN_RATE_LIMIT_PER_MINUTE,
    )
    decision = await AccessService.validate_access(db, scan.token, scan.action, scan.scanner_location)
    user = None
    if decision.granted and decision.subscription is not None:
        user = AccessUserSummary(name=decision.user_name, plan=decision.plan_name)
    return StandardResponse(
        data=AccessValidateResponse(
            validation_result=decision.result,
            message=decision.message,
            user=user,
        ),
        message=decision.message,
        success=decision.granted,
    )


@router.get("/logs", response_model=StandardResponse[list[AccessLogResponse]])
async def recent_access_logs(
    _admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(default=100, ge=1, le=500),
):
    logs = await AccessService.recent_logs(db, limit=limit)
    return StandardResponse(data=[AccessLogResponse.model_validate(log) for log in logs])


@router.get("/capacity", response_model=StandardResponse[CapacityResponse])
async def capacity_snapshot(db: Annotated[AsyncSession, Depends(get_db)]):
    snapshot = await CapacityService.snapshot(db)
    return StandardResponse(data=CapacityResponse(**snapshot.__dict__))
