from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.core.dependencies import get_current_admin
from access_hub.core.responses import StandardResponse
from access_hub.database import get_db
from access_hub.models.enums import PlanType, TimeSlot, TimeUnit
from access_hub.models.user import User
from access_hub.services.plan_catalog_service import PlanCatalogService

router = APIRouter()


class PlanResponse(BaseModel):
    id: uuid.UUID
    name: str
    price: Decimal
    time_unit: TimeUnit
    duration: int
    plan_type: PlanType
    default_time_slot: TimeSlot | None = None
    requires_time_slot: bool = False
    max_capacity: int | None = None
    current_capacity: int
    is_custom: bool
    is_active: bool
    notes: str | None = None
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None

    class Config:
        from_attributes = True


class PlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    price: Decimal
    time_unit: str
    duration: int
    notes: str | None = None
    max_capacity: int | None = None
    default_time_slot: TimeSlot | None = None
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None


class PlanUpdate(BaseModel):
    name: str | None = None
    price: Decimal | None = None
    time_unit: str | None = None
    duration: int | None = None
    notes: str | None = None
    max_capacity: int | None = None
    default_time_slot: TimeSlot | None = None
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    is_active: bool | None = None


@router.get("", response_model=StandardResponse[list[PlanResponse]])
async def list_plans(db: Annotated[AsyncSession, Depends(get_db)]):
    plans = await PlanCatalogService.list_active_plans(db)
    return StandardResponse(data=[PlanResponse.model_validate(plan) for plan in plans])


@router.get("/grouped", response_model=StandardResponse[dict[str, list[PlanResponse]]])
async def list_plans_grouped(db: Annotated[AsyncSession, Depends(get_db)]):
    plans = await PlanCatalogService.list_active_plans(db)
    grouped = PlanCatalogService.group_by_unit(plans)
    return StandardResponse(
        data={unit: [PlanResponse.model_validate(plan) for plan in items] for unit, items in grouped.items()}
    )


@router.get("/{plan_id}", response_model=StandardResponse[PlanResponse])
async def get_plan(plan_id: uuid.UUID, db: Annotated[AsyncSession, Depends(get_db)]):
    plan = await PlanCatalogService.get_plan(db, plan_id)
    return StandardResponse(data=PlanResponse.model_validate(plan))


@router.post("", response_model=StandardResponse[PlanResponse], status_code=201)
async def create_plan(
    plan_data: PlanCreate,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    plan = await PlanCatalogService.create_plan(db, **plan_data.model_dump(), actor_id=admin.id)
    return StandardResponse(data=PlanResponse.model_validate(plan), message="Plan created")


@router.patch("/{plan_id}", response_model=StandardResponse[PlanResponse])
async def update_plan(
    plan_id: uuid.UUID,
    plan_data: PlanUpdate,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    patch: dict[str, Any] = plan_data.model_dump(exclude_unset=True)
    plan = await PlanCatalogService.update_plan(db, plan_id, patch, actor_id=admin.id)
    return StandardResponse(data=PlanResponse.model_validate(plan), message="Plan updated")


@router.delete("/{plan_id}", response_model=StandardResponse[PlanResponse])
async def deactivate_plan(
    plan_id: uuid.UUID,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    plan = await PlanCatalogService.deactivate_plan(db, plan_id, actor_id=admin.id)
    return StandardResponse(data=PlanResponse.model_validate(plan), message="Plan deactivated")
