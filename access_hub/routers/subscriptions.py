from datetime import date, datetime
from decimal import Decimal
from typing import Annotated
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.core.dependencies import get_current_admin
from access_hub.core.responses import StandardResponse
from access_hub.database import get_db
from access_hub.models.enums import TimeSlot
from access_hub.models.subscription_enums import PaymentMethod, PaymentStatus, SubscriptionStatus
from access_hub.models.user import User
from access_hub.services.subscription_lifecycle_service import SubscriptionLifecycleService

router = APIRouter()


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    access_code: str
    time_slot: TimeSlot | None = None
    start_date: datetime
    end_date: datetime
    grace_end_date: datetime | None = None
    status: SubscriptionStatus
    payment_method: PaymentMethod | None = None
    approved_at: datetime | None = None
    approved_by: uuid.UUID | None = None
    admin_notes: str | None = None

    class Config:
        from_attributes = True


class SubscriptionDetailResponse(SubscriptionResponse):
    user_name: str | None = None
    plan_name: str


class SubscriptionCreate(BaseModel):
    user_id: uuid.UUID
    plan_id: uuid.UUID
    start_date: date | datetime = Field(union_mode="left_to_right")
    time_slot: TimeSlot | None = None
    payment_method: PaymentMethod | None = None
    admin_notes: str | None = None


class ReceiptCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    receipt_url: str | None = Field(default=None, max_length=2048)


class ReceiptResponse(BaseModel):
    id: uuid.UUID
    subscription_id: uuid.UUID
    amount: Decimal
    payment_method: PaymentMethod
    receipt_url: str | None = None
    status: PaymentStatus
    uploaded_at: datetime
    processed_at: datetime | None = None
    admin_notes: str | None = None

    class Config:
        from_attributes = True


class QRCodeResponse(BaseModel):
    subscription_id: uuid.UUID
    qr_token: str


def _detail(subscription) -> SubscriptionDetailResponse:
    return SubscriptionDetailResponse(
        **SubscriptionResponse.model_validate(subscription).model_dump(),
        user_name=subscription.user.full_name,
        plan_name=subscription.plan.name,
    )


@router.post("", response_model=StandardResponse[SubscriptionResponse], status_code=201)
async def create_subscription(
    payload: SubscriptionCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    subscription = await SubscriptionLifecycleService.create_subscription(db, **payload.model_dump())
    return StandardResponse(
        data=SubscriptionResponse.model_validate(subscription),
        message="Subscription created. Submit a payment receipt to activate it.",
    )


@router.post("/direct", response_model=StandardResponse[SubscriptionResponse], status_code=201)
async def create_active_subscription(
    payload: SubscriptionCreate,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    subscription = await SubscriptionLifecycleService.create_subscription(
        db, **payload.model_dump(), activate_by=admin.id
    )
    return StandardResponse(
        data=SubscriptionResponse.model_validate(subscription),
        message="Subscription created and activated",
    )


@router.get("/by-code/{access_code}", response_model=StandardResponse[SubscriptionDetailResponse])
async def get_subscription_by_code(
    access_code: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    subscription = await SubscriptionLifecycleService.get_by_access_code(db, access_code)
    return StandardResponse(data=_detail(subscription))


@router.get("/user/{user_id}", response_model=StandardResponse[list[SubscriptionResponse]])
async def list_user_subscriptions(
    user_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    subscriptions = await SubscriptionLifecycleService.list_user_subscriptions(db, user_id)
    return StandardResponse(data=[SubscriptionResponse.model_validate(sub) for sub in subscriptions])


@router.get("/{subscription_id}", response_model=StandardResponse[SubscriptionDetailResponse])
async def get_subscription(
    subscription_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    subscription = await SubscriptionLifecycleService.get_subscription(db, subscription_id)
    return StandardResponse(data=_detail(subscription))


@router.post("/{subscription_id}/receipts", response_model=StandardResponse[ReceiptResponse], status_code=201)
async def submit_receipt(
    subscription_id: uuid.UUID,
    payload: ReceiptCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    receipt = await SubscriptionLifecycleService.submit_payment_receipt(
        db,
        subscription_id=subscription_id,
        amount=payload.amount,
        payment_method=payload.payment_method,
        receipt_url=payload.receipt_url,
    )
    return StandardResponse(data=ReceiptResponse.model_validate(receipt), message="Receipt submitted for review")


@router.post("/{subscription_id}/renew", response_model=StandardResponse[SubscriptionResponse], status_code=201)
async def renew_subscription(
    subscription_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    renewed = await SubscriptionLifecycleService.renew_subscription(db, subscription_id)
    return StandardResponse(
        data=SubscriptionResponse.model_validate(renewed),
        message="Renewal created. Submit a payment receipt to activate it.",
    )


@router.get("/{subscription_id}/qr", response_model=StandardResponse[QRCodeResponse])
async def get_qr_code(
    subscription_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    token = await SubscriptionLifecycleService.issue_qr_token(db, subscription_id)
    return StandardResponse(data=QRCodeResponse(subscription_id=subscription_id, qr_token=token))
