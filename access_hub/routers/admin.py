from datetime import datetime
from typing import Annotated
import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from access_hub.core.dependencies import get_current_admin
from access_hub.core.responses import StandardResponse
from access_hub.database import get_db
from access_hub.models.user import User
from access_hub.routers.subscriptions import ReceiptResponse, SubscriptionResponse
from access_hub.services.audit_service import AuditService
from access_hub.services.capacity_service import CapacityService
from access_hub.services.expiration_sweeper import ExpirationSweeper
from access_hub.services.subscription_lifecycle_service import SubscriptionLifecycleService

router = APIRouter()


class PaymentDecision(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class PendingPaymentResponse(ReceiptResponse):
    user_id: uuid.UUID
    user_name: str | None = None
    plan_name: str
    access_code: str


class ReconcileResponse(BaseModel):
    plan_id: uuid.UUID
    current_capacity: int


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    action: str
    target_id: str | None = None
    details: str | None = None
    timestamp: datetime

    class Config:
        from_attributes = True


@router.get("/payments/pending", response_model=StandardResponse[list[PendingPaymentResponse]])
async def list_pending_payments(
    _admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    receipts = await SubscriptionLifecycleService.list_pending_payments(db)
    return StandardResponse(
        data=[
            PendingPaymentResponse(
                **ReceiptResponse.model_validate(receipt).model_dump(),
                user_id=receipt.subscription.user_id,
                user_name=receipt.subscription.user.full_name,
                plan_name=receipt.subscription.plan.name,
                access_code=receipt.subscription.access_code,
            )
            for receipt in receipts
        ]
    )


@router.put("/payments/{receipt_id}/approve", response_model=StandardResponse[SubscriptionResponse])
async def approve_payment(
    receipt_id: uuid.UUID,
    decision: PaymentDecision,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    subscription = await SubscriptionLifecycleService.approve_payment(db, receipt_id, admin.id, decision.notes)
    return StandardResponse(
        data=SubscriptionResponse.model_validate(subscription),
        message="Payment approved and subscription activated",
    )


@router.put("/payments/{receipt_id}/reject", response_model=StandardResponse[ReceiptResponse])
async def reject_payment(
    receipt_id: uuid.UUID,
    decision: PaymentDecision,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    receipt = await SubscriptionLifecycleService.reject_payment(db, receipt_id, admin.id, decision.notes)
    return StandardResponse(data=ReceiptResponse.model_validate(receipt), message="Payment rejected")


@router.post("/sweeper/run", response_model=StandardResponse[dict])
async def run_sweeper(
    _admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    summary = await ExpirationSweeper.run_guarded(db, reason="manual")
    return StandardResponse(data=summary.__dict__, message="Sweep skipped" if summary.skipped else "Sweep complete")


@router.post("/maintenance/run", response_model=StandardResponse[dict])
async def run_maintenance(
    _admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    summary = await ExpirationSweeper.run_guarded(db, maintenance=True, reason="manual_maintenance")
    return StandardResponse(
        data=summary.__dict__,
        message="Maintenance skipped" if summary.skipped else "Maintenance complete",
    )


@router.get("/sweeper/status", response_model=StandardResponse[dict])
async def sweeper_status(_admin: Annotated[User, Depends(get_current_admin)]):
    return StandardResponse(data=ExpirationSweeper.status())


@router.post("/plans/{plan_id}/reconcile", response_model=StandardResponse[ReconcileResponse])
async def reconcile_plan(
    plan_id: uuid.UUID,
    _admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    current = await CapacityService.reconcile(db, plan_id)
    return StandardResponse(data=ReconcileResponse(plan_id=plan_id, current_capacity=current))


@router.get("/audit", response_model=StandardResponse[list[AuditLogResponse]])
async def list_audit_logs(
    _admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    action: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
):
    entries = await AuditService.recent(db, action=action, limit=limit)
    return StandardResponse(data=[AuditLogResponse.model_validate(entry) for entry in entries])
