"""
services/payment/router.py
Payment history and admin confirmation of offline payments.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.payment.service import confirm_payment
from shared.middleware.auth import Authorize
from shared.models.models import Payment, PaymentStatus, User
from shared.schemas.schemas import (
    PaginatedResponse,
    PaymentConfirmRequest,
    PaymentResponse,
)

router = APIRouter(prefix="/payments", tags=["Payments"])


# ── Admin ─────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    user_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(Authorize("list", "payment")),
    db: AsyncSession = Depends(get_db),
):
    query = select(Payment)
    if status_filter:
        query = query.where(Payment.status == status_filter)
    if user_id:
        query = query.where(Payment.user_id == user_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(Payment.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaginatedResponse(
        items=[PaymentResponse.model_validate(p) for p in result.scalars()],
        total=total,
        page=page,
        page_size=page_size,
        pages=-(-total // page_size),
    )


@router.post("/{payment_id}/confirm", response_model=PaymentResponse)
async def confirm(
    payment_id: UUID,
    request: Request,
    data: PaymentConfirmRequest = PaymentConfirmRequest(),
    admin: User = Depends(Authorize("confirm", "payment")),
    db: AsyncSession = Depends(get_db),
):
    """Admin records receipt of a cash/MonCash/check payment."""
    payment = await confirm_payment(db, payment_id, admin, notes=data.notes, request=request)
    await db.commit()
    return PaymentResponse.model_validate(payment)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/me/history", response_model=list[PaymentResponse])
async def my_payment_history(
    current_user: User = Depends(Authorize("read", "payment")),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's payment history."""
    result = await db.execute(
        select(Payment)
        .where(Payment.user_id == current_user.id)
        .order_by(Payment.created_at.desc())
        .limit(50)
    )
    return [PaymentResponse.model_validate(p) for p in result.scalars().all()]
