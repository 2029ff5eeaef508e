"""
services/reservations/router.py
Reservation endpoints. Workflow rules live in state_machine.py;
domain failures surface as {"success": false, "error": <code>, ...}.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.reservations import state_machine
from shared.middleware.auth import Authorize, ensure_can_act_for
from shared.models.models import ReservationStatus, SessionReservation, User
from shared.schemas.schemas import (
    PaginatedResponse,
    ReservationActionResponse,
    ReservationConfirmRequest,
    ReservationCreateRequest,
    ReservationRejectRequest,
    ReservationResponse,
)

router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreateRequest,
    current_user: User = Depends(Authorize("create", "reservation")),
    db: AsyncSession = Depends(get_db),
):
    """
    Request a seat in a session, paid from a package.
    Parents may book for a linked child by passing student_id.
    """
    student = await ensure_can_act_for(db, current_user, data.student_id)
    reservation = await state_machine.create(
        db,
        student,
        data.class_session_id,
        data.session_package_id,
        notes=data.notes,
    )
    await db.commit()
    return ReservationResponse.model_validate(reservation)


@router.get("/me", response_model=PaginatedResponse)
async def my_reservations(
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(Authorize("read", "reservation")),
    db: AsyncSession = Depends(get_db),
):
    student = await ensure_can_act_for(db, current_user, student_id)
    query = select(SessionReservation).where(SessionReservation.student_id == student.id)
    if status_filter:
        query = query.where(SessionReservation.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    query = (
        query.order_by(SessionReservation.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)

    return PaginatedResponse(
        items=[ReservationResponse.model_validate(r) for r in result.scalars()],
        total=total or 0,
        page=page,
        page_size=page_size,
        pages=((total or 0) + page_size - 1) // page_size,
    )


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    current_user: User = Depends(Authorize("read", "reservation")),
    db: AsyncSession = Depends(get_db),
):
    reservation = await db.get(SessionReservation, reservation_id)
    if not reservation:
        raise HTTPException(status_code=404, detail="Reservation not found")
    await ensure_can_act_for(db, current_user, reservation.student_id)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/confirm", response_model=ReservationActionResponse)
async def confirm_reservation(
    reservation_id: UUID,
    data: ReservationConfirmRequest = ReservationConfirmRequest(),
    admin: User = Depends(Authorize("confirm", "reservation")),
    db: AsyncSession = Depends(get_db),
):
    """Admin: debit the package, take the seat, mark confirmed. All or nothing."""
    reservation = await state_machine.confirm(
        db, reservation_id, admin, notes=data.notes, payment_id=data.payment_id
    )
    await db.commit()
    return ReservationActionResponse(
        success=True,
        reservation_id=reservation.id,
        status=reservation.status.value,
    )


@router.post("/{reservation_id}/reject", response_model=ReservationActionResponse)
async def reject_reservation(
    reservation_id: UUID,
    data: ReservationRejectRequest = ReservationRejectRequest(),
    admin: User = Depends(Authorize("reject", "reservation")),
    db: AsyncSession = Depends(get_db),
):
    reservation = await state_machine.reject(db, reservation_id, admin, reason=data.reason)
    await db.commit()
    return ReservationActionResponse(
        success=True,
        reservation_id=reservation.id,
        status=reservation.status.value,
    )


@router.post("/{reservation_id}/withdraw", response_model=ReservationActionResponse)
async def withdraw_reservation(
    reservation_id: UUID,
    data: ReservationRejectRequest = ReservationRejectRequest(),
    current_user: User = Depends(Authorize("withdraw", "reservation")),
    db: AsyncSession = Depends(get_db),
):
    """Student or parent withdraws their own pending request."""
    reservation = await state_machine.withdraw(db, reservation_id, current_user, reason=data.reason)
    await db.commit()
    return ReservationActionResponse(
        success=True,
        reservation_id=reservation.id,
        status=reservation.status.value,
    )
