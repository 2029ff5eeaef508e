"""
services/catalog/router.py
Classes and their scheduled sessions.

Reads are public. places_available is computed from the row at read time
and may already be stale when a visitor submits a reservation; the confirm
step is the only binding capacity check.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import queue_change_signal
from services.reservations import state_machine
from shared.exceptions import SessionHasEnrollments
from shared.middleware.auth import Authorize
from shared.models.models import (
    ClassSession,
    ReservationStatus,
    SessionReservation,
    SessionStatus,
    SwimClass,
    User,
)
from shared.schemas.schemas import (
    ClassCreateRequest,
    ClassResponse,
    MessageResponse,
    SessionCreateRequest,
    SessionResponse,
    SessionStatusUpdate,
)
from shared.utils.audit import log_admin_action
from shared.utils.dates import utcnow

router = APIRouter(tags=["Catalog"])


def _session_response(session: ClassSession, swim_class: Optional[SwimClass] = None) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        class_id=session.class_id,
        instructor_id=session.instructor_id,
        session_date=session.session_date,
        max_participants=session.max_participants,
        enrolled_students=session.enrolled_students,
        places_available=session.places_available,
        status=session.status.value,
        notes=session.notes,
        class_name=swim_class.name if swim_class else None,
        class_level=swim_class.level if swim_class else None,
    )


async def _get_session_or_404(db: AsyncSession, session_id: UUID) -> ClassSession:
    session = await db.get(ClassSession, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ── Classes ───────────────────────────────────────────────────

@router.post("/classes", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
async def create_class(
    data: ClassCreateRequest,
    request: Request,
    admin: User = Depends(Authorize("manage", "catalog")),
    db: AsyncSession = Depends(get_db),
):
    swim_class = SwimClass(**data.model_dump())
    db.add(swim_class)
    await db.flush()
    log_admin_action(db, admin, "CREATE_CLASS", "class", swim_class.id, {"name": data.name}, request)
    queue_change_signal(db, "classes", swim_class.id, "insert")
    await db.commit()
    return ClassResponse.model_validate(swim_class)


@router.get("/classes", response_model=List[ClassResponse])
async def list_classes(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    query = select(SwimClass).order_by(SwimClass.name)
    if active_only:
        query = query.where(SwimClass.is_active == True)
    result = await db.execute(query)
    return [ClassResponse.model_validate(c) for c in result.scalars()]


# ── Sessions ──────────────────────────────────────────────────

@router.post(
    "/classes/{class_id}/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def schedule_session(
    class_id: UUID,
    data: SessionCreateRequest,
    request: Request,
    admin: User = Depends(Authorize("manage", "catalog")),
    db: AsyncSession = Depends(get_db),
):
    swim_class = await db.get(SwimClass, class_id)
    if not swim_class:
        raise HTTPException(status_code=404, detail="Class not found")
    if not swim_class.is_active:
        raise HTTPException(status_code=400, detail="Class is not active")

    session = ClassSession(
        class_id=swim_class.id,
        instructor_id=data.instructor_id or swim_class.instructor_id,
        session_date=data.session_date,
        max_participants=data.max_participants,
        enrolled_students=0,
        status=SessionStatus.SCHEDULED,
        notes=data.notes,
    )
    db.add(session)
    await db.flush()

    log_admin_action(
        db,
        admin,
        "SCHEDULE_SESSION",
        "class_session",
        session.id,
        {"class_id": str(swim_class.id), "session_date": data.session_date.isoformat()},
        request,
    )
    queue_change_signal(db, "class_sessions", session.id, "insert")
    await db.commit()
    return _session_response(session, swim_class)


@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    class_id: Optional[UUID] = Query(None),
    include_past: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Upcoming sessions by default, earliest first."""
    query = (
        select(ClassSession, SwimClass)
        .join(SwimClass, SwimClass.id == ClassSession.class_id)
        .order_by(ClassSession.session_date)
    )
    if date_from:
        query = query.where(ClassSession.session_date >= date_from)
    elif not include_past:
        query = query.where(ClassSession.session_date >= utcnow())
    if date_to:
        query = query.where(ClassSession.session_date <= date_to)
    if class_id:
        query = query.where(ClassSession.class_id == class_id)

    result = await db.execute(query)
    return [_session_response(session, swim_class) for session, swim_class in result.all()]


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: UUID, db: AsyncSession = Depends(get_db)):
    session = await _get_session_or_404(db, session_id)
    swim_class = await db.get(SwimClass, session.class_id)
    return _session_response(session, swim_class)


@router.patch("/sessions/{session_id}/status", response_model=SessionResponse)
async def set_session_status(
    session_id: UUID,
    data: SessionStatusUpdate,
    request: Request,
    admin: User = Depends(Authorize("manage", "catalog")),
    db: AsyncSession = Depends(get_db),
):
    """Mark a session completed or cancelled. Scheduled is only ever the initial state."""
    session = await _get_session_or_404(db, session_id)
    new_status = SessionStatus(data.status)
    previous = session.status
    session.status = new_status

    log_admin_action(
        db,
        admin,
        "UPDATE_SESSION_STATUS",
        "class_session",
        session.id,
        {"from": previous.value, "to": new_status.value},
        request,
    )
    queue_change_signal(db, "class_sessions", session.id, "update")
    await db.commit()
    swim_class = await db.get(SwimClass, session.class_id)
    return _session_response(session, swim_class)


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def delete_session(
    session_id: UUID,
    request: Request,
    admin: User = Depends(Authorize("manage", "catalog")),
    db: AsyncSession = Depends(get_db),
):
    """
    Only sessions without confirmed reservations can be removed.
    Pending requests are rejected first so each one leaves a notification.
    """
    session = await _get_session_or_404(db, session_id)
    confirmed = await db.scalar(
        select(func.count(SessionReservation.id)).where(
            SessionReservation.class_session_id == session.id,
            SessionReservation.status == ReservationStatus.CONFIRMED,
        )
    )
    if confirmed:
        raise SessionHasEnrollments(confirmed_reservations=confirmed)

    pending = await db.scalars(
        select(SessionReservation.id).where(
            SessionReservation.class_session_id == session.id,
            SessionReservation.status == ReservationStatus.PENDING,
        )
    )
    rejected = []
    for reservation_id in list(pending):
        await state_machine.reject(db, reservation_id, admin, reason="Session deleted")
        rejected.append(str(reservation_id))

    log_admin_action(
        db,
        admin,
        "DELETE_SESSION",
        "class_session",
        session.id,
        {
            "class_id": str(session.class_id),
            "session_date": session.session_date.isoformat(),
            "rejected_reservations": rejected,
        },
        request,
    )
    await db.delete(session)
    queue_change_signal(db, "class_sessions", session_id, "delete")
    await db.commit()
    return MessageResponse(message="Session deleted")
