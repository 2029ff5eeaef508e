"""
services/admin/router.py
Admin read projections: pending reservation queue, dashboard counters,
and the immutable audit log.

Mutations live with their own services (reservations, payments, catalog)
and write AdminAuditLog there.
"""

from datetime import timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import Authorize
from shared.models.models import (
    AdminAuditLog,
    AdminNotification,
    ClassSession,
    PackageStatus,
    Payment,
    PaymentStatus,
    ReservationAuditLog,
    ReservationStatus,
    SessionPackage,
    SessionReservation,
    SessionStatus,
    SwimClass,
    User,
)
from shared.schemas.schemas import AdminDashboardResponse, PendingReservationItem
from shared.utils.dates import utcnow

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Reservation Queue ─────────────────────────────────────────

@router.get("/reservations/pending", response_model=List[PendingReservationItem])
async def get_pending_reservations(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(Authorize("list", "pending_reservations")),
    db: AsyncSession = Depends(get_db),
):
    """
    Pending reservations, oldest first (FIFO queue), joined with
    student name, class, session date and the package paying for it.
    """
    query = (
        select(SessionReservation, User, ClassSession, SwimClass, SessionPackage)
        .join(User, User.id == SessionReservation.student_id)
        .join(ClassSession, ClassSession.id == SessionReservation.class_session_id)
        .join(SwimClass, SwimClass.id == ClassSession.class_id)
        .join(SessionPackage, SessionPackage.id == SessionReservation.session_package_id)
        .where(SessionReservation.status == ReservationStatus.PENDING)
        .order_by(SessionReservation.created_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)

    return [
        PendingReservationItem(
            id=reservation.id,
            created_at=reservation.created_at,
            student_id=student.id,
            student_name=student.full_name,
            class_name=swim_class.name,
            session_id=session.id,
            session_date=session.session_date,
            places_available=session.places_available,
            package_id=package.id,
            package_type=package.package_type.value,
            price_per_session=package.price_per_session,
            remaining_sessions=package.remaining_sessions,
            notes=reservation.reservation_notes,
        )
        for reservation, student, session, swim_class, package in result.all()
    ]


# ── Dashboard ─────────────────────────────────────────────────

@router.get("/dashboard", response_model=AdminDashboardResponse)
async def get_dashboard(
    current_user: User = Depends(Authorize("read", "dashboard")),
    db: AsyncSession = Depends(get_db),
):
    """Counters for the admin home screen. Clients refresh on change-stream signals."""
    now = utcnow()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    pending_reservations = await db.scalar(
        select(func.count(SessionReservation.id))
        .where(SessionReservation.status == ReservationStatus.PENDING)
    )
    confirmed_today = await db.scalar(
        select(func.count(SessionReservation.id)).where(
            SessionReservation.status == ReservationStatus.CONFIRMED,
            SessionReservation.confirmed_at >= today_start,
        )
    )
    pending_payments = await db.scalar(
        select(func.count(Payment.id)).where(Payment.status == PaymentStatus.PENDING)
    )
    overdue_payments = await db.scalar(
        select(func.count(Payment.id)).where(Payment.status == PaymentStatus.OVERDUE)
    )
    active_packages = await db.scalar(
        select(func.count(SessionPackage.id)).where(SessionPackage.status == PackageStatus.ACTIVE)
    )
    upcoming_sessions = await db.scalar(
        select(func.count(ClassSession.id)).where(
            ClassSession.status == SessionStatus.SCHEDULED,
            ClassSession.session_date >= now,
            ClassSession.session_date < now + timedelta(days=7),
        )
    )
    revenue_total = await db.scalar(
        select(func.sum(Payment.amount)).where(Payment.status == PaymentStatus.PAID)
    )
    revenue_today = await db.scalar(
        select(func.sum(Payment.amount)).where(
            Payment.status == PaymentStatus.PAID,
            Payment.paid_at >= today_start,
        )
    )
    unread = await db.scalar(
        select(func.count(AdminNotification.id)).where(AdminNotification.read_at.is_(None))
    )

    return AdminDashboardResponse(
        pending_reservations=pending_reservations or 0,
        confirmed_reservations_today=confirmed_today or 0,
        pending_payments=pending_payments or 0,
        overdue_payments=overdue_payments or 0,
        active_packages=active_packages or 0,
        upcoming_sessions=upcoming_sessions or 0,
        revenue_total=Decimal(str(revenue_total or 0)),
        revenue_today=Decimal(str(revenue_today or 0)),
        unread_notifications=unread or 0,
    )


# ── Audit Logs ────────────────────────────────────────────────

@router.get("/audit-log")
async def get_audit_log(
    action: Optional[str] = Query(None, description="Filter by action e.g. CONFIRM_PAYMENT"),
    entity_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(Authorize("read", "audit_log")),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, newest first."""
    query = select(AdminAuditLog, User).join(User, User.id == AdminAuditLog.admin_id)
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return {
        "items": [
            {
                "id": str(entry.id),
                "admin_name": admin.full_name,
                "admin_email": admin.email,
                "action": entry.action,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "payload": entry.payload,
                "ip_address": entry.ip_address,
                "created_at": entry.created_at.isoformat(),
            }
            for entry, admin in result.all()
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/reservations/{reservation_id}/history")
async def get_reservation_history(
    reservation_id: UUID,
    current_user: User = Depends(Authorize("list", "pending_reservations")),
    db: AsyncSession = Depends(get_db),
):
    """Status transitions of one reservation, oldest first. A null actor is the expiry sweep."""
    result = await db.execute(
        select(ReservationAuditLog)
        .where(ReservationAuditLog.reservation_id == reservation_id)
        .order_by(ReservationAuditLog.created_at.asc())
    )
    return [
        {
            "from_status": entry.from_status,
            "to_status": entry.to_status,
            "changed_by_id": str(entry.changed_by_id) if entry.changed_by_id else None,
            "reason": entry.reason,
            "metadata": entry.audit_metadata,
            "created_at": entry.created_at.isoformat(),
        }
        for entry in result.scalars()
    ]
