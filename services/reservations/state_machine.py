"""
services/reservations/state_machine.py
Reservation lifecycle.

States: PENDING → CONFIRMED | CANCELLED (both terminal).

Creation only validates; seats and package credits move at confirmation,
inside one transaction that locks reservation → session → package in that
order. Counter writes are conditional UPDATEs in a SAVEPOINT, so a failed
confirm leaves the reservation pending and both counters untouched.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from prometheus_client import Counter
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import queue_change_signal
from services.notification.fanout import emit
from services.packages import ledger
from shared.exceptions import (
    AlreadyTerminal,
    SessionFull,
    SessionNotAvailable,
    Unauthorized,
)
from shared.middleware.auth import ensure_can_act_for
from shared.models.models import (
    ClassSession,
    NotificationType,
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
from shared.utils.dates import utcnow

logger = logging.getLogger(__name__)

TABLE = "session_reservations"

RESERVATION_TRANSITIONS = Counter(
    "reservation_transitions_total",
    "Reservation status transitions",
    ["to_status"],
)


# ── Helpers ───────────────────────────────────────────────────

async def _get_or_404(db: AsyncSession, model, entity_id: uuid.UUID, label: str, lock: bool = False):
    query = select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    entity = result.scalar_one_or_none()
    if not entity:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return entity


async def _class_name(db: AsyncSession, session: ClassSession) -> str:
    name = await db.scalar(select(SwimClass.name).where(SwimClass.id == session.class_id))
    return name or "class"


async def _log_status_change(
    db: AsyncSession,
    reservation: SessionReservation,
    from_status: Optional[ReservationStatus],
    to_status: ReservationStatus,
    changed_by: Optional[User],
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Append an immutable audit entry. changed_by=None marks a system sweep."""
    db.add(
        ReservationAuditLog(
            reservation_id=reservation.id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            changed_by_id=changed_by.id if changed_by else None,
            reason=reason,
            audit_metadata=metadata,
        )
    )
    RESERVATION_TRANSITIONS.labels(to_status=to_status.value).inc()


def _ensure_pending(reservation: SessionReservation) -> None:
    if reservation.is_terminal:
        raise AlreadyTerminal(
            f"Reservation is already {reservation.status.value}",
            status=reservation.status.value,
            reservation_id=str(reservation.id),
        )


# ── Create ────────────────────────────────────────────────────

async def create(
    db: AsyncSession,
    student: User,
    class_session_id: uuid.UUID,
    session_package_id: uuid.UUID,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SessionReservation:
    """
    Validate and insert a pending reservation. First failing check wins:
    session scheduled, seat left, package active, credit left, not expired.
    Neither enrolled_students nor used_sessions changes here.
    """
    now = now or utcnow()
    session = await _get_or_404(db, ClassSession, class_session_id, "Session")
    package = await _get_or_404(db, SessionPackage, session_package_id, "Package")

    if package.student_id != student.id:
        raise Unauthorized("Package does not belong to this student")

    if session.status != SessionStatus.SCHEDULED:
        raise SessionNotAvailable(session_status=session.status.value)
    # Advisory; the binding capacity check happens at confirm time
    if session.enrolled_students >= session.max_participants:
        raise SessionFull()
    ledger.reserve_slot(package, now)

    reservation = SessionReservation(
        student_id=student.id,
        class_session_id=session.id,
        session_package_id=package.id,
        status=ReservationStatus.PENDING,
        reservation_notes=notes,
    )
    db.add(reservation)
    await db.flush()

    await _log_status_change(db, reservation, None, ReservationStatus.PENDING, student)

    class_name = await _class_name(db, session)
    await emit(
        db,
        NotificationType.PENDING_RESERVATION,
        title="New reservation request",
        message=(
            f"{student.full_name} requested {class_name} on "
            f"{session.session_date:%Y-%m-%d %H:%M}"
        ),
        data={
            "reservation_id": reservation.id,
            "student_id": student.id,
            "class_session_id": session.id,
            "session_package_id": package.id,
        },
    )
    queue_change_signal(db, TABLE, reservation.id, "insert")
    logger.info(f"Reservation {reservation.id} created for session {session.id}")
    return reservation


# ── Confirm ───────────────────────────────────────────────────

async def _settle_payment(
    db: AsyncSession,
    reservation: SessionReservation,
    admin: User,
    payment_id: Optional[uuid.UUID],
    now: datetime,
) -> Optional[Payment]:
    """
    Mark the supplied payment, or the one linked to this reservation, as paid.
    A package bought with that payment is activated, as on the payments desk.
    """
    if payment_id is not None:
        payment = await _get_or_404(db, Payment, payment_id, "Payment", lock=True)
        if payment.user_id != reservation.student_id:
            raise Unauthorized("Payment belongs to another user")
    else:
        result = await db.execute(
            select(Payment)
            .where(
                Payment.reservation_id == reservation.id,
                Payment.status.in_([PaymentStatus.PENDING, PaymentStatus.OVERDUE]),
            )
            .with_for_update()
        )
        payment = result.scalars().first()
        if payment is None:
            return None

    if payment.status == PaymentStatus.PAID:
        return payment

    payment.status = PaymentStatus.PAID
    payment.paid_at = now
    payment.confirmed_by = admin.id
    if payment.reservation_id is None:
        payment.reservation_id = reservation.id
    queue_change_signal(db, "payments", payment.id, "update")

    if payment.session_package_id is not None:
        bought = await db.get(
            SessionPackage,
            payment.session_package_id,
            with_for_update=True,
            populate_existing=True,
        )
        if bought is not None:
            await ledger.activate(db, bought, now)
    return payment


async def confirm(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    admin: User,
    notes: Optional[str] = None,
    payment_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> SessionReservation:
    """
    Finalize a pending reservation: debit the package, take the seat, confirm.

    Any failure raises before the reservation changes, so it stays pending and
    the admin can retry or reject.
    """
    now = now or utcnow()

    # Lock order: reservation → session → package
    reservation = await _get_or_404(db, SessionReservation, reservation_id, "Reservation", lock=True)
    _ensure_pending(reservation)
    session = await _get_or_404(db, ClassSession, reservation.class_session_id, "Session", lock=True)
    package = await _get_or_404(db, SessionPackage, reservation.session_package_id, "Package", lock=True)

    if session.status != SessionStatus.SCHEDULED:
        raise SessionNotAvailable(session_status=session.status.value)
    if session.enrolled_students >= session.max_participants:
        raise SessionFull(status=reservation.status.value)

    async with db.begin_nested():
        await ledger.consume(db, package, now)
        seat = await db.execute(
            update(ClassSession)
            .where(
                ClassSession.id == session.id,
                ClassSession.status == SessionStatus.SCHEDULED,
                ClassSession.enrolled_students < ClassSession.max_participants,
            )
            .values(enrolled_students=ClassSession.enrolled_students + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if seat.rowcount != 1:
            raise SessionFull(status=reservation.status.value)

    await db.refresh(package)
    await db.refresh(session)

    reservation.status = ReservationStatus.CONFIRMED
    reservation.confirmed_at = now
    reservation.confirmed_by = admin.id
    reservation.confirmation_notes = notes

    payment = await _settle_payment(db, reservation, admin, payment_id, now)

    await _log_status_change(
        db,
        reservation,
        ReservationStatus.PENDING,
        ReservationStatus.CONFIRMED,
        admin,
        reason=notes,
        metadata={
            "used_sessions": package.used_sessions,
            "enrolled_students": session.enrolled_students,
            "payment_id": str(payment.id) if payment else None,
        },
    )
    await emit(
        db,
        NotificationType.RESERVATION_CONFIRMED,
        title="Reservation confirmed",
        message=f"Reservation confirmed by {admin.full_name}",
        data={
            "reservation_id": reservation.id,
            "student_id": reservation.student_id,
            "class_session_id": session.id,
            "remaining_sessions": ledger.remaining(package),
        },
    )
    queue_change_signal(db, TABLE, reservation.id, "update")
    queue_change_signal(db, "class_sessions", session.id, "update")
    await db.flush()

    logger.info(
        f"Reservation {reservation.id} confirmed by {admin.id}: "
        f"session {session.enrolled_students}/{session.max_participants}, "
        f"package {package.used_sessions}/{package.total_sessions}"
    )
    return reservation


# ── Cancel ────────────────────────────────────────────────────

async def reject(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    admin: User,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SessionReservation:
    """Admin cancels a pending reservation. No counters move."""
    now = now or utcnow()
    reservation = await _get_or_404(db, SessionReservation, reservation_id, "Reservation", lock=True)
    _ensure_pending(reservation)

    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_at = now
    reservation.admin_cancelled_at = now
    reservation.admin_cancelled_by = admin.id
    reservation.cancellation_reason = reason

    await _log_status_change(
        db, reservation, ReservationStatus.PENDING, ReservationStatus.CANCELLED, admin, reason=reason
    )
    await emit(
        db,
        NotificationType.RESERVATION_REJECTED,
        title="Reservation rejected",
        message=f"Reservation rejected by {admin.full_name}" + (f": {reason}" if reason else ""),
        data={
            "reservation_id": reservation.id,
            "student_id": reservation.student_id,
            "reason": reason,
        },
    )
    queue_change_signal(db, TABLE, reservation.id, "update")
    await db.flush()
    logger.info(f"Reservation {reservation.id} rejected by {admin.id}")
    return reservation


async def withdraw(
    db: AsyncSession,
    reservation_id: uuid.UUID,
    actor: User,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SessionReservation:
    """The student (or their parent) cancels their own pending request."""
    now = now or utcnow()
    reservation = await _get_or_404(db, SessionReservation, reservation_id, "Reservation", lock=True)
    await ensure_can_act_for(db, actor, reservation.student_id)
    _ensure_pending(reservation)

    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_at = now
    reservation.cancellation_reason = reason

    await _log_status_change(
        db, reservation, ReservationStatus.PENDING, ReservationStatus.CANCELLED, actor, reason=reason
    )
    await emit(
        db,
        NotificationType.RESERVATION_CANCELLED,
        title="Reservation withdrawn",
        message=f"{actor.full_name} withdrew a pending reservation",
        data={"reservation_id": reservation.id, "student_id": reservation.student_id},
    )
    queue_change_signal(db, TABLE, reservation.id, "update")
    await db.flush()
    return reservation


async def expire_stale(
    db: AsyncSession,
    timeout_hours: int,
    now: Optional[datetime] = None,
) -> int:
    """
    Auto-cancel pending reservations nobody acted on within timeout_hours.
    A timeout of 0 disables the sweep. Returns the number cancelled.
    """
    if timeout_hours <= 0:
        return 0

    now = now or utcnow()
    cutoff = now - timedelta(hours=timeout_hours)
    result = await db.execute(
        select(SessionReservation)
        .where(
            SessionReservation.status == ReservationStatus.PENDING,
            SessionReservation.created_at < cutoff,
        )
        .with_for_update(skip_locked=True)
    )
    stale = list(result.scalars())

    reason = f"No admin action within {timeout_hours} hours"
    for reservation in stale:
        reservation.status = ReservationStatus.CANCELLED
        reservation.cancelled_at = now
        reservation.cancellation_reason = reason
        await _log_status_change(
            db, reservation, ReservationStatus.PENDING, ReservationStatus.CANCELLED, None, reason=reason
        )
        await emit(
            db,
            NotificationType.RESERVATION_EXPIRED,
            title="Reservation expired",
            message=reason,
            data={"reservation_id": reservation.id, "student_id": reservation.student_id},
        )
        queue_change_signal(db, TABLE, reservation.id, "expired")

    await db.flush()
    if stale:
        logger.info(f"Expired {len(stale)} stale pending reservations")
    return len(stale)
