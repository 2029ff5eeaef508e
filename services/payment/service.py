"""
services/payment/service.py
Offline payments (cash, MonCash, check, card at the desk).
An admin records receipt; the linked package becomes usable at that point.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, Request
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import queue_change_signal
from services.notification.fanout import emit
from services.packages import ledger
from shared.models.models import (
    NotificationType,
    Payment,
    PaymentStatus,
    SessionPackage,
    User,
)
from shared.utils.audit import log_admin_action
from shared.utils.dates import utcnow

logger = logging.getLogger(__name__)

TABLE = "payments"


async def confirm_payment(
    db: AsyncSession,
    payment_id: uuid.UUID,
    admin: User,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
    now: Optional[datetime] = None,
) -> Payment:
    """pending | overdue → paid. Activates the package the payment was for."""
    now = now or utcnow()
    result = await db.execute(
        select(Payment)
        .where(Payment.id == payment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.status == PaymentStatus.PAID:
        raise HTTPException(status_code=409, detail="Payment is already confirmed")

    previous = payment.status
    payment.status = PaymentStatus.PAID
    payment.paid_at = now
    payment.confirmed_by = admin.id

    activated = False
    if payment.session_package_id:
        package = await db.get(
            SessionPackage, payment.session_package_id, with_for_update=True, populate_existing=True
        )
        if package:
            activated = await ledger.activate(db, package, now)

    log_admin_action(
        db,
        admin,
        "CONFIRM_PAYMENT",
        "payment",
        payment.id,
        payload={
            "previous_status": previous.value,
            "amount": str(payment.amount),
            "package_activated": activated,
            "notes": notes,
        },
        request=request,
    )
    await emit(
        db,
        NotificationType.PAYMENT_CONFIRMED,
        title="Payment received",
        message=f"{payment.amount} {payment.currency} by {payment.payment_method.value} confirmed",
        data={
            "payment_id": payment.id,
            "user_id": payment.user_id,
            "session_package_id": payment.session_package_id,
        },
    )
    queue_change_signal(db, TABLE, payment.id, "update")
    await db.flush()

    logger.info(f"Payment {payment.id} confirmed by {admin.id}")
    return payment


async def mark_overdue(
    db: AsyncSession,
    overdue_days: int,
    now: Optional[datetime] = None,
) -> int:
    """
    Pending payments older than overdue_days become overdue. Returns the count.

    Rows an admin is confirming right now are locked and skipped; the flip
    itself only lands on rows still pending, so a payment confirmed after the
    scan stays paid.
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=overdue_days)
    result = await db.execute(
        select(Payment)
        .where(
            Payment.status == PaymentStatus.PENDING,
            Payment.created_at < cutoff,
        )
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )
    payments = list(result.scalars())

    marked = 0
    for payment in payments:
        flipped = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.OVERDUE, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            continue
        marked += 1
        await emit(
            db,
            NotificationType.PAYMENT_OVERDUE,
            title="Payment overdue",
            message=f"{payment.amount} {payment.currency} unpaid for more than {overdue_days} days",
            data={"payment_id": payment.id, "user_id": payment.user_id},
        )
        queue_change_signal(db, TABLE, payment.id, "overdue")

    await db.flush()
    if marked:
        logger.info(f"Marked {marked} payments overdue")
    return marked
