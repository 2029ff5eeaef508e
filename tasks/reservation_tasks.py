"""
tasks/reservation_tasks.py
Periodic sweeps over reservations and packages.

All tasks are idempotent: a second run finds nothing left to change.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.packages import ledger
from services.reservations import state_machine
from shared.models.models import AdminNotification, ReservationAuditLog
from shared.utils.dates import utcnow
from tasks.celery_app import celery_app
from tasks.runner import run_with_session

logger = logging.getLogger(__name__)


async def purge_old_records(
    db: AsyncSession,
    retention_days: int,
    now: Optional[datetime] = None,
) -> dict:
    """Delete reservation history and already-read notifications older than retention_days."""
    cutoff = (now or utcnow()) - timedelta(days=retention_days)

    history = await db.execute(
        delete(ReservationAuditLog).where(ReservationAuditLog.created_at < cutoff)
    )
    notifications = await db.execute(
        delete(AdminNotification).where(
            AdminNotification.read_at.is_not(None),
            AdminNotification.created_at < cutoff,
        )
    )
    return {
        "reservation_audit_logs": history.rowcount,
        "admin_notifications": notifications.rowcount,
    }


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def expire_stale_reservations(self):
    try:
        count = run_with_session(
            state_machine.expire_stale, settings.RESERVATION_PENDING_TIMEOUT_HOURS
        )
    except SQLAlchemyError as exc:
        logger.error(f"expire_stale_reservations failed: {exc}")
        raise self.retry(exc=exc)
    logger.info(f"expire_stale_reservations: {count} cancelled")
    return {"expired": count}


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def expire_packages(self):
    try:
        count = run_with_session(ledger.expire_due)
    except SQLAlchemyError as exc:
        logger.error(f"expire_packages failed: {exc}")
        raise self.retry(exc=exc)
    return {"expired": count}


@celery_app.task(bind=True, max_retries=3, default_retry_delay=300)
def cleanup_audit_logs(self):
    try:
        deleted = run_with_session(purge_old_records, settings.AUDIT_RETENTION_DAYS)
    except SQLAlchemyError as exc:
        raise self.retry(exc=exc)
    logger.info(f"cleanup_audit_logs: {deleted}")
    return deleted
