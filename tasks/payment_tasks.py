"""
tasks/payment_tasks.py
Celery tasks for the payment lifecycle.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings
from services.payment.service import mark_overdue
from tasks.celery_app import celery_app
from tasks.runner import run_with_session

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=300)
def mark_overdue_payments(self):
    """
    Flag pending payments older than PAYMENT_OVERDUE_DAYS.
    Idempotent: already-overdue payments are not touched again.
    """
    try:
        count = run_with_session(mark_overdue, settings.PAYMENT_OVERDUE_DAYS)
    except SQLAlchemyError as exc:
        logger.error(f"mark_overdue_payments failed: {exc}")
        raise self.retry(exc=exc)
    logger.info(f"mark_overdue_payments: {count} payments overdue")
    return {"overdue": count}
