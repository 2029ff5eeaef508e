"""
tasks/celery_app.py
Celery application instance shared by all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=2

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

celery_app = Celery(
    "swim_school",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.reservation_tasks",
        "tasks.payment_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,

    # Acknowledge after execution so a dead worker's sweep is re-run
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    task_routes={
        "tasks.reservation_tasks.*": {"queue": "maintenance"},
        "tasks.payment_tasks.*": {"queue": "maintenance"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Auto-cancel pending reservations no admin acted on
    "expire-stale-reservations": {
        "task": "tasks.reservation_tasks.expire_stale_reservations",
        "schedule": crontab(minute="*/15"),
    },

    # Active packages past their validity window
    "expire-packages": {
        "task": "tasks.reservation_tasks.expire_packages",
        "schedule": crontab(minute=5),  # hourly
    },

    "mark-overdue-payments": {
        "task": "tasks.payment_tasks.mark_overdue_payments",
        "schedule": crontab(hour=6, minute=0),
    },

    # Drop reservation history and read notifications past retention
    "cleanup-audit-logs": {
        "task": "tasks.reservation_tasks.cleanup_audit_logs",
        "schedule": crontab(hour=3, minute=30, day_of_week="sunday"),
    },
}
