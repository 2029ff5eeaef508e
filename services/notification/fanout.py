"""
services/notification/fanout.py
Admin notification fan-out.

Every workflow transition appends one AdminNotification row inside the
caller's transaction and queues a change signal. The signal goes out on
Redis pub/sub only after that transaction commits; dashboards treat it as a
wake-up and re-run their own queries.
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import queue_change_signal
from shared.models.models import AdminNotification, NotificationType

logger = logging.getLogger(__name__)

TABLE = "admin_notifications"


def _jsonable(data: Optional[dict]) -> Optional[dict]:
    # UUIDs, Decimals and datetimes become strings
    if data is None:
        return None
    return json.loads(json.dumps(data, default=str))


async def emit(
    db: AsyncSession,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict[str, Any]] = None,
) -> AdminNotification:
    """Append a feed entry. Rolled back with the caller if the transaction fails."""
    notification = AdminNotification(
        type=notification_type,
        title=title,
        message=message,
        data=_jsonable(data),
    )
    db.add(notification)
    await db.flush()

    queue_change_signal(db, TABLE, notification.id, notification_type.value)
    logger.info(f"Notification queued: {notification_type.value} ({notification.id})")
    return notification
