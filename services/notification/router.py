"""
services/notification/router.py
Admin notification feed and the real-time change stream.

The WebSocket forwards Redis change signals verbatim. They carry no state;
clients re-fetch the feed or their projection when one arrives.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, status
from fastapi.websockets import WebSocketState
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, get_db
from config.redis_client import get_redis, queue_change_signal
from config.settings import settings
from shared.middleware.auth import Authorize, authenticate_token
from shared.models.models import AdminNotification, User
from shared.schemas.schemas import (
    MessageResponse,
    NotificationFeedResponse,
    NotificationResponse,
)
from shared.utils.dates import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])

TABLE = "admin_notifications"


async def _unread_count(db: AsyncSession) -> int:
    count = await db.scalar(
        select(func.count(AdminNotification.id)).where(AdminNotification.read_at.is_(None))
    )
    return count or 0


# ── REST Endpoints ────────────────────────────────────────────

@router.get("", response_model=NotificationFeedResponse)
async def get_feed(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(Authorize("read", "notification")),
    db: AsyncSession = Depends(get_db),
):
    """Admin feed, newest first."""
    query = select(AdminNotification)
    if unread_only:
        query = query.where(AdminNotification.read_at.is_(None))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    query = (
        query.order_by(AdminNotification.created_at.desc(), AdminNotification.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)

    return NotificationFeedResponse(
        items=[NotificationResponse.model_validate(n) for n in result.scalars()],
        total=total or 0,
        unread_count=await _unread_count(db),
        page=page,
        page_size=page_size,
    )


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(Authorize("read", "notification")),
    db: AsyncSession = Depends(get_db),
):
    return {"unread_count": await _unread_count(db)}


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(Authorize("update", "notification")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(AdminNotification)
        .where(AdminNotification.read_at.is_(None))
        .values(read_at=utcnow(), read_by=current_user.id)
    )
    if result.rowcount:
        queue_change_signal(db, TABLE, "*", "read")
    await db.commit()
    return MessageResponse(message=f"{result.rowcount} notifications marked as read")


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(Authorize("update", "notification")),
    db: AsyncSession = Depends(get_db),
):
    notification = await db.get(AdminNotification, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    if notification.read_at is None:
        notification.read_at = utcnow()
        notification.read_by = current_user.id
        queue_change_signal(db, TABLE, notification.id, "read")
    await db.commit()
    return MessageResponse(message="Marked as read")


# ── Change Stream ─────────────────────────────────────────────

async def _authenticate_ws(token: Optional[str], redis) -> Optional[User]:
    if not token:
        return None
    async with AsyncSessionLocal() as db:
        return await authenticate_token(token, db, redis)


async def relay_changes(websocket: WebSocket, pubsub, user_id) -> None:
    """
    Forward change signals until the client leaves or Redis fails.
    Whichever side ends first, the other is cancelled and awaited.
    """

    async def _forward():
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message.get("type") == "message":
                await websocket.send_text(message["data"])

    async def _drain():
        # Inbound frames are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()

    forwarder = asyncio.create_task(_forward())
    receiver = asyncio.create_task(_drain())
    try:
        await asyncio.wait({forwarder, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (forwarder, receiver):
            task.cancel()
        await asyncio.gather(forwarder, receiver, return_exceptions=True)

    error = None if forwarder.cancelled() else forwarder.exception()
    if error is None:
        logger.info(f"Change stream closed for {user_id}")
        return

    logger.warning(f"Change stream for {user_id} stopped: {error!r}")
    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)


@router.websocket("/stream")
async def change_stream(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Admin dashboards subscribe here. Each message is {"table", "id", "event"}.
    Missed messages are harmless: reconnecting clients simply re-fetch.
    """
    redis = get_redis()
    user = await _authenticate_ws(token, redis)
    if user is None or not user.is_admin:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    pubsub = redis.pubsub()
    await pubsub.subscribe(settings.REDIS_CHANGE_CHANNEL)
    logger.info(f"Change stream opened for {user.id}")
    try:
        await relay_changes(websocket, pubsub, user.id)
    finally:
        # Dropping the connection ends the subscription
        await pubsub.aclose()
