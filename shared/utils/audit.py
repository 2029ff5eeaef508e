"""
shared/utils/audit.py
Append-only admin audit trail, written in the same transaction as the change.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AdminAuditLog, User


def log_admin_action(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id,
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
) -> AdminAuditLog:
    entry = AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    )
    db.add(entry)
    return entry
