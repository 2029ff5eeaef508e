"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models.models import PackageType, PaymentMethod, SessionStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Catalog ───────────────────────────────────────────────────

class ClassCreateRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    level: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=2000)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    instructor_id: Optional[uuid.UUID] = None


class ClassResponse(BaseSchema):
    id: uuid.UUID
    name: str
    level: Optional[str]
    description: Optional[str]
    price: Decimal
    instructor_id: Optional[uuid.UUID]
    is_active: bool
    created_at: datetime


class SessionCreateRequest(BaseSchema):
    session_date: datetime
    max_participants: int = Field(..., ge=1, le=200)
    instructor_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("session_date")
    @classmethod
    def validate_session_date(cls, v: datetime) -> datetime:
        from datetime import timezone
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Session date must be in the future")
        return v


class SessionStatusUpdate(BaseSchema):
    status: SessionStatus

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v == SessionStatus.SCHEDULED or v == SessionStatus.SCHEDULED.value:
            raise ValueError("Sessions can only be marked completed or cancelled")
        return v


class SessionResponse(BaseSchema):
    id: uuid.UUID
    class_id: uuid.UUID
    instructor_id: Optional[uuid.UUID]
    session_date: datetime
    max_participants: int
    enrolled_students: int
    places_available: int
    status: str
    notes: Optional[str]
    # Joined
    class_name: Optional[str] = None
    class_level: Optional[str] = None


# ── Packages ──────────────────────────────────────────────────

class PackagePurchaseRequest(BaseSchema):
    student_id: Optional[uuid.UUID] = None  # defaults to the caller
    package_type: PackageType
    total_sessions: int = Field(..., gt=0, le=500)
    price_per_session: Decimal = Field(..., ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH


class PackagePurchaseResponse(BaseSchema):
    package_id: uuid.UUID
    status: str
    payment_id: uuid.UUID
    amount: Decimal


class PackageResponse(BaseSchema):
    id: uuid.UUID
    student_id: uuid.UUID
    package_type: str
    total_sessions: int
    used_sessions: int
    remaining_sessions: int
    price_per_session: Decimal
    payment_method: str
    status: str
    expires_at: Optional[datetime]
    activated_at: Optional[datetime]
    created_at: datetime


class PackageOffer(BaseSchema):
    package_type: str
    total_sessions: int
    price_per_session: Decimal
    total_price: Decimal
    validity_days: int


# ── Reservations ──────────────────────────────────────────────

class ReservationCreateRequest(BaseSchema):
    student_id: Optional[uuid.UUID] = None  # defaults to the caller
    class_session_id: uuid.UUID
    session_package_id: uuid.UUID
    notes: Optional[str] = Field(None, max_length=1000)


class ReservationConfirmRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=1000)
    payment_id: Optional[uuid.UUID] = None


class ReservationRejectRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class ReservationResponse(BaseSchema):
    id: uuid.UUID
    student_id: uuid.UUID
    class_session_id: uuid.UUID
    session_package_id: uuid.UUID
    status: str
    reservation_notes: Optional[str]
    confirmed_at: Optional[datetime]
    confirmation_notes: Optional[str]
    cancelled_at: Optional[datetime]
    admin_cancelled_at: Optional[datetime]
    admin_cancelled_by: Optional[uuid.UUID]
    cancellation_reason: Optional[str]
    created_at: datetime


class ReservationActionResponse(BaseSchema):
    success: bool
    reservation_id: uuid.UUID
    status: str
    error: Optional[str] = None


class PendingReservationItem(BaseSchema):
    id: uuid.UUID
    created_at: datetime
    student_id: uuid.UUID
    student_name: str
    class_name: str
    session_id: uuid.UUID
    session_date: datetime
    places_available: int
    package_id: uuid.UUID
    package_type: str
    price_per_session: Decimal
    remaining_sessions: int
    notes: Optional[str]


# ── Payment ───────────────────────────────────────────────────

class PaymentResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    session_package_id: Optional[uuid.UUID]
    reservation_id: Optional[uuid.UUID]
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    description: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime


class PaymentConfirmRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=500)


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]]
    created_at: datetime
    read_at: Optional[datetime]


class NotificationFeedResponse(BaseSchema):
    items: List[NotificationResponse]
    total: int
    unread_count: int
    page: int
    page_size: int


# ── Admin ─────────────────────────────────────────────────────

class AdminDashboardResponse(BaseSchema):
    pending_reservations: int
    confirmed_reservations_today: int
    pending_payments: int
    overdue_payments: int
    active_packages: int
    upcoming_sessions: int
    revenue_total: Decimal
    revenue_today: Decimal
    unread_notifications: int


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True
