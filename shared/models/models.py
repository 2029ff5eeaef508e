"""
shared/models/models.py
All SQLAlchemy ORM models for the swim school reservation backend.
UUID primary keys throughout; column types stay portable (JSONB on PostgreSQL only).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base
from shared.utils.dates import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    ADMIN = "admin"
    CO_ADMIN = "co_admin"
    INSTRUCTOR = "instructor"
    PARENT = "parent"
    STUDENT = "student"
    VISITOR = "visitor"


class SessionStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PackageType(str, PyEnum):
    SINGLE = "single"
    MONTHLY = "monthly"
    UNLIMITED = "unlimited"


class PackageStatus(str, PyEnum):
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class ReservationStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(str, PyEnum):
    CASH = "cash"
    MONCASH = "moncash"
    CHECK = "check"
    CARD = "card"


class NotificationType(str, PyEnum):
    PENDING_RESERVATION = "pending_reservation"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_REJECTED = "reservation_rejected"
    RESERVATION_CANCELLED = "reservation_cancelled"
    RESERVATION_EXPIRED = "reservation_expired"
    PACKAGE_PURCHASED = "package_purchased"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_OVERDUE = "payment_overdue"


def _enum(enum_cls):
    """Store enum values ("pending"), not member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── People ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account for every role. Students may be linked to a parent account."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole), nullable=False, default=UserRole.STUDENT
    )
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    packages: Mapped[List["SessionPackage"]] = relationship(back_populates="student")

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_parent_id", "parent_id"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.CO_ADMIN)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Instructor(TimestampMixin, Base):
    """Instructor profile. One-to-one with a User."""
    __tablename__ = "instructors"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    specialties: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ── Catalog & Scheduling ──────────────────────────────────────

class SwimClass(TimestampMixin, Base):
    """A course offered by the school (e.g. "Beginner Kids")."""
    __tablename__ = "classes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    instructor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("instructors.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    sessions: Mapped[List["ClassSession"]] = relationship(back_populates="swim_class")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_class_price_non_negative"),
    )


class ClassSession(TimestampMixin, Base):
    """
    One scheduled occurrence of a class.
    enrolled_students is written only by the reservation confirm transaction.
    """
    __tablename__ = "class_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False
    )
    instructor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("instructors.id", ondelete="SET NULL"), nullable=True
    )
    session_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    enrolled_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[SessionStatus] = mapped_column(
        _enum(SessionStatus), nullable=False, default=SessionStatus.SCHEDULED
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    swim_class: Mapped["SwimClass"] = relationship(back_populates="sessions")

    __table_args__ = (
        CheckConstraint("max_participants >= 1", name="ck_session_capacity_positive"),
        CheckConstraint("enrolled_students >= 0", name="ck_session_enrolled_non_negative"),
        CheckConstraint(
            "enrolled_students <= max_participants", name="ck_session_enrolled_lte_capacity"
        ),
        Index("ix_class_sessions_date", "session_date"),
        Index("ix_class_sessions_class_id", "class_id"),
    )

    @property
    def places_available(self) -> int:
        return max(self.max_participants - self.enrolled_students, 0)


# ── Package Ledger ────────────────────────────────────────────

class SessionPackage(TimestampMixin, Base):
    """
    Prepaid bundle of sessions. used_sessions moves only inside the
    reservation confirm transaction.
    """
    __tablename__ = "session_packages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    package_type: Mapped[PackageType] = mapped_column(_enum(PackageType), nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    used_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_per_session: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum(PaymentMethod), nullable=False, default=PaymentMethod.CASH
    )
    status: Mapped[PackageStatus] = mapped_column(
        _enum(PackageStatus), nullable=False, default=PackageStatus.PENDING_PAYMENT
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    student: Mapped["User"] = relationship(back_populates="packages")

    __table_args__ = (
        CheckConstraint("total_sessions > 0", name="ck_package_total_positive"),
        CheckConstraint("used_sessions >= 0", name="ck_package_used_non_negative"),
        CheckConstraint("used_sessions <= total_sessions", name="ck_package_used_lte_total"),
        CheckConstraint("price_per_session >= 0", name="ck_package_price_non_negative"),
        Index("ix_session_packages_student_status", "student_id", "status"),
    )

    @property
    def remaining_sessions(self) -> int:
        return max(self.total_sessions - self.used_sessions, 0)

    @property
    def total_price(self) -> Decimal:
        return Decimal(self.price_per_session) * self.total_sessions


# ── Reservations ──────────────────────────────────────────────

class SessionReservation(TimestampMixin, Base):
    """
    A student's request to spend one package credit on one session.
    Status transitions: pending → confirmed | cancelled. Both targets are terminal.
    """
    __tablename__ = "session_reservations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    class_session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False
    )
    session_package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("session_packages.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING
    )
    reservation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    confirmation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    admin_cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    admin_cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_reservations_status_created", "status", "created_at"),
        Index("ix_reservations_student_id", "student_id"),
        Index("ix_reservations_session_id", "class_session_id"),
        Index("ix_reservations_package_id", "session_package_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != ReservationStatus.PENDING


class ReservationAuditLog(Base):
    """Immutable log of all reservation status transitions."""
    __tablename__ = "reservation_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("session_reservations.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )  # None = system sweep
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_reservation_audit_reservation_id", "reservation_id"),
        Index("ix_reservation_audit_created_at", "created_at"),
    )


# ── Payments ──────────────────────────────────────────────────

class Payment(TimestampMixin, Base):
    """
    Money owed by a user. Confirmed by an admin (cash, MonCash, check),
    optionally linked to a package purchase or a reservation.
    """
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    session_package_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("session_packages.id", ondelete="SET NULL"), nullable=True
    )
    reservation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("session_reservations.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum(PaymentMethod), nullable=False, default=PaymentMethod.CASH
    )
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        Index("ix_payments_user_id", "user_id"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_package_id", "session_package_id"),
    )


# ── Notifications ─────────────────────────────────────────────

class AdminNotification(Base):
    """
    Admin-facing feed entry. Appended on every workflow transition;
    only read_at/read_by are ever updated.
    """
    __tablename__ = "admin_notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    read_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    __table_args__ = (
        Index("ix_admin_notifications_created_at", "created_at"),
        Index("ix_admin_notifications_read_at", "read_at"),
    )


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
