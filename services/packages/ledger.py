"""
services/packages/ledger.py
Package Ledger: prepaid session bundles and their credit balance.

Lifecycle: pending_payment → active → exhausted | expired.
used_sessions only moves through consume(), which the reservation confirm
transaction calls on a row it has already locked.
"""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import queue_change_signal
from config.settings import settings
from services.notification.fanout import emit
from shared.exceptions import (
    InvalidPackage,
    PackageExhausted,
    PackageExpired,
    PackageNotActive,
)
from shared.models.models import (
    NotificationType,
    PackageStatus,
    PackageType,
    Payment,
    PaymentMethod,
    PaymentStatus,
    SessionPackage,
    User,
)
from shared.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

TABLE = "session_packages"

# Offers shown on the purchase screen: (sessions, price per session)
PACKAGE_OFFERS = {
    PackageType.SINGLE: (1, Decimal("60.00")),
    PackageType.MONTHLY: (4, Decimal("50.00")),
    PackageType.UNLIMITED: (12, Decimal("40.00")),
}


def list_offers() -> List[dict]:
    validity = settings.package_validity_days
    return [
        {
            "package_type": package_type.value,
            "total_sessions": sessions,
            "price_per_session": price,
            "total_price": price * sessions,
            "validity_days": validity[package_type.value],
        }
        for package_type, (sessions, price) in PACKAGE_OFFERS.items()
    ]


def remaining(package: SessionPackage) -> int:
    return max(package.total_sessions - package.used_sessions, 0)


def reserve_slot(package: SessionPackage, now: Optional[datetime] = None) -> None:
    """
    Eligibility check only; nothing is held or decremented.
    Order: active, then balance, then expiry. A package already flipped
    to exhausted reports the balance failure, not the status one.
    """
    now = now or utcnow()
    if package.status == PackageStatus.EXHAUSTED:
        raise PackageExhausted()
    if package.status != PackageStatus.ACTIVE:
        raise PackageNotActive(package_status=package.status.value)
    if remaining(package) <= 0:
        raise PackageExhausted()
    if package.expires_at is not None and as_utc(package.expires_at) <= now:
        raise PackageExpired()


# ── Purchase ──────────────────────────────────────────────────

def _coerce_purchase(package_type, total_sessions, price_per_session, payment_method):
    try:
        package_type = PackageType(package_type)
    except ValueError:
        raise InvalidPackage(f"Unknown package type '{package_type}'")
    try:
        payment_method = PaymentMethod(payment_method)
    except ValueError:
        raise InvalidPackage(f"Unknown payment method '{payment_method}'")

    if isinstance(total_sessions, bool) or not isinstance(total_sessions, int) or total_sessions <= 0:
        raise InvalidPackage("total_sessions must be a positive integer")

    try:
        price = Decimal(str(price_per_session))
    except (InvalidOperation, ValueError):
        raise InvalidPackage("price_per_session must be a number")
    if not price.is_finite() or price < 0:
        raise InvalidPackage("price_per_session must not be negative")

    return package_type, total_sessions, price, payment_method


async def purchase(
    db: AsyncSession,
    student: User,
    package_type,
    total_sessions: int,
    price_per_session,
    payment_method=PaymentMethod.CASH,
) -> tuple[SessionPackage, Payment]:
    """
    Create a package awaiting payment plus the Payment an admin will confirm.
    The package becomes usable only after activate().
    """
    package_type, total_sessions, price, payment_method = _coerce_purchase(
        package_type, total_sessions, price_per_session, payment_method
    )

    package = SessionPackage(
        student_id=student.id,
        package_type=package_type,
        total_sessions=total_sessions,
        used_sessions=0,
        price_per_session=price,
        payment_method=payment_method,
        status=PackageStatus.PENDING_PAYMENT,
    )
    db.add(package)
    await db.flush()

    payment = Payment(
        user_id=student.id,
        session_package_id=package.id,
        amount=price * total_sessions,
        currency=settings.DEFAULT_CURRENCY,
        payment_method=payment_method,
        status=PaymentStatus.PENDING,
        description=f"{package_type.value.title()} package ({total_sessions} sessions)",
    )
    db.add(payment)
    await db.flush()

    await emit(
        db,
        NotificationType.PACKAGE_PURCHASED,
        title="New package purchase",
        message=(
            f"{student.full_name} bought a {package_type.value} package of "
            f"{total_sessions} sessions ({payment_method.value}), awaiting payment"
        ),
        data={
            "package_id": package.id,
            "payment_id": payment.id,
            "student_id": student.id,
            "amount": payment.amount,
        },
    )
    queue_change_signal(db, TABLE, package.id, "insert")
    logger.info(f"Package {package.id} purchased for student {student.id}")
    return package, payment


# ── Balance ───────────────────────────────────────────────────

async def consume(db: AsyncSession, package: SessionPackage, now: Optional[datetime] = None) -> None:
    """
    Debit one session. Must run inside the confirm transaction on a locked row.

    The conditional UPDATE is the real guard: if another confirm already took
    the last credit, zero rows match and PackageExhausted is raised.
    """
    reserve_slot(package, now)

    result = await db.execute(
        update(SessionPackage)
        .where(
            SessionPackage.id == package.id,
            SessionPackage.status == PackageStatus.ACTIVE,
            SessionPackage.used_sessions < SessionPackage.total_sessions,
        )
        .values(used_sessions=SessionPackage.used_sessions + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise PackageExhausted()

    await db.execute(
        update(SessionPackage)
        .where(
            SessionPackage.id == package.id,
            SessionPackage.used_sessions >= SessionPackage.total_sessions,
        )
        .values(status=PackageStatus.EXHAUSTED)
        .execution_options(synchronize_session=False)
    )
    queue_change_signal(db, TABLE, package.id, "update")


async def activate(db: AsyncSession, package: SessionPackage, now: Optional[datetime] = None) -> bool:
    """
    pending_payment → active once its payment is confirmed.
    Packages without an explicit expiry get one from the per-type validity.
    Returns False when the package was not awaiting payment.
    """
    if package.status != PackageStatus.PENDING_PAYMENT:
        return False

    now = now or utcnow()
    package.status = PackageStatus.ACTIVE
    package.activated_at = now
    if package.expires_at is None:
        days = settings.package_validity_days[package.package_type.value]
        package.expires_at = now + timedelta(days=days)

    queue_change_signal(db, TABLE, package.id, "update")
    logger.info(f"Package {package.id} activated, expires {package.expires_at.isoformat()}")
    return True


async def expire_due(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Flip active packages whose expiry has passed. Returns how many changed."""
    now = now or utcnow()
    result = await db.execute(
        select(SessionPackage.id).where(
            SessionPackage.status == PackageStatus.ACTIVE,
            SessionPackage.expires_at.is_not(None),
            SessionPackage.expires_at <= now,
        )
    )
    package_ids = list(result.scalars())
    if not package_ids:
        return 0

    # A confirm may have exhausted one of them since the scan
    expired = await db.execute(
        update(SessionPackage)
        .where(
            SessionPackage.id.in_(package_ids),
            SessionPackage.status == PackageStatus.ACTIVE,
        )
        .values(status=PackageStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    for package_id in package_ids:
        queue_change_signal(db, TABLE, package_id, "expired")

    if expired.rowcount:
        logger.info(f"Expired {expired.rowcount} packages")
    return expired.rowcount


# ── Read projection ───────────────────────────────────────────

async def packages_for_student(
    db: AsyncSession,
    student_id: uuid.UUID,
    active_only: bool = False,
) -> List[SessionPackage]:
    query = (
        select(SessionPackage)
        .where(SessionPackage.student_id == student_id)
        .order_by(SessionPackage.created_at.desc())
    )
    if active_only:
        query = query.where(SessionPackage.status == PackageStatus.ACTIVE)
    result = await db.execute(query)
    return list(result.scalars())
