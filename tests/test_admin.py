"""
tests/test_admin.py
Admin projections: pending queue, dashboard, audit log, reservation history.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.packages import ledger
from services.reservations import state_machine
from shared.models.models import (
    ClassSession,
    PaymentStatus,
    ReservationStatus,
    SessionPackage,
    User,
)
from tests.conftest import auth_headers, make_package, make_reservation


@pytest.mark.asyncio
async def test_pending_queue_is_fifo_with_joined_fields(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    other_student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    first = await make_reservation(db, student, class_session, package)
    second = await make_reservation(db, other_student, class_session, await make_package(db, other_student))
    await make_reservation(db, student, class_session, package, status=ReservationStatus.CONFIRMED)

    response = await client.get("/admin/reservations/pending", headers=auth_headers(admin_user))
    assert response.status_code == 200
    items = response.json()
    assert [i["id"] for i in items] == [str(first.id), str(second.id)]

    head = items[0]
    assert head["student_name"] == student.full_name
    assert head["class_name"] == "Kids Beginner"
    assert head["package_type"] == "monthly"
    assert head["remaining_sessions"] == 4
    assert head["places_available"] == class_session.max_participants


@pytest.mark.asyncio
async def test_pending_queue_is_admin_only(client: AsyncClient, student: User):
    response = await client.get("/admin/reservations/pending", headers=auth_headers(student))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_dashboard_counters(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    await state_machine.create(db, student, class_session.id, package.id)
    await ledger.purchase(db, student, "single", 1, Decimal("60"), "cash")
    await db.commit()

    response = await client.get("/admin/dashboard", headers=auth_headers(admin_user))
    assert response.status_code == 200
    body = response.json()
    assert body["pending_reservations"] == 1
    assert body["pending_payments"] == 1
    assert body["active_packages"] == 1
    assert body["upcoming_sessions"] == 1
    assert body["unread_notifications"] == 2
    assert Decimal(body["revenue_total"]) == Decimal("0")


@pytest.mark.asyncio
async def test_audit_log_records_payment_confirmation(
    client: AsyncClient, db: AsyncSession, admin_user: User, student: User
):
    _, payment = await ledger.purchase(db, student, "monthly", 4, Decimal("50"), "check")
    await db.commit()
    await client.post(f"/payments/{payment.id}/confirm", headers=auth_headers(admin_user))

    response = await client.get(
        "/admin/audit-log", params={"action": "confirm_payment"}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    entry = body["items"][0]
    assert entry["admin_email"] == admin_user.email
    assert entry["entity_id"] == str(payment.id)

    response = await client.get("/admin/dashboard", headers=auth_headers(admin_user))
    assert Decimal(response.json()["revenue_total"]) == Decimal("200.00")
    await db.refresh(payment)
    assert payment.status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_audit_log_is_admin_only(client: AsyncClient, co_admin_user: User):
    response = await client.get("/admin/audit-log", headers=auth_headers(co_admin_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_reservation_history(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await state_machine.create(db, student, class_session.id, package.id)
    await db.commit()
    await client.post(
        f"/reservations/{reservation.id}/reject",
        json={"reason": "duplicate"},
        headers=auth_headers(admin_user),
    )

    response = await client.get(
        f"/admin/reservations/{reservation.id}/history", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    history = response.json()
    assert [(h["from_status"], h["to_status"]) for h in history] == [
        (None, "pending"),
        ("pending", "cancelled"),
    ]
    assert history[1]["reason"] == "duplicate"
    assert history[1]["changed_by_id"] == str(admin_user.id)
