"""
tests/test_reservations.py
Reservation endpoints over HTTP.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    ClassSession,
    ReservationStatus,
    SessionPackage,
    SessionStatus,
    SwimClass,
    User,
)
from tests.conftest import (
    auth_headers,
    make_package,
    make_reservation,
    make_session,
    reload,
)


def _payload(session: ClassSession, package: SessionPackage, **extra) -> dict:
    return {
        "class_session_id": str(session.id),
        "session_package_id": str(package.id),
        **extra,
    }


@pytest.mark.asyncio
async def test_student_creates_pending_reservation(
    client: AsyncClient,
    db: AsyncSession,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    response = await client.post(
        "/reservations",
        json=_payload(class_session, package, notes="Beginner, a bit nervous"),
        headers=auth_headers(student),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["student_id"] == str(student.id)
    assert body["reservation_notes"] == "Beginner, a bit nervous"

    assert (await reload(db, package)).used_sessions == 0
    assert (await reload(db, class_session)).enrolled_students == 0


@pytest.mark.asyncio
async def test_create_on_cancelled_session_returns_tagged_error(
    client: AsyncClient,
    student: User,
    swim_class: SwimClass,
    package: SessionPackage,
    db: AsyncSession,
):
    session = await make_session(db, swim_class, status=SessionStatus.CANCELLED)
    response = await client.post(
        "/reservations", json=_payload(session, package), headers=auth_headers(student)
    )
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "session_not_available"


@pytest.mark.asyncio
async def test_create_unknown_session_is_404(
    client: AsyncClient, student: User, package: SessionPackage
):
    response = await client.post(
        "/reservations",
        json={"class_session_id": str(uuid.uuid4()), "session_package_id": str(package.id)},
        headers=auth_headers(student),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_visitor_cannot_reserve(
    client: AsyncClient, visitor: User, class_session: ClassSession, package: SessionPackage
):
    response = await client.post(
        "/reservations", json=_payload(class_session, package), headers=auth_headers(visitor)
    )
    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"


@pytest.mark.asyncio
async def test_parent_books_for_child(
    client: AsyncClient,
    db: AsyncSession,
    parent_user: User,
    child: User,
    class_session: ClassSession,
):
    child_package = await make_package(db, child)
    response = await client.post(
        "/reservations",
        json=_payload(class_session, child_package, student_id=str(child.id)),
        headers=auth_headers(parent_user),
    )
    assert response.status_code == 201
    assert response.json()["student_id"] == str(child.id)


@pytest.mark.asyncio
async def test_stranger_cannot_book_for_student(
    client: AsyncClient,
    student: User,
    other_student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    response = await client.post(
        "/reservations",
        json=_payload(class_session, package, student_id=str(student.id)),
        headers=auth_headers(other_student),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_confirms_reservation(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)

    response = await client.post(
        f"/reservations/{reservation.id}/confirm",
        json={"notes": "Bring goggles"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "reservation_id": str(reservation.id),
        "status": "confirmed",
        "error": None,
    }

    reservation = await reload(db, reservation)
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.confirmation_notes == "Bring goggles"
    assert (await reload(db, package)).used_sessions == 1
    assert (await reload(db, class_session)).enrolled_students == 1


@pytest.mark.asyncio
async def test_confirm_without_body(
    client: AsyncClient,
    db: AsyncSession,
    co_admin_user: User,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)
    response = await client.post(
        f"/reservations/{reservation.id}/confirm", headers=auth_headers(co_admin_user)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"


@pytest.mark.asyncio
async def test_second_confirm_reports_current_status(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)
    url = f"/reservations/{reservation.id}/confirm"

    first = await client.post(url, headers=auth_headers(admin_user))
    second = await client.post(url, headers=auth_headers(admin_user))

    assert first.status_code == 200
    assert second.status_code == 409
    body = second.json()
    assert body["error"] == "already_terminal"
    assert body["status"] == "confirmed"
    assert (await reload(db, package)).used_sessions == 1


@pytest.mark.asyncio
async def test_confirm_on_full_session_keeps_reservation_pending(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    swim_class: SwimClass,
    package: SessionPackage,
):
    session = await make_session(db, swim_class, max_participants=1, enrolled_students=0)
    reservation = await make_reservation(db, student, session, package)
    session.enrolled_students = 1
    await db.commit()

    response = await client.post(
        f"/reservations/{reservation.id}/confirm", headers=auth_headers(admin_user)
    )
    assert response.status_code == 409
    assert response.json()["error"] == "session_full"
    assert (await reload(db, reservation)).status == ReservationStatus.PENDING
    assert (await reload(db, package)).used_sessions == 0


@pytest.mark.asyncio
async def test_student_cannot_confirm(
    client: AsyncClient,
    db: AsyncSession,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)
    response = await client.post(
        f"/reservations/{reservation.id}/confirm", headers=auth_headers(student)
    )
    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"
    assert (await reload(db, reservation)).status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_admin_rejects_with_reason(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)
    response = await client.post(
        f"/reservations/{reservation.id}/reject",
        json={"reason": "Pool closed for maintenance"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    reservation = await reload(db, reservation)
    assert reservation.cancellation_reason == "Pool closed for maintenance"
    assert reservation.admin_cancelled_by == admin_user.id


@pytest.mark.asyncio
async def test_student_withdraws_own_reservation(
    client: AsyncClient,
    db: AsyncSession,
    student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)
    response = await client.post(
        f"/reservations/{reservation.id}/withdraw",
        json={"reason": "Travelling"},
        headers=auth_headers(student),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert (await reload(db, reservation)).admin_cancelled_by is None


@pytest.mark.asyncio
async def test_my_reservations_lists_own_only(
    client: AsyncClient,
    db: AsyncSession,
    student: User,
    other_student: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    await make_reservation(db, student, class_session, package)
    await make_reservation(db, student, class_session, package, status=ReservationStatus.CONFIRMED)
    await make_reservation(db, other_student, class_session, await make_package(db, other_student))

    response = await client.get("/reservations/me", headers=auth_headers(student))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert {item["student_id"] for item in body["items"]} == {str(student.id)}

    response = await client.get(
        "/reservations/me", params={"status": "pending"}, headers=auth_headers(student)
    )
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_get_reservation_hidden_from_other_students(
    client: AsyncClient,
    db: AsyncSession,
    student: User,
    other_student: User,
    admin_user: User,
    class_session: ClassSession,
    package: SessionPackage,
):
    reservation = await make_reservation(db, student, class_session, package)
    url = f"/reservations/{reservation.id}"

    assert (await client.get(url, headers=auth_headers(student))).status_code == 200
    assert (await client.get(url, headers=auth_headers(admin_user))).status_code == 200
    assert (await client.get(url, headers=auth_headers(other_student))).status_code == 403
