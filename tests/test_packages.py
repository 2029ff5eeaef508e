"""
tests/test_packages.py
Package purchase and balance endpoints.
"""

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import PackageStatus, Payment, SessionPackage, User
from tests.conftest import auth_headers, make_package


@pytest.mark.asyncio
async def test_offers_are_public(client: AsyncClient):
    response = await client.get("/packages/offers")
    assert response.status_code == 200
    offers = {o["package_type"]: o for o in response.json()}
    assert set(offers) == {"single", "monthly", "unlimited"}
    assert Decimal(offers["monthly"]["total_price"]) == Decimal("200.00")


@pytest.mark.asyncio
async def test_purchase_returns_pending_package_and_payment(
    client: AsyncClient, db: AsyncSession, student: User
):
    response = await client.post(
        "/packages",
        json={
            "package_type": "monthly",
            "total_sessions": 4,
            "price_per_session": "50.00",
            "payment_method": "moncash",
        },
        headers=auth_headers(student),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending_payment"
    assert Decimal(body["amount"]) == Decimal("200.00")

    package = await db.get(SessionPackage, uuid.UUID(body["package_id"]))
    assert package.student_id == student.id
    payment = await db.get(Payment, uuid.UUID(body["payment_id"]))
    assert payment.session_package_id == package.id


@pytest.mark.asyncio
async def test_purchase_rejects_unknown_type(client: AsyncClient, student: User):
    response = await client.post(
        "/packages",
        json={"package_type": "lifetime", "total_sessions": 4, "price_per_session": "50"},
        headers=auth_headers(student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_purchase_rejects_zero_sessions(client: AsyncClient, student: User):
    response = await client.post(
        "/packages",
        json={"package_type": "single", "total_sessions": 0, "price_per_session": "60"},
        headers=auth_headers(student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_parent_buys_for_child(
    client: AsyncClient, parent_user: User, child: User
):
    response = await client.post(
        "/packages",
        json={
            "student_id": str(child.id),
            "package_type": "single",
            "total_sessions": 1,
            "price_per_session": "60",
        },
        headers=auth_headers(parent_user),
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_instructor_cannot_purchase(client: AsyncClient, instructor_user: User):
    response = await client.post(
        "/packages",
        json={"package_type": "single", "total_sessions": 1, "price_per_session": "60"},
        headers=auth_headers(instructor_user),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_my_packages_show_remaining(
    client: AsyncClient, db: AsyncSession, student: User
):
    await make_package(db, student, total_sessions=4, used_sessions=3)
    await make_package(db, student, status=PackageStatus.EXPIRED)

    response = await client.get("/packages/me", headers=auth_headers(student))
    assert response.status_code == 200
    packages = response.json()
    assert len(packages) == 2

    response = await client.get(
        "/packages/me", params={"active_only": "true"}, headers=auth_headers(student)
    )
    (active,) = response.json()
    assert active["remaining_sessions"] == 1
    assert active["status"] == "active"


@pytest.mark.asyncio
async def test_student_packages_for_admin_and_parent(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    parent_user: User,
    child: User,
    other_student: User,
):
    await make_package(db, child)
    url = f"/packages/students/{child.id}"

    for viewer in (admin_user, parent_user):
        response = await client.get(url, headers=auth_headers(viewer))
        assert response.status_code == 200
        assert len(response.json()) == 1

    response = await client.get(url, headers=auth_headers(other_student))
    assert response.status_code == 403
