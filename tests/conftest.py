"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, an in-memory Redis
stand-in, users for every role, and catalog/package builders.
"""

import os
import tempfile

# Runs again when test modules import helpers from tests.conftest
if "swim-tests-" not in os.environ.get("DATABASE_URL", ""):
    _db_dir = tempfile.mkdtemp(prefix="swim-tests-")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_db_dir}/test.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["APP_ENV"] = "test"

import uuid  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import config.redis_client as redis_module  # noqa: E402
import shared.models.models  # noqa: E402,F401
from config.database import Base, enable_sqlite_transactions, engine  # noqa: E402
from config.settings import settings  # noqa: E402
from shared.models.models import (  # noqa: E402
    ClassSession,
    PackageStatus,
    PackageType,
    PaymentMethod,
    ReservationStatus,
    SessionPackage,
    SessionReservation,
    SessionStatus,
    SwimClass,
    User,
    UserRole,
)
from shared.utils.security import create_access_token  # noqa: E402


# ── Redis stand-in ────────────────────────────────────────────

class FakeRedis:
    """The subset of redis.asyncio.Redis the app touches."""

    def __init__(self):
        self.store = {}
        self.published = []

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    async def ping(self):
        return True


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr(redis_module, "redis_client", fake)
    return fake


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(setup_db) -> AsyncSession:
    """
    The test's own session. It runs on a separate engine with deferred BEGIN,
    so its read snapshots never hold the write lock the app's requests need.
    """
    test_engine = create_async_engine(settings.DATABASE_URL)
    enable_sqlite_transactions(test_engine, begin="BEGIN")
    factory = async_sessionmaker(bind=test_engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session
    await test_engine.dispose()


@pytest_asyncio.fixture
async def client(setup_db) -> AsyncClient:
    from main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def reload(db: AsyncSession, obj):
    """Close the test session's read snapshot and re-read obj from the database."""
    await db.commit()
    await db.refresh(obj)
    return obj


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Builders ──────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    role: UserRole = UserRole.STUDENT,
    name: str = "Test User",
    parent: Optional[User] = None,
    is_active: bool = True,
) -> User:
    user = User(
        email=f"{role.value}-{uuid.uuid4().hex[:8]}@example.ht",
        full_name=name,
        role=role,
        parent_id=parent.id if parent else None,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    return user


async def make_class(db: AsyncSession, name: str = "Kids Beginner") -> SwimClass:
    swim_class = SwimClass(name=name, level="beginner", price=Decimal("50.00"))
    db.add(swim_class)
    await db.commit()
    return swim_class


async def make_session(
    db: AsyncSession,
    swim_class: SwimClass,
    max_participants: int = 10,
    enrolled_students: int = 0,
    status: SessionStatus = SessionStatus.SCHEDULED,
    days_ahead: int = 3,
) -> ClassSession:
    session = ClassSession(
        class_id=swim_class.id,
        session_date=datetime.now(timezone.utc) + timedelta(days=days_ahead),
        max_participants=max_participants,
        enrolled_students=enrolled_students,
        status=status,
    )
    db.add(session)
    await db.commit()
    return session


async def make_package(
    db: AsyncSession,
    student: User,
    total_sessions: int = 4,
    used_sessions: int = 0,
    status: PackageStatus = PackageStatus.ACTIVE,
    expires_at: Optional[datetime] = None,
    package_type: PackageType = PackageType.MONTHLY,
) -> SessionPackage:
    package = SessionPackage(
        student_id=student.id,
        package_type=package_type,
        total_sessions=total_sessions,
        used_sessions=used_sessions,
        price_per_session=Decimal("50.00"),
        payment_method=PaymentMethod.CASH,
        status=status,
        expires_at=expires_at,
    )
    db.add(package)
    await db.commit()
    return package


async def make_reservation(
    db: AsyncSession,
    student: User,
    session: ClassSession,
    package: SessionPackage,
    status: ReservationStatus = ReservationStatus.PENDING,
    created_at: Optional[datetime] = None,
) -> SessionReservation:
    """Insert a reservation row directly, bypassing create() checks."""
    reservation = SessionReservation(
        student_id=student.id,
        class_session_id=session.id,
        session_package_id=package.id,
        status=status,
    )
    if created_at is not None:
        reservation.created_at = created_at
    db.add(reservation)
    await db.commit()
    return reservation


# ── Fixtures ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.ADMIN, "Admin Nadège")


@pytest_asyncio.fixture
async def co_admin_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.CO_ADMIN, "Co-Admin Jean")


@pytest_asyncio.fixture
async def student(db: AsyncSession) -> User:
    return await make_user(db, UserRole.STUDENT, "Student Widline")


@pytest_asyncio.fixture
async def other_student(db: AsyncSession) -> User:
    return await make_user(db, UserRole.STUDENT, "Student Kervens")


@pytest_asyncio.fixture
async def parent_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.PARENT, "Parent Marie")


@pytest_asyncio.fixture
async def child(db: AsyncSession, parent_user: User) -> User:
    return await make_user(db, UserRole.STUDENT, "Child Ti-Jo", parent=parent_user)


@pytest_asyncio.fixture
async def instructor_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.INSTRUCTOR, "Coach Rose")


@pytest_asyncio.fixture
async def visitor(db: AsyncSession) -> User:
    return await make_user(db, UserRole.VISITOR, "Visitor")


@pytest_asyncio.fixture
async def swim_class(db: AsyncSession) -> SwimClass:
    return await make_class(db)


@pytest_asyncio.fixture
async def class_session(db: AsyncSession, swim_class: SwimClass) -> ClassSession:
    return await make_session(db, swim_class)


@pytest_asyncio.fixture
async def package(db: AsyncSession, student: User) -> SessionPackage:
    return await make_package(db, student)
