import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production-use-0123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from typing import AsyncGenerator, Callable, Awaitable
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from medlens.main import app
from medlens.core.security import create_access_token
from medlens.infrastructure.database import get_db, Base
from medlens.domain.auth.models import User, UserRole
from medlens.domain.patients.models import Patient


TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_PASSWORD = "Password123"


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database and session for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database dependency pointed at the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory that persists a user with the shared test password."""
    counter = {"n": 0}

    async def _make_user(role: UserRole, email: str = None, **fields) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value}{counter['n']}@medlens.org",
            first_name=fields.pop("first_name", role.value.split("_")[0].title()),
            last_name=fields.pop("last_name", f"User{counter['n']}"),
            role=role,
            **fields
        )
        user.set_password(TEST_PASSWORD)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def make_patient(db_session: AsyncSession) -> Callable[..., Awaitable[Patient]]:
    """Factory that persists a patient, optionally already assigned to a doctor."""
    counter = {"n": 0}

    async def _make_patient(assigned_doctor: User = None, **fields) -> Patient:
        counter["n"] += 1
        patient = Patient(
            patient_id=f"PATTEST{counter['n']:04d}",
            first_name=fields.pop("first_name", "Pat"),
            last_name=fields.pop("last_name", f"Ient{counter['n']}"),
            assigned_doctor_id=assigned_doctor.id if assigned_doctor else None,
            **fields
        )
        db_session.add(patient)
        await db_session.commit()
        await db_session.refresh(patient)
        return patient

    return _make_patient


def bearer_headers(user: User) -> dict:
    token = create_access_token(str(user.id), {"email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def auth_headers() -> Callable[[User], dict]:
    """Builds a Bearer header carrying a fresh access token for a user."""
    return bearer_headers


@pytest.fixture(scope="function")
async def admin_user(make_user) -> User:
    return await make_user(UserRole.ADMIN, email="admin@medlens.org")


@pytest.fixture(scope="function")
async def front_desk_user(make_user) -> User:
    return await make_user(UserRole.FRONT_DESK_COORDINATOR, email="desk@medlens.org")


@pytest.fixture(scope="function")
async def senior_doctor(make_user) -> User:
    return await make_user(UserRole.SENIOR_DOCTOR, email="senior@medlens.org")


@pytest.fixture(scope="function")
async def consulting_doctor(make_user) -> User:
    return await make_user(UserRole.CONSULTING_DOCTOR, email="consulting@medlens.org")


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "auth: mark test as authentication related"
    )
    config.addinivalue_line(
        "markers", "patients: mark test as patient management related"
    )
    config.addinivalue_line(
        "markers", "hierarchy: mark test as doctor hierarchy related"
    )
