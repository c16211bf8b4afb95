"""
Great Pearl Coffee Finance - Test Configuration

Pytest fixtures and configuration.
"""

import os

# Settings are read at import time, so the environment comes first
os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key"
os.environ["APP_ENV"] = "testing"
os.environ["REALTIME_RELAY_ENABLED"] = "false"
os.environ["SMS_API_KEY"] = ""

from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, enable_sqlite_savepoints, get_async_session
from app.models.cash import CashTransactionType
from app.models.employee import Employee, EmployeeStatus
from app.services.cash_ledger_service import CashLedgerService
from app.utils.security import create_access_token
import app.models  # noqa: F401
from main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# One shared in-memory connection so every session sees the same tables
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
enable_sqlite_savepoints(test_engine)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

async def _create_employee(db_session: AsyncSession, **fields) -> Employee:
    fields.setdefault("permissions", [])
    fields.setdefault("status", EmployeeStatus.ACTIVE)
    employee = Employee(**fields)
    db_session.add(employee)
    await db_session.commit()
    await db_session.refresh(employee)
    return employee


@pytest_asyncio.fixture
async def requester(db_session: AsyncSession) -> Employee:
    """A regular member of staff who files requests."""
    return await _create_employee(
        db_session,
        name="Sarah Nakato",
        email="sarah@greatpearlcoffee.com",
        role="User",
        department="Operations",
        position="Store Keeper",
        phone="0772100001",
    )


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> Employee:
    return await _create_employee(
        db_session,
        name="Denis Okello",
        email="denis@greatpearlcoffee.com",
        role="Administrator",
        department="Administration",
        phone="0772100002",
    )


@pytest_asyncio.fixture
async def manager(db_session: AsyncSession) -> Employee:
    return await _create_employee(
        db_session,
        name="Ruth Achieng",
        email="ruth@greatpearlcoffee.com",
        role="Manager",
        department="Operations",
        phone="0772100003",
    )


@pytest_asyncio.fixture
async def second_admin(db_session: AsyncSession) -> Employee:
    return await _create_employee(
        db_session,
        name="Moses Kato",
        email="moses@greatpearlcoffee.com",
        role="Administrator",
        department="Administration",
        phone="0772100004",
    )


@pytest_asyncio.fixture
async def finance_officer(db_session: AsyncSession) -> Employee:
    return await _create_employee(
        db_session,
        name="Grace Namutebi",
        email="grace@greatpearlcoffee.com",
        role="Finance",
        department="Finance",
        phone="0772100005",
    )


@pytest_asyncio.fixture
async def super_admin(db_session: AsyncSession) -> Employee:
    return await _create_employee(
        db_session,
        name="Peter Ssemwogerere",
        email="peter@greatpearlcoffee.com",
        role="Super Admin",
        department="Administration",
        phone="0772100006",
    )


@pytest_asyncio.fixture
async def funded_cash_box(db_session: AsyncSession, finance_officer: Employee) -> Decimal:
    """Put UGX 1,000,000 in the cash box through a confirmed deposit posting."""
    amount = Decimal("1000000")
    ledger = CashLedgerService(db_session)
    await ledger.apply_disbursement(
        amount=amount,
        transaction_type=CashTransactionType.DEPOSIT,
        reference="OPENING",
        actor_email=finance_officer.email,
        notes="Opening float",
    )
    await db_session.commit()
    return amount


@pytest.fixture
def auth_headers() -> Callable[[Employee], Dict[str, str]]:
    """Build Authorization headers for an employee."""

    def _headers(employee: Employee) -> Dict[str, str]:
        token = create_access_token({"sub": employee.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers
