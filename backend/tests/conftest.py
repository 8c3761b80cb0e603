"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time; point them at an in-memory store first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["DELEGATION_SWEEP_ENABLED"] = "false"
os.environ["REPORT_EXPORT_DEPARTMENTS"] = "KH&XLRR,KH&QLRR"
os.environ["REPORT_EXPORT_ALLOWED_EMPLOYEES"] = ""

from datetime import datetime, timezone  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from debtdesk.api.deps import get_clock, get_db, identity_for  # noqa: E402
from debtdesk.auth.context import RequestContext  # noqa: E402
from debtdesk.auth.jwt import create_access_token  # noqa: E402
from debtdesk.auth.permissions import Permission, PERMISSION_DESCRIPTIONS  # noqa: E402
from debtdesk.clock import FixedClock  # noqa: E402
from debtdesk.database import Base  # noqa: E402
from debtdesk.main import app  # noqa: E402
from debtdesk.models import DebtCase, PermissionRecord, User  # noqa: E402
from debtdesk.services.notifications import ConnectionManager, NotificationDispatcher  # noqa: E402
from debtdesk.services.permission_engine import load_effective_permissions  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# (employee_code, role, dept, branch_code, status)
USERS = [
    ("E001", "employee", "KHCN", "001", "active"),
    ("E002", "employee", "KHCN", "001", "active"),
    ("E003", "employee", "KHDN", "001", "active"),
    ("E004", "employee", "KHCN", "002", "active"),
    ("E009", "employee", "KHCN", "001", "disabled"),
    ("X001", "employee", "KH&XLRR", "001", "active"),
    ("M001", "manager", "KHCN", "001", "active"),
    ("M002", "manager", "KHDN", "001", "active"),
    ("D001", "director", "BGĐ", "001", "active"),
    ("D002", "director", "BGĐ", "002", "active"),
    ("A001", "administrator", "IT", "000", "active"),
]

# (case_id, assigned_employee_code)
CASES = [
    ("C-1", "E001"),
    ("C-2", "E001"),
    ("C-3", "E001"),
    ("C-4", "E003"),
    ("C-5", None),
]


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test, seeded with users, cases and the permission catalog."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add_all([
            PermissionRecord(name=p.value, description=PERMISSION_DESCRIPTIONS.get(p))
            for p in Permission
        ])
        session.add_all([
            User(
                employee_code=code, username=code.lower(), full_name=f"Employee {code}",
                role=role, dept=dept, branch_code=branch, status=status,
            )
            for code, role, dept, branch, status in USERS
        ])
        await session.flush()
        session.add_all([
            DebtCase(
                case_id=case_id, customer_code=f"CUS-{case_id}",
                customer_name=f"Customer {case_id}", assigned_employee_code=owner,
            )
            for case_id, owner in CASES
        ])
        await session.commit()

    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def ctx_for(db_session: AsyncSession):
    """Build the RequestContext an authenticated request by ``employee_code`` would get."""
    async def _ctx(employee_code: str) -> RequestContext:
        user = await db_session.get(User, employee_code)
        identity = identity_for(user)
        return RequestContext(
            identity=identity,
            permissions=await load_effective_permissions(db_session, identity),
        )
    return _ctx


def auth_headers(employee_code: str, role: str = "employee") -> dict:
    """Create an Authorization header with a valid JWT."""
    token = create_access_token(employee_code, role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(ConnectionManager())


@pytest_asyncio.fixture
async def client(session_factory, clock, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the per-test database, clock and dispatcher."""
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    saved_state = (app.state.dispatcher, app.state.connections, app.state.session_factory)
    app.state.dispatcher = dispatcher
    app.state.connections = dispatcher.connections
    app.state.session_factory = session_factory
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    app.state.dispatcher, app.state.connections, app.state.session_factory = saved_state
