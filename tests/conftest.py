from contextlib import contextmanager
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.auth.dependencies import get_current_user, issue_token
from libs.auth.models import AuthUser
from libs.auth.roles import UserRole
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.session import get_async_db

# Import all models so metadata includes every table
from services.market_service import models as _market_models  # noqa: F401
from services.market_service.payment_gateway import (
    SimulatedPaymentGateway,
    get_payment_gateway,
)

settings = get_settings()


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_user(user_id: str = "buyer-1", role: UserRole = UserRole.CUSTOMER) -> AuthUser:
    return AuthUser(user_id=user_id, role=role)


def make_auth_headers(user_id: str, role: UserRole = UserRole.CUSTOMER) -> dict:
    """Headers carrying a real signed bearer token."""
    return {"Authorization": f"Bearer {issue_token(user_id, role)}"}


@contextmanager
def override_auth(app, user: Optional[AuthUser]):
    """Temporarily replace get_current_user on ``app``."""
    previous = app.dependency_overrides.get(get_current_user)
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield
    finally:
        if previous is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite database file per test.

    A file (not :memory:) so concurrent sessions see each other's commits.
    """
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'market_test.db'}"
    engine = create_async_engine(db_url, future=True, connect_args={"timeout": 30})

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to the market app.

    Each request gets its own session, like production. Auth is real: send
    ``make_auth_headers(...)`` or use ``override_auth``.
    """
    from services.market_service.app.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
