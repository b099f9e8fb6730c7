"""Shared pytest fixtures: in-memory database, stores seeded through it, and an API client."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tenant_access.core.database.engine import get_db, init_db
from tenant_access.features.roles.defaults import ensure_default_roles
from tenant_access.features.tenants.store import create_tenant
from tenant_access.features.users.models import UserType
from tenant_access.features.users.store import assign_user_roles, create_user
from tenant_access.main import app


@pytest_asyncio.fixture()
async def engine() -> AsyncIterator[AsyncEngine]:
    """A fresh in-memory SQLite database per test."""

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def file_session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """
    Sessions over a SQLite file with a real connection pool, so concurrent
    sessions hold separate connections and contend on the database lock.
    """

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tenant_access.db'}",
        connect_args={"timeout": 30},
    )
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncClient]:
    """HTTPX client bound to the app, with get_db pointed at the test database."""

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def tenant_ids(db: AsyncSession) -> tuple[str, str]:
    """Two tenants, T1 and T2."""

    t1 = await create_tenant(db, name="Tenant One", slug="t1")
    t2 = await create_tenant(db, name="Tenant Two", slug="t2")
    return t1.id, t2.id


@pytest_asyncio.fixture()
async def operator_id(db: AsyncSession) -> str:
    user = await create_user(db, email="owner@acme.io", name="Owner", user_type=UserType.SAAS_OWNER)
    return user.id


@pytest_asyncio.fixture()
async def tenant_admin_id(db: AsyncSession, tenant_ids: tuple[str, str]) -> str:
    """A TENANT_ADMIN of T1 holding an all-manage role."""

    user = await create_user(
        db,
        email="admin@t1.acme.io",
        name="T1 Admin",
        user_type=UserType.TENANT_ADMIN,
        tenant_id=tenant_ids[0],
    )
    roles = await ensure_default_roles(db, tenant_ids[0])
    admin_role = next(r for r in roles if r.slug == "admin")
    await assign_user_roles(db, user.id, [admin_role.id])
    return user.id

