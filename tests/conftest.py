"""
Shared test fixtures.

Uses a throw-away SQLite file (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every session gets its own connection, so the
lifecycle controller's transactions are isolated the way they are in
production.  Redis is replaced by ``FakeRedis``, which implements the two
commands the locks use.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ride2school.config import Settings
from ride2school.domain.entities import Actor, Location
from ride2school.domain.enums import UserType
from ride2school.infrastructure.database import Base
from ride2school.infrastructure.models import TransactionModel, UserModel
from ride2school.infrastructure.repositories import RideStore
from ride2school.services.lifecycle import RideLifecycleController

HOME = Location(-26.1076, 28.0567, "12 Rivonia Rd")
SCHOOL = Location(-26.1030, 28.0600, "Sandton Primary")


class FakeRedis:
    """In-memory stand-in for the ``SET NX EX`` / ``EVAL`` lock protocol."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh SQLite file, yield the engine, then dispose."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ride2school.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest properly.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None)


@pytest_asyncio.fixture
async def users(session_factory) -> SimpleNamespace:
    """Two parents, two online drivers and one offline driver."""
    rows = {
        "parent": UserModel(
            name="Thandi Mokoena",
            email="thandi@example.com",
            user_type=UserType.PARENT,
            wallet_balance=Decimal("500.00"),
        ),
        "other_parent": UserModel(
            name="Pieter van Wyk",
            email="pieter@example.com",
            user_type=UserType.PARENT,
            wallet_balance=Decimal("500.00"),
        ),
        "driver": UserModel(
            name="Lerato Khumalo",
            email="lerato@example.com",
            user_type=UserType.DRIVER,
            is_online=True,
            wallet_balance=Decimal("100.00"),
        ),
        "other_driver": UserModel(
            name="Johan Pretorius",
            email="johan@example.com",
            user_type=UserType.DRIVER,
            is_online=True,
            wallet_balance=Decimal("100.00"),
        ),
        "offline_driver": UserModel(
            name="Fatima Essop",
            email="fatima@example.com",
            user_type=UserType.DRIVER,
            is_online=False,
        ),
    }
    async with session_factory() as session:
        session.add_all(rows.values())
        await session.commit()
    return SimpleNamespace(
        **{name: Actor(id=row.id, user_type=row.user_type) for name, row in rows.items()}
    )


# ── Controller helpers ────────────────────────────────────────────────


@pytest.fixture
def controller(session_factory, fake_redis, test_settings) -> RideLifecycleController:
    return RideLifecycleController(session_factory, fake_redis, settings=test_settings)


@pytest.fixture
def open_request(controller, users):
    """Create a pending request for the parent at a fixed fare; returns its id."""

    async def _open(fare: str = "120.00", parent: Actor | None = None) -> str:
        request = await controller.create_request(
            parent or users.parent,
            origin=HOME,
            destination=SCHOOL,
            destination_name="Sandton Primary",
            estimated_fare=Decimal(fare),
        )
        return request.id

    return _open


@pytest.fixture
def balance_of(session_factory):
    async def _balance(actor: Actor) -> Decimal:
        async with session_factory() as session:
            user = await session.get(UserModel, actor.id)
            return Decimal(user.wallet_balance)

    return _balance


@pytest.fixture
def partitions_of(session_factory):
    """Names of every partition currently holding *ride_id*."""

    async def _partitions(ride_id: str) -> list[str]:
        async with session_factory() as session:
            store = RideStore(session)
            repos = {
                "requests": store.requests,
                "active": store.active,
                "completed": store.completed,
                "cancelled": store.cancelled,
            }
            return [
                name
                for name, repo in repos.items()
                if await repo.get_by_id(ride_id) is not None
            ]

    return _partitions


@pytest.fixture
def transactions_of(session_factory):
    async def _transactions(actor: Actor) -> list[TransactionModel]:
        async with session_factory() as session:
            result = await session.execute(
                select(TransactionModel).where(TransactionModel.user_id == actor.id)
            )
            return list(result.scalars().all())

    return _transactions


# ── API ───────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, fake_redis, test_settings, users):
    """AsyncClient wired to the SQLite file and the fake Redis."""
    with (
        patch(
            "ride2school.workers.dispatcher.start_dispatch_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ride2school.workers.dispatcher.stop_dispatch_loop",
            new_callable=AsyncMock,
        ),
    ):
        # DB session dependency
        async def _test_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        from ride2school.api.app import create_app
        from ride2school.api.dependencies import (
            get_db,
            get_redis_client,
            get_session_factory,
            get_settings,
        )
        from ride2school.api.middleware import limiter

        limiter.reset()
        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        app.dependency_overrides[get_session_factory] = lambda: session_factory
        app.dependency_overrides[get_redis_client] = lambda: fake_redis
        app.dependency_overrides[get_settings] = lambda: test_settings

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
