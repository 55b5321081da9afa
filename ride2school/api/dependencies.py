"""FastAPI dependency injection helpers."""

from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride2school.config import Settings, settings
from ride2school.domain.entities import Actor
from ride2school.domain.enums import UserType
from ride2school.domain.errors import Unauthenticated
from ride2school.infrastructure.database import async_session_factory
from ride2school.infrastructure.redis_client import get_redis
from ride2school.infrastructure.repositories import UserRepository
from ride2school.services.lifecycle import RideLifecycleController


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


async def get_redis_client() -> aioredis.Redis:
    return await get_redis()


def get_settings() -> Settings:
    return settings


async def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Resolve the caller from the ``X-User-Id`` header."""
    if not x_user_id:
        raise Unauthenticated()
    user = await UserRepository(db).get_by_id(x_user_id)
    if user is None:
        raise Unauthenticated()
    return Actor(id=user.id, user_type=UserType(user.user_type))


def get_controller(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis: aioredis.Redis = Depends(get_redis_client),
    app_settings: Settings = Depends(get_settings),
) -> RideLifecycleController:
    return RideLifecycleController(session_factory, redis, settings=app_settings)
