"""
Background Side-Effect Dispatcher
=================================

Runs every ``DISPATCH_INTERVAL_SECONDS`` (default 2 s).

Lifecycle transitions never deliver notifications or chat messages
themselves: they write ``ride_events`` rows in the same transaction as the
ride move.  This worker delivers those rows once they are committed.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance drains the outbox at
  a time across multiple API processes.
* **SELECT ... FOR UPDATE SKIP LOCKED** on ``ride_events`` keeps two cycles
  from delivering the same event.

Failure handling
----------------
Each event is delivered inside its own savepoint.  A failing sink rolls back
only that savepoint; the error is logged and stored on the event, which is
retried on later cycles until ``DISPATCH_MAX_ATTEMPTS`` and then marked
``failed``.  The transition that produced the event is never affected.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride2school.config import settings
from ride2school.domain.enums import EventKind, EventStatus
from ride2school.infrastructure.database import async_session_factory
from ride2school.infrastructure.locks import DistributedLock
from ride2school.infrastructure.models import RideEventModel
from ride2school.infrastructure.redis_client import get_redis
from ride2school.infrastructure.repositories import EventRepository
from ride2school.infrastructure.sinks import DeliverySinks, database_sinks

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_dispatch_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Dispatcher started (interval=%ds)", settings.dispatch_interval_seconds
    )


async def stop_dispatch_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Dispatcher stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a dispatch cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_dispatch_cycle()
        except Exception:
            logger.exception("Unhandled error in dispatch cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.dispatch_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def deliver(event: RideEventModel, sinks: DeliverySinks) -> None:
    payload = event.payload
    if event.kind == EventKind.NOTIFICATION:
        await sinks.notifications.notify(
            payload["user_id"],
            payload["title"],
            payload["content"],
            payload["type"],
            payload.get("ride_id"),
        )
    elif event.kind == EventKind.MESSAGE:
        await sinks.messages.send_message(
            payload["sender_id"],
            payload["recipient_id"],
            payload["content"],
            payload.get("ride_id"),
        )
    else:
        raise ValueError(f"Unknown event kind: {event.kind}")


async def run_dispatch_cycle(
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    redis: Optional[aioredis.Redis] = None,
    sink_factory: Callable[[AsyncSession], DeliverySinks] = database_sinks,
    max_attempts: int = settings.dispatch_max_attempts,
) -> int:
    """Execute one dispatch cycle.  Returns the number of events delivered."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "side_effect_dispatcher", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another dispatcher – skipping cycle")
        return 0

    delivered = 0
    try:
        async with session_factory() as session:
            events = await EventRepository(session).claim_pending(
                settings.dispatch_batch_size
            )
            sinks = sink_factory(session)
            for event in events:
                # Read before delivery: a rolled-back savepoint may expire them.
                event_id, kind, ride_id = event.id, event.kind, event.ride_id
                attempts = (event.attempts or 0) + 1
                try:
                    async with session.begin_nested():
                        await deliver(event, sinks)
                except Exception as exc:
                    logger.exception(
                        "Failed to deliver %s event %s for ride %s",
                        kind.value,
                        event_id,
                        ride_id,
                    )
                    event.attempts = attempts
                    event.last_error = str(exc)[:500]
                    if attempts >= max_attempts:
                        event.status = EventStatus.FAILED
                    continue
                event.attempts = attempts
                event.status = EventStatus.DELIVERED
                event.delivered_at = datetime.now(timezone.utc)
                delivered += 1

            await session.commit()
            if delivered:
                logger.info("Dispatch cycle: %d events delivered", delivered)
    except Exception:
        logger.exception("Error in dispatch cycle")
    finally:
        await lock.release()

    return delivered
