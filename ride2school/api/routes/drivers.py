"""
Driver endpoints
================

PATCH /api/v1/drivers/me/status   -- go online / offline
GET   /api/v1/drivers/me/earnings -- net earnings from completed rides
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.api.dependencies import get_current_actor, get_db
from ride2school.api.middleware import limiter
from ride2school.api.routes.wallet import period_start
from ride2school.api.schemas import (
    DriverStatusRequest,
    EarningsResponse,
    ErrorResponse,
    UserResponse,
)
from ride2school.domain.entities import Actor
from ride2school.domain.errors import Unauthorized
from ride2school.domain.otp import as_utc
from ride2school.domain.pricing import to_money
from ride2school.infrastructure.repositories import (
    CompletedRideRepository,
    UserRepository,
)

router = APIRouter(prefix="/drivers", tags=["drivers"])


def _require_driver(actor: Actor, message: str) -> None:
    if not actor.is_driver:
        raise Unauthorized(message)


@router.patch(
    "/me/status",
    response_model=UserResponse,
    summary="Set the driver's availability",
    responses={403: {"model": ErrorResponse}},
)
@limiter.limit("30/minute")
async def set_status(
    request: Request,
    body: DriverStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    _require_driver(actor, "Only drivers have an availability status.")
    driver = await UserRepository(db).get_for_update(actor.id)
    driver.is_online = body.is_online
    await db.flush()
    return driver


@router.get(
    "/me/earnings",
    response_model=EarningsResponse,
    summary="Driver earnings for today, this week, this month and in total",
    responses={403: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_earnings(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    _require_driver(actor, "Only drivers have earnings.")
    rides = await CompletedRideRepository(db).list_for_driver(actor.id)
    now = datetime.now(timezone.utc)
    starts = {p: period_start(p, now) for p in ("today", "week", "month")}
    totals = {p: to_money(0) for p in (*starts, "total")}
    for ride in rides:
        earned = to_money(ride.driver_earnings)
        completed_at = as_utc(ride.completed_at)
        totals["total"] += earned
        for period, since in starts.items():
            if completed_at >= since:
                totals[period] += earned
    return EarningsResponse(rides=len(rides), **totals)
