"""
Wallet endpoints
================

GET  /api/v1/wallet              -- balance with ledger cross-check
GET  /api/v1/wallet/transactions -- paged history, filterable by direction / type
GET  /api/v1/wallet/summary      -- totals for today | week | month | year | all
POST /api/v1/wallet/top-up       -- add funds
POST /api/v1/wallet/withdraw     -- remove funds (never below zero)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.api.dependencies import get_current_actor, get_db, get_settings
from ride2school.api.middleware import limiter
from ride2school.api.schemas import (
    BalanceResponse,
    ErrorResponse,
    FundsRequest,
    FundsResponse,
    SummaryResponse,
    TransactionResponse,
)
from ride2school.config import Settings
from ride2school.domain.entities import Actor
from ride2school.domain.enums import TransactionDirection, TransactionType
from ride2school.services.wallet import WalletLedger

router = APIRouter(prefix="/wallet", tags=["wallet"])

Period = Literal["today", "week", "month", "year", "all"]


def period_start(period: Period, now: datetime) -> Optional[datetime]:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return midnight
    if period == "week":
        return midnight - timedelta(days=midnight.weekday())
    if period == "month":
        return midnight.replace(day=1)
    if period == "year":
        return midnight.replace(month=1, day=1)
    return None


def _ledger(db: AsyncSession, app_settings: Settings) -> WalletLedger:
    return WalletLedger(db, tolerance=app_settings.balance_tolerance)


@router.get("", response_model=BalanceResponse, summary="Wallet balance")
@limiter.limit("100/minute")
async def get_wallet(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    report = await _ledger(db, app_settings).get_balance(actor.id)
    return BalanceResponse(
        balance=report.balance,
        verified_balance=report.verified_balance,
        discrepancy=report.discrepancy,
        is_accurate=report.is_accurate,
    )


@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="Transaction history, newest first",
)
@limiter.limit("100/minute")
async def list_transactions(
    request: Request,
    direction: Optional[TransactionDirection] = None,
    transaction_type: Optional[TransactionType] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    return await _ledger(db, app_settings).history(
        actor.id,
        direction=direction,
        transaction_type=transaction_type,
        limit=limit,
        offset=offset,
    )


@router.get("/summary", response_model=SummaryResponse, summary="Wallet totals")
@limiter.limit("100/minute")
async def wallet_summary(
    request: Request,
    period: Period = "month",
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    since = period_start(period, datetime.now(timezone.utc))
    totals = await _ledger(db, app_settings).summary(actor.id, since=since)
    return SummaryResponse(period=period, **totals)


@router.post(
    "/top-up",
    status_code=201,
    response_model=FundsResponse,
    summary="Add funds to the wallet",
)
@limiter.limit("20/minute")
async def top_up(
    request: Request,
    body: FundsRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    ledger = _ledger(db, app_settings)
    tx_id = await ledger.top_up(actor.id, body.amount)
    report = await ledger.get_balance(actor.id)
    return FundsResponse(transaction_id=tx_id, balance=report.balance)


@router.post(
    "/withdraw",
    status_code=201,
    response_model=FundsResponse,
    summary="Withdraw funds from the wallet",
    responses={402: {"model": ErrorResponse}},
)
@limiter.limit("20/minute")
async def withdraw(
    request: Request,
    body: FundsRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
):
    ledger = _ledger(db, app_settings)
    tx_id = await ledger.withdraw(actor.id, body.amount)
    report = await ledger.get_balance(actor.id)
    return FundsResponse(transaction_id=tx_id, balance=report.balance)
