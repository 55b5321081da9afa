"""
Notification endpoints
======================

GET  /api/v1/notifications                   -- caller's notifications, newest first
POST /api/v1/notifications/{notification_id}/read -- mark one as read
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.api.dependencies import get_current_actor, get_db
from ride2school.api.middleware import limiter
from ride2school.api.schemas import NotificationResponse
from ride2school.domain.entities import Actor
from ride2school.infrastructure.repositories import NotificationRepository

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse], summary="List notifications")
@limiter.limit("100/minute")
async def list_notifications(
    request: Request,
    unread_only: bool = False,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationRepository(db).list_for_user(actor.id, unread_only)


@router.post("/{notification_id}/read", status_code=204, summary="Mark as read")
@limiter.limit("100/minute")
async def mark_notification_read(
    request: Request,
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    if not await NotificationRepository(db).mark_read(notification_id, actor.id):
        raise HTTPException(status_code=404, detail="Notification not found")
