"""
Delivery sinks for side effects.

The dispatcher hands every outbox event to one of these.  The default sinks
store notifications and chat messages in their own tables; a push or SMS
gateway would implement the same two protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from .models import MessageModel, NotificationModel
from .repositories import MessageRepository, NotificationRepository


class NotificationSink(Protocol):
    async def notify(
        self,
        user_id: str,
        title: str,
        content: str,
        type: str,
        ride_id: Optional[str],
    ) -> None: ...


class MessageSink(Protocol):
    async def send_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        ride_id: Optional[str],
    ) -> None: ...


class DatabaseNotificationSink:
    def __init__(self, session: AsyncSession):
        self.repo = NotificationRepository(session)

    async def notify(self, user_id, title, content, type, ride_id) -> None:
        await self.repo.add(
            NotificationModel(
                user_id=user_id,
                title=title,
                content=content,
                type=type,
                ride_id=ride_id,
            )
        )


class DatabaseMessageSink:
    def __init__(self, session: AsyncSession):
        self.repo = MessageRepository(session)

    async def send_message(self, sender_id, recipient_id, content, ride_id) -> None:
        await self.repo.add(
            MessageModel(
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=content,
                ride_id=ride_id,
            )
        )


@dataclass
class DeliverySinks:
    notifications: NotificationSink
    messages: MessageSink


def database_sinks(session: AsyncSession) -> DeliverySinks:
    return DeliverySinks(
        notifications=DatabaseNotificationSink(session),
        messages=DatabaseMessageSink(session),
    )
