"""Side-effect emission: transitions describe notifications and messages here,
the dispatcher worker delivers them after the transaction commits."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.domain.enums import EventKind, NotificationType
from ride2school.infrastructure.repositories import EventRepository


class SideEffects:
    def __init__(self, session: AsyncSession):
        self.outbox = EventRepository(session)

    async def notify(
        self,
        user_id: Optional[str],
        title: str,
        content: str,
        type: NotificationType,
        ride_id: Optional[str],
    ) -> None:
        if not user_id:
            return
        await self.outbox.emit(
            EventKind.NOTIFICATION,
            ride_id,
            {
                "user_id": user_id,
                "title": title,
                "content": content,
                "type": type.value,
                "ride_id": ride_id,
            },
        )

    async def message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        ride_id: Optional[str],
    ) -> None:
        await self.outbox.emit(
            EventKind.MESSAGE,
            ride_id,
            {
                "sender_id": sender_id,
                "recipient_id": recipient_id,
                "content": content,
                "ride_id": ride_id,
            },
        )
