"""
Async HTTP client for the ride API, plus the active-ride poller.

``RideClient`` turns the API's ``{"detail": {"code": ..., "message": ...}}``
error bodies back into the ``RideError`` subclasses the server raised, and
successful bodies into the same result types the controller returns.

``ActiveRidePoller`` refreshes the caller's active rides on a fixed
interval and keeps one local entry per ride id.  Responses may arrive stale
or out of order, so an entry is only replaced by a snapshot at least as
new (``updated_at``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from ride2school.api.schemas import (
    AcceptResponse,
    CancelResponse,
    CompleteResponse,
    MessageResponse,
    RatingResponse,
    RideResponse,
    RideSnapshotResponse,
    StartResponse,
)
from ride2school.config import settings
from ride2school.domain.entities import (
    AcceptResult,
    CancelResult,
    CompleteResult,
    StartResult,
)
from ride2school.domain.errors import ERRORS_BY_CODE, InvalidStatus, RideError

logger = logging.getLogger(__name__)


def decode_error(response: httpx.Response) -> Exception:
    """Map an error response to the ``RideError`` it encodes.

    Falls back to ``httpx.HTTPStatusError`` for bodies without a known code.
    """
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    if isinstance(detail, dict) and detail.get("code") in ERRORS_BY_CODE:
        cls = ERRORS_BY_CODE[detail["code"]]
        message = detail.get("message")
        if cls is InvalidStatus:
            return InvalidStatus(detail.get("current_status"), message)
        extra = {k: v for k, v in detail.items() if k not in ("code", "message")}
        return cls(message, **extra)
    return httpx.HTTPStatusError(
        f"{response.status_code} from {response.request.url}",
        request=response.request,
        response=response,
    )


class RideClient:
    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.user_id = user_id
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1",
            headers={"X-User-Id": user_id},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "RideClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._http.request(method, path, **kwargs)
        if response.is_success:
            return response.json() if response.content else None
        raise decode_error(response)

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def accept(self, request_id: str) -> AcceptResult:
        body = AcceptResponse.model_validate(
            await self._call("POST", f"/ride-requests/{request_id}/accept")
        )
        return AcceptResult(**body.model_dump())

    async def regenerate_otp(self, ride_id: str) -> str:
        return (await self._call("POST", f"/rides/{ride_id}/otp"))["otp"]

    async def verify_otp(self, ride_id: str, otp: str) -> StartResult:
        body = StartResponse.model_validate(
            await self._call("POST", f"/rides/{ride_id}/verify-otp", json={"otp": otp})
        )
        return StartResult(**body.model_dump())

    async def complete(self, ride_id: str) -> CompleteResult:
        body = CompleteResponse.model_validate(
            await self._call("POST", f"/rides/{ride_id}/complete")
        )
        return CompleteResult(**body.model_dump())

    async def cancel(self, ride_id: str, reason: Optional[str] = None) -> CancelResult:
        body = CancelResponse.model_validate(
            await self._call("POST", f"/rides/{ride_id}/cancel", json={"reason": reason})
        )
        return CancelResult(**body.model_dump())

    async def active_rides(self) -> list[RideResponse]:
        data = await self._call("GET", "/rides/active")
        return [RideResponse.model_validate(item) for item in data]

    async def history(
        self, limit: int = 20, offset: int = 0
    ) -> list[RideSnapshotResponse]:
        data = await self._call(
            "GET", "/rides/history", params={"limit": limit, "offset": offset}
        )
        return [RideSnapshotResponse.model_validate(item) for item in data]

    # ── Chat and ratings ──────────────────────────────────────────────

    async def send_message(self, ride_id: str, content: str) -> MessageResponse:
        return MessageResponse.model_validate(
            await self._call(
                "POST", f"/rides/{ride_id}/messages", json={"content": content}
            )
        )

    async def rate(
        self, ride_id: str, rating: int, comment: Optional[str] = None
    ) -> RatingResponse:
        return RatingResponse.model_validate(
            await self._call(
                "POST",
                f"/rides/{ride_id}/rating",
                json={"rating": rating, "comment": comment},
            )
        )


# ── Poller ────────────────────────────────────────────────────────────


def _is_newer(candidate: RideResponse, current: RideResponse) -> bool:
    if current.updated_at is None:
        return True
    if candidate.updated_at is None:
        return False
    return candidate.updated_at >= current.updated_at


class ActiveRidePoller:
    def __init__(
        self,
        client: RideClient,
        interval_seconds: float = settings.poll_interval_seconds,
        on_change: Optional[Callable[[dict[str, RideResponse]], Awaitable[None]]] = None,
    ):
        self.client = client
        self.interval_seconds = interval_seconds
        self.on_change = on_change
        self.rides: dict[str, RideResponse] = {}
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    def merge(self, snapshots: Iterable[RideResponse]) -> bool:
        """Fold one poll result into local state.  Returns True on change."""
        incoming: dict[str, RideResponse] = {}
        for snap in snapshots:
            seen = incoming.get(snap.id)
            if seen is None or _is_newer(snap, seen):
                incoming[snap.id] = snap

        merged: dict[str, RideResponse] = {}
        for ride_id, snap in incoming.items():
            current = self.rides.get(ride_id)
            merged[ride_id] = (
                snap if current is None or _is_newer(snap, current) else current
            )

        changed = merged != self.rides
        self.rides = merged
        return changed

    async def refresh(self) -> dict[str, RideResponse]:
        if self.merge(await self.client.active_rides()) and self.on_change:
            await self.on_change(self.rides)
        return self.rides

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Active-ride poller started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Active-ride poller stopped")

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.refresh()
            except (httpx.HTTPError, RideError):
                logger.exception("Active-ride refresh failed")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass
