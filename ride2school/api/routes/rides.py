"""
Ride endpoints
==============

GET   /api/v1/rides/active               -- caller's scheduled / in-progress rides
GET   /api/v1/rides/history              -- caller's completed and cancelled rides, newest first
GET   /api/v1/rides/{ride_id}            -- ride in whichever partition holds it
POST  /api/v1/rides/{ride_id}/otp        -- parent regenerates the pickup OTP
POST  /api/v1/rides/{ride_id}/verify-otp -- driver starts the ride with the OTP
PATCH /api/v1/rides/{ride_id}/location   -- driver reports current position
POST  /api/v1/rides/{ride_id}/complete   -- driver completes the ride
POST  /api/v1/rides/{ride_id}/cancel     -- either party cancels
GET   /api/v1/rides/{ride_id}/messages   -- chat between parent and driver
POST  /api/v1/rides/{ride_id}/messages   -- send a chat message to the other party
POST  /api/v1/rides/{ride_id}/rating     -- rate the other party of a completed ride
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.api.dependencies import get_controller, get_current_actor, get_db
from ride2school.api.middleware import limiter
from ride2school.api.schemas import (
    CancelRequest,
    CancelResponse,
    CompleteResponse,
    ErrorResponse,
    LocationIn,
    MessageCreate,
    MessageResponse,
    OtpResponse,
    RatingRequest,
    RatingResponse,
    RideResponse,
    RideSnapshotResponse,
    StartResponse,
    VerifyOtpRequest,
)
from ride2school.domain.entities import Actor, Location
from ride2school.domain.enums import Partition
from ride2school.domain.errors import RideNotFound, Unauthorized
from ride2school.infrastructure.models import RideModel
from ride2school.infrastructure.repositories import (
    AnyRideRecord,
    MessageRepository,
    RideRepository,
    RideStore,
)
from ride2school.services.lifecycle import (
    RideLifecycleController,
    is_party,
    status_of,
)

router = APIRouter(prefix="/rides", tags=["rides"])

_ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def ride_view(ride: RideModel, actor: Actor) -> RideResponse:
    """Only the parent gets to see the pickup code."""
    view = RideResponse.model_validate(ride)
    if ride.parent_id != actor.id:
        view = view.model_copy(update={"otp": None})
    return view


def snapshot(partition: Partition, record: AnyRideRecord) -> RideSnapshotResponse:
    fare = getattr(record, "fare", None)
    if partition == Partition.REQUESTS:
        fare = record.estimated_fare
    return RideSnapshotResponse(
        id=record.id,
        partition=partition,
        status=status_of(partition, record),
        parent_id=record.parent_id,
        driver_id=getattr(record, "driver_id", None),
        fare=fare,
        completed_at=getattr(record, "completed_at", None),
        distance_traveled=getattr(record, "distance_traveled", None),
        duration_minutes=getattr(record, "duration_minutes", None),
        platform_fee=getattr(record, "platform_fee", None),
        driver_earnings=getattr(record, "driver_earnings", None),
        cancelled_by=getattr(record, "cancelled_by", None),
        cancelled_by_type=getattr(record, "cancelled_by_type", None),
        cancellation_reason=getattr(record, "cancellation_reason", None),
        cancelled_at=getattr(record, "cancelled_at", None),
        fine_applied=getattr(record, "fine_applied", None),
        cancellation_fine=getattr(record, "cancellation_fine", None),
        updated_at=getattr(record, "updated_at", None),
    )


@router.get(
    "/active",
    response_model=list[RideResponse],
    summary="List the caller's scheduled and in-progress rides",
)
@limiter.limit("100/minute")
async def list_active_rides(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    rides = await RideRepository(db).list_for_user(actor.id)
    return [ride_view(r, actor) for r in rides]


@router.get(
    "/history",
    response_model=list[RideSnapshotResponse],
    summary="List the caller's completed and cancelled rides",
)
@limiter.limit("100/minute")
async def ride_history(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    entries = await RideStore(db).history(actor.id, limit=limit, offset=offset)
    return [snapshot(partition, record) for partition, record in entries]


@router.get(
    "/{ride_id}",
    response_model=RideSnapshotResponse,
    summary="Get a ride from whichever partition holds it",
    responses=_ERRORS,
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    found = await RideStore(db).locate(ride_id)
    if found is None:
        raise RideNotFound()
    partition, record = found
    if not is_party(record, actor) and not (
        partition == Partition.REQUESTS and actor.is_driver
    ):
        raise Unauthorized()
    return snapshot(partition, record)


@router.post(
    "/{ride_id}/otp",
    response_model=OtpResponse,
    summary="Generate a new pickup OTP",
    responses=_ERRORS,
)
@limiter.limit("10/minute")
async def regenerate_otp(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    otp = await controller.regenerate_otp(actor, ride_id)
    return OtpResponse(ride_id=ride_id, otp=otp)


@router.post(
    "/{ride_id}/verify-otp",
    response_model=StartResponse,
    summary="Verify the pickup OTP and start the ride",
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def verify_otp(
    request: Request,
    ride_id: str,
    body: VerifyOtpRequest,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    result = await controller.start(actor, ride_id, body.otp)
    return StartResponse(
        success=result.success, ride_id=result.ride_id, message=result.message
    )


@router.patch(
    "/{ride_id}/location",
    response_model=RideResponse,
    summary="Report the driver's current location",
    responses=_ERRORS,
)
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    ride_id: str,
    body: LocationIn,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    ride = await controller.update_location(
        actor, ride_id, Location(body.lat, body.lng, body.address)
    )
    return ride_view(ride, actor)


@router.post(
    "/{ride_id}/complete",
    response_model=CompleteResponse,
    summary="Complete a ride and settle the fare",
    responses=_ERRORS,
)
@limiter.limit("100/minute")
async def complete_ride(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    result = await controller.complete(actor, ride_id)
    return CompleteResponse(
        success=result.success,
        ride_id=result.ride_id,
        fare=result.fare,
        message=result.message,
        already_completed=result.already_completed,
        completed_at=result.completed_at,
        platform_fee=result.platform_fee,
        driver_earnings=result.driver_earnings,
        parent_transaction_id=result.parent_transaction_id,
        driver_transaction_id=result.driver_transaction_id,
    )


@router.post(
    "/{ride_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel a ride",
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    reason = body.reason if body else None
    result = await controller.cancel(actor, ride_id, reason)
    return CancelResponse(
        success=result.success,
        ride_id=result.ride_id,
        cancelled_by=result.cancelled_by,
        cancelled_by_type=result.cancelled_by_type,
        outcome=result.outcome,
        message=result.message,
        penalty_applied=result.penalty_applied,
        penalty_recipient=result.penalty_recipient,
        cancelled_at=result.cancelled_at,
    )


@router.get(
    "/{ride_id}/messages",
    response_model=list[MessageResponse],
    summary="Chat messages for a ride; marks the caller's as read",
    responses=_ERRORS,
)
@limiter.limit("100/minute")
async def list_messages(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    found = await RideStore(db).locate(ride_id)
    if found is None:
        raise RideNotFound()
    _, record = found
    if not is_party(record, actor):
        raise Unauthorized()
    repo = MessageRepository(db)
    messages = [
        MessageResponse.model_validate(m) for m in await repo.list_for_ride(ride_id)
    ]
    await repo.mark_ride_read(ride_id, actor.id)
    return messages


@router.post(
    "/{ride_id}/messages",
    status_code=201,
    response_model=MessageResponse,
    summary="Send a chat message to the other party of the ride",
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
)
@limiter.limit("30/minute")
async def send_message(
    request: Request,
    ride_id: str,
    body: MessageCreate,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    return await controller.send_message(actor, ride_id, body.content)


@router.post(
    "/{ride_id}/rating",
    status_code=201,
    response_model=RatingResponse,
    summary="Rate the other party of a completed ride",
    responses={**_ERRORS, 422: {"model": ErrorResponse}},
)
@limiter.limit("20/minute")
async def rate_ride(
    request: Request,
    ride_id: str,
    body: RatingRequest,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    return await controller.rate(actor, ride_id, body.rating, body.comment)
