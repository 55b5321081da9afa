"""
Ride request endpoints
======================

POST /api/v1/ride-requests                     -- parent opens a request
GET  /api/v1/ride-requests                     -- open requests (drivers) or own requests (parents)
POST /api/v1/ride-requests/{request_id}/accept -- driver accepts; returns the ride and its OTP
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.api.dependencies import get_controller, get_current_actor, get_db
from ride2school.api.middleware import limiter
from ride2school.api.schemas import (
    AcceptResponse,
    ErrorResponse,
    RideRequestCreate,
    RideRequestResponse,
)
from ride2school.domain.entities import Actor, Location
from ride2school.infrastructure.repositories import RideRequestRepository
from ride2school.services.lifecycle import RideLifecycleController

router = APIRouter(prefix="/ride-requests", tags=["ride-requests"])


@router.post(
    "",
    status_code=201,
    response_model=RideRequestResponse,
    summary="Create a ride request",
    responses={402: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def create_ride_request(
    request: Request,
    body: RideRequestCreate,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    return await controller.create_request(
        actor,
        origin=Location(body.origin.lat, body.origin.lng, body.origin.address),
        destination=Location(
            body.destination.lat, body.destination.lng, body.destination.address
        ),
        scheduled_time=body.scheduled_time,
        child_id=body.child_id,
        destination_name=body.destination_name,
        notes=body.notes,
        estimated_fare=body.estimated_fare,
    )


@router.get(
    "",
    response_model=list[RideRequestResponse],
    summary="List ride requests visible to the caller",
)
@limiter.limit("100/minute")
async def list_ride_requests(
    request: Request,
    limit: int = 50,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    repo = RideRequestRepository(db)
    if actor.is_driver:
        return await repo.list_open(limit=limit)
    return await repo.list_for_parent(actor.id)


@router.post(
    "/{request_id}/accept",
    response_model=AcceptResponse,
    summary="Accept a ride request",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Taken, busy, offline or locked"},
    },
)
@limiter.limit("100/minute")
async def accept_ride_request(
    request: Request,
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    controller: RideLifecycleController = Depends(get_controller),
):
    result = await controller.accept(actor, request_id)
    return AcceptResponse(
        id=result.id,
        otp=result.otp,
        otp_generated_at=result.otp_generated_at,
        estimated_arrival=result.estimated_arrival,
        fare=result.fare,
    )
