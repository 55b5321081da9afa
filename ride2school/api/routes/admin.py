"""
Admin / observability endpoints
===============================

GET /api/v1/admin/rides/{ride_id}/events -- outbox rows and their delivery state
GET /api/v1/admin/health                 -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride2school.api.dependencies import get_current_actor, get_db
from ride2school.api.middleware import limiter
from ride2school.api.schemas import ErrorResponse, HealthResponse, RideEventResponse
from ride2school.domain.entities import Actor
from ride2school.domain.errors import RideNotFound, Unauthorized
from ride2school.infrastructure.repositories import EventRepository, RideStore
from ride2school.services.lifecycle import is_party

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/rides/{ride_id}/events",
    response_model=list[RideEventResponse],
    summary="Side-effect events recorded for a ride",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_ride_events(
    request: Request,
    ride_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    found = await RideStore(db).locate(ride_id)
    if found is None:
        raise RideNotFound()
    if not is_party(found[1], actor):
        raise Unauthorized()
    return await EventRepository(db).list_for_ride(ride_id)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
