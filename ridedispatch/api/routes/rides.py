"""
Ride endpoints
==============

POST  /api/v1/rides                   -- request a ride (dispatch starts immediately)
GET   /api/v1/rides                   -- list rides, optionally by status
GET   /api/v1/rides/{ride_id}         -- current status, driver and fare
POST  /api/v1/rides/{ride_id}/accept  -- offered driver accepts
POST  /api/v1/rides/{ride_id}/reject  -- offered driver declines
POST  /api/v1/rides/{ride_id}/start   -- trip begins
POST  /api/v1/rides/{ride_id}/complete -- trip ends
POST  /api/v1/rides/{ride_id}/retry   -- re-run dispatch after attempts ran out
PATCH /api/v1/rides/{ride_id}/cancel  -- requester cancels

Domain errors are translated to HTTP status codes by the handlers
registered in ``ridedispatch.api.app``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ridedispatch.api.dependencies import get_service
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import (
    ActorRequest,
    CancelRequest,
    DriverActionRequest,
    ErrorResponse,
    RideCreateRequest,
    RideResponse,
)
from ridedispatch.domain.enums import RideStatus
from ridedispatch.services.dispatch import DispatchService

router = APIRouter(prefix="/rides", tags=["rides"])

ERRORS = {
    403: {"model": ErrorResponse, "description": "Caller may not act on this ride"},
    404: {"model": ErrorResponse, "description": "Ride not found"},
    409: {"model": ErrorResponse, "description": "Ride moved on or was taken by another driver"},
}


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    responses={201: {"description": "Ride created; offers sent to nearby drivers."}},
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    service: DispatchService = Depends(get_service),
):
    ride = await service.request_ride(
        body.requester_id,
        body.pickup.to_domain(),
        body.dropoff.to_domain(),
        body.vehicle_class,
        scheduled_time=body.scheduled_time,
        duration_min=body.duration_min,
        search_radius_km=body.search_radius_km,
    )
    return RideResponse.from_ride(ride)


@router.get("", response_model=list[RideResponse], summary="List rides")
@limiter.limit("100/minute")
async def list_rides(
    request: Request,
    status: Optional[RideStatus] = None,
    service: DispatchService = Depends(get_service),
):
    rides = await service.list_rides(status)
    return [RideResponse.from_ride(r) for r in rides]


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    responses=ERRORS,
    summary="Get ride status and fare",
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: str,
    service: DispatchService = Depends(get_service),
):
    return RideResponse.from_ride(await service.get_ride(ride_id))


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    responses=ERRORS,
    summary="Accept an offered ride",
    description=(
        "Only a driver the ride was offered to may accept. When several "
        "drivers race, exactly one wins; the others receive 409."
    ),
)
@limiter.limit("100/minute")
async def accept_ride(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    service: DispatchService = Depends(get_service),
):
    return RideResponse.from_ride(await service.accept_ride(ride_id, body.driver_id))


@router.post(
    "/{ride_id}/reject",
    response_model=RideResponse,
    responses=ERRORS,
    summary="Decline an offered ride",
    description="The driver is never offered this ride again.",
)
@limiter.limit("100/minute")
async def reject_ride(
    request: Request,
    ride_id: str,
    body: DriverActionRequest,
    service: DispatchService = Depends(get_service),
):
    return RideResponse.from_ride(await service.reject_ride(ride_id, body.driver_id))


@router.post(
    "/{ride_id}/start", response_model=RideResponse, responses=ERRORS, summary="Start the trip"
)
@limiter.limit("100/minute")
async def start_ride(
    request: Request,
    ride_id: str,
    body: Optional[ActorRequest] = None,
    service: DispatchService = Depends(get_service),
):
    return RideResponse.from_ride(await service.start_ride(ride_id, body and body.actor_id))


@router.post(
    "/{ride_id}/complete",
    response_model=RideResponse,
    responses=ERRORS,
    summary="Complete the trip",
)
@limiter.limit("100/minute")
async def complete_ride(
    request: Request,
    ride_id: str,
    body: Optional[ActorRequest] = None,
    service: DispatchService = Depends(get_service),
):
    return RideResponse.from_ride(await service.complete_ride(ride_id, body and body.actor_id))


@router.post(
    "/{ride_id}/retry",
    response_model=RideResponse,
    responses=ERRORS,
    summary="Retry dispatch",
    description="Resets the attempt counter of a searching ride and dispatches again.",
)
@limiter.limit("100/minute")
async def retry_ride(
    request: Request,
    ride_id: str,
    service: DispatchService = Depends(get_service),
):
    return RideResponse.from_ride(await service.retry_dispatch(ride_id))


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    responses=ERRORS,
    summary="Cancel a ride",
    description=(
        "Allowed from any non-terminal state, by the requester only. "
        "An assigned driver is released back to available."
    ),
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: str,
    body: CancelRequest,
    service: DispatchService = Depends(get_service),
):
    ride = await service.cancel_ride(ride_id, body.requester_id, body.reason)
    return RideResponse.from_ride(ride)
