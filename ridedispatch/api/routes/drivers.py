"""
Driver endpoints
================

POST  /api/v1/drivers/{driver_id}/online       -- go online at a position
POST  /api/v1/drivers/{driver_id}/offline      -- go offline
POST  /api/v1/drivers/{driver_id}/location     -- stream a position update
PATCH /api/v1/drivers/{driver_id}/availability -- available / busy / offline
GET   /api/v1/drivers/{driver_id}              -- current driver state
GET   /api/v1/drivers/{driver_id}/locations    -- recent location history
POST  /api/v1/drivers/nearby                   -- available drivers around a point
"""

from fastapi import APIRouter, Depends, Query, Request

from ridedispatch.api.dependencies import get_service
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import (
    AvailabilityRequest,
    DriverOnlineRequest,
    DriverResponse,
    LocationSampleResponse,
    LocationUpdateRequest,
    NearbyDriverResponse,
    NearbyRequest,
)
from ridedispatch.services.dispatch import DispatchService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.post(
    "/nearby",
    response_model=list[NearbyDriverResponse],
    summary="Find available drivers near a point",
)
@limiter.limit("100/minute")
async def nearby_drivers(
    request: Request,
    body: NearbyRequest,
    limit: int = Query(20, ge=1, le=100),
    service: DispatchService = Depends(get_service),
):
    candidates = service.nearby_drivers(
        body.location.to_domain(),
        radius_km=body.radius_km,
        vehicle_class=body.vehicle_class,
        limit=limit,
    )
    return [
        NearbyDriverResponse(
            driver=DriverResponse.from_driver(c.driver),
            distance_km=round(c.distance_km, 3),
        )
        for c in candidates
    ]


@router.post(
    "/{driver_id}/online",
    response_model=DriverResponse,
    summary="Bring a driver online",
    description=(
        "A driver seen for the first time must supply ``vehicle_class``; "
        "afterwards it is optional."
    ),
)
@limiter.limit("100/minute")
async def go_online(
    request: Request,
    driver_id: str,
    body: DriverOnlineRequest,
    service: DispatchService = Depends(get_service),
):
    driver = await service.set_driver_online(
        driver_id, body.location.to_domain(), body.vehicle_class
    )
    return DriverResponse.from_driver(driver)


@router.post("/{driver_id}/offline", response_model=DriverResponse, summary="Take a driver offline")
@limiter.limit("100/minute")
async def go_offline(
    request: Request,
    driver_id: str,
    service: DispatchService = Depends(get_service),
):
    return DriverResponse.from_driver(await service.set_driver_offline(driver_id))


@router.post(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Report the driver's current position",
)
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    driver_id: str,
    body: LocationUpdateRequest,
    service: DispatchService = Depends(get_service),
):
    driver = await service.update_driver_location(
        driver_id, body.to_domain(), body.speed, body.heading
    )
    return DriverResponse.from_driver(driver)


@router.patch(
    "/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Change driver availability",
)
@limiter.limit("100/minute")
async def set_availability(
    request: Request,
    driver_id: str,
    body: AvailabilityRequest,
    service: DispatchService = Depends(get_service),
):
    driver = await service.set_driver_availability(driver_id, body.availability)
    return DriverResponse.from_driver(driver)


@router.get("/{driver_id}", response_model=DriverResponse, summary="Get driver state")
@limiter.limit("100/minute")
async def get_driver(
    request: Request,
    driver_id: str,
    service: DispatchService = Depends(get_service),
):
    return DriverResponse.from_driver(service.get_driver(driver_id))


@router.get(
    "/{driver_id}/locations",
    response_model=list[LocationSampleResponse],
    summary="Recent location history, oldest first",
)
@limiter.limit("100/minute")
async def location_history(
    request: Request,
    driver_id: str,
    limit: int = Query(50, ge=1, le=500),
    service: DispatchService = Depends(get_service),
):
    return [
        LocationSampleResponse(
            longitude=s.location.longitude,
            latitude=s.location.latitude,
            timestamp=s.location.timestamp,
            speed=s.speed,
            heading=s.heading,
        )
        for s in service.driver_history(driver_id, limit)
    ]
