"""
Fare endpoints
==============

POST /api/v1/fares/estimate         -- price a trip without creating a ride
PUT  /api/v1/fares/{vehicle_class}  -- replace the active config for a class
"""

from fastapi import APIRouter, Depends, Request

from ridedispatch.api.dependencies import get_service
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import (
    ErrorResponse,
    FareConfigRequest,
    FareConfigResponse,
    FareEstimateRequest,
    FareEstimateResponse,
)
from ridedispatch.domain.enums import VehicleClass
from ridedispatch.services.dispatch import DispatchService

router = APIRouter(prefix="/fares", tags=["fares"])


@router.post(
    "/estimate",
    response_model=FareEstimateResponse,
    summary="Estimate a fare",
    responses={404: {"model": ErrorResponse, "description": "No active fare config"}},
)
@limiter.limit("100/minute")
async def estimate_fare(
    request: Request,
    body: FareEstimateRequest,
    service: DispatchService = Depends(get_service),
):
    estimate = await service.estimate_fare(
        body.pickup.to_domain(),
        body.dropoff.to_domain(),
        body.vehicle_class,
        body.duration_min,
    )
    return FareEstimateResponse.model_validate(estimate)


@router.put(
    "/{vehicle_class}",
    response_model=FareConfigResponse,
    summary="Activate a fare config",
    description="The previous active config for the class is deactivated.",
    responses={422: {"model": ErrorResponse, "description": "Malformed surge zone"}},
)
@limiter.limit("30/minute")
async def configure_fare(
    request: Request,
    vehicle_class: VehicleClass,
    body: FareConfigRequest,
    service: DispatchService = Depends(get_service),
):
    config = await service.configure_fare(body.to_domain(vehicle_class))
    return FareConfigResponse.from_config(config)
