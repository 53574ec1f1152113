"""
Admin / observability endpoints
===============================

GET /api/v1/admin/stats  -- driver and ride counts, event subscribers
GET /api/v1/admin/health -- simple health check
"""

from collections import Counter

from fastapi import APIRouter, Depends, Request

from ridedispatch.api.dependencies import get_service
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import HealthResponse, StatsResponse
from ridedispatch.domain.enums import RideStatus
from ridedispatch.services.dispatch import DispatchService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Counts of drivers and rides by status",
)
@limiter.limit("100/minute")
async def get_stats(
    request: Request,
    service: DispatchService = Depends(get_service),
):
    rides = await service.list_rides()
    by_status = Counter(r.status.value for r in rides)
    return StatsResponse(
        online_drivers=len(service.registry.online_drivers()),
        registered_drivers=len(service.registry),
        rides_by_status={s.value: by_status.get(s.value, 0) for s in RideStatus},
        event_subscribers=service.bus.subscriber_count,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
