"""
FastAPI application factory.

* Registers routes for rides, drivers, fares and admin.
* Wires the dispatch service (in-memory or SQL ride store per settings).
* Starts / stops the staleness sweeper and the optional Redis event relay
  via lifespan events.
* Maps domain errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridedispatch.api.middleware import limiter
from ridedispatch.api.routes import admin, drivers, fares, rides
from ridedispatch.config import Settings, settings as default_settings
from ridedispatch.domain.exceptions import (
    AlreadyAccepted,
    ConcurrentModification,
    DispatchError,
    DriverNotOnline,
    DriverUnavailable,
    InvalidLocation,
    InvalidTransition,
    InvalidZone,
    NotFound,
    Unauthorized,
)
from ridedispatch.infrastructure.database import create_engine, create_session_factory
from ridedispatch.infrastructure.redis_client import get_redis
from ridedispatch.infrastructure.redis_relay import RedisEventRelay
from ridedispatch.infrastructure.repositories import SqlFareConfigRepository, SqlRideStore
from ridedispatch.services.dispatch import DispatchService, build_dispatch_service
from ridedispatch.workers import sweeper as _sweeper

logging.basicConfig(level=default_settings.log_level)
logger = logging.getLogger(__name__)

# First match along the exception's MRO wins.
ERROR_STATUS: dict[type[DispatchError], int] = {
    NotFound: 404,
    Unauthorized: 403,
    InvalidTransition: 409,
    AlreadyAccepted: 409,
    ConcurrentModification: 409,
    DriverUnavailable: 409,
    InvalidLocation: 422,
    InvalidZone: 422,
    DriverNotOnline: 422,
}


def status_for(exc: DispatchError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("Unhandled dispatch error: %s", exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "code": type(exc).__name__},
    )


def _build_service(settings: Settings) -> DispatchService:
    if settings.ride_store == "sql":
        factory = create_session_factory(create_engine(settings.database_url))
        return build_dispatch_service(
            settings,
            ride_store=SqlRideStore(factory),
            fare_configs=SqlFareConfigRepository(factory),
        )
    return build_dispatch_service(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background workers on startup; stop them on shutdown."""
    service: DispatchService = app.state.service
    settings: Settings = app.state.settings
    relay: Optional[RedisEventRelay] = None

    await _sweeper.start_sweeper_loop(service.registry, settings.sweep_interval_seconds)
    if settings.redis_events_enabled:
        relay = RedisEventRelay(service.bus, await get_redis(), settings.redis_channel_prefix)
        await relay.start()
    yield
    if relay:
        await relay.stop()
    await _sweeper.stop_sweeper_loop()
    await service.close()


def create_app(
    service: Optional[DispatchService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(
        title="Ride Dispatch API",
        description=(
            "Matches ride requests to nearby available drivers, offers each "
            "ride to several drivers at once and lets exactly one accept. "
            "Tracks driver positions in an H3 index and prices trips with "
            "zone-aware surge."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service or _build_service(settings)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(DispatchError, dispatch_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(fares.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
