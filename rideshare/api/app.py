"""
FastAPI application factory.

* Builds the store, locks, collaborators and engine once per app.
* Opens / closes them via lifespan events.
* Maps engine errors to HTTP statuses; request validation errors are 400.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rideshare.api.middleware import limiter
from rideshare.api.routes import admin, me, offers, pairings, pricing, requests
from rideshare.config import Settings, settings as default_settings
from rideshare.domain.errors import RideShareError
from rideshare.infrastructure.clients import (
    EventDirectory,
    HttpEventDirectory,
    HttpIdentityResolver,
    IdentityResolver,
    OsrmRouteEstimator,
    RouteEstimator,
    StaticIdentityResolver,
)
from rideshare.infrastructure.locks import LocalLockFactory, RedisLockFactory
from rideshare.infrastructure.memory import MemoryStore
from rideshare.infrastructure.redis_client import create_redis
from rideshare.infrastructure.repositories import SqlStore
from rideshare.infrastructure.store import RideStore
from rideshare.services.engine import RideShareEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the store on startup; close every client on shutdown."""
    store = app.state.engine.store
    await store.open()
    if app.state.config.create_schema and isinstance(store, SqlStore):
        await store.create_schema()
    yield
    await app.state.engine.aclose()
    await app.state.identity.aclose()
    if app.state.redis is not None:
        await app.state.redis.aclose()


async def handle_engine_error(request: Request, exc: RideShareError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "error": "ValidationError"},
    )


def create_app(
    config: Optional[Settings] = None,
    store: Optional[RideStore] = None,
    identity: Optional[IdentityResolver] = None,
    events: Optional[EventDirectory] = None,
    routing: Optional[RouteEstimator] = None,
) -> FastAPI:
    config = config or default_settings
    logging.basicConfig(level=config.log_level)
    timeout = config.collaborator_timeout_seconds

    if store is None:
        if config.database_url:
            store = SqlStore.from_url(config.database_url)
        else:
            logger.info("No database_url configured, using the in-process store")
            store = MemoryStore()

    redis = create_redis(config.redis_url) if config.redis_url else None
    locks = (
        RedisLockFactory(redis, ttl_seconds=config.pairing_lock_ttl_seconds)
        if redis is not None
        else LocalLockFactory()
    )

    if identity is None:
        if config.auth_service_url:
            identity = HttpIdentityResolver(config.auth_service_url, timeout)
        else:
            logger.warning("No auth_service_url configured, every token is rejected")
            identity = StaticIdentityResolver()
    if events is None and config.events_service_url:
        events = HttpEventDirectory(config.events_service_url, timeout)
    if routing is None and config.routing_service_url:
        routing = OsrmRouteEstimator(config.routing_service_url, timeout)

    app = FastAPI(
        title="Event Ride-Share API",
        description=(
            "Drivers publish ride offers for an event, passengers publish "
            "ride requests, and either side proposes a pairing.  Seat "
            "counts stay consistent under concurrent confirms and "
            "cancellations."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.redis = redis
    app.state.identity = identity
    app.state.engine = RideShareEngine(
        store, events=events, routing=routing, locks=locks, config=config
    )

    # Rate limiter
    limiter.enabled = config.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Errors
    app.add_exception_handler(RideShareError, handle_engine_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    # Routers
    for module in (offers, requests, pairings, me, pricing, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
