"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health                       -- simple health check
GET /api/v1/admin/events/{event_id}/summary    -- listing, seat and pairing counts
GET /api/v1/admin/events/{event_id}/pairings   -- every pairing of the event

The event views need an account listed in ``admin_accounts``.
"""

from fastapi import APIRouter, Depends, Request

from rideshare.api.dependencies import get_engine, require_admin
from rideshare.api.middleware import limiter
from rideshare.api.schemas import (
    EventSummaryResponse,
    HealthResponse,
    PairingResponse,
)
from rideshare.config import settings
from rideshare.infrastructure.repositories import SqlStore
from rideshare.services.engine import RideShareEngine

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(engine: RideShareEngine = Depends(get_engine)):
    store = "sql" if isinstance(engine.store, SqlStore) else "memory"
    return HealthResponse(store=store)


@router.get(
    "/events/{event_id}/summary",
    response_model=EventSummaryResponse,
    summary="Event summary",
)
@limiter.limit(settings.rate_limit)
async def event_summary(
    request: Request,
    event_id: str,
    admin_id: str = Depends(require_admin),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.projections.event_summary(event_id)


@router.get(
    "/events/{event_id}/pairings",
    response_model=list[PairingResponse],
    summary="Event pairings, newest first",
)
@limiter.limit(settings.rate_limit)
async def event_pairings(
    request: Request,
    event_id: str,
    admin_id: str = Depends(require_admin),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.projections.event_pairings(event_id)
