"""
Ride request endpoints
======================

POST   /api/v1/requests                        -- publish a ride request
GET    /api/v1/requests/{request_id}           -- request details
PATCH  /api/v1/requests/{request_id}           -- update (passenger only)
DELETE /api/v1/requests/{request_id}           -- cancel (passenger only)
GET    /api/v1/events/{event_id}/requests      -- browse public active requests
GET    /api/v1/requests/{request_id}/pairings  -- invitations received (passenger only)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from rideshare.api.dependencies import get_account_id, get_engine
from rideshare.api.middleware import limiter
from rideshare.api.routes.offers import near_point
from rideshare.api.schemas import (
    PairingResponse,
    RequestCreate,
    RequestResponse,
    RequestUpdate,
)
from rideshare.config import settings
from rideshare.domain.enums import TripType
from rideshare.services.engine import RideShareEngine
from rideshare.services.registry import BrowseFilters

router = APIRouter(tags=["requests"])


@router.post(
    "/requests",
    status_code=201,
    response_model=RequestResponse,
    summary="Publish a ride request",
)
@limiter.limit(settings.rate_limit)
async def create_request(
    request: Request,
    body: RequestCreate,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.requests.create_request(
        account_id, body.event_id, body.to_spec()
    )


@router.get(
    "/requests/{request_id}",
    response_model=RequestResponse,
    summary="Get a ride request",
)
@limiter.limit(settings.rate_limit)
async def get_request(
    request: Request,
    request_id: str,
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.requests.get(request_id)


@router.patch(
    "/requests/{request_id}",
    response_model=RequestResponse,
    summary="Update a ride request",
)
@limiter.limit(settings.rate_limit)
async def update_request(
    request: Request,
    request_id: str,
    body: RequestUpdate,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.requests.update_request(request_id, account_id, body.changes())


@router.delete(
    "/requests/{request_id}",
    response_model=RequestResponse,
    summary="Cancel a ride request",
)
@limiter.limit(settings.rate_limit)
async def cancel_request(
    request: Request,
    request_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.requests.cancel(request_id, account_id)


@router.get(
    "/events/{event_id}/requests",
    response_model=list[RequestResponse],
    summary="Browse public ride requests for an event",
)
@limiter.limit(settings.rate_limit)
async def list_event_requests(
    request: Request,
    event_id: str,
    trip_type: Optional[TripType] = None,
    seats: Optional[int] = Query(None, ge=1, description="Seats you can offer"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    engine: RideShareEngine = Depends(get_engine),
):
    filters = BrowseFilters(trip_type=trip_type, seats=seats, near=near_point(lat, lng))
    return await engine.requests.list_public_active(event_id, filters)


@router.get(
    "/requests/{request_id}/pairings",
    response_model=list[PairingResponse],
    summary="Pairings tied to a ride request",
)
@limiter.limit(settings.rate_limit)
async def list_request_pairings(
    request: Request,
    request_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    await engine.requests.get_owned(request_id, account_id)
    return await engine.ledger.list_for_request(request_id)
