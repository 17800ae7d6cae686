"""
"My ..." endpoints
==================

GET /api/v1/me/offers         -- offers I drive, with their pairings
GET /api/v1/me/joined-rides   -- rides I am confirmed on, with event details
GET /api/v1/me/requests       -- join requests / invitations I sent
GET /api/v1/me/ride-requests  -- ride requests I published
"""

from fastapi import APIRouter, Depends, Request

from rideshare.api.dependencies import get_account_id, get_engine
from rideshare.api.middleware import limiter
from rideshare.api.schemas import (
    JoinedRideResponse,
    OfferViewResponse,
    PairingResponse,
    RequestViewResponse,
)
from rideshare.config import settings
from rideshare.services.engine import RideShareEngine

router = APIRouter(prefix="/me", tags=["me"])


@router.get("/offers", response_model=list[OfferViewResponse], summary="My offers")
@limiter.limit(settings.rate_limit)
async def my_offers(
    request: Request,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.projections.my_offers(account_id)


@router.get(
    "/joined-rides", response_model=list[JoinedRideResponse], summary="My joined rides"
)
@limiter.limit(settings.rate_limit)
async def my_joined_rides(
    request: Request,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.projections.my_joined_rides(account_id)


@router.get(
    "/requests", response_model=list[PairingResponse], summary="Proposals I sent"
)
@limiter.limit(settings.rate_limit)
async def my_requests(
    request: Request,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.projections.my_requests(account_id)


@router.get(
    "/ride-requests",
    response_model=list[RequestViewResponse],
    summary="My published ride requests",
)
@limiter.limit(settings.rate_limit)
async def my_ride_requests(
    request: Request,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.projections.my_ride_requests(account_id)
