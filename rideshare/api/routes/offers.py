"""
Offer endpoints
===============

POST   /api/v1/offers                       -- publish an offer
GET    /api/v1/offers/{offer_id}            -- offer details
PATCH  /api/v1/offers/{offer_id}            -- update (driver only)
DELETE /api/v1/offers/{offer_id}            -- cancel (driver only), closes open pairings
GET    /api/v1/events/{event_id}/offers     -- browse public active offers
GET    /api/v1/offers/{offer_id}/pairings   -- confirmed / pending pairings (driver only)
GET    /api/v1/offers/{offer_id}/capacity   -- seat accounting audit
POST   /api/v1/offers/{offer_id}/join-requests -- passenger asks to join
POST   /api/v1/offers/{offer_id}/invitations   -- driver invites a request
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from rideshare.api.dependencies import get_account_id, get_engine
from rideshare.api.middleware import limiter
from rideshare.api.schemas import (
    CapacityAuditResponse,
    InvitationCreate,
    JoinRequestCreate,
    OfferCreate,
    OfferPairingsResponse,
    OfferResponse,
    OfferUpdate,
    PairingResponse,
)
from rideshare.config import settings
from rideshare.domain.enums import PaymentPolicy, TripType
from rideshare.domain.errors import ValidationError
from rideshare.services.engine import RideShareEngine
from rideshare.services.registry import BrowseFilters

router = APIRouter(tags=["offers"])


def near_point(lat: Optional[float], lng: Optional[float]) -> Optional[tuple[float, float]]:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("Both lat and lng are needed for a proximity search")
    return (lat, lng)


@router.post(
    "/offers",
    status_code=201,
    response_model=OfferResponse,
    summary="Publish a ride offer",
)
@limiter.limit(settings.rate_limit)
async def create_offer(
    request: Request,
    body: OfferCreate,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.offers.create_offer(account_id, body.event_id, body.to_spec())


@router.get("/offers/{offer_id}", response_model=OfferResponse, summary="Get an offer")
@limiter.limit(settings.rate_limit)
async def get_offer(
    request: Request,
    offer_id: str,
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.offers.get(offer_id)


@router.patch(
    "/offers/{offer_id}",
    response_model=OfferResponse,
    summary="Update an offer",
    description="Locations, notes, privacy and payment can change; seats cannot.",
)
@limiter.limit(settings.rate_limit)
async def update_offer(
    request: Request,
    offer_id: str,
    body: OfferUpdate,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.offers.update_offer(offer_id, account_id, body.changes())


@router.delete(
    "/offers/{offer_id}",
    response_model=OfferResponse,
    summary="Cancel an offer",
    description=(
        "Cancels the offer and every pending or confirmed pairing on it. "
        "Repeating the call returns the cancelled offer."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_offer(
    request: Request,
    offer_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.offers.cancel(offer_id, account_id)


@router.get(
    "/events/{event_id}/offers",
    response_model=list[OfferResponse],
    summary="Browse public offers for an event",
)
@limiter.limit(settings.rate_limit)
async def list_event_offers(
    request: Request,
    event_id: str,
    trip_type: Optional[TripType] = None,
    seats: Optional[int] = Query(None, ge=1, description="Minimum free seats"),
    payment: Optional[PaymentPolicy] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    engine: RideShareEngine = Depends(get_engine),
):
    filters = BrowseFilters(
        trip_type=trip_type, seats=seats, payment=payment, near=near_point(lat, lng)
    )
    return await engine.offers.list_public_active(event_id, filters)


@router.get(
    "/offers/{offer_id}/pairings",
    response_model=OfferPairingsResponse,
    summary="Confirmed and pending pairings of an offer",
)
@limiter.limit(settings.rate_limit)
async def list_offer_pairings(
    request: Request,
    offer_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    await engine.offers.get_owned(offer_id, account_id)
    return await engine.ledger.list_for_offer(offer_id)


@router.get(
    "/offers/{offer_id}/capacity",
    response_model=CapacityAuditResponse,
    summary="Audit the seat counter against confirmed pairings",
)
@limiter.limit(settings.rate_limit)
async def audit_capacity(
    request: Request,
    offer_id: str,
    engine: RideShareEngine = Depends(get_engine),
):
    audit = await engine.capacity.audit(offer_id)
    return CapacityAuditResponse.model_validate(audit)


@router.post(
    "/offers/{offer_id}/join-requests",
    status_code=201,
    response_model=PairingResponse,
    summary="Ask to join an offer",
)
@limiter.limit(settings.rate_limit)
async def send_join_request(
    request: Request,
    offer_id: str,
    body: JoinRequestCreate,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.pairings.send_join_request(
        account_id,
        offer_id,
        pickup=body.pickup.to_domain() if body.pickup else None,
        passenger_count=body.passenger_count,
        message=body.message,
        request_id=body.request_id,
    )


@router.post(
    "/offers/{offer_id}/invitations",
    status_code=201,
    response_model=PairingResponse,
    summary="Invite a ride request to this offer",
)
@limiter.limit(settings.rate_limit)
async def send_invitation(
    request: Request,
    offer_id: str,
    body: InvitationCreate,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.pairings.send_invitation(
        account_id, offer_id, body.request_id, message=body.message
    )
