"""
Pairing endpoints
=================

GET    /api/v1/pairings/{pairing_id}          -- details (parties only)
POST   /api/v1/pairings/{pairing_id}/confirm  -- counterparty confirms, seats reserved
POST   /api/v1/pairings/{pairing_id}/reject   -- counterparty rejects
POST   /api/v1/pairings/{pairing_id}/cancel   -- withdraw / cancel
DELETE /api/v1/pairings/{pairing_id}          -- passenger deletes own pending join request
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from rideshare.api.dependencies import get_account_id, get_engine
from rideshare.api.middleware import limiter
from rideshare.api.schemas import DeletedResponse, PairingCancel, PairingResponse
from rideshare.config import settings
from rideshare.services.engine import RideShareEngine

router = APIRouter(prefix="/pairings", tags=["pairings"])


@router.get("/{pairing_id}", response_model=PairingResponse, summary="Get a pairing")
@limiter.limit(settings.rate_limit)
async def get_pairing(
    request: Request,
    pairing_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.pairings.get(pairing_id, account_id)


@router.post(
    "/{pairing_id}/confirm",
    response_model=PairingResponse,
    summary="Confirm a pairing",
    responses={409: {"description": "Not enough seats, or already closed."}},
)
@limiter.limit(settings.rate_limit)
async def confirm_pairing(
    request: Request,
    pairing_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.pairings.confirm(pairing_id, account_id)


@router.post(
    "/{pairing_id}/reject", response_model=PairingResponse, summary="Reject a pairing"
)
@limiter.limit(settings.rate_limit)
async def reject_pairing(
    request: Request,
    pairing_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    return await engine.pairings.reject(pairing_id, account_id)


@router.post(
    "/{pairing_id}/cancel",
    response_model=PairingResponse,
    summary="Cancel a pairing",
    description=(
        "The initiator may withdraw a pending proposal; either party may "
        "cancel a confirmed one, which gives the seats back."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_pairing(
    request: Request,
    pairing_id: str,
    body: Optional[PairingCancel] = None,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    message = body.message if body else None
    return await engine.pairings.cancel(pairing_id, account_id, message=message)


@router.delete(
    "/{pairing_id}",
    response_model=DeletedResponse,
    summary="Delete your pending join request",
)
@limiter.limit(settings.rate_limit)
async def delete_pairing(
    request: Request,
    pairing_id: str,
    account_id: str = Depends(get_account_id),
    engine: RideShareEngine = Depends(get_engine),
):
    await engine.pairings.delete(pairing_id, account_id)
    return DeletedResponse(id=pairing_id)
