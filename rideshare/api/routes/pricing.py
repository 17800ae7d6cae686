"""
Pricing endpoint
================

POST /api/v1/pricing/advisory -- suggested maximum payment between two points
"""

from fastapi import APIRouter, Depends, Request

from rideshare.api.dependencies import get_engine
from rideshare.api.middleware import limiter
from rideshare.api.schemas import PriceEstimateRequest, PriceEstimateResponse
from rideshare.config import settings
from rideshare.services.engine import RideShareEngine

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post(
    "/advisory",
    response_model=PriceEstimateResponse,
    summary="Advisory payment cap",
    description=(
        "Road distance from the routing service when available, otherwise "
        "straight-line distance.  The cap is a guide and is never enforced."
    ),
)
@limiter.limit(settings.rate_limit)
async def advisory_price(
    request: Request,
    body: PriceEstimateRequest,
    engine: RideShareEngine = Depends(get_engine),
):
    guide = await engine.pricing.estimate(
        (body.origin.lat, body.origin.lng),
        (body.destination.lat, body.destination.lng),
    )
    return PriceEstimateResponse(
        distance_km=guide.distance_km,
        source=guide.source,
        max_payment=guide.max_payment,
        exceeds_cap=guide.exceeded_by(body.amount) if body.amount is not None else None,
    )
