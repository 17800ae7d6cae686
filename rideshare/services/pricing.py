"""Advisory payment estimate: road distance when available, else haversine."""

from __future__ import annotations

import logging

from rideshare.domain.distance import haversine_km
from rideshare.domain.pricing import AdvisoryPricing, PriceGuide
from rideshare.infrastructure.clients import RouteEstimator

logger = logging.getLogger(__name__)


class PriceAdvisor:
    def __init__(self, routing: RouteEstimator, pricing: AdvisoryPricing):
        self.routing = routing
        self.pricing = pricing

    def advisory_max_payment(self, distance_km: float) -> int:
        return self.pricing.strategy.max_payment(distance_km)

    async def estimate(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> PriceGuide:
        try:
            km = await self.routing.distance_km(origin, destination)
        except Exception:
            logger.warning("Route estimate failed, using straight line", exc_info=True)
            km = None
        if km is not None:
            return self.pricing.quote(km, "route")
        return self.pricing.quote(
            haversine_km(origin, destination),
            "straight_line",
        )
