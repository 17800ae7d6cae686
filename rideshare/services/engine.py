"""
Engine facade
=============

Wires the components around one injected ``RideStore``:

    CapacityGuard <- MatchLedger <- OfferRegistry / RequestRegistry
                                 <- PairingLifecycle
                                 <- ProjectionBuilder
    PriceAdvisor (routing collaborator + advisory cap)

Construct one per process.  Collaborators default to the in-process
implementations, which is what tests and local runs use.
"""

from __future__ import annotations

from typing import Callable, Optional

from rideshare.config import Settings, settings as default_settings
from rideshare.domain.entities import MonotonicClock
from rideshare.domain.pricing import AdvisoryPricing, PerKmCap
from rideshare.infrastructure.clients import (
    EventDirectory,
    NoRouteEstimator,
    RouteEstimator,
    StaticEventDirectory,
)
from rideshare.infrastructure.locks import LocalLockFactory
from rideshare.infrastructure.store import RideStore

from .capacity import CapacityGuard
from .ledger import MatchLedger
from .lifecycle import PairingLifecycle
from .pricing import PriceAdvisor
from .projections import ProjectionBuilder
from .registry import OfferRegistry, RequestRegistry


class RideShareEngine:
    def __init__(
        self,
        store: RideStore,
        *,
        events: Optional[EventDirectory] = None,
        routing: Optional[RouteEstimator] = None,
        locks: Optional[Callable] = None,
        clock: Optional[MonotonicClock] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        clock = clock or MonotonicClock()
        self.store = store
        self.events = events or StaticEventDirectory()
        self.routing = routing or NoRouteEstimator()

        self.capacity = CapacityGuard(store)
        self.ledger = MatchLedger(store, self.capacity)
        self.offers = OfferRegistry(
            store,
            self.ledger,
            clock,
            h3_resolution=config.h3_resolution,
            near_ring_size=config.near_ring_size,
        )
        self.requests = RequestRegistry(
            store,
            self.ledger,
            clock,
            max_passenger_count=config.max_passenger_count,
            h3_resolution=config.h3_resolution,
            near_ring_size=config.near_ring_size,
        )
        self.pairings = PairingLifecycle(
            store,
            self.ledger,
            locks or LocalLockFactory(),
            clock,
            max_passenger_count=config.max_passenger_count,
        )
        self.projections = ProjectionBuilder(
            self.offers, self.requests, self.ledger, self.events
        )
        self.pricing = PriceAdvisor(
            self.routing,
            AdvisoryPricing(
                PerKmCap(
                    rate_per_km=config.payment_rate_per_km,
                    buffer=config.payment_buffer,
                )
            ),
        )

    async def aclose(self) -> None:
        await self.events.aclose()
        await self.routing.aclose()
        await self.store.close()
