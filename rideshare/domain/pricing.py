"""
Advisory Payment Cap  (Strategy Pattern)
========================================

Formula
-------
Max_Payment = ceil(Distance_km x Rate_Per_KM x Buffer)

* **Rate_Per_KM** defaults to 0.7 (fuel-share estimate per km).
* **Buffer** defaults to 1.5 to absorb detours and parking.

The cap is advisory only: drivers may ask for more and the engine records
that the amount exceeds the guide instead of refusing the offer.

Complexity: O(1) per quote.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


# ── Strategy hierarchy ────────────────────────────────────────────────


class PaymentCapStrategy(ABC):
    @abstractmethod
    def max_payment(self, distance_km: float) -> int: ...


class PerKmCap(PaymentCapStrategy):
    def __init__(self, rate_per_km: float = 0.7, buffer: float = 1.5):
        self.rate_per_km = rate_per_km
        self.buffer = buffer

    def max_payment(self, distance_km: float) -> int:
        if distance_km <= 0:
            return 0
        # round first so float noise (12.000000001) does not bump the ceiling
        return math.ceil(round(distance_km * self.rate_per_km * self.buffer, 6))


# ── Engine facade ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceGuide:
    distance_km: float
    source: str  # "route" or "straight_line"
    max_payment: int

    def exceeded_by(self, amount: Optional[float]) -> bool:
        return amount is not None and self.max_payment > 0 and amount > self.max_payment


class AdvisoryPricing:
    """High-level API used by the pricing service and the API layer."""

    def __init__(self, strategy: Optional[PaymentCapStrategy] = None):
        self.strategy = strategy or PerKmCap()

    def quote(self, distance_km: float, source: str) -> PriceGuide:
        return PriceGuide(
            distance_km=round(distance_km, 2),
            source=source,
            max_payment=self.strategy.max_payment(distance_km),
        )
