"""
Clients for the external collaborators.

The engine never owns accounts, events or road geometry.  Each collaborator
has an abstract interface, an in-process implementation (tests, local runs)
and an HTTP implementation built on ``httpx``:

* ``IdentityResolver`` -- bearer token -> verified account id.
* ``EventDirectory``   -- event id -> opaque display fields.
* ``RouteEstimator``   -- road distance between two points.

Event and routing lookups are enrichment only; their HTTP clients log and
return ``None`` on failure so no engine operation depends on them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

EVENT_DISPLAY_FIELDS = (
    "event_id",
    "event_name",
    "event_date",
    "event_time",
    "event_location",
    "event_code",
)


# ── Identity ──────────────────────────────────────────────────────────


class IdentityResolver(ABC):
    @abstractmethod
    async def account_for_token(self, token: str) -> Optional[str]: ...

    async def aclose(self) -> None:
        pass


class StaticIdentityResolver(IdentityResolver):
    def __init__(self, tokens: Optional[dict[str, str]] = None):
        self.tokens = dict(tokens or {})

    async def account_for_token(self, token: str) -> Optional[str]:
        return self.tokens.get(token)


class HttpIdentityResolver(IdentityResolver):
    """Asks the session service who owns the token (``GET /api/auth/me``)."""

    def __init__(self, base_url: str, timeout: float = 3.0):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def account_for_token(self, token: str) -> Optional[str]:
        try:
            response = await self.client.get(
                "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as exc:
            logger.warning("Session service unreachable: %s", exc)
            return None
        if response.status_code in (401, 403, 404):
            return None
        if response.is_error:
            logger.warning("Session service returned %d", response.status_code)
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("Session service sent a non-JSON body")
            return None
        account = body.get("account", body) if isinstance(body, dict) else None
        account_id = account.get("account_id") if isinstance(account, dict) else None
        return account_id if isinstance(account_id, str) else None

    async def aclose(self) -> None:
        await self.client.aclose()


# ── Events ────────────────────────────────────────────────────────────


class EventDirectory(ABC):
    @abstractmethod
    async def display(self, event_id: str) -> Optional[dict[str, Any]]: ...

    async def aclose(self) -> None:
        pass


class StaticEventDirectory(EventDirectory):
    def __init__(self, events: Optional[dict[str, dict[str, Any]]] = None):
        self.events = dict(events or {})

    async def display(self, event_id: str) -> Optional[dict[str, Any]]:
        event = self.events.get(event_id)
        return dict(event) if event is not None else None


class HttpEventDirectory(EventDirectory):
    def __init__(self, base_url: str, timeout: float = 3.0):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def display(self, event_id: str) -> Optional[dict[str, Any]]:
        try:
            response = await self.client.get(f"/api/events/{event_id}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Event lookup failed for %s: %s", event_id, exc)
            return None
        body = response.json()
        event = body.get("event", body)
        return {k: event.get(k) for k in EVENT_DISPLAY_FIELDS if k in event}

    async def aclose(self) -> None:
        await self.client.aclose()


# ── Routing ───────────────────────────────────────────────────────────


class RouteEstimator(ABC):
    @abstractmethod
    async def distance_km(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> Optional[float]:
        """Road distance between two ``(lat, lng)`` points, or ``None``."""

    async def aclose(self) -> None:
        pass


class NoRouteEstimator(RouteEstimator):
    """No routing service configured: callers use straight-line distance."""

    async def distance_km(self, origin, destination) -> Optional[float]:
        return None


class OsrmRouteEstimator(RouteEstimator):
    """OSRM-compatible ``/route/v1/driving`` client."""

    def __init__(self, base_url: str, timeout: float = 3.0):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def distance_km(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> Optional[float]:
        coords = f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
        try:
            response = await self.client.get(
                f"/route/v1/driving/{coords}", params={"overview": "false"}
            )
            response.raise_for_status()
            routes = response.json().get("routes") or []
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Routing service failed: %s", exc)
            return None
        if not routes:
            return None
        return routes[0]["distance"] / 1000.0

    async def aclose(self) -> None:
        await self.client.aclose()
