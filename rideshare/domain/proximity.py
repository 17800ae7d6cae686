"""
Proximity filter for browsing rides
===================================

1. **Spatial Binning** -- the search point is mapped to an H3 hexagon
   (resolution 7 by default, ~5.16 km²) and expanded to a disk of
   ``ring_size`` rings around it.
2. **Candidate filter** -- a ride is "nearby" when any of its located stops
   falls inside that disk.
3. **Ordering** -- nearby rides are sorted by the straight-line distance of
   their closest stop.

Complexity
----------
Let R = rides in the listing, L = located stops per ride.

* Disk expansion: O(k²) cells for ring size k
* Filtering:      O(R x L) -- one H3 lookup per stop
* Sorting:        O(R log R)

Stops without coordinates never match; a ride with no located stops is
left out of a proximity search.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, TypeVar

import h3

from .distance import haversine_km
from .entities import Location

T = TypeVar("T")


def location_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def search_disk(
    lat: float, lng: float, resolution: int = 7, ring_size: int = 2
) -> set[str]:
    """All H3 cells within *ring_size* rings of the point."""
    return set(h3.grid_disk(location_cell(lat, lng, resolution), ring_size))


def closest_stop_km(
    locations: Iterable[Location], lat: float, lng: float
) -> Optional[float]:
    """Distance to the nearest located stop, or ``None`` if none is located."""
    distances = [
        haversine_km((lat, lng), (loc.lat, loc.lng))
        for loc in locations
        if loc.has_coordinates
    ]
    return min(distances) if distances else None


def nearby(
    records: Sequence[T],
    lat: float,
    lng: float,
    resolution: int = 7,
    ring_size: int = 2,
) -> list[T]:
    """Keep *records* with a stop inside the search disk, nearest first.

    Each record must expose a ``locations`` list of :class:`Location`.
    """
    disk = search_disk(lat, lng, resolution, ring_size)

    ranked: list[tuple[float, int, T]] = []
    for position, record in enumerate(records):
        inside = [
            loc
            for loc in record.locations  # type: ignore[attr-defined]
            if loc.has_coordinates
            and location_cell(loc.lat, loc.lng, resolution) in disk
        ]
        if not inside:
            continue
        # position keeps the incoming (newest-first) order on distance ties
        ranked.append((closest_stop_km(inside, lat, lng), position, record))

    ranked.sort(key=lambda item: (item[0], item[1]))
    return [record for _, _, record in ranked]
