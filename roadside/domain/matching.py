"""
Nearest-Provider Ranking
========================

1. **Spatial Binning**  -- every located provider is stored with the H3
   cell (resolution 7, ~5.16 km²) of its last reported position.
2. **Cell Prefilter**   -- a radius search only loads providers whose cell
   lies in the grid disk around the customer's cell that is wide enough to
   cover the radius.
3. **Exact Ranking**    -- candidates are ranked by haversine distance,
   ties broken by provider id, and anything beyond the radius is dropped.

Complexity
----------
Let P = providers loaded by the prefilter.

* Disk construction:  O(k²) cells for a disk of k rings
* Ranking:            O(P log P)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import h3

from .distance import haversine_km
from .entities import Coordinate, Provider


@dataclass(frozen=True)
class ProviderCandidate:
    provider_id: int
    distance_km: float
    latitude: float
    longitude: float
    full_name: str = ""
    avg_rating: Optional[float] = None


def provider_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def h3_search_cells(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> list[str]:
    """
    Cells whose providers can possibly be within *radius_km* of the point.

    Neighbouring cell centres are ``edge x sqrt(3)`` apart, so ``k`` rings
    reach at least ``k x edge x sqrt(3)`` away from the centre cell; one
    extra ring covers providers sitting near a far cell's edge.
    """
    if radius_km < 0:
        raise ValueError(f"radius_km must not be negative, got {radius_km}")
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil(radius_km / (edge_km * math.sqrt(3))) + 1
    return list(h3.grid_disk(provider_h3_cell(lat, lng, resolution), k))


def rank_providers(
    providers: Iterable[Provider],
    origin: Coordinate,
    radius_km: Optional[float] = None,
    service_type: Optional[str] = None,
) -> list[ProviderCandidate]:
    """
    Rank matchable providers by distance from *origin*.

    Providers without a position, unavailable or inactive ones, and ones
    not offering *service_type* are skipped.  With ``radius_km`` set, the
    result never contains a provider farther than the radius.
    """
    ranked: list[ProviderCandidate] = []
    for provider in providers:
        if not provider.is_matchable(service_type):
            continue
        distance = haversine_km(
            origin.latitude,
            origin.longitude,
            provider.current_lat,
            provider.current_lng,
        )
        if radius_km is not None and distance > radius_km:
            continue
        ranked.append(
            ProviderCandidate(
                provider_id=provider.id,
                distance_km=distance,
                latitude=provider.current_lat,
                longitude=provider.current_lng,
                full_name=provider.full_name,
                avg_rating=provider.avg_rating,
            )
        )
    return sort_candidates(ranked)


def sort_candidates(candidates: Iterable[ProviderCandidate]) -> list[ProviderCandidate]:
    return sorted(candidates, key=lambda c: (c.distance_km, c.provider_id))
