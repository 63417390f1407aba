"""
Provider Matcher
================

Two-tier lookup used by every assignment path:

1. ``find_assignable``  -- providers within ``radius_km`` (default 10 km),
   nearest first.
2. ``find_closest_any`` -- the single nearest available provider anywhere.

Each tier first asks the provider directory.  If the directory's own search
comes back empty the matcher recomputes the answer in-process over the full
matchable listing (degraded mode), which also catches providers whose
stored spatial bin is missing or stale.

The matcher is read-only: it never mutates providers or requests.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from roadside.domain.entities import Coordinate, Provider
from roadside.domain.matching import ProviderCandidate, rank_providers, sort_candidates

logger = logging.getLogger(__name__)


class ProviderDirectory(Protocol):
    async def find_nearby_providers(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        service_type: Optional[str] = None,
    ) -> list[ProviderCandidate]: ...

    async def find_closest_provider(
        self, lat: float, lng: float
    ) -> list[ProviderCandidate]: ...

    async def list_matchable_providers(
        self, service_type: Optional[str] = None
    ) -> list[Provider]: ...


class ProviderMatcher:
    def __init__(self, directory: ProviderDirectory, default_radius_km: float = 10.0):
        self.directory = directory
        self.default_radius_km = default_radius_km

    async def find_assignable(
        self,
        origin: Coordinate,
        radius_km: Optional[float] = None,
        service_type: Optional[str] = None,
    ) -> list[ProviderCandidate]:
        radius = self.default_radius_km if radius_km is None else radius_km
        if radius <= 0:
            return []
        rows = await self.directory.find_nearby_providers(
            origin.latitude, origin.longitude, radius, service_type
        )
        # never trust the directory with the radius bound
        candidates = sort_candidates(c for c in rows if c.distance_km <= radius)
        if candidates:
            return candidates

        providers = await self.directory.list_matchable_providers(service_type)
        candidates = rank_providers(providers, origin, radius, service_type)
        if candidates:
            logger.info(
                "Directory search empty; in-process recomputation found %d "
                "provider(s) within %.1f km",
                len(candidates),
                radius,
            )
        return candidates

    async def find_closest_any(self, origin: Coordinate) -> Optional[ProviderCandidate]:
        rows = await self.directory.find_closest_provider(
            origin.latitude, origin.longitude
        )
        if rows:
            return sort_candidates(rows)[0]

        providers = await self.directory.list_matchable_providers()
        ranked = rank_providers(providers, origin)
        if ranked:
            logger.info(
                "Directory closest-provider search empty; fell back to "
                "provider %s at %.1f km",
                ranked[0].provider_id,
                ranked[0].distance_km,
            )
            return ranked[0]
        return None
