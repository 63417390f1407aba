"""
Customer ratings left when a service is confirmed.

A rating is a whole number of stars from ``MIN_STARS`` to ``MAX_STARS`` with
an optional free-text review.  It is only recorded when the request names
both a provider and a customer; the provider's ``avg_rating`` is the mean of
every rating they have received.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .entities import ServiceRequest, utcnow

MIN_STARS = 1
MAX_STARS = 5


class InvalidRating(ValueError):
    """Stars outside the accepted range."""


def validate_stars(stars: int) -> int:
    if isinstance(stars, bool) or not isinstance(stars, int):
        raise InvalidRating(f"Rating must be a whole number, got {stars!r}")
    if not MIN_STARS <= stars <= MAX_STARS:
        raise InvalidRating(
            f"Rating must be between {MIN_STARS} and {MAX_STARS}, got {stars}"
        )
    return stars


@dataclass
class Rating:
    service_request_id: int
    provider_id: int
    customer_id: str
    rating: int
    review: Optional[str] = None
    featured: bool = False
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        validate_stars(self.rating)
        if self.review is not None:
            self.review = self.review.strip() or None
        if self.created_at is None:
            self.created_at = utcnow()

    @classmethod
    def for_request(
        cls,
        request: ServiceRequest,
        stars: int,
        review: Optional[str] = None,
    ) -> Optional[Rating]:
        """Rating for a confirmed request, or None when nobody can be credited."""
        if request.provider_id is None or not request.customer_id:
            return None
        return cls(
            service_request_id=request.id,
            provider_id=request.provider_id,
            customer_id=request.customer_id,
            rating=stars,
            review=review,
        )
