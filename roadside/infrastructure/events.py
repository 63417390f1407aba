"""
Realtime change notifications over Redis pub/sub.

Every committed transition is published twice: on the firehose channel
``service_requests`` (admin dashboards) and on ``service_requests:{id}``
(customer / provider views of one request).  Publishing happens after the
commit; a Redis outage is logged and never undoes a transition.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis

from roadside.domain.entities import ServiceRequest, utcnow

logger = logging.getLogger(__name__)

FIREHOSE_CHANNEL = "service_requests"


def request_channel(request_id: int) -> str:
    return f"{FIREHOSE_CHANNEL}:{request_id}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def change_event(
    request: ServiceRequest, event: str, previous_status: Optional[str] = None
) -> dict[str, Any]:
    return {
        "event": event,
        "request_id": request.id,
        "tracking_code": request.tracking_code,
        "status": request.status.value,
        "previous_status": previous_status,
        "provider_id": request.provider_id,
        "provider_lat": request.provider_lat,
        "provider_lng": request.provider_lng,
        "quoted_amount": request.quoted_amount,
        "payment_status": (
            request.payment_status.value if request.payment_status else None
        ),
        "customer_confirmed_at": _iso(request.customer_confirmed_at),
        "provider_confirmed_payment_at": _iso(request.provider_confirmed_payment_at),
        "version": request.version,
        "occurred_at": utcnow().isoformat(),
    }


class RedisChangePublisher:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, event: dict[str, Any]) -> None:
        message = json.dumps(event)
        try:
            await self.redis.publish(FIREHOSE_CHANNEL, message)
            await self.redis.publish(request_channel(event["request_id"]), message)
        except aioredis.RedisError:
            logger.exception(
                "Could not publish %s for request %s",
                event.get("event"),
                event.get("request_id"),
            )

    async def subscribe(self, request_id: int) -> AsyncIterator[str]:
        """Yield raw JSON messages for one request until cancelled."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(request_channel(request_id))
        try:
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    yield message["data"]
        finally:
            await pubsub.unsubscribe(request_channel(request_id))
            await pubsub.aclose()
