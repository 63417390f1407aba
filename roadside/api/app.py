"""
FastAPI application factory.

* Registers routes for requests, tracking, providers, payments and admin.
* Builds the lifecycle service and its collaborators (Redis locks and
  change publisher, payment processor, tracking registry) in the lifespan,
  and stops background tasks on shutdown.
* Maps domain errors to HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from roadside.api.middleware import limiter
from roadside.api.routes import admin, payments, providers, requests, tracking
from roadside.config import settings
from roadside.domain.errors import InvalidTransition, RequestNotFound
from roadside.infrastructure.database import async_session_factory
from roadside.infrastructure.events import RedisChangePublisher
from roadside.infrastructure.locks import DistributedLock
from roadside.infrastructure.payments import PaystackClient
from roadside.infrastructure.redis_client import get_redis
from roadside.services.lifecycle import RequestLifecycleService
from roadside.services.tracking import TrackingRegistry
from roadside.workers import auto_assign

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the lifecycle service on startup; stop background work on shutdown."""
    redis = get_redis()
    publisher = RedisChangePublisher(redis)
    paystack = PaystackClient(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout=settings.payment_timeout_seconds,
    )
    registry = TrackingRegistry()

    def lock_factory(key: str) -> DistributedLock:
        return DistributedLock(
            redis,
            key,
            ttl_seconds=settings.lock_ttl_seconds,
            wait_seconds=settings.lock_wait_seconds,
        )

    app.state.publisher = publisher
    app.state.tracking = registry
    app.state.lifecycle = RequestLifecycleService(
        async_session_factory,
        lock_factory,
        publisher,
        paystack,
        registry,
    )
    yield
    await auto_assign.stop()
    await registry.close_all()
    await paystack.aclose()
    await redis.aclose()


async def _invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _not_found_handler(request: Request, exc: RequestNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Roadside Rescue Dispatch API",
        description=(
            "Takes roadside-assistance requests, assigns the nearest "
            "available provider, tracks the provider's approach live and "
            "gates every step on quotes, payment and double confirmation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors (conflicts are InvalidTransition subclasses)
    app.add_exception_handler(InvalidTransition, _invalid_transition_handler)
    app.add_exception_handler(RequestNotFound, _not_found_handler)

    # Routers
    app.include_router(requests.router, prefix="/api/v1")
    app.include_router(tracking.router, prefix="/api/v1")
    app.include_router(providers.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
