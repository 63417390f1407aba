"""FastAPI dependency injection helpers."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from roadside.infrastructure.database import async_session_factory
from roadside.services.lifecycle import RequestLifecycleService
from roadside.services.tracking import TrackingRegistry


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_lifecycle(request: Request) -> RequestLifecycleService:
    return request.app.state.lifecycle


def get_tracking(request: Request) -> TrackingRegistry:
    return request.app.state.tracking
