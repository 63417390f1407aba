"""
Provider endpoints
==================

PATCH /api/v1/providers/{id}/availability -- go online / offline
PATCH /api/v1/providers/{id}/location     -- idle position update (re-bins H3 cell)
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from roadside.api.dependencies import get_db
from roadside.api.middleware import limiter
from roadside.api.schemas import AvailabilityUpdate, LocationUpdate, ProviderResponse
from roadside.infrastructure.repositories import ProviderRepository

router = APIRouter(prefix="/providers", tags=["providers"])


@router.patch(
    "/{provider_id}/availability",
    response_model=ProviderResponse,
    summary="Set provider availability",
)
@limiter.limit("100/minute")
async def set_availability(
    request: Request,
    provider_id: int,
    body: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
):
    provider = await ProviderRepository(db).set_availability(
        provider_id, body.is_available
    )
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider


@router.patch(
    "/{provider_id}/location",
    response_model=ProviderResponse,
    summary="Update provider location",
)
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    provider_id: int,
    body: LocationUpdate,
    db: AsyncSession = Depends(get_db),
):
    provider = await ProviderRepository(db).update_location(
        provider_id, body.latitude, body.longitude
    )
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider
