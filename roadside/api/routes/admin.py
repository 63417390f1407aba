"""
Admin / observability endpoints
===============================

POST /api/v1/admin/requests/{id}/assign          -- manual assignment
POST /api/v1/admin/requests/{id}/deny            -- refuse the job
GET  /api/v1/admin/requests/{id}/candidates      -- suggested providers
GET  /api/v1/admin/requests?status=pending       -- requests by status
GET  /api/v1/admin/status-metadata               -- labels/colours/edges
GET  /api/v1/admin/settlements/failed            -- failed payouts queue
POST /api/v1/admin/settlements/{id}/retry        -- retry a failed payout
GET  /api/v1/admin/health                        -- simple health check
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from roadside.api.dependencies import get_db, get_lifecycle
from roadside.api.middleware import limiter
from roadside.api.schemas import (
    AssignRequest,
    CandidateResponse,
    DenyRequest,
    HealthResponse,
    ServiceRequestResponse,
    SettlementResponse,
    StatusMetadataResponse,
    TransactionResponse,
)
from roadside.config import settings
from roadside.domain.distance import format_distance
from roadside.domain.enums import STATUS_METADATA, RequestStatus
from roadside.infrastructure.repositories import ServiceRequestRepository
from roadside.services.lifecycle import RequestLifecycleService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/requests/{request_id}/assign",
    response_model=ServiceRequestResponse,
    summary="Assign a provider to a pending request",
    description="409 if another assignment won the race; refetch and retry.",
)
@limiter.limit("100/minute")
async def assign_provider(
    request: Request,
    request_id: int,
    body: AssignRequest,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.assign_provider(
        request_id, body.provider_id, assigned_by=body.admin_id
    )


@router.post(
    "/requests/{request_id}/deny",
    response_model=ServiceRequestResponse,
    summary="Deny an assigned request",
)
@limiter.limit("100/minute")
async def deny_request(
    request: Request,
    request_id: int,
    body: DenyRequest,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.deny(request_id, body.admin_id)


@router.get(
    "/requests/{request_id}/candidates",
    response_model=list[CandidateResponse],
    summary="Providers suggested for a request, nearest first",
)
@limiter.limit("100/minute")
async def get_candidates(
    request: Request,
    request_id: int,
    radius_km: float | None = Query(None, gt=0, le=settings.max_match_radius_km),
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    candidates = await lifecycle.suggest_candidates(request_id, radius_km)
    return [
        CandidateResponse(
            provider_id=c.provider_id,
            full_name=c.full_name,
            distance_km=round(c.distance_km, 3),
            distance_text=format_distance(c.distance_km),
            latitude=c.latitude,
            longitude=c.longitude,
            avg_rating=c.avg_rating,
        )
        for c in candidates
    ]


@router.get(
    "/requests",
    response_model=list[ServiceRequestResponse],
    summary="List requests in a given status",
)
@limiter.limit("100/minute")
async def list_requests(
    request: Request,
    status: RequestStatus = RequestStatus.PENDING,
    db: AsyncSession = Depends(get_db),
):
    repo = ServiceRequestRepository(db)
    return [repo.to_entity(m) for m in await repo.list_by_status(status)]


@router.get(
    "/status-metadata",
    response_model=list[StatusMetadataResponse],
    summary="Display metadata and allowed transitions for every status",
)
async def status_metadata():
    return [
        StatusMetadataResponse(
            status=status.value,
            label=info.label,
            color=info.color,
            allowed_next=sorted(s.value for s in info.allowed_next),
            is_terminal=info.is_terminal,
        )
        for status, info in STATUS_METADATA.items()
    ]


@router.get(
    "/settlements/failed",
    response_model=list[TransactionResponse],
    summary="Payouts whose transfer failed and need attention",
)
@limiter.limit("100/minute")
async def failed_settlements(
    request: Request,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.list_failed_settlements()


@router.post(
    "/settlements/{request_id}/retry",
    response_model=SettlementResponse,
    summary="Retry the provider payout for a confirmed request",
)
@limiter.limit("100/minute")
async def retry_settlement(
    request: Request,
    request_id: int,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    outcome = await lifecycle.initiate_settlement(request_id)
    return SettlementResponse(
        settlement_status=outcome.status,
        error=outcome.error,
        transaction=(
            TransactionResponse.model_validate(outcome.transaction)
            if outcome.transaction
            else None
        ),
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
