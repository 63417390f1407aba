"""
Live tracking endpoints
=======================

POST /api/v1/requests/{id}/positions  -- provider reports its position (202)
GET  /api/v1/requests/{id}/eta        -- distance / speed / ETA to the customer
WS   /api/v1/requests/{id}/events     -- change notifications for one request
"""


import logging

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from roadside.api.dependencies import get_lifecycle, get_tracking
from roadside.api.middleware import limiter
from roadside.api.schemas import EtaResponse, PositionAck, PositionReport
from roadside.domain.entities import utcnow
from roadside.domain.tracking import PositionSample
from roadside.services.lifecycle import RequestLifecycleService
from roadside.services.tracking import TrackingRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["tracking"])


@router.post(
    "/{request_id}/positions",
    status_code=202,
    response_model=PositionAck,
    summary="Report the provider's current position",
    description=(
        "Accepted only while the request is EN_ROUTE or IN_PROGRESS.  "
        "Samples older than the last one reported are dropped "
        "(``accepted = false``)."
    ),
)
@limiter.limit("600/minute")
async def report_position(
    request: Request,
    request_id: int,
    body: PositionReport,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    sample = PositionSample(
        latitude=body.latitude,
        longitude=body.longitude,
        captured_at=body.captured_at or utcnow(),
    )
    accepted = await lifecycle.report_position(request_id, body.provider_id, sample)
    return PositionAck(accepted=accepted)


@router.get(
    "/{request_id}/eta",
    response_model=EtaResponse,
    summary="Live distance and ETA of the assigned provider",
)
@limiter.limit("100/minute")
async def get_eta(
    request: Request,
    request_id: int,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
    tracking: TrackingRegistry = Depends(get_tracking),
):
    service_request = await lifecycle.get_request(request_id)
    estimate = tracking.estimate(request_id, now=utcnow())
    session = tracking.get(request_id)
    trail = session.sampler.trail() if session else []
    return EtaResponse(
        request_id=request_id,
        status=service_request.status.value,
        distance_km=(
            round(estimate.distance_km, 3) if estimate.distance_km is not None else None
        ),
        distance_text=estimate.distance_text,
        speed_kmh=(
            round(estimate.speed_kmh, 1) if estimate.speed_kmh is not None else None
        ),
        eta_minutes=(
            round(estimate.eta_minutes, 1) if estimate.eta_minutes is not None else None
        ),
        eta_text=estimate.eta_text,
        bearing_deg=(
            round(estimate.bearing_deg, 1) if estimate.bearing_deg is not None else None
        ),
        trail=[{"latitude": c.latitude, "longitude": c.longitude} for c in trail],
    )


@router.websocket("/{request_id}/events")
async def request_events(websocket: WebSocket, request_id: int):
    """Relay every committed change of one request as a JSON text frame."""
    publisher = websocket.app.state.publisher
    await websocket.accept()
    try:
        async for message in publisher.subscribe(request_id):
            await websocket.send_text(message)
    except WebSocketDisconnect:
        logger.debug("Event stream for request %s closed by client", request_id)
