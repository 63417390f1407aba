"""
Service request endpoints
=========================

POST  /api/v1/requests                           -- create (returns 202 Accepted)
GET   /api/v1/requests/{id}                      -- current status
GET   /api/v1/requests/track/{tracking_code}     -- public lookup by code
POST  /api/v1/requests/{id}/reject               -- provider releases assignment
POST  /api/v1/requests/{id}/quote                -- provider submits a quote
POST  /api/v1/requests/{id}/approve-quote        -- customer accepts the quote
POST  /api/v1/requests/{id}/start                -- provider sets off
POST  /api/v1/requests/{id}/arrive               -- provider on site
POST  /api/v1/requests/{id}/finish               -- provider done
POST  /api/v1/requests/{id}/confirm-service      -- customer confirms the work
POST  /api/v1/requests/{id}/confirm-payment-received -- provider confirms payout
PATCH /api/v1/requests/{id}/cancel               -- customer / admin cancel

Guard violations are mapped to 409 by the app-level exception handlers.
"""


from fastapi import APIRouter, Depends, Request

from roadside.api.dependencies import get_lifecycle
from roadside.api.middleware import limiter
from roadside.api.schemas import (
    CancelRequest,
    ConfirmServiceResponse,
    CustomerAction,
    ProviderAction,
    QuoteSubmit,
    ServiceConfirmation,
    ServiceRequestCreate,
    ServiceRequestResponse,
)
from roadside.services.lifecycle import RequestLifecycleService

router = APIRouter(prefix="/requests", tags=["requests"])


@router.post(
    "",
    status_code=202,
    response_model=ServiceRequestResponse,
    summary="Create a service request",
    responses={
        202: {
            "description": (
                "Request accepted.  Assigned immediately when a provider is "
                "nearby, otherwise assignment continues in the background."
            )
        }
    },
)
@limiter.limit("100/minute")
async def create_request(
    request: Request,
    body: ServiceRequestCreate,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.create_request(**body.model_dump())


@router.get(
    "/track/{tracking_code}",
    response_model=ServiceRequestResponse,
    summary="Look up a request by its tracking code",
)
@limiter.limit("100/minute")
async def track_request(
    request: Request,
    tracking_code: str,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.get_by_tracking_code(tracking_code)


@router.get(
    "/{request_id}",
    response_model=ServiceRequestResponse,
    summary="Get request status",
)
@limiter.limit("100/minute")
async def get_request(
    request: Request,
    request_id: int,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.get_request(request_id)


@router.post(
    "/{request_id}/reject",
    response_model=ServiceRequestResponse,
    summary="Provider rejects the assignment",
    description="Returns the request to PENDING for another provider.",
)
@limiter.limit("100/minute")
async def reject_assignment(
    request: Request,
    request_id: int,
    body: ProviderAction,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.reject_assignment(request_id, body.provider_id)


@router.post(
    "/{request_id}/quote",
    response_model=ServiceRequestResponse,
    summary="Provider submits a quote",
)
@limiter.limit("100/minute")
async def submit_quote(
    request: Request,
    request_id: int,
    body: QuoteSubmit,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.submit_quote(
        request_id, body.provider_id, body.amount, body.description
    )


@router.post(
    "/{request_id}/approve-quote",
    response_model=ServiceRequestResponse,
    summary="Customer approves the quote",
    description=(
        "Moves the request to AWAITING_PAYMENT and issues the payment "
        "reference the customer pays against."
    ),
)
@limiter.limit("100/minute")
async def approve_quote(
    request: Request,
    request_id: int,
    body: CustomerAction,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.approve_quote(request_id, body.customer_id)


@router.post(
    "/{request_id}/start",
    response_model=ServiceRequestResponse,
    summary="Provider starts the trip",
)
@limiter.limit("100/minute")
async def start_trip(
    request: Request,
    request_id: int,
    body: ProviderAction,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.start_trip(request_id, body.provider_id)


@router.post(
    "/{request_id}/arrive",
    response_model=ServiceRequestResponse,
    summary="Provider arrived on site",
)
@limiter.limit("100/minute")
async def mark_arrived(
    request: Request,
    request_id: int,
    body: ProviderAction,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.mark_arrived(request_id, body.provider_id)


@router.post(
    "/{request_id}/finish",
    response_model=ServiceRequestResponse,
    summary="Provider finished the work",
)
@limiter.limit("100/minute")
async def finish_work(
    request: Request,
    request_id: int,
    body: ProviderAction,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.finish_work(request_id, body.provider_id)


@router.post(
    "/{request_id}/confirm-service",
    response_model=ConfirmServiceResponse,
    summary="Customer confirms the service",
    description=(
        "Records the customer's confirmation and starts the provider payout.  "
        "A failed payout does not undo the confirmation; it is reported as "
        "``settlement_status = failed`` and queued for admins.  An optional 1-5 "
        "star rating is stored for the provider; it never blocks the confirmation."
    ),
)
@limiter.limit("100/minute")
async def confirm_service(
    request: Request,
    request_id: int,
    body: ServiceConfirmation,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    result = await lifecycle.confirm_service(
        request_id, body.customer_id, rating=body.rating, review=body.review
    )
    return ConfirmServiceResponse(
        request=ServiceRequestResponse.model_validate(result.request),
        settlement_status=result.settlement.status,
        settlement_error=result.settlement.error,
        rating_recorded=result.rating is not None,
    )


@router.post(
    "/{request_id}/confirm-payment-received",
    response_model=ServiceRequestResponse,
    summary="Provider confirms the payout arrived",
)
@limiter.limit("100/minute")
async def confirm_payment_received(
    request: Request,
    request_id: int,
    body: ProviderAction,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.confirm_payment_received(request_id, body.provider_id)


@router.patch(
    "/{request_id}/cancel",
    response_model=ServiceRequestResponse,
    summary="Cancel a request",
    description="Customer or admin only; any non-terminal status.",
)
@limiter.limit("100/minute")
async def cancel_request(
    request: Request,
    request_id: int,
    body: CancelRequest,
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.cancel(request_id, body.role)
