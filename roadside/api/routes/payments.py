"""
Payment processor webhook
=========================

POST /api/v1/payments/webhook

Handles ``charge.success`` (customer paid), ``transfer.success`` and
``transfer.failed`` (provider payout outcome).  The signature header is
checked against the raw body whenever a secret key is configured.  Events
that match nothing are logged and acknowledged so the processor stops
retrying them.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from roadside.api.dependencies import get_lifecycle
from roadside.api.schemas import WebhookAck
from roadside.config import settings
from roadside.domain.errors import InvalidTransition, RequestNotFound, TransitionConflict
from roadside.infrastructure.payments import verify_webhook_signature
from roadside.services.lifecycle import RequestLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Payment processor callback",
    responses={401: {"description": "Signature mismatch."}},
)
async def payment_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(None),
    lifecycle: RequestLifecycleService = Depends(get_lifecycle),
):
    body = await request.body()
    if settings.paystack_secret_key:
        if not x_paystack_signature or not verify_webhook_signature(
            body, x_paystack_signature, settings.paystack_secret_key
        ):
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed payload")

    event = payload.get("event")
    data = payload.get("data") or {}

    if event == "charge.success":
        await _handle_charge(lifecycle, data)
    elif event in ("transfer.success", "transfer.failed"):
        transfer_code = data.get("transfer_code")
        if transfer_code:
            await lifecycle.record_transfer_outcome(
                transfer_code,
                succeeded=event == "transfer.success",
                reason=data.get("reason") or data.get("gateway_response"),
            )
    else:
        logger.info("Ignoring webhook event %s", event)

    return WebhookAck()


async def _handle_charge(lifecycle: RequestLifecycleService, data: dict) -> None:
    reference = data.get("reference")
    metadata = data.get("metadata") or {}
    request_id = metadata.get("service_request_id")
    amount = data.get("amount")

    if not reference and not request_id:
        logger.warning("charge.success without reference or request id ignored")
        return

    try:
        await lifecycle.record_payment(
            reference,
            amount / 100 if amount else None,
            int(request_id) if request_id else None,
        )
    except TransitionConflict:
        # non-2xx makes the processor redeliver
        raise
    except RequestNotFound:
        logger.warning("Payment %s does not match any service request", reference)
    except InvalidTransition as exc:
        logger.warning("Payment %s not applied: %s", reference, exc)
