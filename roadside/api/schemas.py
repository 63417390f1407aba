"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from roadside.domain.enums import (
    ActorRole,
    PaymentStatus,
    RequestStatus,
    ServiceType,
    TransactionStatus,
    TransferStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class ServiceRequestCreate(BaseModel):
    service_type: ServiceType
    location: str = Field(..., min_length=1, max_length=500)
    customer_id: Optional[str] = Field(None, max_length=64)
    phone_number: Optional[str] = Field(None, max_length=32)
    description: Optional[str] = Field(None, max_length=2000)
    customer_lat: Optional[float] = Field(None, ge=-90, le=90)
    customer_lng: Optional[float] = Field(None, ge=-180, le=180)
    provider_id: Optional[int] = Field(
        None, description="Provider picked by the customer, if any."
    )
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent duplicate requests on retries.",
    )

    @model_validator(mode="after")
    def _identify_customer(self) -> "ServiceRequestCreate":
        if not self.customer_id and not self.phone_number:
            raise ValueError("either customer_id or phone_number is required")
        if (self.customer_lat is None) != (self.customer_lng is None):
            raise ValueError("customer_lat and customer_lng must be given together")
        return self


class ProviderAction(BaseModel):
    provider_id: int


class CustomerAction(BaseModel):
    customer_id: Optional[str] = None


class ServiceConfirmation(CustomerAction):
    rating: Optional[int] = Field(None, ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class QuoteSubmit(BaseModel):
    provider_id: int
    amount: float = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=2000)


class CancelRequest(BaseModel):
    role: ActorRole = ActorRole.CUSTOMER


class AssignRequest(BaseModel):
    provider_id: int
    admin_id: Optional[str] = None


class DenyRequest(BaseModel):
    admin_id: Optional[str] = None


class PositionReport(BaseModel):
    provider_id: int
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    captured_at: Optional[datetime] = Field(
        None, description="Device timestamp; server time when omitted."
    )


class AvailabilityUpdate(BaseModel):
    is_available: bool


class LocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# ── Responses ─────────────────────────────────────────────────────────


class ServiceRequestResponse(BaseModel):
    id: int
    tracking_code: str
    customer_id: Optional[str] = None
    phone_number: Optional[str] = None
    provider_id: Optional[int] = None
    service_type: ServiceType
    location: str
    description: Optional[str] = None
    customer_lat: Optional[float] = None
    customer_lng: Optional[float] = None
    provider_lat: Optional[float] = None
    provider_lng: Optional[float] = None
    quoted_amount: Optional[float] = None
    quote_description: Optional[str] = None
    amount: Optional[float] = None
    payment_status: Optional[PaymentStatus] = None
    payment_reference: Optional[str] = None
    status: RequestStatus
    assigned_at: Optional[datetime] = None
    quoted_at: Optional[datetime] = None
    quote_approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    customer_confirmed_at: Optional[datetime] = None
    provider_confirmed_payment_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: Optional[int] = None
    service_request_id: int
    amount: float
    provider_percentage: float
    provider_amount: float
    platform_amount: float
    status: TransactionStatus
    transfer_code: Optional[str] = None
    transfer_status: Optional[TransferStatus] = None
    transfer_initiated_at: Optional[datetime] = None
    transfer_completed_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    settlement_status: str
    error: Optional[str] = None
    transaction: Optional[TransactionResponse] = None


class ConfirmServiceResponse(BaseModel):
    request: ServiceRequestResponse
    settlement_status: str
    settlement_error: Optional[str] = None
    rating_recorded: bool = False


class CandidateResponse(BaseModel):
    provider_id: int
    full_name: str = ""
    distance_km: float
    distance_text: str
    latitude: float
    longitude: float
    avg_rating: Optional[float] = None


class EtaResponse(BaseModel):
    request_id: int
    status: str
    distance_km: Optional[float] = None
    distance_text: Optional[str] = None
    speed_kmh: Optional[float] = None
    eta_minutes: Optional[float] = None
    eta_text: str
    bearing_deg: Optional[float] = None
    trail: list[dict[str, Any]] = []


class PositionAck(BaseModel):
    accepted: bool


class StatusMetadataResponse(BaseModel):
    status: str
    label: str
    color: str
    allowed_next: list[str]
    is_terminal: bool


class ProviderResponse(BaseModel):
    id: int
    full_name: str
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    is_available: bool
    is_active: bool
    h3_cell: Optional[str] = None

    model_config = {"from_attributes": True}


class WebhookAck(BaseModel):
    status: str = "ok"


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
