"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``ServiceRequest``: every public transition method
  checks the edge against ``REQUEST_TRANSITIONS`` plus its own guard, and
  only mutates after all checks pass, so a rejected transition leaves the
  entity untouched.
- ``Provider.is_matchable`` encapsulates the matcher's eligibility rule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    ActorRole,
    PaymentStatus,
    RequestStatus,
    ServiceType,
)
from .errors import AssignmentConflict, InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Provider:
    id: int
    full_name: str = ""
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    is_available: bool = True
    is_active: bool = True
    service_types: list[str] = field(default_factory=list)
    payout_recipient_code: Optional[str] = None
    avg_rating: Optional[float] = None
    available_since: Optional[datetime] = None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.current_lat is None or self.current_lng is None:
            return None
        return Coordinate(self.current_lat, self.current_lng)

    def is_matchable(self, service_type: Optional[str] = None) -> bool:
        """Available, active, located and (if it declares any) offering the service."""
        if not (self.is_available and self.is_active) or self.coordinate is None:
            return False
        if service_type and self.service_types:
            return getattr(service_type, "value", service_type) in self.service_types
        return True


@dataclass
class ServiceRequest:
    id: Optional[int] = None
    tracking_code: str = ""
    customer_id: Optional[str] = None
    phone_number: Optional[str] = None
    provider_id: Optional[int] = None
    service_type: ServiceType = ServiceType.EMERGENCY_ASSISTANCE
    location: str = ""
    description: Optional[str] = None
    customer_lat: Optional[float] = None
    customer_lng: Optional[float] = None
    provider_lat: Optional[float] = None
    provider_lng: Optional[float] = None
    quoted_amount: Optional[float] = None
    quote_description: Optional[str] = None
    amount: Optional[float] = None
    payment_status: Optional[PaymentStatus] = PaymentStatus.UNPAID
    payment_reference: Optional[str] = None
    provider_percentage: Optional[float] = None
    status: RequestStatus = RequestStatus.PENDING
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    quoted_at: Optional[datetime] = None
    quote_approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    customer_confirmed_at: Optional[datetime] = None
    provider_confirmed_payment_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0
    idempotency_key: Optional[str] = None

    @property
    def customer_coordinate(self) -> Optional[Coordinate]:
        if self.customer_lat is None or self.customer_lng is None:
            return None
        return Coordinate(self.customer_lat, self.customer_lng)

    @property
    def provider_coordinate(self) -> Optional[Coordinate]:
        if self.provider_lat is None or self.provider_lng is None:
            return None
        return Coordinate(self.provider_lat, self.provider_lng)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def settlement_total(self) -> Optional[float]:
        return self.amount if self.amount is not None else self.quoted_amount

    # ── Guards ────────────────────────────────────────────────────

    def _reject(self, target: RequestStatus, reason: str) -> InvalidTransition:
        return InvalidTransition(self.status.value, target.value, reason)

    def _check_edge(self, target: RequestStatus) -> None:
        allowed = REQUEST_TRANSITIONS.get(self.status, set())
        if target not in allowed:
            raise self._reject(target, f"request is {self.status.value}")

    def _check_provider(self, provider_id: int, target: RequestStatus) -> None:
        if self.provider_id is None or self.provider_id != provider_id:
            raise self._reject(target, "request is not assigned to this provider")

    def _check_customer(self, customer_id: Optional[str], target: RequestStatus) -> None:
        if (
            customer_id is not None
            and self.customer_id is not None
            and customer_id != self.customer_id
        ):
            raise self._reject(target, "request belongs to another customer")

    def check_assignable(self) -> None:
        """Raise unless a provider may be attached right now.  No side effects."""
        if self.status is RequestStatus.ASSIGNED or (
            self.status is RequestStatus.PENDING and self.provider_id is not None
        ):
            raise AssignmentConflict(
                self.status.value,
                RequestStatus.ASSIGNED.value,
                "a provider is already assigned",
            )
        self._check_edge(RequestStatus.ASSIGNED)

    # ── Transitions ───────────────────────────────────────────────

    def assign(
        self,
        provider_id: int,
        *,
        assigned_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """pending -> assigned.  ``assigned_by`` is ``None`` for auto-assignment."""
        self.check_assignable()

        self.provider_id = provider_id
        self.assigned_by = assigned_by
        self.assigned_at = at or utcnow()
        self.status = RequestStatus.ASSIGNED

    def reject(self, provider_id: int) -> None:
        """assigned -> pending, releasing the request for another provider."""
        self._check_edge(RequestStatus.PENDING)
        self._check_provider(provider_id, RequestStatus.PENDING)

        self.provider_id = None
        self.assigned_by = None
        self.assigned_at = None
        self.status = RequestStatus.PENDING

    def submit_quote(
        self,
        provider_id: int,
        amount: float,
        description: Optional[str] = None,
        *,
        provider_percentage: float = 85.0,
        at: Optional[datetime] = None,
    ) -> None:
        target = RequestStatus.QUOTED
        self._check_edge(target)
        self._check_provider(provider_id, target)
        if amount is None or amount <= 0:
            raise self._reject(target, "quoted amount must be greater than zero")
        if not 0 < provider_percentage <= 100:
            raise self._reject(target, "provider percentage must be within (0, 100]")

        self.quoted_amount = amount
        self.quote_description = description
        self.provider_percentage = provider_percentage
        self.quoted_at = at or utcnow()
        self.status = target

    def approve_quote(
        self,
        payment_reference: str,
        *,
        customer_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        target = RequestStatus.AWAITING_PAYMENT
        self._check_edge(target)
        self._check_customer(customer_id, target)
        if self.quoted_amount is None:
            raise self._reject(target, "no quote to approve")

        self.payment_reference = payment_reference
        self.payment_status = PaymentStatus.PENDING
        self.quote_approved_at = at or utcnow()
        self.status = target

    def mark_paid(
        self,
        reference: str,
        amount: Optional[float] = None,
        *,
        at: Optional[datetime] = None,
    ) -> None:
        """Applied only from the payment processor's confirmation."""
        target = RequestStatus.PAID
        self._check_edge(target)
        if not reference or reference != self.payment_reference:
            raise self._reject(target, "payment reference does not match request")

        self.amount = amount if amount else self.quoted_amount
        self.payment_status = PaymentStatus.PAID
        self.paid_at = at or utcnow()
        self.status = target

    def start_trip(self, provider_id: int) -> None:
        """paid (or legacy accepted) -> en_route."""
        target = RequestStatus.EN_ROUTE
        self._check_edge(target)
        self._check_provider(provider_id, target)
        if self.quoted_amount is None:
            raise self._reject(target, "request has no accepted quote")
        self.status = target

    def mark_arrived(self, provider_id: int) -> None:
        target = RequestStatus.IN_PROGRESS
        self._check_edge(target)
        self._check_provider(provider_id, target)
        self.status = target

    def finish_work(self, provider_id: int, *, at: Optional[datetime] = None) -> None:
        """in_progress -> awaiting_confirmation with a provisional ``completed_at``."""
        target = RequestStatus.AWAITING_CONFIRMATION
        self._check_edge(target)
        self._check_provider(provider_id, target)

        self.completed_at = at or utcnow()
        self.status = target

    def confirm_by_customer(
        self, *, customer_id: Optional[str] = None, at: Optional[datetime] = None
    ) -> None:
        """First half of the double confirmation.  Status does not change."""
        target = RequestStatus.COMPLETED
        if self.status is not RequestStatus.AWAITING_CONFIRMATION:
            raise self._reject(target, "service is not awaiting confirmation")
        self._check_customer(customer_id, target)
        if self.customer_confirmed_at is not None:
            raise self._reject(target, "customer has already confirmed the service")

        self.customer_confirmed_at = at or utcnow()

    def confirm_payment_received(
        self, provider_id: int, *, at: Optional[datetime] = None
    ) -> None:
        """Second half: the provider acknowledges payout, request completes."""
        target = RequestStatus.COMPLETED
        self._check_edge(target)
        self._check_provider(provider_id, target)
        if self.customer_confirmed_at is None:
            raise self._reject(target, "customer has not confirmed the service yet")

        now = at or utcnow()
        self.provider_confirmed_payment_at = now
        self.completed_at = now
        self.status = target

    def cancel(self, role: ActorRole) -> None:
        target = RequestStatus.CANCELLED
        self._check_edge(target)
        if role not in (ActorRole.CUSTOMER, ActorRole.ADMIN):
            raise self._reject(target, "only the customer or an admin can cancel")
        self.status = target

    def deny(self) -> None:
        """Admin refuses the job outright (assigned -> denied)."""
        self._check_edge(RequestStatus.DENIED)
        self.status = RequestStatus.DENIED
