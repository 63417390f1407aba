"""
Per-status views of a ``ServiceRequest``.

Each variant carries only the fields that are guaranteed at that stage, so
code holding a ``Quoted`` never has to null-check ``quoted_amount``.
``stage_of`` builds the variant and raises ``InvariantViolation`` when the
record does not satisfy it.

At runtime only the check matters: the lifecycle service calls ``stage_of``
on every entity before writing and discards the variant it returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from .entities import Coordinate, ServiceRequest, as_utc
from .enums import RequestStatus


class InvariantViolation(ValueError):
    """The stored record is inconsistent with its status."""


@dataclass(frozen=True)
class Pending:
    customer: Optional[Coordinate]


@dataclass(frozen=True)
class Assigned:
    provider_id: int
    assigned_at: datetime
    assigned_by: Optional[str]


@dataclass(frozen=True)
class Quoted:
    provider_id: int
    quoted_amount: float
    quote_description: Optional[str]
    quoted_at: datetime


@dataclass(frozen=True)
class AwaitingPayment:
    provider_id: int
    quoted_amount: float
    payment_reference: str
    quote_approved_at: datetime


@dataclass(frozen=True)
class Paid:
    provider_id: int
    quoted_amount: float
    amount: float
    paid_at: datetime


@dataclass(frozen=True)
class Accepted:
    provider_id: int


@dataclass(frozen=True)
class EnRoute:
    provider_id: int
    quoted_amount: float
    provider_position: Optional[Coordinate]


@dataclass(frozen=True)
class InProgress:
    provider_id: int
    quoted_amount: float


@dataclass(frozen=True)
class AwaitingConfirmation:
    provider_id: int
    quoted_amount: float
    completed_at: datetime
    customer_confirmed_at: Optional[datetime]


@dataclass(frozen=True)
class Completed:
    provider_id: int
    quoted_amount: float
    customer_confirmed_at: datetime
    provider_confirmed_payment_at: datetime
    completed_at: datetime


@dataclass(frozen=True)
class Cancelled:
    provider_id: Optional[int]


@dataclass(frozen=True)
class Denied:
    provider_id: Optional[int]


Stage = Union[
    Pending,
    Assigned,
    Quoted,
    AwaitingPayment,
    Paid,
    Accepted,
    EnRoute,
    InProgress,
    AwaitingConfirmation,
    Completed,
    Cancelled,
    Denied,
]


def _need(request: ServiceRequest, name: str):
    value = getattr(request, name)
    if value is None:
        raise InvariantViolation(
            f"{request.status.value} request {request.id} is missing {name}"
        )
    return value


def _pending(r: ServiceRequest) -> Pending:
    if r.provider_id is not None:
        raise InvariantViolation(f"pending request {r.id} still has a provider")
    return Pending(customer=r.customer_coordinate)


def _completed(r: ServiceRequest) -> Completed:
    stage = Completed(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
        customer_confirmed_at=_need(r, "customer_confirmed_at"),
        provider_confirmed_payment_at=_need(r, "provider_confirmed_payment_at"),
        completed_at=_need(r, "completed_at"),
    )
    ordered = [
        as_utc(stage.customer_confirmed_at),
        as_utc(stage.provider_confirmed_payment_at),
        as_utc(stage.completed_at),
    ]
    if ordered != sorted(ordered):
        raise InvariantViolation(
            f"request {r.id} confirmations are out of order"
        )
    return stage


_BUILDERS: dict[RequestStatus, Callable[[ServiceRequest], Stage]] = {
    RequestStatus.PENDING: _pending,
    RequestStatus.ASSIGNED: lambda r: Assigned(
        provider_id=_need(r, "provider_id"),
        assigned_at=_need(r, "assigned_at"),
        assigned_by=r.assigned_by,
    ),
    RequestStatus.QUOTED: lambda r: Quoted(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
        quote_description=r.quote_description,
        quoted_at=_need(r, "quoted_at"),
    ),
    RequestStatus.AWAITING_PAYMENT: lambda r: AwaitingPayment(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
        payment_reference=_need(r, "payment_reference"),
        quote_approved_at=_need(r, "quote_approved_at"),
    ),
    RequestStatus.PAID: lambda r: Paid(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
        amount=_need(r, "amount"),
        paid_at=_need(r, "paid_at"),
    ),
    RequestStatus.ACCEPTED: lambda r: Accepted(provider_id=_need(r, "provider_id")),
    RequestStatus.EN_ROUTE: lambda r: EnRoute(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
        provider_position=r.provider_coordinate,
    ),
    RequestStatus.IN_PROGRESS: lambda r: InProgress(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
    ),
    RequestStatus.AWAITING_CONFIRMATION: lambda r: AwaitingConfirmation(
        provider_id=_need(r, "provider_id"),
        quoted_amount=_need(r, "quoted_amount"),
        completed_at=_need(r, "completed_at"),
        customer_confirmed_at=r.customer_confirmed_at,
    ),
    RequestStatus.COMPLETED: _completed,
    RequestStatus.CANCELLED: lambda r: Cancelled(provider_id=r.provider_id),
    RequestStatus.DENIED: lambda r: Denied(provider_id=r.provider_id),
}


def stage_of(request: ServiceRequest) -> Stage:
    """Return the typed view of *request* for its current status."""
    return _BUILDERS[request.status](request)
