"""Domain enumerations, state-transition rules and status display metadata."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    QUOTED = "quoted"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    ACCEPTED = "accepted"  # legacy alias, only ever read from old rows
    DENIED = "denied"
    EN_ROUTE = "en_route"
    IN_PROGRESS = "in_progress"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceType(str, enum.Enum):
    TOWING = "towing"
    TIRE_CHANGE = "tire_change"
    FUEL_DELIVERY = "fuel_delivery"
    BATTERY_JUMP = "battery_jump"
    LOCKOUT_SERVICE = "lockout_service"
    EMERGENCY_ASSISTANCE = "emergency_assistance"
    MECHANIC_FAULT = "mechanic_fault"
    ELECTRICAL_FAULT = "electrical_fault"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.DENIED}
)

# Statuses during which the provider reports its position.
TRACKED_STATUSES: frozenset[RequestStatus] = frozenset(
    {RequestStatus.EN_ROUTE, RequestStatus.IN_PROGRESS}
)

# State machine: maps current status -> set of valid next statuses
REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.ASSIGNED, RequestStatus.CANCELLED},
    RequestStatus.ASSIGNED: {
        RequestStatus.PENDING,
        RequestStatus.QUOTED,
        RequestStatus.DENIED,
        RequestStatus.CANCELLED,
    },
    RequestStatus.QUOTED: {RequestStatus.AWAITING_PAYMENT, RequestStatus.CANCELLED},
    RequestStatus.AWAITING_PAYMENT: {RequestStatus.PAID, RequestStatus.CANCELLED},
    RequestStatus.PAID: {RequestStatus.EN_ROUTE, RequestStatus.CANCELLED},
    RequestStatus.ACCEPTED: {RequestStatus.EN_ROUTE, RequestStatus.CANCELLED},
    RequestStatus.EN_ROUTE: {RequestStatus.IN_PROGRESS, RequestStatus.CANCELLED},
    RequestStatus.IN_PROGRESS: {
        RequestStatus.AWAITING_CONFIRMATION,
        RequestStatus.CANCELLED,
    },
    RequestStatus.AWAITING_CONFIRMATION: {
        RequestStatus.COMPLETED,
        RequestStatus.CANCELLED,
    },
    RequestStatus.COMPLETED: set(),
    RequestStatus.CANCELLED: set(),
    RequestStatus.DENIED: set(),
}


@dataclass(frozen=True)
class StatusInfo:
    label: str
    color: str
    allowed_next: frozenset[RequestStatus]

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_next


_DISPLAY: dict[RequestStatus, tuple[str, str]] = {
    RequestStatus.PENDING: ("Pending", "#eab308"),
    RequestStatus.ASSIGNED: ("Provider assigned", "#3b82f6"),
    RequestStatus.QUOTED: ("Quote received", "#6366f1"),
    RequestStatus.AWAITING_PAYMENT: ("Awaiting payment", "#f59e0b"),
    RequestStatus.PAID: ("Paid", "#14b8a6"),
    RequestStatus.ACCEPTED: ("Accepted", "#14b8a6"),
    RequestStatus.EN_ROUTE: ("Provider en route", "#a855f7"),
    RequestStatus.IN_PROGRESS: ("In progress", "#9333ea"),
    RequestStatus.AWAITING_CONFIRMATION: ("Awaiting confirmation", "#f97316"),
    RequestStatus.COMPLETED: ("Completed", "#22c55e"),
    RequestStatus.CANCELLED: ("Cancelled", "#ef4444"),
    RequestStatus.DENIED: ("Denied", "#dc2626"),
}

# Single source of truth for labels/colours shown by dashboards.
STATUS_METADATA: dict[RequestStatus, StatusInfo] = {
    status: StatusInfo(
        label=label,
        color=color,
        allowed_next=frozenset(REQUEST_TRANSITIONS[status]),
    )
    for status, (label, color) in _DISPLAY.items()
}


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class TransferStatus(str, enum.Enum):
    INITIATED = "initiated"
    SUCCESS = "success"
    FAILED = "failed"
