"""
Commission split and the settlement ``Transaction`` record.

Formula
-------
provider_amount = round(total x provider_percentage / 100, 2)
platform_amount = total - provider_amount

The percentage is taken from the request (persisted when the quote was
submitted), falling back to the configured default only for rows that
predate that column.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .entities import utcnow
from .enums import TransactionStatus, TransferStatus

DEFAULT_PROVIDER_PERCENTAGE = 85.0


class TransactionAlreadyConfirmed(Exception):
    """Confirmed transactions are immutable."""


@dataclass(frozen=True)
class CommissionSplit:
    total: float
    provider_percentage: float
    provider_amount: float
    platform_amount: float


def split_commission(
    total: float, provider_percentage: float = DEFAULT_PROVIDER_PERCENTAGE
) -> CommissionSplit:
    if total <= 0:
        raise ValueError("settlement total must be positive")
    if not 0 < provider_percentage <= 100:
        raise ValueError("provider percentage must be within (0, 100]")

    provider_amount = round(total * provider_percentage / 100, 2)
    return CommissionSplit(
        total=total,
        provider_percentage=provider_percentage,
        provider_amount=provider_amount,
        platform_amount=round(total - provider_amount, 2),
    )


@dataclass
class Transaction:
    service_request_id: int
    amount: float
    provider_percentage: float
    provider_amount: float
    platform_amount: float
    id: Optional[int] = None
    status: TransactionStatus = TransactionStatus.PENDING
    transfer_code: Optional[str] = None
    transfer_status: Optional[TransferStatus] = None
    transfer_initiated_at: Optional[datetime] = None
    transfer_completed_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_split(cls, request_id: int, split: CommissionSplit) -> "Transaction":
        return cls(
            service_request_id=request_id,
            amount=split.total,
            provider_percentage=split.provider_percentage,
            provider_amount=split.provider_amount,
            platform_amount=split.platform_amount,
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status is TransactionStatus.CONFIRMED

    @property
    def needs_transfer(self) -> bool:
        return self.transfer_status in (None, TransferStatus.FAILED)

    def transfer_initiated(self, transfer_code: str, at: Optional[datetime] = None) -> None:
        self.transfer_code = transfer_code
        self.transfer_status = TransferStatus.INITIATED
        self.transfer_initiated_at = at or utcnow()
        self.notes = None

    def transfer_failed(self, reason: str) -> None:
        self.transfer_status = TransferStatus.FAILED
        self.notes = f"Transfer failed: {reason}"

    def transfer_succeeded(self, at: Optional[datetime] = None) -> None:
        self.transfer_status = TransferStatus.SUCCESS
        self.transfer_completed_at = at or utcnow()

    def confirm(self, at: Optional[datetime] = None) -> None:
        if self.is_confirmed:
            raise TransactionAlreadyConfirmed(
                f"transaction for request {self.service_request_id} is already confirmed"
            )
        self.status = TransactionStatus.CONFIRMED
        self.confirmed_at = at or utcnow()
