"""
SQLAlchemy ORM models.

Tables
------
* ``providers``         -- mobile service providers and their last position
* ``service_requests``  -- the request lifecycle aggregate
* ``transactions``      -- one settlement record per completed request
* ``ratings``           -- customer feedback left when confirming a service

Indexes
-------
* **B-Tree** on ``providers.h3_cell`` / ``is_available`` for the directory's
  radius prefilter.
* **B-Tree** on ``service_requests.status``, ``provider_id``,
  ``payment_reference`` and unique ``tracking_code`` / ``idempotency_key``.
* **B-Tree** on ``ratings.provider_id`` for the average-rating recompute.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from roadside.domain.enums import (
    PaymentStatus,
    RequestStatus,
    ServiceType,
    TransactionStatus,
    TransferStatus,
)


def _enum(enum_cls, name: str) -> Enum:
    # persist the lowercase values, not the member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class ProviderModel(Base):
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(120), nullable=False)
    phone_number = Column(String(32), nullable=True)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    service_types = Column(JSON, default=list, nullable=False)
    payout_recipient_code = Column(String(64), nullable=True)
    avg_rating = Column(Float, nullable=True)
    available_since = Column(DateTime(timezone=True), nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_providers_cell", "h3_cell"),
        Index("idx_providers_available", "is_available"),
    )


class ServiceRequestModel(Base):
    __tablename__ = "service_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_code = Column(String(16), unique=True, nullable=False)
    customer_id = Column(String(64), nullable=True)
    phone_number = Column(String(32), nullable=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=True)

    service_type = Column(_enum(ServiceType, "service_type"), nullable=False)
    location = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=True)
    customer_lat = Column(Float, nullable=True)
    customer_lng = Column(Float, nullable=True)
    provider_lat = Column(Float, nullable=True)
    provider_lng = Column(Float, nullable=True)

    quoted_amount = Column(Float, nullable=True)
    quote_description = Column(Text, nullable=True)
    amount = Column(Float, nullable=True)
    payment_status = Column(_enum(PaymentStatus, "payment_status"), nullable=True)
    payment_reference = Column(String(64), nullable=True)
    provider_percentage = Column(Float, nullable=True)

    status = Column(
        _enum(RequestStatus, "service_status"),
        default=RequestStatus.PENDING,
        nullable=False,
    )
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    assigned_by = Column(String(64), nullable=True)
    quoted_at = Column(DateTime(timezone=True), nullable=True)
    quote_approved_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    customer_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    provider_confirmed_payment_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, default=0, nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_requests_status", "status"),
        Index("idx_requests_provider", "provider_id"),
        Index("idx_requests_customer", "customer_id"),
        Index("idx_requests_payment_reference", "payment_reference"),
    )


class TransactionModel(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_request_id = Column(
        Integer, ForeignKey("service_requests.id"), unique=True, nullable=False
    )
    amount = Column(Float, nullable=False)
    provider_percentage = Column(Float, nullable=False)
    provider_amount = Column(Float, nullable=False)
    platform_amount = Column(Float, nullable=False)
    status = Column(
        _enum(TransactionStatus, "transaction_status"),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    transfer_code = Column(String(64), nullable=True)
    transfer_status = Column(_enum(TransferStatus, "transfer_status"), nullable=True)
    transfer_initiated_at = Column(DateTime(timezone=True), nullable=True)
    transfer_completed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_transactions_transfer_code", "transfer_code"),
        Index("idx_transactions_transfer_status", "transfer_status"),
    )


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_request_id = Column(
        Integer, ForeignKey("service_requests.id"), unique=True, nullable=False
    )
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    customer_id = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    featured = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_ratings_provider", "provider_id"),)
