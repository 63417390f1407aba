"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Rows are converted to domain entities on the
way out; writes of a ``ServiceRequest`` go through an optimistic version
check so a concurrent writer can never be silently overwritten.
"""

from __future__ import annotations

import math
from dataclasses import fields
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ProviderModel,
    RatingModel,
    ServiceRequestModel,
    TransactionModel,
)
from roadside.config import settings
from roadside.domain.entities import Coordinate, Provider, ServiceRequest, as_utc, utcnow
from roadside.domain.enums import RequestStatus, TransferStatus
from roadside.domain.matching import (
    ProviderCandidate,
    h3_search_cells,
    provider_h3_cell,
    rank_providers,
)
from roadside.domain.ratings import Rating
from roadside.domain.settlement import Transaction

_REQUEST_FIELDS = [f.name for f in fields(ServiceRequest)]
# Columns a transition may never rewrite.
_IMMUTABLE_REQUEST_FIELDS = {
    "id",
    "tracking_code",
    "created_at",
    "updated_at",
    "version",
    "idempotency_key",
}
_TRANSACTION_FIELDS = [f.name for f in fields(Transaction)]


def _normalise(value):
    return as_utc(value) if isinstance(value, datetime) else value


class ServiceRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def to_entity(model: ServiceRequestModel) -> ServiceRequest:
        return ServiceRequest(
            **{name: _normalise(getattr(model, name)) for name in _REQUEST_FIELDS}
        )

    async def create(self, request: ServiceRequest) -> ServiceRequest:
        values = {
            name: getattr(request, name)
            for name in _REQUEST_FIELDS
            if name not in ("id", "created_at", "updated_at")
        }
        model = ServiceRequestModel(**values)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self.to_entity(model)

    async def get_by_id(self, request_id: int) -> Optional[ServiceRequestModel]:
        return await self.session.get(ServiceRequestModel, request_id)

    async def get_entity(self, request_id: int) -> Optional[ServiceRequest]:
        model = await self.get_by_id(request_id)
        return self.to_entity(model) if model else None

    async def get_by_tracking_code(self, code: str) -> Optional[ServiceRequestModel]:
        result = await self.session.execute(
            select(ServiceRequestModel).where(ServiceRequestModel.tracking_code == code)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[ServiceRequestModel]:
        result = await self.session.execute(
            select(ServiceRequestModel).where(ServiceRequestModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_by_payment_reference(
        self, reference: str
    ) -> Optional[ServiceRequestModel]:
        result = await self.session.execute(
            select(ServiceRequestModel).where(
                ServiceRequestModel.payment_reference == reference
            )
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: RequestStatus) -> list[ServiceRequestModel]:
        result = await self.session.execute(
            select(ServiceRequestModel)
            .where(ServiceRequestModel.status == status)
            .order_by(ServiceRequestModel.created_at, ServiceRequestModel.id)
        )
        return list(result.scalars().all())

    async def save(self, request: ServiceRequest, expected_version: int) -> bool:
        """
        Write *request* only if the row still carries *expected_version*.

        Returns ``False`` when another writer committed first.
        """
        values = {
            name: getattr(request, name)
            for name in _REQUEST_FIELDS
            if name not in _IMMUTABLE_REQUEST_FIELDS
        }
        now = utcnow()
        result = await self.session.execute(
            update(ServiceRequestModel)
            .where(
                ServiceRequestModel.id == request.id,
                ServiceRequestModel.version == expected_version,
            )
            .values(**values, version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        request.version = expected_version + 1
        request.updated_at = now
        return True

    async def get_status(self, request_id: int) -> Optional[RequestStatus]:
        """Committed status, bypassing the identity map."""
        return await self.session.scalar(
            select(ServiceRequestModel.status).where(ServiceRequestModel.id == request_id)
        )

    async def update_provider_position(
        self, request_id: int, lat: float, lng: float
    ) -> None:
        """Position writes never touch status or the version counter."""
        await self.session.execute(
            update(ServiceRequestModel)
            .where(ServiceRequestModel.id == request_id)
            .values(provider_lat=lat, provider_lng=lng)
            .execution_options(synchronize_session=False)
        )


class ProviderRepository:
    """The provider directory consumed by ``ProviderMatcher``."""

    def __init__(self, session: AsyncSession, h3_resolution: int | None = None):
        self.session = session
        self.h3_resolution = h3_resolution or settings.h3_resolution

    @staticmethod
    def to_entity(model: ProviderModel) -> Provider:
        return Provider(
            id=model.id,
            full_name=model.full_name,
            current_lat=model.current_lat,
            current_lng=model.current_lng,
            is_available=bool(model.is_available),
            is_active=bool(model.is_active),
            service_types=list(model.service_types or []),
            payout_recipient_code=model.payout_recipient_code,
            avg_rating=model.avg_rating,
            available_since=as_utc(model.available_since),
        )

    def _matchable(self):
        return select(ProviderModel).where(
            ProviderModel.is_available.is_(True),
            ProviderModel.is_active.is_(True),
            ProviderModel.current_lat.isnot(None),
            ProviderModel.current_lng.isnot(None),
        )

    async def get_by_id(self, provider_id: int) -> Optional[ProviderModel]:
        return await self.session.get(ProviderModel, provider_id)

    async def get_entity(self, provider_id: int) -> Optional[Provider]:
        model = await self.get_by_id(provider_id)
        return self.to_entity(model) if model else None

    async def create(self, provider: Provider) -> Provider:
        model = ProviderModel(
            full_name=provider.full_name,
            current_lat=provider.current_lat,
            current_lng=provider.current_lng,
            h3_cell=(
                provider_h3_cell(
                    provider.current_lat, provider.current_lng, self.h3_resolution
                )
                if provider.coordinate
                else None
            ),
            is_available=provider.is_available,
            is_active=provider.is_active,
            service_types=list(provider.service_types),
            payout_recipient_code=provider.payout_recipient_code,
            avg_rating=provider.avg_rating,
            available_since=provider.available_since,
        )
        self.session.add(model)
        await self.session.flush()
        return self.to_entity(model)

    async def find_nearby_providers(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        service_type: Optional[str] = None,
    ) -> list[ProviderCandidate]:
        """H3 grid-disk prefilter, then exact haversine ranking."""
        cells = h3_search_cells(lat, lng, radius_km, self.h3_resolution)
        result = await self.session.execute(
            self._matchable().where(ProviderModel.h3_cell.in_(cells))
        )
        providers = [self.to_entity(m) for m in result.scalars().all()]
        return rank_providers(
            providers, Coordinate(lat, lng), radius_km, service_type
        )

    async def find_closest_provider(
        self, lat: float, lng: float, limit: int = 5
    ) -> list[ProviderCandidate]:
        """
        Unbounded search.  Orders by squared equirectangular distance in SQL
        (portable arithmetic only), then re-ranks the few rows exactly.
        """
        k = math.cos(math.radians(lat))
        dlat = ProviderModel.current_lat - lat
        dlng = (ProviderModel.current_lng - lng) * k
        result = await self.session.execute(
            self._matchable()
            .order_by(dlat * dlat + dlng * dlng, ProviderModel.id)
            .limit(limit)
        )
        providers = [self.to_entity(m) for m in result.scalars().all()]
        return rank_providers(providers, Coordinate(lat, lng))

    async def list_matchable_providers(
        self, service_type: Optional[str] = None
    ) -> list[Provider]:
        result = await self.session.execute(self._matchable())
        return [
            p
            for p in (self.to_entity(m) for m in result.scalars().all())
            if p.is_matchable(service_type)
        ]

    async def update_location(
        self, provider_id: int, lat: float, lng: float
    ) -> Optional[ProviderModel]:
        model = await self.get_by_id(provider_id)
        if model is None:
            return None
        model.current_lat = lat
        model.current_lng = lng
        model.h3_cell = provider_h3_cell(lat, lng, self.h3_resolution)
        model.location_updated_at = utcnow()
        await self.session.flush()
        return model

    async def set_availability(
        self, provider_id: int, available: bool
    ) -> Optional[ProviderModel]:
        model = await self.get_by_id(provider_id)
        if model is None:
            return None
        if available and not model.is_available:
            model.available_since = utcnow()
        model.is_available = available
        await self.session.flush()
        return model


class TransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def to_entity(model: TransactionModel) -> Transaction:
        return Transaction(
            **{name: _normalise(getattr(model, name)) for name in _TRANSACTION_FIELDS}
        )

    async def get_for_request(self, request_id: int) -> Optional[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel).where(
                TransactionModel.service_request_id == request_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_transfer_code(self, code: str) -> Optional[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.transfer_code == code)
        )
        return result.scalar_one_or_none()

    async def list_failed_transfers(self) -> list[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.transfer_status == TransferStatus.FAILED)
            .order_by(TransactionModel.id)
        )
        return list(result.scalars().all())

    async def create(self, transaction: Transaction) -> Transaction:
        model = TransactionModel(
            **{
                name: getattr(transaction, name)
                for name in _TRANSACTION_FIELDS
                if name not in ("id", "created_at")
            }
        )
        self.session.add(model)
        await self.session.flush()
        transaction.id = model.id
        return transaction

    async def save(self, transaction: Transaction) -> None:
        model = await self.session.get(TransactionModel, transaction.id)
        for name in _TRANSACTION_FIELDS:
            if name not in ("id", "created_at", "service_request_id"):
                setattr(model, name, getattr(transaction, name))
        await self.session.flush()


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_request(self, request_id: int) -> Optional[RatingModel]:
        result = await self.session.execute(
            select(RatingModel).where(RatingModel.service_request_id == request_id)
        )
        return result.scalar_one_or_none()

    async def create(self, rating: Rating) -> Rating:
        """Insert the rating and refresh the provider's average in the same flush."""
        model = RatingModel(
            service_request_id=rating.service_request_id,
            provider_id=rating.provider_id,
            customer_id=rating.customer_id,
            rating=rating.rating,
            review=rating.review,
            featured=rating.featured,
        )
        self.session.add(model)
        await self.session.flush()
        rating.id = model.id

        average = await self.session.scalar(
            select(func.avg(RatingModel.rating)).where(
                RatingModel.provider_id == rating.provider_id
            )
        )
        await self.session.execute(
            update(ProviderModel)
            .where(ProviderModel.id == rating.provider_id)
            .values(avg_rating=round(float(average), 2))
        )
        return rating
