"""
Request Lifecycle Engine
========================

The only component allowed to change a service request's status or its
milestone timestamps.

Unit of work per transition
---------------------------
1. Take the per-request distributed lock ``service_request:{id}``.
2. Load the row, apply the entity transition (guards raise
   ``InvalidTransition`` before anything is mutated).
3. Re-validate the per-status invariants (``stage_of``).
4. ``UPDATE ... WHERE version = :loaded`` -- zero rows means a concurrent
   writer won; the caller gets ``TransitionConflict`` /
   ``AssignmentConflict``.
5. Commit, then publish the change event and open/close live tracking.

Assignment
----------
On creation with a known customer position the nearest provider within the
default radius is assigned synchronously.  If none qualifies the request is
returned ``pending`` and a fire-and-forget retry looks for the closest
available provider anywhere (see ``roadside.workers.auto_assign``).

Settlement (two phase)
----------------------
* Customer confirms -> the provider's share is transferred through the
  payment processor.  A failed initiation is recorded on the Transaction
  and surfaced to admins; the customer's confirmation stands.
* Provider confirms receipt -> request ``completed``, Transaction confirmed.

Ratings
-------
The customer may rate the provider when confirming.  The rating is written
in its own session after the confirmation commits and refreshes the
provider's ``avg_rating``; if it cannot be stored the confirmation stands.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    AsyncContextManager,
    Awaitable,
    Callable,
    Optional,
    Protocol,
)

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roadside.config import settings
from roadside.domain.entities import ServiceRequest, utcnow
from roadside.domain.enums import (
    TRACKED_STATUSES,
    ActorRole,
    RequestStatus,
    ServiceType,
)
from roadside.domain.errors import (
    AssignmentConflict,
    InvalidTransition,
    MatchNotFound,
    ProviderUnavailable,
    RequestNotFound,
    SettlementInitiationFailed,
    StaleSample,
    TransitionConflict,
)
from roadside.domain.matching import ProviderCandidate
from roadside.domain.ratings import Rating, validate_stars
from roadside.domain.settlement import Transaction, split_commission
from roadside.domain.stages import stage_of
from roadside.domain.tracking import PositionSample
from roadside.infrastructure.events import change_event
from roadside.infrastructure.locks import LockUnavailable, request_lock_key
from roadside.infrastructure.payments import PaymentProcessor
from roadside.infrastructure.repositories import (
    ProviderRepository,
    RatingRepository,
    ServiceRequestRepository,
    TransactionRepository,
)
from roadside.services.provider_matcher import ProviderMatcher
from roadside.services.tracking import TrackingRegistry
from roadside.workers import auto_assign

logger = logging.getLogger(__name__)

LockFactory = Callable[[str], AsyncContextManager[Any]]
Apply = Callable[[AsyncSession, ServiceRequest], Awaitable[None]]

_CODE_ALPHABET = string.ascii_uppercase + string.digits


class ChangePublisher(Protocol):
    async def publish(self, event: dict[str, Any]) -> None: ...


@dataclass
class SettlementOutcome:
    transaction: Optional[Transaction]
    failed: bool = False
    error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.transaction is None or self.transaction.transfer_status is None:
            return "not_started"
        return self.transaction.transfer_status.value


@dataclass
class ConfirmationResult:
    request: ServiceRequest
    settlement: SettlementOutcome
    rating: Optional[Rating] = None


class RequestLifecycleService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_factory: LockFactory,
        publisher: ChangePublisher,
        payments: PaymentProcessor,
        tracking: Optional[TrackingRegistry] = None,
        *,
        default_radius_km: float = settings.default_match_radius_km,
        provider_percentage: float = settings.provider_percentage,
        h3_resolution: int = settings.h3_resolution,
        retry_delay_seconds: float = settings.auto_assign_retry_delay_seconds,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._lock_factory = lock_factory
        self.publisher = publisher
        self.payments = payments
        self.tracking = tracking
        self.default_radius_km = default_radius_km
        self.provider_percentage = provider_percentage
        self.h3_resolution = h3_resolution
        self.retry_delay_seconds = retry_delay_seconds
        self._clock = clock

    # ── Unit of work ──────────────────────────────────────────────

    def _matcher(self, session: AsyncSession) -> ProviderMatcher:
        return ProviderMatcher(
            ProviderRepository(session, self.h3_resolution), self.default_radius_km
        )

    async def _transition(
        self,
        request_id: int,
        apply: Apply,
        *,
        event: str,
        target: RequestStatus,
        conflict: type[TransitionConflict] = TransitionConflict,
    ) -> ServiceRequest:
        try:
            async with self._lock_factory(request_lock_key(request_id)):
                async with self._session_factory() as session:
                    repo = ServiceRequestRepository(session)
                    model = await repo.get_by_id(request_id)
                    if model is None:
                        raise RequestNotFound(request_id)
                    request = repo.to_entity(model)
                    previous = request.status
                    loaded_version = request.version

                    await apply(session, request)
                    stage_of(request)  # raises on a broken invariant; variant unused

                    if not await repo.save(request, loaded_version):
                        raise conflict(
                            previous.value,
                            target.value,
                            "request was changed by someone else; refetch it",
                        )
                    await session.commit()
        except LockUnavailable as exc:
            raise conflict(
                None, target.value, "request is busy; refetch it and try again"
            ) from exc

        logger.info(
            "Request %s: %s -> %s (%s)",
            request_id,
            previous.value,
            request.status.value,
            event,
        )
        await self._after_commit(request, event, previous)
        return request

    async def _after_commit(
        self,
        request: ServiceRequest,
        event: str,
        previous: Optional[RequestStatus],
    ) -> None:
        await self.publisher.publish(
            change_event(request, event, previous.value if previous else None)
        )
        if self.tracking is not None and request.status is not previous:
            await self.tracking.on_status_change(request)

    # ── Queries ───────────────────────────────────────────────────

    async def get_request(self, request_id: int) -> ServiceRequest:
        async with self._session_factory() as session:
            request = await ServiceRequestRepository(session).get_entity(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    async def get_by_tracking_code(self, code: str) -> ServiceRequest:
        async with self._session_factory() as session:
            repo = ServiceRequestRepository(session)
            model = await repo.get_by_tracking_code(code.upper())
            if model is None:
                raise RequestNotFound(code)
            return repo.to_entity(model)

    async def suggest_candidates(
        self, request_id: int, radius_km: Optional[float] = None
    ) -> list[ProviderCandidate]:
        """Radius matches, or the single global fallback when there are none."""
        request = await self.get_request(request_id)
        origin = request.customer_coordinate
        if origin is None:
            return []
        async with self._session_factory() as session:
            matcher = self._matcher(session)
            candidates = await matcher.find_assignable(
                origin, radius_km, request.service_type.value
            )
            if candidates:
                return candidates
            closest = await matcher.find_closest_any(origin)
        return [closest] if closest else []

    # ── Creation & assignment ─────────────────────────────────────

    async def _new_tracking_code(self, repo: ServiceRequestRepository) -> str:
        for _ in range(10):
            code = "RSA-" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
            if await repo.get_by_tracking_code(code) is None:
                return code
        raise RuntimeError("Could not allocate a unique tracking code")

    async def create_request(
        self,
        *,
        service_type: ServiceType,
        location: str,
        customer_id: Optional[str] = None,
        phone_number: Optional[str] = None,
        description: Optional[str] = None,
        customer_lat: Optional[float] = None,
        customer_lng: Optional[float] = None,
        provider_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> ServiceRequest:
        """
        Create a request and try to assign it straight away.

        Returns as soon as the synchronous attempt is done; a background retry
        may assign the request later.
        """
        async with self._session_factory() as session:
            repo = ServiceRequestRepository(session)

            # ── Idempotency guard ─────────────────────────────────
            if idempotency_key:
                existing = await repo.get_by_idempotency_key(idempotency_key)
                if existing:
                    return repo.to_entity(existing)

            request = await repo.create(
                ServiceRequest(
                    tracking_code=await self._new_tracking_code(repo),
                    customer_id=customer_id,
                    phone_number=None if customer_id else phone_number,
                    service_type=service_type,
                    location=location,
                    description=description,
                    customer_lat=customer_lat,
                    customer_lng=customer_lng,
                    idempotency_key=idempotency_key,
                )
            )
            await session.commit()

        logger.info("Created request %s (%s)", request.id, request.tracking_code)
        await self._after_commit(request, "created", None)

        if provider_id is not None:
            try:
                return await self.assign_provider(request.id, provider_id)
            except ProviderUnavailable as exc:
                logger.warning(
                    "Chosen provider %s unusable for request %s: %s",
                    provider_id,
                    request.id,
                    exc,
                )

        if request.customer_coordinate is None:
            return request

        assigned = await self._assign_nearest(request)
        if assigned is not None:
            return assigned

        auto_assign.schedule_retry(self, request.id, delay=self.retry_delay_seconds)
        return request

    async def _assign_nearest(self, request: ServiceRequest) -> Optional[ServiceRequest]:
        async with self._session_factory() as session:
            candidates = await self._matcher(session).find_assignable(
                request.customer_coordinate,
                service_type=request.service_type.value,
            )
        for candidate in candidates:
            try:
                return await self.assign_provider(request.id, candidate.provider_id)
            except ProviderUnavailable:
                continue
            except InvalidTransition as exc:
                logger.info("Auto-assignment of request %s skipped: %s", request.id, exc)
                return await self.get_request(request.id)
        return None

    async def assign_provider(
        self,
        request_id: int,
        provider_id: int,
        *,
        assigned_by: Optional[str] = None,
    ) -> ServiceRequest:
        """pending -> assigned.  Exactly one of several concurrent callers wins."""

        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.check_assignable()
            provider = await ProviderRepository(session).get_entity(provider_id)
            if provider is None or not (provider.is_available and provider.is_active):
                raise ProviderUnavailable(
                    request.status.value,
                    RequestStatus.ASSIGNED.value,
                    f"provider {provider_id} is not available",
                )
            request.assign(provider_id, assigned_by=assigned_by, at=self._clock())

        try:
            return await self._transition(
                request_id,
                apply,
                event="assigned",
                target=RequestStatus.ASSIGNED,
                conflict=AssignmentConflict,
            )
        except AssignmentConflict as exc:
            logger.info(
                "Assignment of provider %s to request %s lost the race: %s",
                provider_id,
                request_id,
                exc,
            )
            raise

    async def assign_closest_any(self, request_id: int) -> Optional[ServiceRequest]:
        """
        Background fallback: assign the globally nearest available provider.

        No-op (returns ``None``) when the request is no longer pending, e.g.
        it was cancelled or assigned manually in the meantime.
        """
        request = await self.get_request(request_id)
        if request.status is not RequestStatus.PENDING or request.provider_id is not None:
            logger.info(
                "Request %s is %s; background assignment not needed",
                request_id,
                request.status.value,
            )
            return None
        if request.customer_coordinate is None:
            return None

        async with self._session_factory() as session:
            candidate = await self._matcher(session).find_closest_any(
                request.customer_coordinate
            )
        if candidate is None:
            raise MatchNotFound(f"no available provider for request {request_id}")
        return await self.assign_provider(request_id, candidate.provider_id)

    async def reject_assignment(self, request_id: int, provider_id: int) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.reject(provider_id)

        return await self._transition(
            request_id, apply, event="rejected", target=RequestStatus.PENDING
        )

    # ── Quote & payment ───────────────────────────────────────────

    async def submit_quote(
        self,
        request_id: int,
        provider_id: int,
        amount: float,
        description: Optional[str] = None,
    ) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.submit_quote(
                provider_id,
                amount,
                description,
                provider_percentage=self.provider_percentage,
                at=self._clock(),
            )

        return await self._transition(
            request_id, apply, event="quoted", target=RequestStatus.QUOTED
        )

    async def approve_quote(
        self, request_id: int, customer_id: Optional[str] = None
    ) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            reference = f"{request.tracking_code}-{secrets.token_hex(4)}"
            request.approve_quote(reference, customer_id=customer_id, at=self._clock())

        return await self._transition(
            request_id,
            apply,
            event="quote_approved",
            target=RequestStatus.AWAITING_PAYMENT,
        )

    async def record_payment(
        self,
        reference: Optional[str],
        amount: Optional[float] = None,
        request_id: Optional[int] = None,
    ) -> ServiceRequest:
        """Payment processor confirmed a customer payment (webhook)."""
        if not reference:
            raise RequestNotFound(request_id or "payment without reference")
        async with self._session_factory() as session:
            repo = ServiceRequestRepository(session)
            if request_id is not None:
                model = await repo.get_by_id(request_id)
            else:
                model = await repo.get_by_payment_reference(reference)
            if model is None:
                raise RequestNotFound(request_id or reference)
            current = repo.to_entity(model)

        if current.paid_at is not None and current.payment_reference == reference:
            logger.info("Duplicate payment notification %s ignored", reference)
            return current

        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.mark_paid(reference, amount, at=self._clock())

        return await self._transition(
            current.id, apply, event="paid", target=RequestStatus.PAID
        )

    # ── Provider progress ─────────────────────────────────────────

    async def start_trip(self, request_id: int, provider_id: int) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.start_trip(provider_id)

        return await self._transition(
            request_id, apply, event="en_route", target=RequestStatus.EN_ROUTE
        )

    async def mark_arrived(self, request_id: int, provider_id: int) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.mark_arrived(provider_id)

        return await self._transition(
            request_id, apply, event="arrived", target=RequestStatus.IN_PROGRESS
        )

    async def finish_work(self, request_id: int, provider_id: int) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.finish_work(provider_id, at=self._clock())

        return await self._transition(
            request_id,
            apply,
            event="work_finished",
            target=RequestStatus.AWAITING_CONFIRMATION,
        )

    async def report_position(
        self,
        request_id: int,
        provider_id: int,
        sample: PositionSample,
    ) -> bool:
        """
        Store the provider's latest position.  Never touches status.

        Returns ``False`` when the sample was dropped as stale.
        """
        async with self._session_factory() as session:
            repo = ServiceRequestRepository(session)
            request = await repo.get_entity(request_id)
            if request is None:
                raise RequestNotFound(request_id)
            if request.status not in TRACKED_STATUSES:
                raise InvalidTransition(
                    request.status.value,
                    None,
                    "positions are only accepted while the provider is en route or on site",
                )
            if request.provider_id != provider_id:
                raise InvalidTransition(
                    request.status.value, None, "request is not assigned to this provider"
                )

            if self.tracking is not None:
                try:
                    self.tracking.report(request, sample)
                except StaleSample as exc:
                    logger.debug("Stale position for request %s: %s", request_id, exc)
                    return False

                # a transition that committed after the load has already closed tracking
                status = await repo.get_status(request_id)
                if status not in TRACKED_STATUSES:
                    await self.tracking.close(request_id)
                    raise InvalidTransition(
                        status.value if status else None,
                        None,
                        "positions are only accepted while the provider is en route or on site",
                    )

            await repo.update_provider_position(
                request_id, sample.latitude, sample.longitude
            )
            await ProviderRepository(session, self.h3_resolution).update_location(
                provider_id, sample.latitude, sample.longitude
            )
            await session.commit()

        request.provider_lat = sample.latitude
        request.provider_lng = sample.longitude
        await self.publisher.publish(change_event(request, "position"))
        return True

    # ── Confirmation & settlement ─────────────────────────────────

    async def confirm_service(
        self,
        request_id: int,
        customer_id: Optional[str] = None,
        rating: Optional[int] = None,
        review: Optional[str] = None,
    ) -> ConfirmationResult:
        """
        Customer confirms the work; kicks off the provider payout.

        An optional 1-5 star rating is stored after the confirmation commits.
        Failing to store it is logged and never undoes the confirmation.
        """
        if rating is not None:
            validate_stars(rating)

        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.confirm_by_customer(customer_id=customer_id, at=self._clock())

        request = await self._transition(
            request_id,
            apply,
            event="customer_confirmed",
            target=RequestStatus.COMPLETED,
        )
        recorded = None
        if rating is not None:
            recorded = await self._record_rating(request, rating, review)
        settlement = await self.initiate_settlement(request_id)
        return ConfirmationResult(request=request, settlement=settlement, rating=recorded)

    async def _record_rating(
        self, request: ServiceRequest, stars: int, review: Optional[str]
    ) -> Optional[Rating]:
        entry = Rating.for_request(request, stars, review)
        if entry is None:
            logger.info("Rating for request %s skipped: no provider or customer", request.id)
            return None
        try:
            async with self._session_factory() as session:
                await RatingRepository(session).create(entry)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not record rating for request %s", request.id)
            return None
        logger.info(
            "Request %s rated %s by %s", request.id, stars, request.customer_id
        )
        return entry

    async def initiate_settlement(self, request_id: int) -> SettlementOutcome:
        """
        Transfer the provider's share.  Safe to call again (admin retry):
        a transfer that is already initiated or settled is not repeated.
        """
        async with self._session_factory() as session:
            request = await ServiceRequestRepository(session).get_entity(request_id)
            if request is None:
                raise RequestNotFound(request_id)
            if request.customer_confirmed_at is None:
                raise InvalidTransition(
                    request.status.value,
                    RequestStatus.COMPLETED.value,
                    "customer has not confirmed the service yet",
                )

            transactions = TransactionRepository(session)
            existing = await transactions.get_for_request(request_id)
            if existing is not None:
                transaction = transactions.to_entity(existing)
                if not transaction.needs_transfer:
                    return SettlementOutcome(transaction)
            else:
                split = split_commission(
                    request.settlement_total,
                    request.provider_percentage or self.provider_percentage,
                )
                transaction = await transactions.create(
                    Transaction.from_split(request_id, split)
                )

            provider = (
                await ProviderRepository(session).get_entity(request.provider_id)
                if request.provider_id
                else None
            )
            await session.commit()

        try:
            if provider is None or not provider.payout_recipient_code:
                raise SettlementInitiationFailed("provider has not set up payout details")
            result = await self.payments.initiate_transfer(
                request_id, provider.payout_recipient_code, transaction.provider_amount
            )
            if not result.success or not result.transfer_id:
                raise SettlementInitiationFailed("processor did not accept the transfer")
        except SettlementInitiationFailed as exc:
            logger.warning("Settlement initiation failed for request %s: %s", request_id, exc)
            transaction.transfer_failed(str(exc))
            await self._save_transaction(transaction)
            await self.publisher.publish(change_event(request, "settlement_failed"))
            return SettlementOutcome(transaction, failed=True, error=str(exc))

        transaction.transfer_initiated(result.transfer_id, at=self._clock())
        await self._save_transaction(transaction)
        return SettlementOutcome(transaction)

    async def _save_transaction(self, transaction: Transaction) -> None:
        async with self._session_factory() as session:
            await TransactionRepository(session).save(transaction)
            await session.commit()

    async def confirm_payment_received(
        self, request_id: int, provider_id: int
    ) -> ServiceRequest:
        """Provider acknowledges the payout; the request completes."""

        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.confirm_payment_received(provider_id, at=self._clock())

            transactions = TransactionRepository(session)
            existing = await transactions.get_for_request(request.id)
            if existing is None:
                split = split_commission(
                    request.settlement_total,
                    request.provider_percentage or self.provider_percentage,
                )
                transaction = Transaction.from_split(request.id, split)
                transaction.confirm(at=request.completed_at)
                await transactions.create(transaction)
            else:
                transaction = transactions.to_entity(existing)
                transaction.confirm(at=request.completed_at)
                await transactions.save(transaction)

        return await self._transition(
            request_id, apply, event="completed", target=RequestStatus.COMPLETED
        )

    async def record_transfer_outcome(
        self, transfer_code: str, succeeded: bool, reason: Optional[str] = None
    ) -> Optional[Transaction]:
        async with self._session_factory() as session:
            repo = TransactionRepository(session)
            model = await repo.get_by_transfer_code(transfer_code)
            if model is None:
                logger.warning("Transfer %s does not match any transaction", transfer_code)
                return None
            transaction = repo.to_entity(model)
            if succeeded:
                transaction.transfer_succeeded(at=self._clock())
            else:
                transaction.transfer_failed(reason or "unknown reason")
            await repo.save(transaction)
            await session.commit()
        logger.info(
            "Transfer %s for request %s: %s",
            transfer_code,
            transaction.service_request_id,
            transaction.transfer_status.value,
        )
        return transaction

    async def list_failed_settlements(self) -> list[Transaction]:
        async with self._session_factory() as session:
            repo = TransactionRepository(session)
            return [repo.to_entity(m) for m in await repo.list_failed_transfers()]

    # ── Cancellation ──────────────────────────────────────────────

    async def cancel(self, request_id: int, role: ActorRole) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.cancel(role)

        return await self._transition(
            request_id, apply, event="cancelled", target=RequestStatus.CANCELLED
        )

    async def deny(self, request_id: int, admin_id: Optional[str] = None) -> ServiceRequest:
        async def apply(session: AsyncSession, request: ServiceRequest) -> None:
            request.deny()

        request = await self._transition(
            request_id, apply, event="denied", target=RequestStatus.DENIED
        )
        logger.info("Request %s denied by admin %s", request_id, admin_id)
        return request
