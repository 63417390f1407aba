"""Unit tests for service request state transitions (State Pattern)."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from roadside.domain.entities import ServiceRequest
from roadside.domain.enums import (
    REQUEST_TRANSITIONS,
    STATUS_METADATA,
    TERMINAL_STATUSES,
    ActorRole,
    PaymentStatus,
    RequestStatus,
)
from roadside.domain.errors import AssignmentConflict, InvalidTransition
from roadside.domain.stages import (
    AwaitingConfirmation,
    Completed,
    InvariantViolation,
    Quoted,
    stage_of,
)

T0 = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


def _assigned() -> ServiceRequest:
    r = ServiceRequest(id=1, tracking_code="RSA-ABC123", customer_id="cust-1")
    r.assign(7, at=T0)
    return r


def _at(status: RequestStatus) -> ServiceRequest:
    """Walk a fresh request along the happy path up to *status*."""
    r = _assigned()
    steps = [
        (RequestStatus.QUOTED, lambda: r.submit_quote(7, 150.0, "Tow", at=T0)),
        (RequestStatus.AWAITING_PAYMENT, lambda: r.approve_quote("ref-1", at=T0)),
        (RequestStatus.PAID, lambda: r.mark_paid("ref-1", at=T0)),
        (RequestStatus.EN_ROUTE, lambda: r.start_trip(7)),
        (RequestStatus.IN_PROGRESS, lambda: r.mark_arrived(7)),
        (RequestStatus.AWAITING_CONFIRMATION, lambda: r.finish_work(7, at=T0)),
    ]
    for target, step in steps:
        if r.status is status:
            break
        step()
        assert r.status is target
    return r


class TestRequestStateMachine:
    def test_initial_status_is_pending(self):
        r = ServiceRequest()
        assert r.status == RequestStatus.PENDING
        assert r.payment_status == PaymentStatus.UNPAID

    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_assigned(self):
        r = _assigned()
        assert r.status == RequestStatus.ASSIGNED
        assert r.provider_id == 7
        assert r.assigned_at == T0
        assert r.assigned_by is None

    def test_admin_assignment_records_admin(self):
        r = ServiceRequest(id=1)
        r.assign(7, assigned_by="admin-1")
        assert r.assigned_by == "admin-1"

    def test_reject_clears_assignment(self):
        r = _assigned()
        r.reject(7)
        assert r.status == RequestStatus.PENDING
        assert (r.provider_id, r.assigned_at, r.assigned_by) == (None, None, None)

    def test_quote_then_approval(self):
        r = _at(RequestStatus.QUOTED)
        assert r.quoted_amount == 150.0
        assert r.provider_percentage == 85.0
        r.approve_quote("ref-1", customer_id="cust-1")
        assert r.status == RequestStatus.AWAITING_PAYMENT
        assert r.payment_status == PaymentStatus.PENDING

    def test_payment_sets_amount_from_quote(self):
        r = _at(RequestStatus.PAID)
        assert r.payment_status == PaymentStatus.PAID
        assert r.amount == 150.0
        assert r.paid_at == T0

    def test_finish_sets_provisional_completion(self):
        r = _at(RequestStatus.AWAITING_CONFIRMATION)
        assert r.completed_at == T0

    def test_legacy_accepted_advances_to_en_route(self):
        r = replace(
            _at(RequestStatus.QUOTED), status=RequestStatus.ACCEPTED
        )
        r.start_trip(7)
        assert r.status == RequestStatus.EN_ROUTE

    @pytest.mark.parametrize(
        "status",
        [s for s in RequestStatus if s not in TERMINAL_STATUSES and s is not RequestStatus.ACCEPTED],
    )
    def test_customer_can_cancel_any_non_terminal(self, status):
        r = _at(status) if status is not RequestStatus.PENDING else ServiceRequest()
        r.cancel(ActorRole.CUSTOMER)
        assert r.status == RequestStatus.CANCELLED

    def test_admin_denies_assigned(self):
        r = _assigned()
        r.deny()
        assert r.status == RequestStatus.DENIED

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_quoted_fails(self):
        r = ServiceRequest()
        with pytest.raises(InvalidTransition):
            r.submit_quote(7, 100.0)

    def test_double_assignment_is_a_conflict(self):
        r = _assigned()
        with pytest.raises(AssignmentConflict):
            r.assign(8)
        assert r.provider_id == 7

    def test_zero_quote_rejected_without_mutation(self):
        r = _assigned()
        with pytest.raises(InvalidTransition, match="greater than zero"):
            r.submit_quote(7, 0)
        assert r.status == RequestStatus.ASSIGNED
        assert r.quoted_amount is None

    def test_quote_from_other_provider_rejected(self):
        r = _assigned()
        with pytest.raises(InvalidTransition, match="not assigned to this provider"):
            r.submit_quote(8, 100.0)

    def test_payment_reference_must_match(self):
        r = _at(RequestStatus.AWAITING_PAYMENT)
        with pytest.raises(InvalidTransition):
            r.mark_paid("someone-elses-ref")
        assert r.status == RequestStatus.AWAITING_PAYMENT
        assert r.paid_at is None

    def test_cannot_skip_payment(self):
        r = _at(RequestStatus.AWAITING_PAYMENT)
        with pytest.raises(InvalidTransition):
            r.start_trip(7)

    def test_provider_cannot_cancel(self):
        r = _assigned()
        with pytest.raises(InvalidTransition):
            r.cancel(ActorRole.PROVIDER)
        assert r.status == RequestStatus.ASSIGNED

    def test_deny_only_from_assigned(self):
        r = _at(RequestStatus.QUOTED)
        with pytest.raises(InvalidTransition):
            r.deny()

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_states_are_final(self, status):
        r = ServiceRequest(status=status, provider_id=7)
        with pytest.raises(InvalidTransition):
            r.cancel(ActorRole.ADMIN)
        with pytest.raises(InvalidTransition):
            r.assign(8)

    def test_error_message_is_plain(self):
        r = ServiceRequest()
        with pytest.raises(InvalidTransition) as exc_info:
            r.start_trip(7)
        assert str(exc_info.value).startswith("Cannot move request from pending to en_route")


class TestDualConfirmation:
    def test_customer_confirmation_alone_does_not_complete(self):
        r = _at(RequestStatus.AWAITING_CONFIRMATION)
        r.confirm_by_customer(customer_id="cust-1", at=T0 + timedelta(minutes=1))
        assert r.status == RequestStatus.AWAITING_CONFIRMATION
        assert r.customer_confirmed_at is not None
        assert r.provider_confirmed_payment_at is None

    def test_provider_cannot_confirm_first(self):
        r = _at(RequestStatus.AWAITING_CONFIRMATION)
        with pytest.raises(InvalidTransition, match="customer has not confirmed"):
            r.confirm_payment_received(7)
        assert r.status == RequestStatus.AWAITING_CONFIRMATION

    def test_both_confirmations_complete(self):
        r = _at(RequestStatus.AWAITING_CONFIRMATION)
        r.confirm_by_customer(at=T0 + timedelta(minutes=1))
        r.confirm_payment_received(7, at=T0 + timedelta(minutes=5))
        assert r.status == RequestStatus.COMPLETED
        assert r.completed_at == r.provider_confirmed_payment_at
        assert isinstance(stage_of(r), Completed)

    def test_customer_confirms_once(self):
        r = _at(RequestStatus.AWAITING_CONFIRMATION)
        r.confirm_by_customer()
        with pytest.raises(InvalidTransition, match="already confirmed"):
            r.confirm_by_customer()

    def test_wrong_customer_rejected(self):
        r = _at(RequestStatus.AWAITING_CONFIRMATION)
        with pytest.raises(InvalidTransition, match="another customer"):
            r.confirm_by_customer(customer_id="cust-2")


class TestStages:
    def test_quoted_stage_carries_amount(self):
        stage = stage_of(_at(RequestStatus.QUOTED))
        assert isinstance(stage, Quoted)
        assert stage.quoted_amount == 150.0

    def test_awaiting_confirmation_stage(self):
        stage = stage_of(_at(RequestStatus.AWAITING_CONFIRMATION))
        assert isinstance(stage, AwaitingConfirmation)
        assert stage.customer_confirmed_at is None

    def test_missing_field_is_a_violation(self):
        r = ServiceRequest(id=3, status=RequestStatus.QUOTED, provider_id=7)
        with pytest.raises(InvariantViolation, match="quoted_amount"):
            stage_of(r)

    def test_pending_with_provider_is_a_violation(self):
        with pytest.raises(InvariantViolation):
            stage_of(ServiceRequest(id=3, provider_id=7))

    def test_confirmations_out_of_order(self):
        r = ServiceRequest(
            id=3,
            status=RequestStatus.COMPLETED,
            provider_id=7,
            quoted_amount=100.0,
            customer_confirmed_at=T0 + timedelta(minutes=10),
            provider_confirmed_payment_at=T0,
            completed_at=T0,
        )
        with pytest.raises(InvariantViolation, match="out of order"):
            stage_of(r)

    def test_every_status_has_a_stage_builder(self):
        full = _at(RequestStatus.AWAITING_CONFIRMATION)
        full.confirm_by_customer(at=T0)
        full.confirm_payment_received(7, at=T0)
        for status in RequestStatus:
            r = replace(full, status=status)
            if status is RequestStatus.PENDING:
                r.provider_id = None
            stage_of(r)


class TestStatusMetadata:
    def test_covers_every_status(self):
        assert set(STATUS_METADATA) == set(RequestStatus)

    def test_allowed_next_mirrors_transitions(self):
        for status, info in STATUS_METADATA.items():
            assert info.allowed_next == frozenset(REQUEST_TRANSITIONS[status])
            assert info.is_terminal == (status in TERMINAL_STATUSES)
