"""Domain error taxonomy shared by the lifecycle engine, matcher and sampler."""

from __future__ import annotations

from typing import Optional


class InvalidTransition(Exception):
    """Raised when a status change violates the state machine or its guards.

    The message is safe to show to customers and providers as-is.
    """

    def __init__(
        self,
        current: Optional[str],
        target: Optional[str],
        reason: str = "",
    ):
        self.current = current
        self.target = target
        self.reason = reason
        if current and target:
            message = f"Cannot move request from {current} to {target}"
        elif target:
            message = f"Cannot move request to {target}"
        else:
            message = "Action not available"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransitionConflict(InvalidTransition):
    """A concurrent writer changed the request first; refetch before retrying."""


class AssignmentConflict(TransitionConflict):
    """Another assignment won the race for the same request."""


class ProviderUnavailable(InvalidTransition):
    """The provider to assign does not exist, is inactive or is not available."""


class RequestNotFound(LookupError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"Service request {key} not found")


class MatchNotFound(Exception):
    """No eligible provider; the request stays pending for manual assignment."""


class SettlementInitiationFailed(Exception):
    """The payment processor rejected or timed out a provider transfer."""


class StaleSample(Exception):
    """Position sample not newer than the last one seen for the same request."""
