# Overview: Domain error taxonomy shared by services and mapped to HTTP codes by routes.

from __future__ import annotations


class NotFoundError(LookupError):
    """404-level: referenced plan/subscription/transaction/student does not exist."""


class InvalidStateError(Exception):
    """409-level: operation not permitted in the current lifecycle state."""


class EntitlementExhausted(Exception):
    """
    Session deduction attempted with zero remaining sessions.

    An expected business outcome, not a fault: the caller denies the billable action.
    """

    def __init__(self, subscription_id: int, message: str | None = None):
        self.subscription_id = subscription_id
        super().__init__(message or f"Subscription {subscription_id} has no remaining sessions")


class AuthenticationError(Exception):
    """401-level: missing, invalid or expired credentials."""


class PermissionDeniedError(Exception):
    """403-level: authenticated but not allowed."""
