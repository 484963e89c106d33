"""Exception hierarchy for the ZaveOrah core."""

from __future__ import annotations


class ZaveOrahError(Exception):
    """Base class for every error raised by the package."""


class BusinessRuleViolation(ZaveOrahError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced business, user, or record is unknown."""


class SubscriptionTransitionError(BusinessRuleViolation):
    """Raised when a subscription status change is not permitted."""


class CorruptDataError(ZaveOrahError):
    """Raised when a persisted payload cannot be turned back into a store."""


class PermissionDeniedError(BusinessRuleViolation):
    """Raised when the acting user lacks the capability an action requires."""
