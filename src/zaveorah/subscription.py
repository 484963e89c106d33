"""Subscription lifecycle for a tenant.

Pure transitions over :class:`~.models.Business`::

    none -> trial -> (active | lapsed)
    none | lapsed | rejected -> pending -> (active | rejected)
    active | trial -> pending            (upgrade flow only)

Each transition returns a new ``Business`` or raises
:class:`~.errors.SubscriptionTransitionError`. Callers in the business logic
layer translate that error into a ``False`` result for the presentation layer.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

from . import log
from .constants import LIFETIME_YEARS, TRIAL_LENGTH_DAYS, SubscriptionStatus, SubscriptionTier
from .data_manager import add_years
from .errors import SubscriptionTransitionError
from .models import Business


TRIAL_LENGTH = timedelta(days=TRIAL_LENGTH_DAYS)

_SUBMITTABLE: FrozenSet[SubscriptionStatus] = frozenset({
    SubscriptionStatus.NONE,
    SubscriptionStatus.LAPSED,
    SubscriptionStatus.REJECTED,
})
_UPGRADEABLE: FrozenSet[SubscriptionStatus] = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
})
_GATE_EXEMPT: FrozenSet[SubscriptionStatus] = frozenset({
    SubscriptionStatus.PENDING,
    SubscriptionStatus.REJECTED,
})

_VALID_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.NONE: frozenset({SubscriptionStatus.TRIAL, SubscriptionStatus.PENDING}),
    SubscriptionStatus.TRIAL: frozenset({SubscriptionStatus.LAPSED, SubscriptionStatus.PENDING}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.LAPSED, SubscriptionStatus.PENDING}),
    SubscriptionStatus.LAPSED: frozenset({SubscriptionStatus.PENDING}),
    SubscriptionStatus.PENDING: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.REJECTED}),
    SubscriptionStatus.REJECTED: frozenset({SubscriptionStatus.PENDING}),
}


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in _VALID_TRANSITIONS.get(current, frozenset())


def trial_end(business: Business) -> Optional[datetime]:
    if business.trial_start_date is None:
        return None
    return business.trial_start_date + TRIAL_LENGTH


def is_subscription_active(business: Optional[Business], now: datetime) -> bool:
    """Return whether ``business`` currently has access to the application.

    Access is granted for an active plan whose expiry lies in the future, or
    for a trial started less than :data:`TRIAL_LENGTH` ago. Every other status
    is inactive regardless of its dates.
    """

    if business is None:
        return False
    if business.subscription_status is SubscriptionStatus.ACTIVE and business.subscription_expiry is not None:
        return business.subscription_expiry > now
    if business.subscription_status is SubscriptionStatus.TRIAL:
        end = trial_end(business)
        return end is not None and now < end
    return False


def compute_expiry(tier: SubscriptionTier, now: datetime) -> datetime:
    if tier is SubscriptionTier.LIFETIME:
        return add_years(now, LIFETIME_YEARS)
    raise SubscriptionTransitionError(f"Unsupported subscription tier: {tier}")


def evaluate_login_gate(business: Business, now: datetime) -> tuple[Business, bool]:
    """Apply the subscription gate run at every password login.

    Returns:
        tuple[Business, bool]: The possibly updated business (an expired
            trial or plan becomes ``lapsed``) and whether the session must be
            sent to the subscription screen.
    """

    if is_subscription_active(business, now) or business.subscription_status in _GATE_EXEMPT:
        return business, False
    if can_transition(business.subscription_status, SubscriptionStatus.LAPSED):
        log.info("Subscription for business '%s' lapsed (was %s)", business.id, business.subscription_status.value)
        business = replace(business, subscription_status=SubscriptionStatus.LAPSED)
    return business, True


def start_trial(business: Business, now: datetime) -> Business:
    if not can_transition(business.subscription_status, SubscriptionStatus.TRIAL):
        raise SubscriptionTransitionError(
            f"Cannot start a trial from status '{business.subscription_status.value}'"
        )
    return replace(business, subscription_status=SubscriptionStatus.TRIAL, trial_start_date=now)


def submit_for_approval(
    business: Business,
    tier: SubscriptionTier,
    amount: Decimal,
    receipt: str,
    *,
    upgrade: bool = False,
) -> Business:
    """Move ``business`` to ``pending`` with a fresh payment submission.

    Allowed from none, lapsed and rejected, and from active or trial only when
    ``upgrade`` is set. Any previous rejection reason is cleared and the three
    pending-payment fields are overwritten.
    """

    status = business.subscription_status
    if status not in _SUBMITTABLE and not (upgrade and status in _UPGRADEABLE):
        raise SubscriptionTransitionError(f"Cannot submit a payment from status '{status.value}'")
    if not amount.is_finite() or amount <= Decimal("0"):
        raise SubscriptionTransitionError("Payment amount must be a finite number greater than zero")
    if not receipt:
        raise SubscriptionTransitionError("A payment receipt is required")
    return replace(
        business,
        subscription_status=SubscriptionStatus.PENDING,
        pending_subscription_tier=tier,
        pending_payment_amount=amount,
        pending_payment_receipt=receipt,
        rejection_reason=None,
    )


def approve_payment(business: Business, now: datetime) -> Business:
    if (
        not can_transition(business.subscription_status, SubscriptionStatus.ACTIVE)
        or business.pending_subscription_tier is None
    ):
        raise SubscriptionTransitionError(f"Business '{business.id}' has no pending payment to approve")
    tier = business.pending_subscription_tier
    return replace(
        business,
        subscription_status=SubscriptionStatus.ACTIVE,
        subscription_tier=tier,
        subscription_expiry=compute_expiry(tier, now),
        has_been_notified_of_approval=False,
        pending_subscription_tier=None,
        pending_payment_amount=None,
        pending_payment_receipt=None,
        rejection_reason=None,
    )


def reject_payment(business: Business, reason: str) -> Business:
    """Reject a pending payment; the submission stays attached for review."""

    if not can_transition(business.subscription_status, SubscriptionStatus.REJECTED):
        raise SubscriptionTransitionError(f"Business '{business.id}' has no pending payment to reject")
    return replace(business, subscription_status=SubscriptionStatus.REJECTED, rejection_reason=reason)


def mark_approval_as_notified(business: Business) -> Business:
    if business.has_been_notified_of_approval is True:
        return business
    return replace(business, has_been_notified_of_approval=True)


def requires_subscription_screen(
    business: Optional[Business],
    *,
    subscription_required: bool,
    is_upgrade_flow: bool,
) -> bool:
    """Decide whether a logged-in tenant user sees the subscription screen."""

    if subscription_required or is_upgrade_flow:
        return True
    if business is None:
        return False
    return business.subscription_status in {
        SubscriptionStatus.NONE,
        SubscriptionStatus.PENDING,
        SubscriptionStatus.REJECTED,
    }


def should_show_approval_banner(business: Optional[Business]) -> bool:
    """The one-time congratulations banner shows until explicitly dismissed."""

    return business is not None and business.has_been_notified_of_approval is False


def can_offer_trial(business: Optional[Business], *, is_upgrade_flow: bool) -> bool:
    return (
        business is not None
        and not is_upgrade_flow
        and business.subscription_status is SubscriptionStatus.NONE
    )
