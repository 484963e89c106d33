"""Outbound notification requests.

The core never talks to mail or SMS gateways. Actions that should reach a
person append a :class:`NotificationRequest` to the context's :class:`Outbox`;
an external notifier drains it. Delivery is fire-and-forget: a failing
notifier is logged and never undoes the transition that queued the message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from . import log
from .constants import NotificationChannel
from .models import Business, BusinessProfile, Contact


@dataclass(frozen=True)
class NotificationRequest:
    channel: NotificationChannel
    recipient: str
    subject: str
    body: str


Notifier = Callable[[NotificationRequest], None]


class Outbox:
    """FIFO queue of notification requests awaiting delivery."""

    def __init__(self, notifier: Optional[Notifier] = None) -> None:
        self.notifier = notifier
        self._pending: List[NotificationRequest] = []

    def enqueue(self, request: NotificationRequest) -> None:
        log.info("Queued %s notification to '%s': %s", request.channel.value, request.recipient, request.subject)
        self._pending.append(request)

    @property
    def pending(self) -> List[NotificationRequest]:
        return list(self._pending)

    def drain(self) -> List[NotificationRequest]:
        drained, self._pending = self._pending, []
        return drained

    def flush(self) -> int:
        """Hand every queued request to the notifier; return how many were delivered.

        Requests whose delivery raises are dropped after logging, so a broken
        gateway cannot wedge the queue.
        """

        if self.notifier is None:
            return 0
        delivered = 0
        for request in self.drain():
            try:
                self.notifier(request)
            except Exception as exc:  # noqa: BLE001 - delivery is best effort
                log.error("Failed to deliver %s notification to '%s': %s", request.channel.value, request.recipient, exc)
                continue
            delivered += 1
        return delivered


def approval_email(business: Business) -> Optional[NotificationRequest]:
    if not business.owner_email:
        return None
    return NotificationRequest(
        channel=NotificationChannel.EMAIL,
        recipient=business.owner_email,
        subject="Business Approved",
        body=f"Congratulations! Your business '{business.name}' has been approved.",
    )


def rejection_email(business: Business, reason: str) -> Optional[NotificationRequest]:
    if not business.owner_email:
        return None
    return NotificationRequest(
        channel=NotificationChannel.EMAIL,
        recipient=business.owner_email,
        subject="Business Rejected",
        body=f"Your registration for '{business.name}' was not approved. Reason: {reason}",
    )


def credit_reminder_sms(customer: Contact, profile: BusinessProfile) -> NotificationRequest:
    return NotificationRequest(
        channel=NotificationChannel.SMS,
        recipient=customer.contact,
        subject="Payment reminder",
        body=(
            f"Hello {customer.name}, this is a friendly reminder that you have an outstanding "
            f"balance of K{customer.credit_balance:.2f} at {profile.name}. Thank you!"
        ),
    )
