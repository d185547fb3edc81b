"""
Booking state machine

unseen -> created -> {cancelled | rescheduled}. A rescheduled booking is
followed by a ``invitee.created`` for a new invitee URI, which enters at
``created`` again. No-show is an annotation on the CRM activity and never
moves the booking row.

Every routing decision for a notification is made by ``decide`` so the
precedence rules live in one table:

- ``rescheduled`` on a cancellation wins over a plain cancellation
- ``old_invitee`` on a creation still routes to the ``created`` mapping
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...enums import BookingStatus, TransitionKind
from ...errors import BookingNotRecorded, WebhookNoFunctionTriggered

INVITEE_CREATED = "invitee.created"
INVITEE_CANCELED = "invitee.canceled"


class Action(str, Enum):
    CREATE = "create"  # new booking row + new CRM activity
    REPLAY = "replay"  # booking already recorded in this state
    UPDATE = "update"  # move booking status, retype the linked CRM activity


@dataclass(frozen=True)
class Decision:
    kind: TransitionKind
    action: Action
    from_status: Optional[BookingStatus] = None
    to_status: Optional[BookingStatus] = None
    after_reschedule: bool = False


def classify(event: Optional[str], rescheduled: bool = False) -> TransitionKind:
    """Map a webhook event name to the transition kind whose mapping it needs"""
    if event == INVITEE_CREATED:
        return TransitionKind.CREATED
    if event == INVITEE_CANCELED:
        return TransitionKind.RESCHEDULED if rescheduled else TransitionKind.CANCELLED
    raise WebhookNoFunctionTriggered(event)


def decide(
    event: Optional[str],
    rescheduled: bool,
    has_old_invitee: bool,
    stored_status: Optional[str],
    uri: Optional[str] = None,
) -> Decision:
    """
    Derive the transition for one notification.

    Args:
        event: webhook event name
        rescheduled: the payload's ``rescheduled`` flag
        has_old_invitee: the payload links to a previous invitee
        stored_status: status of the booking row for this URI, None when unseen

    Raises:
        WebhookNoFunctionTriggered: event is not a booking transition
        BookingNotRecorded: cancellation for a booking not recorded yet (retryable)
    """
    kind = classify(event, rescheduled)

    if kind == TransitionKind.CREATED:
        if stored_status is not None:
            return Decision(kind, Action.REPLAY, after_reschedule=has_old_invitee)
        return Decision(
            kind, Action.CREATE, to_status=BookingStatus.CREATED, after_reschedule=has_old_invitee
        )

    target = BookingStatus.RESCHEDULED if kind == TransitionKind.RESCHEDULED else BookingStatus.CANCELLED
    if stored_status is None:
        # Its creation may still be in flight or delivered later
        raise BookingNotRecorded(uri)
    if stored_status != BookingStatus.CREATED.value:
        # Already terminal: a redelivery of this cancellation, or a late one after the other outcome
        return Decision(kind, Action.REPLAY, from_status=BookingStatus(stored_status))
    return Decision(kind, Action.UPDATE, from_status=BookingStatus.CREATED, to_status=target)
