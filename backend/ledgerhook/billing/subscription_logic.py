"""Pure business logic for subscription state.

Decides how one subscription event changes the locally stored subscription. Nothing here
touches the database or Stripe; ``SubscriptionLedger`` loads the row, asks
``plan_subscription_change`` what to write, and writes it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ledgerhook.schemas.billing_event import EventType
from ledgerhook.schemas.subscription import SubscriptionStatus

# Stripe subscription status -> local status
PROCESSOR_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.PENDING,
    "trialing": SubscriptionStatus.PENDING,
}

# Tie-break for events created in the same second: created happened before updated
EVENT_TYPE_RANK = {
    EventType.SUBSCRIPTION_CREATED.value: 0,
    EventType.SUBSCRIPTION_UPDATED.value: 1,
}


def map_processor_status(status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status to the local status.

    Unknown statuses map to pending, which the transition rules never apply over an
    existing state.
    """
    if not status:
        return SubscriptionStatus.PENDING
    return PROCESSOR_STATUS_MAP.get(status, SubscriptionStatus.PENDING)


def event_rank(event_type: Optional[str]) -> int:
    """Ordering rank of a subscription event type."""
    return EVENT_TYPE_RANK.get(event_type or "", 1)


@dataclass
class StoredSubscription:
    """The parts of a stored subscription the transition rules look at."""

    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    last_event_type: Optional[str] = None


@dataclass
class SubscriptionEventContext:
    """A subscription event, reduced to what the transition rules need."""

    event_type: str
    occurred_at: datetime
    processor_status: str
    now: datetime
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None


@dataclass
class SubscriptionChange:
    """Result of applying one event to a stored subscription."""

    previous_status: Optional[SubscriptionStatus]
    status: SubscriptionStatus
    stale: bool
    reason: str
    updates: dict[str, Any] = field(default_factory=dict)

    @property
    def status_changed(self) -> bool:
        """Whether the event moved the subscription to another state."""
        return self.previous_status != self.status

    @property
    def activates(self) -> bool:
        """Whether the subscription is active after the event."""
        return self.status == SubscriptionStatus.ACTIVE


def is_stale(
    stored: StoredSubscription, occurred_at: datetime, event_type: Optional[str]
) -> bool:
    """Whether an event is older than the newest event already applied to the row.

    Events are ordered by ``(occurred_at, type rank)``. An event equal to the watermark is not
    stale, so redelivering the latest event is a no-op rather than an error.
    """
    if stored.last_event_at is None:
        return False
    incoming = (occurred_at, event_rank(event_type))
    watermark = (stored.last_event_at, event_rank(stored.last_event_type))
    return incoming < watermark


def _target_status(ctx: SubscriptionEventContext) -> SubscriptionStatus:
    """Local status the event asks for, before the transition rules are applied."""
    if (
        ctx.cancel_at_period_end
        and ctx.current_period_end is not None
        and ctx.current_period_end <= ctx.now
    ):
        return SubscriptionStatus.CANCELED
    return map_processor_status(ctx.processor_status)


def _period_updates(
    stored: Optional[StoredSubscription], ctx: SubscriptionEventContext
) -> dict[str, Any]:
    """Period bounds to write: last writer wins on the period end, in any state."""
    if ctx.current_period_end is None:
        return {}
    if (
        stored is not None
        and stored.current_period_end is not None
        and ctx.current_period_end <= stored.current_period_end
    ):
        return {}
    return {
        "current_period_start": ctx.current_period_start,
        "current_period_end": ctx.current_period_end,
    }


def plan_subscription_change(
    stored: Optional[StoredSubscription], ctx: SubscriptionEventContext
) -> SubscriptionChange:
    """Decide how an event changes a subscription.

    Rules:
        - canceled is terminal
        - nothing moves back to pending
        - active and past_due move freely between each other
        - a cancel-at-period-end subscription whose period has ended is canceled
        - period bounds follow the newest period end, even from stale events
        - status and flags only follow events newer than the stored watermark

    Args:
        stored: The current row, or None if the subscription is not known yet
        ctx: The incoming event

    Returns:
        SubscriptionChange: The resulting status and the column updates to write
    """
    target = _target_status(ctx)
    updates = _period_updates(stored, ctx)

    if stored is None:
        updates.update(
            status=target.value,
            cancel_at_period_end=ctx.cancel_at_period_end,
            last_event_at=ctx.occurred_at,
            last_event_type=ctx.event_type,
        )
        if target == SubscriptionStatus.CANCELED:
            updates["canceled_at"] = ctx.canceled_at or ctx.now
        return SubscriptionChange(
            previous_status=None,
            status=target,
            stale=False,
            reason="created from event",
            updates=updates,
        )

    current = stored.status

    if is_stale(stored, ctx.occurred_at, ctx.event_type):
        return SubscriptionChange(
            previous_status=current,
            status=current,
            stale=True,
            reason=f"stale event older than {stored.last_event_type} at {stored.last_event_at}",
            updates=updates,
        )

    updates.update(last_event_at=ctx.occurred_at, last_event_type=ctx.event_type)

    if current == SubscriptionStatus.CANCELED:
        return SubscriptionChange(
            previous_status=current,
            status=current,
            stale=False,
            reason="canceled is terminal",
            updates=updates,
        )

    if target == SubscriptionStatus.PENDING and current != SubscriptionStatus.PENDING:
        new_status = current
        reason = f"refusing downgrade from {current.value} to pending"
    else:
        new_status = target
        reason = f"{current.value} -> {target.value}"

    updates["cancel_at_period_end"] = ctx.cancel_at_period_end
    if new_status != current:
        updates["status"] = new_status.value
    if new_status == SubscriptionStatus.CANCELED:
        updates["canceled_at"] = ctx.canceled_at or stored.canceled_at or ctx.now

    return SubscriptionChange(
        previous_status=current,
        status=new_status,
        stale=False,
        reason=reason,
        updates=updates,
    )
