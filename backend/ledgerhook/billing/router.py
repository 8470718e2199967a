"""Event router: maps an event type to exactly one handler."""

from typing import Awaitable, Callable, Dict

from ledgerhook.core.logging import ContextualLogger
from ledgerhook.schemas.billing_event import BillingEvent, ProcessingOutcome, ProcessingResult

EventHandler = Callable[[BillingEvent, ContextualLogger], Awaitable[ProcessingResult]]


async def ignore_event(event: BillingEvent, log: ContextualLogger) -> ProcessingResult:
    """Acknowledge an event type nobody handles.

    New Stripe event types must not fail, or Stripe would redeliver them indefinitely.
    """
    log.info(f"Unhandled webhook event type: {event.event_type}")
    return ProcessingResult(
        outcome=ProcessingOutcome.IGNORED,
        event_id=event.event_id,
        event_type=event.event_type,
        detail=f"Unhandled event type {event.event_type}",
    )


class EventRouter:
    """Total mapping from event type to handler.

    Registered types get their handler; every other type gets ``fallback``.
    """

    def __init__(self, fallback: EventHandler = ignore_event):
        """Initialize an empty router."""
        self._handlers: Dict[str, EventHandler] = {}
        self.fallback = fallback

    def register(self, event_type: str, handler: EventHandler) -> None:
        """Register the handler of an event type.

        Raises:
            ValueError: If the type already has a handler
        """
        if event_type in self._handlers:
            raise ValueError(f"Handler already registered for {event_type}")
        self._handlers[event_type] = handler

    def is_registered(self, event_type: str) -> bool:
        """Whether the type has its own handler."""
        return event_type in self._handlers

    def resolve(self, event_type: str) -> EventHandler:
        """Return the handler for an event type, falling back to the no-op handler."""
        return self._handlers.get(event_type, self.fallback)

    async def dispatch(self, event: BillingEvent, log: ContextualLogger) -> ProcessingResult:
        """Run the handler for an event and return its result."""
        return await self.resolve(event.event_type)(event, log)

    @property
    def event_types(self) -> list[str]:
        """Registered event types, sorted."""
        return sorted(self._handlers)
