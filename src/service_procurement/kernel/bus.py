"""
In-process Event Bus

Simple synchronous notification collaborator. The orchestrator emits each
domain event once; the bus fans it out to every subscriber registered for the
event type (and to wildcard subscribers).

A failing subscriber never affects the others or the workflow action that
emitted the event.
"""

from collections import defaultdict
from typing import Callable

from service_procurement.kernel.events import Event
from service_procurement.kernel.logging import get_logger

logger = get_logger(__name__)


EventHandler = Callable[[Event], None]

# Subscribe with this event type to receive every event
ALL_EVENTS = "*"


class InProcessBus:
    """
    Simple synchronous in-process bus

    Implements the EventSink protocol (emit). Suitable for single-process
    deployments and tests; a message-queue adapter can replace it without
    changing domain code.
    """

    def __init__(self) -> None:
        """Initialize empty bus with no registered handlers"""
        self._event_handlers: defaultdict[str, list[EventHandler]] = defaultdict(list)
        logger.debug("InProcessBus initialized")

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register an event handler (can have multiple per event type)

        Args:
            event_type: Type of event to handle (e.g., "Ordered"), or ALL_EVENTS
            handler: Function that processes the event
        """
        self._event_handlers[event_type].append(handler)
        logger.debug(
            "Event handler registered",
            event_type=event_type,
            total_handlers=len(self._event_handlers[event_type]),
        )

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register a handler for every event type"""
        self.register_event_handler(ALL_EVENTS, handler)

    def emit(self, event: Event) -> None:
        """EventSink entry point used by the orchestrator"""
        self.publish_event(event)

    def publish_event(self, event: Event) -> None:
        """
        Publish an event to all registered handlers

        Handlers are called synchronously in registration order, type-specific
        handlers first. A failing handler is logged and skipped.
        """
        handlers = self._event_handlers.get(event.event_type, []) + self._event_handlers.get(
            ALL_EVENTS, []
        )

        if not handlers:
            logger.debug(
                "No handlers registered for event type",
                event_type=event.event_type,
                event_id=event.event_id,
            )
            return

        logger.debug(
            "Publishing event",
            event_type=event.event_type,
            event_id=event.event_id,
            request_id=event.request_id,
            handler_count=len(handlers),
        )

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    request_id=event.request_id,
                    error=str(e),
                    exc_info=True,
                )
