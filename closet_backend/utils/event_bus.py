"""
event_bus.py - Event bus for cross-module communication.

The NFC controller publishes tag events here so the API layer can track
the last scanned tag without importing the controller's internals.
"""

from typing import Any, Callable, Dict, List, Optional

from .logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Simple event bus for cross-module communication.

    Usage:
        from closet_backend.utils.event_bus import event_bus, EventNames
        event_bus.emit(EventNames.TAG_SCANNED, outcome=outcome)

        def on_tag_scanned(outcome):
            print(outcome.tag_id)

        event_bus.on(EventNames.TAG_SCANNED, on_tag_scanned)
    """

    def __init__(self):
        """Initialize the event bus."""
        self._events: Dict[str, List[Callable]] = {}
        self._once_events: Dict[str, List[Callable]] = {}
        self.logger = logger

    def on(self, event_name: str, callback: Callable) -> None:
        """
        Register an event handler.

        Args:
            event_name (str): Event name
            callback (callable): Function to call when event is emitted
        """
        handlers = self._events.setdefault(event_name, [])

        if callback not in handlers:
            handlers.append(callback)
            self.logger.debug(f"Registered handler for event: {event_name}")
        else:
            self.logger.warning(f"Handler already registered for event: {event_name}")

    def once(self, event_name: str, callback: Callable) -> None:
        """
        Register an event handler that will be called only once.

        Args:
            event_name (str): Event name
            callback (callable): Function to call when event is emitted
        """
        handlers = self._once_events.setdefault(event_name, [])

        if callback not in handlers:
            handlers.append(callback)
            self.logger.debug(f"Registered one-time handler for event: {event_name}")

    def off(self, event_name: str, callback: Optional[Callable] = None) -> None:
        """
        Remove an event handler, or every handler when callback is None.
        """
        if callback is None:
            self._events.pop(event_name, None)
            self._once_events.pop(event_name, None)
            self.logger.debug(f"Removed all handlers for event: {event_name}")
            return

        for registry in (self._events, self._once_events):
            handlers = registry.get(event_name, [])
            if callback in handlers:
                handlers.remove(callback)
                self.logger.debug(f"Removed handler for event: {event_name}")

    def emit(self, event_name: str, **kwargs: Any) -> None:
        """
        Emit an event.

        Handler errors are logged and do not reach the emitter.

        Args:
            event_name (str): Event name
            **kwargs: Event data
        """
        self.logger.debug(f"Emitting event: {event_name}")

        # Copy so handlers can unregister themselves while being called
        handlers = list(self._events.get(event_name, []))
        once_handlers = self._once_events.pop(event_name, [])

        for callback in handlers + once_handlers:
            try:
                callback(**kwargs)
            except Exception as e:
                self.logger.error(f"Error in event handler for {event_name}: {str(e)}")


# Global event bus instance
event_bus = EventBus()


class EventNames:
    """Standard event names used in the application."""
    TAG_SCANNED = "tag_scanned"        # Parameters: outcome (ScanOutcome)
    TAG_WRITTEN = "tag_written"        # Parameters: outcome (WriteOutcome)
    TAG_RELEASED = "tag_released"      # Parameters: entity_type (str), entity_id (str)
    TAG_ASSIGNED = "tag_assigned"      # Parameters: entity_type (str), entity_id (str), tag_id (str)
    SYSTEM_STARTUP = "system_startup"  # Parameters: None
    SYSTEM_SHUTDOWN = "system_shutdown"  # Parameters: None
