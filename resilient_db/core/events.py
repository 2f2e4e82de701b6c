"""Event notifications raised by the executors.

Executors never write to a console or file. Every notification goes to the
executor's logger and to any subscribed handlers, so applications decide
where messages end up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from resilient_db.core.enums import EventLevel

_LOG_LEVELS: dict[EventLevel, int] = {
    EventLevel.DEBUG: logging.DEBUG,
    EventLevel.STATUS: logging.INFO,
    EventLevel.WARNING: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Event:
    """A single notification."""

    level: EventLevel
    message: str
    exception: BaseException | None = None


EventHandler = Callable[[Event], None]


class EventNotifier:
    """Raises debug, status, warning and error events.

    Args:
        logger_name: Name of the stdlib logger that receives every event.
    """

    def __init__(self, logger_name: str = "resilient_db") -> None:
        self._logger = logging.getLogger(logger_name)
        self._handlers: list[EventHandler] = []

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def add_event_handler(self, handler: EventHandler) -> None:
        """Subscribe *handler* to all events."""
        self._handlers.append(handler)

    def remove_event_handler(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def _notify(self, event: Event) -> None:
        self._logger.log(_LOG_LEVELS[event.level], event.message, exc_info=event.exception)
        for handler in list(self._handlers):
            handler(event)

    def on_debug_event(self, message: str) -> None:
        self._notify(Event(EventLevel.DEBUG, message))

    def on_status_event(self, message: str) -> None:
        self._notify(Event(EventLevel.STATUS, message))

    def on_warning_event(self, message: str) -> None:
        self._notify(Event(EventLevel.WARNING, message))

    def on_error_event(self, message: str, exception: BaseException | None = None) -> None:
        self._notify(Event(EventLevel.ERROR, message, exception))
