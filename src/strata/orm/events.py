"""Model lifecycle events.

Each model class owns one :class:`EventDispatcher`.  Listeners receive
the model instance; a *before* listener (``saving``, ``creating``,
``updating``, ``deleting``, ``restoring``, ``force_deleting``) that
returns ``False`` cancels the operation.

    @Book.listen("creating")
    def stamp_slug(book):
        book.slug = slugify(book.title)

    class AuditObserver:
        def deleted(self, model): ...

    Book.observe(AuditObserver())
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from strata.core.errors import ConfigError

BEFORE_EVENTS = ("saving", "creating", "updating", "deleting", "restoring", "force_deleting")
AFTER_EVENTS = ("saved", "created", "updated", "deleted", "restored", "force_deleted")
EVENTS = BEFORE_EVENTS + AFTER_EVENTS

Listener = Callable[[Any], Any]


class EventDispatcher:
    """Per-model-class listener table."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def listen(self, event: str, callback: Listener) -> Listener:
        if event not in EVENTS:
            raise ConfigError(f"Unknown model event {event!r}; expected one of {', '.join(EVENTS)}")
        self._listeners.setdefault(event, []).append(callback)
        return callback

    def observe(self, observer: Any) -> None:
        """Register every method of *observer* named after an event."""
        for event in EVENTS:
            method = getattr(observer, event, None)
            if callable(method):
                self.listen(event, method)

    def fire(self, event: str, model: Any) -> bool:
        """Call listeners in registration order.

        Returns ``False`` when a before-event listener cancels.
        """
        halt = event in BEFORE_EVENTS
        for listener in self._listeners.get(event, []):
            if listener(model) is False and halt:
                return False
        return True

    def has_listeners(self, event: str) -> bool:
        return bool(self._listeners.get(event))

    def forget(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)


__all__ = [
    "AFTER_EVENTS",
    "BEFORE_EVENTS",
    "EVENTS",
    "EventDispatcher",
]
