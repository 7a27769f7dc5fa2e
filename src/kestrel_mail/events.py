# =============================================================================
# Event Emitter
# =============================================================================
# Minimal change-notification helper used by the account store, the mail
# explorer and panel surfaces.
#
# Listeners are plain callables. A listener that raises is logged and
# skipped so one broken subscriber cannot stop the others from hearing
# about a change.
# =============================================================================

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Emitter:
    """
    A list of listeners that can be fired together.

    Usage:
        >>> changed = Emitter()
        >>> unsubscribe = changed.subscribe(lambda item: print(item))
        >>> changed.fire("INBOX")
        INBOX
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def fire(self, *args: Any) -> None:
        """Call every listener with the given arguments."""
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"Error in event listener {listener!r}: {e}")

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
