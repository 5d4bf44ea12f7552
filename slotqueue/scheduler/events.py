"""Named events with any number of listeners."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

log = logging.getLogger(__name__)

# Emitted with the task name whenever a task fails
TASK_FAILED = "task_failed"


class EventEmitter:
    """Keep lists of listeners for named events and call them on emit().

    Listeners are called synchronously, in registration order, in the thread
    which calls `emit`.  An exception raised by a listener is logged and
    otherwise ignored: it does not prevent other listeners from running and
    never propagates to the emitter.
    """

    def __init__(self) -> None:
        self._listeners = {}
        self._listener_lock = threading.Lock()

    def on(self, event: str, listener: Callable | None = None) -> Callable:
        """Register `listener` for `event`.

        May also be used as a decorator:

            @queue.on("task_failed")
            def report(name):
                ...

        Returns
        -------
        listener : callable
            The registered listener.
        """
        if listener is None:
            return lambda func: self.on(event, func)

        if not callable(listener):
            raise TypeError(f"listener for {event} is not callable")

        with self._listener_lock:
            self._listeners.setdefault(event, []).append(listener)

        return listener

    def off(self, event: str, listener: Callable) -> None:
        """Remove `listener` from `event`.

        If the listener was registered more than once, only the first
        registration is removed.  Does nothing if `listener` isn't registered.
        """
        with self._listener_lock:
            try:
                self._listeners.get(event, []).remove(listener)
            except ValueError:
                pass

    def listeners(self, event: str) -> list[Callable]:
        """A copy of the list of listeners for `event`."""
        with self._listener_lock:
            return list(self._listeners.get(event, []))

    def emit(self, event: str, *args) -> int:
        """Call all the listeners of `event` with `args`.

        Returns
        -------
        count : int
            The number of listeners called.
        """
        listeners = self.listeners(event)
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                log.exception(f"Uncaught exception in {event} listener {listener!r}")

        return len(listeners)
