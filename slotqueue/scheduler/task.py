"""A named unit of work run by a worker slot."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from inspect import isawaitable
from typing import Any

log = logging.getLogger(__name__)


async def _resolve(awaitable: Awaitable) -> Any:
    """Await `awaitable`.  Used to hand arbitrary awaitables to asyncio.run."""
    return await awaitable


class Task:
    """A named unit of work.

    The body of the task is provided by the `operation` callable, which
    takes no arguments.  Calling the Task runs the operation in the calling
    (worker) thread and resolves its outcome:

    - If the operation returns a `concurrent.futures.Future`, the Task waits
      for the future and its result (or exception) becomes the outcome.
    - If the operation returns an awaitable (e.g. it is an ``async def``
      function), the awaitable is run to completion on a private event
      loop.
    - Any other returned value is the result.

    A task fails by raising.  Tasks are immutable once created.

    Parameters
    ----------
    name : str
        the name of the task.  Used in log messages.  Names need not be
        unique.
    operation : callable
        the code executed by the worker slot.
    """

    __slots__ = ["_name", "_operation"]

    def __init__(self, name: str, operation: Callable[[], Any]) -> None:
        if not callable(operation):
            raise TypeError(f"operation for task {name} is not callable")

        self._name = str(name)
        self._operation = operation

    @property
    def name(self) -> str:
        """The name of the task."""
        return self._name

    @property
    def operation(self) -> Callable[[], Any]:
        """The task body."""
        return self._operation

    def __call__(self) -> Any:
        """Run the operation and return its result.

        Exceptions raised by the operation (or by the future or awaitable
        it returns) propagate to the caller.
        """
        result = self._operation()

        if isinstance(result, Future):
            log.debug(f"Task {self._name} waiting on future")
            return result.result()

        if isawaitable(result):
            log.debug(f"Task {self._name} running awaitable")
            return asyncio.run(_resolve(result))

        return result

    def __str__(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"Task({self._name!r}, {self._operation!r})"
