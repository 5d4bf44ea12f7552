"""Bounded-concurrency task queue

The TaskQueue runs named tasks from a FIFO backlog on a fixed number of
worker slots.  Enqueuing a task appends it to the backlog and, if a slot is
idle, immediately starts the head of the backlog on the first idle slot.
A slot finishing a task immediately takes the next task from the backlog,
if there is one, and otherwise goes idle until a later enqueue assigns it
more work.  There is no dispatcher: the completion of one task is what
starts the next.

Each slot is a thread.  All bookkeeping (the backlog, the slot table and
the active flag) is done while holding the queue's lock, so every step is
indivisible with respect to the others.  Task bodies, notifications about
their outcome and event listeners all run outside the lock.

A queue can be aborted.  Abort empties the backlog and deactivates the
queue permanently: tasks already running finish, but nothing else starts
and later enqueues are refused.  Use a new queue after an abort.

Progress is reported to a notification sink with `info`, `success` and
`error` channels (by default, a `LogSink`).  Failed tasks are also reported
through the "task_failed" event, which carries the name of the task.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from tabulate import tabulate

from ..common import config
from ..common.logger import LogSink
from ..common.metrics import by_name
from .events import TASK_FAILED, EventEmitter
from .slot import SlotStatus, WorkerSlot
from .task import Task

log = logging.getLogger(__name__)


class TaskQueue(EventEmitter):
    """A FIFO queue of tasks run by a fixed pool of worker slots.

    The worker slot threads are started by the constructor.

    Parameters
    ----------
    concurrency : int, optional
        The number of worker slots: the maximum number of tasks which run
        at the same time.  Must be positive.  Default is 2.
    name : str, optional
        The name of the queue, for diagnostics.  Default is "queue".
    sink : object, optional
        The notification sink: an object with `info`, `success` and `error`
        methods, each taking a message string.  If not given, a `LogSink`
        writing to this module's logger is used.

    Raises
    ------
    ValueError
        `concurrency` was not a positive integer.
    """

    def __init__(
        self, concurrency: int = 2, name: str = "queue", sink: Any = None
    ) -> None:
        super().__init__()

        if (
            not isinstance(concurrency, int)
            or isinstance(concurrency, bool)
            or concurrency < 1
        ):
            raise ValueError(f"bad concurrency for queue {name}: {concurrency!r}")

        self._name = name
        self._sink = LogSink(log) if sink is None else sink

        # Guards everything below.  Re-entrant so that internal helpers may
        # call the public queries.
        self._lock = threading.RLock()
        # Signalled when a slot is assigned a task, a slot goes idle, or
        # the slots are told to stop
        self._changed = threading.Condition(self._lock)

        self._backlog = deque()
        self._active = True

        self._metric_backlog = by_name("backlog_size").bind(queue=name)
        self._metric_completed = by_name("tasks_completed").bind(queue=name)
        self._metric_dropped = by_name("tasks_dropped").bind(queue=name)
        self._metric_busy = by_name("slot_busy").bind(queue=name)
        self._metric_backlog.set(0)

        self._slots = [WorkerSlot(self, index) for index in range(concurrency)]
        for slot in self._slots:
            self._metric_busy.set(0, slot=str(slot.slot_id))
            slot.start()

    @classmethod
    def from_config(
        cls,
        sink: Any = None,
        concurrency: int | None = None,
        name: str | None = None,
    ) -> TaskQueue:
        """Create a queue from the "queue" section of the config.

        Parameters
        ----------
        sink : object, optional
            The notification sink.  See `TaskQueue`.
        concurrency : int, optional
            If not None, used instead of `queue.concurrency`.
        name : str, optional
            If not None, used instead of `queue.name`.

        Raises
        ------
        ValueError
            A bad value was found in the config.
        """
        if concurrency is None:
            concurrency = config.get_int("queue.concurrency", default=2, min=1)
        if name is None:
            name = config.get("queue.name", default="queue", as_type=str)

        return cls(concurrency=concurrency, name=name, sink=sink)

    def __repr__(self) -> str:
        return (
            f"<TaskQueue {self._name}: concurrency={len(self._slots)} "
            f"active={self._active}>"
        )

    def __len__(self) -> int:
        """Number of tasks in the backlog."""
        with self._lock:
            return len(self._backlog)

    def __enter__(self) -> TaskQueue:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        # Drain the queue, unless we're leaving due to an error
        if exc_type is None:
            self.join()
        self.shutdown()

    @property
    def name(self) -> str:
        """The name of the queue."""
        return self._name

    @property
    def concurrency(self) -> int:
        """The number of worker slots."""
        return len(self._slots)

    @property
    def busy_count(self) -> int:
        """The number of busy worker slots."""
        with self._lock:
            return sum(1 for slot in self._slots if slot.status is SlotStatus.BUSY)

    def is_empty(self) -> bool:
        """True if there are no tasks waiting in the backlog."""
        with self._lock:
            return not self._backlog

    def is_active(self) -> bool:
        """False if the queue has been aborted."""
        with self._lock:
            return self._active

    def slot_status(self) -> list[tuple[SlotStatus, str | None]]:
        """Return a snapshot of the worker slots.

        Returns
        -------
        slots : list of tuples
            One `(status, task_name)` tuple per slot, in slot order.  The
            `task_name` is None for idle slots.
        """
        with self._lock:
            return [(slot.status, slot.task_name) for slot in self._slots]

    def enqueue(self, name: str, operation: Callable[[], Any]) -> bool:
        """Add a task to the end of the backlog.

        If a worker slot is idle, the task at the head of the backlog is
        started on it immediately.

        If the queue has been aborted, the task is discarded and an error
        is reported to the sink.

        Parameters
        ----------
        name : str
            The name of the task
        operation : callable
            The task body.  Called with no arguments.  See `Task`.

        Returns
        -------
        queued : bool
            False if the task was discarded because the queue is inactive.

        Raises
        ------
        TypeError
            `operation` was not callable.
        """
        task = Task(name, operation)

        with self._lock:
            if not self._active:
                self._sink.error(
                    f"Queue {self._name} has been terminated; "
                    f"dropping task {task.name}.  Create a new queue."
                )
                self._metric_dropped.inc()
                return False

            self._backlog.append(task)
            self._metric_backlog.set(len(self._backlog))
            self._sink.info(f"Task {task.name} pushed into queue {self._name}")

            # Start it now, if we can
            for slot in self._slots:
                if slot.status is SlotStatus.IDLE:
                    self._start_next(slot)
                    break

        return True

    def dequeue_next(self) -> Task:
        """Remove and return the task at the head of the backlog.

        This is used internally to feed the worker slots.  Tasks removed by
        calling this directly are never run by the queue.

        Raises
        ------
        IndexError
            The backlog was empty.  Callers must check `is_empty` first.
        """
        with self._lock:
            task = self._backlog.popleft()
            self._metric_backlog.set(len(self._backlog))
            return task

    def clear(self) -> None:
        """Discard all tasks waiting in the backlog.

        Running tasks are unaffected.
        """
        with self._lock:
            dropped = len(self._backlog)
            self._backlog.clear()
            # An inactive queue has already dropped its backlog metric
            if self._active:
                self._metric_backlog.set(0)
            if dropped:
                self._metric_dropped.add(dropped)
            self._changed.notify_all()

        self._sink.success(f"Queue {self._name} cleared")

    def abort(self) -> None:
        """Empty the backlog and permanently deactivate the queue.

        Running tasks continue to completion, but their slots will not
        start any further task.  Once idle, the slot threads exit.
        """
        with self._lock:
            dropped = len(self._backlog)
            self._backlog.clear()
            self._metric_backlog.set(0)
            if dropped:
                self._metric_dropped.add(dropped)
            self._active = False

            # Idle slots can stop right away; busy ones stop when they finish
            self._stop_slots(idle_only=True)

        self._sink.success(f"Queue {self._name} terminated")

    def print(self) -> None:
        """Send a listing of the backlog to the sink's info channel."""
        with self._lock:
            rows = [
                (index, task.name, repr(task.operation))
                for index, task in enumerate(self._backlog)
            ]

        if rows:
            self._sink.info(
                f"Queue {self._name} backlog:\n"
                + tabulate(rows, headers=["#", "Task", "Operation"])
            )
        else:
            self._sink.info(f"Queue {self._name} backlog: empty")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the queue to drain.

        Blocks until the backlog is empty and every slot is idle.  Must not
        be called from within a task or a listener: the slot running it can
        never become idle while it waits.

        Parameters
        ----------
        timeout : float, optional
            Maximum time, in seconds, to wait.  If None, wait forever.

        Returns
        -------
        drained : bool
            False if the timeout expired before the queue drained.
        """
        with self._changed:
            return self._changed.wait_for(self._drained, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Abort the queue and stop all the slot threads.

        Running tasks are allowed to finish.

        Parameters
        ----------
        wait : bool, optional
            If True, the default, wait for the slot threads to exit.
        """
        if self.is_active():
            self.abort()

        with self._lock:
            self._stop_slots(idle_only=False)
            self._metric_backlog.remove()

        if wait:
            current = threading.current_thread()
            for slot in self._slots:
                if slot is not current:
                    slot.join()

    # The remaining methods are the slot execution protocol, called from
    # WorkerSlot threads.

    def _drained(self) -> bool:
        """True if nothing is queued or running.  Call with the lock held."""
        return not self._backlog and all(
            slot.status is SlotStatus.IDLE for slot in self._slots
        )

    def _stop_slots(self, idle_only: bool) -> None:
        """Tell slots to exit once idle.  Call with the lock held."""
        for slot in self._slots:
            if not idle_only or slot.status is SlotStatus.IDLE:
                slot.stopping = True
        self._changed.notify_all()

    def _start_next(self, slot: WorkerSlot) -> bool:
        """Assign the head of the backlog to the idle `slot`.

        Call with the lock held.

        Returns
        -------
        started : bool
            False if the queue is inactive or the backlog is empty, in which
            case `slot` is left idle.
        """
        if not self._active or not self._backlog:
            return False

        slot.assign(self.dequeue_next())
        self._metric_busy.set(1, slot=str(slot.slot_id))
        self._changed.notify_all()
        return True

    def _wait_for_task(self, slot: WorkerSlot) -> Task | None:
        """Block until `slot` has a task to run, and return it.

        Returns None if the slot has been told to stop and has no task.
        """
        with self._changed:
            while slot.task is None and not slot.stopping:
                self._changed.wait()
            return slot.task

    def _run_task(self, task: Task) -> None:
        """Execute `task` and report the outcome.  Call without the lock."""

        self._sink.info(f"Task {task.name} started")
        start_time = time.monotonic()

        try:
            task()
        except BaseException as e:
            # Anything the operation raises, including asyncio.CancelledError,
            # is a task failure.  Interpreter exits are reported, then passed on.
            log.debug(f"Task {task.name} traceback:", exc_info=True)
            reason = str(e) or type(e).__name__
            self._sink.error(f"Task {task.name} failed: {reason}")
            self._metric_completed.inc(result="failure")
            self.emit(TASK_FAILED, task.name)
            if isinstance(e, (KeyboardInterrupt, SystemExit)):
                raise
            return

        elapsed = time.monotonic() - start_time
        self._sink.success(f"Task {task.name} completed in {elapsed:.3f}s")
        self._metric_completed.inc(result="success")

    def _task_done(self, slot: WorkerSlot, stop: bool = False) -> None:
        """Idle `slot` after a task and start the next one, if any.

        If `stop` is True, the slot is told to stop instead of being given
        another task.
        """
        with self._lock:
            slot.release()
            self._metric_busy.set(0, slot=str(slot.slot_id))

            if stop or not self._start_next(slot):
                if stop or not self._active:
                    slot.stopping = True

                # Wake join() waiters
                self._changed.notify_all()

    def _slot_exited(self, slot: WorkerSlot) -> None:
        """Drop the metrics of a slot whose thread is exiting."""
        self._metric_busy.remove(slot=str(slot.slot_id))
