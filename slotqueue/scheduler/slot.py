"""Worker slot threads."""

from __future__ import annotations

import enum
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .queue import TaskQueue
    from .task import Task
del TYPE_CHECKING

log = logging.getLogger(__name__)

# Thread-local (Slot-local) storage
threadlocal = threading.local()


class SlotStatus(enum.Enum):
    """Status of a worker slot."""

    IDLE = "idle"
    BUSY = "busy"


class WorkerSlot(threading.Thread):
    """A worker slot: one unit of concurrency in a TaskQueue.

    Each slot is backed by a long-lived thread.  The thread waits for its
    owning queue to assign it a task, runs it, and hands control back to the
    queue, which either assigns the slot the next task from the backlog or
    leaves it idle.

    All attributes of a slot other than the thread itself are owned by the
    queue and only modified while holding the queue's lock.

    Parameters
    ----------
    queue : TaskQueue
        The queue owning this slot
    index : integer
        The index of this slot in the queue.  Available to tasks as
        `threadlocal.slot_id`
    """

    def __init__(self, queue: TaskQueue, index: int) -> None:
        self._slot_id = index

        # daemon=True means the thread will be cancelled if the main thread dies
        threading.Thread.__init__(self, name=f"{queue.name}#{index + 1}", daemon=True)

        self._queue = queue
        self.status = SlotStatus.IDLE
        # The task assigned to this slot, if any
        self.task = None
        # Set by the queue to make the thread exit once it is idle
        self.stopping = False

    @property
    def slot_id(self) -> int:
        """The index of this slot in the queue."""
        return self._slot_id

    @property
    def task_name(self) -> str | None:
        """Name of the task in this slot, or None if idle."""
        task = self.task
        return None if task is None else task.name

    def assign(self, task: Task) -> None:
        """Put `task` into this slot, making it busy.

        Must be called with the queue's lock held.
        """
        if self.status is SlotStatus.BUSY:
            raise RuntimeError(f"slot {self.name} is already busy")

        self.task = task
        self.status = SlotStatus.BUSY

    def release(self) -> None:
        """Empty this slot, making it idle.

        Must be called with the queue's lock held.
        """
        self.task = None
        self.status = SlotStatus.IDLE

    def run(self) -> None:
        """The slot thread main loop.

        Invoked by the .start() method of the thread.

        Waits for the queue to assign a task, executes it, and then lets the
        queue decide what this slot does next.  Runs until the queue tells
        the slot to stop while it is idle.
        """

        log.debug("Started.")

        # Put the slot id in `threadlocal`, so tasks can access it
        threadlocal.slot_id = self._slot_id

        while True:
            task = self._queue._wait_for_task(self)
            if task is None:
                self._queue._slot_exited(self)
                log.debug("Stopped.")
                return

            try:
                self._queue._run_task(task)
            except BaseException:
                # Interpreter exit: give up the slot without taking more work
                self._queue._task_done(self, stop=True)
                self._queue._slot_exited(self)
                raise

            self._queue._task_done(self)
