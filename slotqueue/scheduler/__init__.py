"""Slotqueue task scheduler."""

from .events import TASK_FAILED, EventEmitter
from .queue import TaskQueue
from .slot import SlotStatus, WorkerSlot, threadlocal
from .task import Task
