"""slotqueue demo command"""

from __future__ import annotations

import functools
import logging
import threading
import time
from concurrent.futures import Future

import click

from ..common import metrics
from ..common.logger import echo
from ..common.util import pretty_deltat
from ..scheduler import TASK_FAILED, TaskQueue

log = logging.getLogger(__name__)

# The default demo: (name, seconds, error).  A task with an error fails.
DEFAULT_TASKS = (
    ("task1", 2.0, None),
    ("task2", 1.0, None),
    ("task3", 0.5, "error2"),
    ("task4", 1.5, None),
    ("task5", 3.0, "error3"),
)


class RequestError(Exception):
    """A simulated request failed."""


def request(timeout: float, error: str | None = None, value: str = "success") -> Future:
    """Simulate a slow request.

    Returns a future which is settled by a timer after `timeout` seconds.
    If `error` is set, the future fails with a `RequestError` carrying it.
    Otherwise the result of the future is `value`.
    """
    future = Future()

    def _settle():
        if error:
            future.set_exception(RequestError(error))
        else:
            future.set_result(value)

    timer = threading.Timer(timeout, _settle)
    timer.daemon = True
    timer.start()

    return future


def _parse_tasks(ctx, param, value):
    """Click callback to parse the --task option."""

    tasks = []
    for spec in value:
        parts = spec.split(":", 2)
        if len(parts) < 2 or not parts[0]:
            raise click.BadParameter(
                f"expected NAME:SECONDS[:ERROR], got: {spec}", ctx=ctx, param=param
            )
        try:
            seconds = float(parts[1])
        except ValueError:
            raise click.BadParameter(
                f"bad duration for task {parts[0]}: {parts[1]}", ctx=ctx, param=param
            )
        if seconds < 0:
            raise click.BadParameter(
                f"negative duration for task {parts[0]}", ctx=ctx, param=param
            )
        tasks.append((parts[0], seconds, parts[2] if len(parts) > 2 else None))

    return tuple(tasks)


@click.command()
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Number of worker slots.  Overrides queue.concurrency in the config.",
)
@click.option(
    "--name",
    default=None,
    help="Queue name.  Overrides queue.name in the config.",
)
@click.option(
    "tasks",
    "--task",
    multiple=True,
    callback=_parse_tasks,
    metavar="NAME:SECONDS[:ERROR]",
    help="Add a simulated request called NAME taking SECONDS.  If ERROR "
    "is given, the request fails with that message.  May be given multiple "
    "times.  If not given, a standard set of five requests is used.",
)
@click.option(
    "--time-scale",
    type=click.FloatRange(min=0),
    default=1.0,
    show_default=True,
    help="Multiply all request durations by this factor.",
)
@click.option(
    "--abort-on-failure",
    is_flag=True,
    help="Abort the queue as soon as a request fails.",
)
def demo(concurrency, name, tasks, time_scale, abort_on_failure):
    """Run simulated requests through a queue.

    Requests are queued in the order given and run on the worker slots.
    Whenever a request fails, the pending backlog is listed (and, with
    --abort-on-failure, the queue is aborted).  The command exits once the
    queue has drained.
    """

    if not tasks:
        tasks = DEFAULT_TASKS

    metrics.start_promclient()

    try:
        queue = TaskQueue.from_config(concurrency=concurrency, name=name)
    except ValueError as e:
        raise click.ClickException(f"bad queue config: {e}")
    failures = []

    @queue.on(TASK_FAILED)
    def _on_failure(task_name):
        failures.append(task_name)
        queue.print()
        if abort_on_failure:
            queue.abort()

    start_time = time.monotonic()
    try:
        for task_name, seconds, error in tasks:
            queue.enqueue(
                task_name,
                functools.partial(
                    request, seconds * time_scale, error=error, value=task_name
                ),
            )

        queue.join()
    except KeyboardInterrupt:
        log.warning("Interrupted: waiting for running tasks to finish")
    finally:
        queue.shutdown()

    echo(
        f"Queued {len(tasks)} tasks on {queue.concurrency} slots; finished in "
        f"{pretty_deltat(time.monotonic() - start_time)}.  "
        + (f"Failed: {', '.join(failures)}" if failures else "No failures.")
    )
