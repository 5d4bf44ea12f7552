"""Common fixtures"""

import logging
import threading
import time
import traceback

import pytest
from click.testing import CliRunner

import slotqueue.common.logger
from slotqueue.common import config
from slotqueue.scheduler import TaskQueue, threadlocal


def pytest_configure(config):
    """This function extends the pytest config file."""

    config.addinivalue_line(
        "markers",
        "slotqueue_config(*config_dict): "
        "used to set the slotqueue.config for testing.  config_dict"
        "is merged with the default config.",
    )
    config.addinivalue_line(
        "markers",
        "clirunner_args(**kwargs): "
        "set arguments used to instantiate the click.testing.CliRunner.",
    )


@pytest.fixture
def logger():
    """Set up for log testing

    Yields slotqueue.common.logger.
    """

    slotqueue.common.logger.init_logging()

    yield slotqueue.common.logger

    # Teardown
    root = logging.getLogger()

    # Remove all handlers from the root logger
    for handler in list(root.handlers):
        root.removeHandler(handler)

    slotqueue.common.logger.log_buffer = None


@pytest.fixture
def set_config(request, logger):
    """Set slotqueue.common.config.config for testing.

    Any value given in the slotqueue_config mark is merged into the
    default config.

    Yields slotqueue.common.config.config.

    After the test completes, slotqueue.common.config.config is set to None.
    """
    # Initialise with the default
    config.config = config.merge_dict_tree({}, config._default_config)

    marker = request.node.get_closest_marker("slotqueue_config")
    if marker is not None:
        config.config = config.merge_dict_tree(config.config, marker.args[0])

    yield config.config

    # Reset globals
    config.config = None


class RecordingSink:
    """A notification sink which remembers what it was sent."""

    def __init__(self):
        self._lock = threading.Lock()
        self.messages = []

    def _record(self, channel, message):
        with self._lock:
            self.messages.append((channel, message))

    def info(self, message=""):
        self._record("info", message)

    def success(self, message=""):
        self._record("success", message)

    def error(self, message=""):
        self._record("error", message)

    def channel(self, name):
        """All messages sent to channel `name`."""
        with self._lock:
            return [msg for chan, msg in self.messages if chan == name]


@pytest.fixture
def sink():
    """A RecordingSink."""
    return RecordingSink()


@pytest.fixture
def make_queue(sink):
    """A factory for TaskQueues reporting to the `sink` fixture.

    All queues made are shut down after the test.
    """
    queues = []

    def _make_queue(concurrency=2, name="queue"):
        queue = TaskQueue(concurrency=concurrency, name=name, sink=sink)
        queues.append(queue)
        return queue

    yield _make_queue

    for queue in queues:
        queue.shutdown(wait=False)


class Gate:
    """A task body which blocks until released.

    Parameters
    ----------
    name : str
        Returned by the task on success
    fail : bool
        If True, the task raises RuntimeError once released.
    """

    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.slot_id = None
        self.started = threading.Event()
        self._released = threading.Event()

    def __call__(self):
        self.slot_id = threadlocal.slot_id
        self.started.set()

        if not self._released.wait(timeout=10):
            raise RuntimeError(f"gate {self.name} never released")
        if self.fail:
            raise RuntimeError(f"{self.name} failed")
        return self.name

    def release(self):
        self._released.set()


@pytest.fixture
def gate():
    """Returns the Gate class."""
    return Gate


def wait_for(predicate, timeout=5):
    """Poll `predicate` until it's true.  Fails the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("timed out waiting for condition")
        time.sleep(0.005)


@pytest.fixture
def waiter():
    """Returns the wait_for function."""
    return wait_for


@pytest.fixture
def cli(request):
    """Set up CLI tests using click

    Yields a wrapper around click.testing.CliRunner().invoke.
    The first parameter passed to the wrapper should be
    the expected exit code.  Other parameters are passed
    to CliRunner.invoke (including the list of command
    line parameters).  Test isolation is always turned on.

    The wrapper performs rudimentary checks on the result,
    then returns the click.result so the caller can inspect
    the result further, if desired.
    """

    from slotqueue.cli import entry

    marker = request.node.get_closest_marker("clirunner_args")
    if marker is not None:
        kwargs = marker.kwargs
    else:
        kwargs = {}

    runner = CliRunner(**kwargs)

    def _cli_wrapper(expected_result, args, **kwargs):
        result = runner.invoke(entry, ["--test-isolation", *args], **kwargs)

        # Show traceback if one was created
        if (
            result.exit_code
            and result.exc_info
            and type(result.exception) is not SystemExit
        ):
            traceback.print_exception(*result.exc_info)

        # Print output so it appears in the test log on failure
        print(result.output)

        assert result.exit_code == expected_result
        if expected_result:
            assert type(result.exception) is SystemExit
        else:
            assert result.exception is None

        return result

    yield _cli_wrapper

    # Teardown: the CLI sets up logging and loads the config
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    slotqueue.common.logger.log_buffer = None
    slotqueue.common.logger._cli_echo = True
    root.setLevel(logging.WARNING)
    config.config = None
    config.test_isolation(False)
