"""Set up logging for slotqueue.

Basic Configuration
-------------------

The CLI should call the `init_logging()` function as soon as possible after
program start to turn on logging to standard error.  It should then follow the
loading of the slotqueue config with a call to `configure_logging()`, which
re-configures the logger based on the config, including starting file
logging, if requested.

Messages emitted between the `init_logging` and `configure_logging` calls
are buffered and flushed to any additional log destinations started by
`configure_logging` so that these messages are not lost.  (This is in
addition to the messages being sent immediately to standard error, which
always happens.)

Verbosity
---------

The CLI supports five verbosity levels:

    1.  No output on standard out.  Error messages on standard error.
    2.  No output on standard out.  Warning and error on standard error.
    3.  CLI output on standard out.  Success, warning and error messages on
        standard error.
    4.  CLI output on standard out.  Info, success, warning, errors on
        standard error.
    5.  CLI output on standard out.  Debug, info, success, warning, errors
        on standard error.

The default verbosity is 3.  May be changed at runtime by calling
`set_verbosity`.

Notification sink
-----------------

Task queues report their progress to a sink with three channels: `info`,
`success` and `error`.  The default sink, `LogSink`, forwards these to a
logger.  Successes are logged at the custom `SUCCESS` level, which sits
between INFO and WARNING.
"""

from __future__ import annotations

import logging
import logging.handlers
import pathlib

import click

from . import config

# Level used for the "success" notification channel
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

# The log format.  Used by the stderr log and any other log destinations
log_fmt = logging.Formatter(
    "%(asctime)s %(levelname)s >> [%(threadName)s] %(message)s",
    "%b %d %H:%M:%S",
)

# initialised by init_logging
log_buffer = None

# CLI output suppression.
_cli_echo = True


class LogSink:
    """A notification sink which writes to a logger.

    Parameters
    ----------
    logger : logging.Logger or str, optional
        The logger (or the name of the logger) to write to.
        By default, messages go to the "slotqueue" logger.
    """

    __slots__ = ["_log"]

    def __init__(self, logger: logging.Logger | str | None = None) -> None:
        if logger is None or isinstance(logger, str):
            logger = logging.getLogger(logger or "slotqueue")
        self._log = logger

    @property
    def logger(self) -> logging.Logger:
        """The logger receiving the messages."""
        return self._log

    def info(self, message: str = "") -> None:
        self._log.info(message)

    def success(self, message: str = "") -> None:
        self._log.log(SUCCESS, message)

    def error(self, message: str = "") -> None:
        self._log.error(message)


class StartupHandler(logging.handlers.BufferingHandler):
    """Start-up logging handler for slotqueue.

    A logging hander similar to logging.handlers.MemoryHandler, except:
    * it can flush to potentially multiple target handlers
    * it never automatically flushes.
    * once the buffer is full, further messages are silently discarded

    Parameters
    ----------
    capacity
        The maximum number of log messages to buffer.
    """

    def __init__(self, capacity: int) -> None:
        super().__init__(capacity)
        self.targets = []

    def addTarget(self, handler: logging.Handler) -> None:
        """Add `handler` to the list of targets."""
        self.targets.append(handler)

    def shouldFlush(self, record) -> bool:
        """Returns false to disable autoflushing."""
        return False

    def emit(self, record) -> None:
        """Buffer `record` if not full."""
        self.acquire()
        try:
            if len(self.buffer) < self.capacity:
                self.buffer.append(record)
        finally:
            self.release()

    def flush(self) -> None:
        """Flush to all targets.

        After flushing, the buffer is cleared.
        """
        self.acquire()
        try:
            for target in self.targets:
                for record in self.buffer:
                    target.handle(record)
            self.buffer.clear()
        finally:
            self.release()

    def close(self) -> None:
        """Discard all targets and drop the buffer."""
        self.acquire()
        try:
            self.targets = []
            super().close()
        finally:
            self.release()


def echo(*args, **kwargs) -> None:
    """CLI wrapper for click.echo.

    Suppresses output when verbosity is less than three.
    """
    if _cli_echo:
        click.echo(*args, **kwargs)


def set_verbosity(verbosity: int) -> None:
    """Set cli verbosity.

    Sets the log level of the root logger based on the
    requested verbosity level.
    """

    verbosity_to_level = {
        1: logging.ERROR,
        2: logging.WARNING,
        3: SUCCESS,
        4: logging.INFO,
        5: logging.DEBUG,
    }

    if verbosity not in verbosity_to_level:
        raise ValueError(f"Bad verbosity: {verbosity}")

    root_logger = logging.getLogger()
    root_logger.setLevel(verbosity_to_level[verbosity])

    # Suppress normal cli output at low verbosity
    global _cli_echo
    _cli_echo = verbosity >= 3


def init_logging(verbosity: int | None = None) -> None:
    """Initialise the logger.

    This function is called before the config is read.  It sets up logging to
    standard error and also starts a log buffer where messages accumulate
    before the logging facilities defined by the configuration are started.

    Parameters
    ----------
    verbosity : int, optional
        The verbosity level to use.  Defaults to 3.
    """

    # This is the stderr logger.  It is always present, regardless of logging config
    log_stream = logging.StreamHandler()
    log_stream.setFormatter(log_fmt)

    root_logger = logging.getLogger()
    root_logger.addHandler(log_stream)

    set_verbosity(3 if verbosity is None else verbosity)

    # The start-up buffer.  Messages accumulate here until configure_logging()
    # is called, at which point the buffered messages are flushed to a file,
    # if one was opened, and then this handler is shut down.
    global log_buffer
    log_buffer = StartupHandler(10000)

    root_logger.addHandler(log_buffer)


def _max_bytes_from_config(max_bytes: str | float | int) -> int:
    """Convert logging.file.max_bytes to bytes.

    Parameters
    ----------
    max_bytes
        The value of logging.file.max_bytes.

    Returns
    -------
    max_bytes
        The max size converted to bytes

    Raises
    ------
    ValueError
        max_bytes was invalid
    """

    exponent = 0

    # Look for a suffix
    if isinstance(max_bytes, str):
        if max_bytes.endswith("k"):
            max_bytes = max_bytes[:-1]
            exponent = 1
        elif max_bytes.endswith("M"):
            max_bytes = max_bytes[:-1]
            exponent = 2
        elif max_bytes.endswith("G"):
            max_bytes = max_bytes[:-1]
            exponent = 3

    try:
        result = int(float(max_bytes) * (1024**exponent))
    except ValueError:
        raise ValueError("bad size for logging.file.max_bytes")

    if result <= 0:
        raise ValueError("bad size for logging.file.max_bytes")

    return result


def configure_file_logging() -> logging.Handler:
    """Configure a file logging handler based on the config.

    Returns
    -------
    file_handler
        The configured file handler

    Raises
    ------
    click.ClickException
        a bad value was encountered in the logging config
    """

    name = pathlib.Path(config.get("logging.file.name", as_type=str)).expanduser()

    watch = config.get("logging.file.watch", default=False, as_type=bool)
    rotate = config.get("logging.file.rotate", default=False, as_type=bool)

    # Choose handler
    if rotate and watch:
        raise click.ClickException(
            "logging.file.rotate and logging.file.watch both true in config"
        )

    if rotate:
        # We're rotating the log
        backup_count = config.get_int("logging.file.backup_count", default=10, min=1)
        max_bytes = _max_bytes_from_config(
            config.get("logging.file.max_bytes", default="4G")
        )
        handler = logging.handlers.RotatingFileHandler(
            name, maxBytes=max_bytes, backupCount=backup_count
        )
        how = " [rotating]"
    elif watch:
        # Someone else is rotating the log
        handler = logging.handlers.WatchedFileHandler(name)
        how = " [watching]"
    else:
        # No one is rotating the log
        handler = logging.FileHandler(name)
        how = ""

    handler.setFormatter(log_fmt)

    # Log the start of file logging.  We do this _before_ adding the file
    # handler to prevent duplicating this message (via both the file handler
    # and the start-up handler).
    logging.getLogger("slotqueue").info(f"Logging to{how} {name}")

    return handler


def configure_logging() -> None:
    """Configure the logger from from the config, and start logging.

    This will flush any log messages accumulated from program start until now
    to the log after it has been started.

    Raises
    ------
    KeyError
        A required key was missing from the logging config.
    ValueError
        An invalid value was found in the logging config.
    """

    def _get_level(path: str, default: str = "INFO") -> int:
        level = config.get(path, default=default, as_type=str).upper()
        if level not in ["DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(f"Log level {level} defined by {path} is not valid")
        return logging.getLevelName(level)

    # Set the overall level, if configured.  Otherwise the CLI verbosity stands.
    root_logger = logging.getLogger()
    if config.get("logging.level", default=None) is not None:
        root_logger.setLevel(_get_level("logging.level"))

    # Apply any module specific logging levels
    module_levels = config.get("logging.module_levels", default={}, as_type=dict)
    for name in module_levels:
        logging.getLogger(name).setLevel(_get_level(f"logging.module_levels.{name}"))

    # Configure file logging, maybe
    if config.get("logging.file", default=None, as_type=dict):
        file_handler = configure_file_logging()
    else:
        file_handler = None

    global log_buffer
    if file_handler:
        root_logger.addHandler(file_handler)
        if log_buffer is not None:
            log_buffer.addTarget(file_handler)

    if log_buffer is not None:
        # Flush the start-up buffer to all targets
        log_buffer.flush()

        # Shut down and delete the start-up handler
        root_logger.removeHandler(log_buffer)
        log_buffer.close()
        log_buffer = None
