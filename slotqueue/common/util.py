"""Utility functions."""

from __future__ import annotations

import logging
import os

import click

from . import config, logger

log = logging.getLogger(__name__)


def help_config_option(func):
    """Click --help-config option"""

    # This is the callback
    def _help_config(ctx, param, value):
        if not value or ctx.resilient_parsing:
            return

        click.echo(
            """
Slotqueue can be configured through one or more config files, but
needs none: without any, a queue with two worker slots called "queue"
is used.

Slotqueue searches for config files in the following order:
\b
  * /etc/slotqueue/slotqueue.conf
  * /etc/xdg/slotqueue/slotqueue.conf
  * ~/.config/slotqueue/slotqueue.conf
  * the value of the "SLOTQUEUE_CONFIG_FILE" environment variable
  * the path passed via "-c" or "--conf" on the command line

If multiple config files from this list are found, all will be read,
with config from later files overriding earlier ones.  The config files
are YAML.  For example:
\b
queue:
    concurrency: 4
    name: downloads
logging:
    level: info
    file:
        name: ~/slotqueue.log

Command-line options (like "--concurrency") override the config.
"""
        )
        ctx.exit(0)

    return click.option(
        "--help-config",
        is_flag=True,
        callback=_help_config,
        expose_value=False,
        is_eager=True,
        help="Help on configuring slotqueue.",
    )(func)


def version_option(func):
    """Click --version option"""
    return click.option(
        "--version",
        is_flag=True,
        callback=print_version,
        expose_value=False,
        is_eager=True,
        help="Show version information and exit.",
    )(func)


def print_version(ctx, param, value):
    """Click callback for the --version eager option."""

    import sys

    from .. import __version__

    if not value or ctx.resilient_parsing:
        return

    click.echo(f"slotqueue {__version__} (Python {sys.version})")
    ctx.exit(0)


def start_slotqueue(
    cli_conf: str | os.PathLike | None, verbosity: int | None = None
) -> None:
    """Initialise slotqueue

    Parameters
    ----------
    cli_conf : str or None
        The config file given on the command line, if any.
    verbosity : int, optional
        The initial verbosity level.
    """
    # Initialise logging
    logger.init_logging(verbosity=verbosity)

    # Load the configuration
    config.load_config(cli_conf)

    # Set up logging based on config
    try:
        logger.configure_logging()
    except (KeyError, ValueError) as e:
        raise click.ClickException(f"bad logging config: {e}")


def pretty_deltat(seconds: float) -> str:
    """Return a nicely formatted time delta.

    Parameters
    ----------
    seconds : float
        The time delta, in seconds

    Returns
    -------
    pretty_deltat : str
        A human-readable indication of the time delta.

    Raises
    ------
    TypeError
        `seconds` was non-numeric
    """

    # Reject weird stuff
    try:
        seconds = float(seconds)
    except (TypeError, ValueError):
        raise TypeError("non-numeric time delta")

    if seconds < 0:
        # If the delta is negative, just print it
        return f"{seconds:.1f}s"

    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    if hours > 0:
        return f"{int(hours)}h{int(minutes):02}m{int(seconds):02}s"
    if minutes > 0:
        return f"{int(minutes)}m{int(seconds):02}s"

    return f"{seconds:.1f}s"
