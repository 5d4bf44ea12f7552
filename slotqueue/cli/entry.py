"""Slotqueue CLI entry point."""

from __future__ import annotations

import click

from ..common import config
from ..common.util import help_config_option, start_slotqueue, version_option
from .demo import demo


def not_both(opt1_set: bool, opt1_name: str, opt2_set: bool, opt2_name: str) -> None:
    """Check whether two incompatible options were used.

    If they were, raise click.UsageError."""

    if opt1_set and opt2_set:
        raise click.UsageError(f"cannot use both --{opt1_name} and --{opt2_name}")


def _verbosity_from_cli(verbose: int, debug: bool, quiet: int) -> int:
    """Get CLI verbosity from command line.

    Processes the --verbose, --debug and --quiet flags to determine
    the requested verbosity."""

    not_both(quiet > 0, "quiet", verbose > 0, "verbose")
    not_both(quiet > 0, "quiet", debug, "debug")

    # Default verbosity is 3.  --quiet decreases it.  --verbose increases it.

    # Max verbosity
    if debug or verbose > 2:
        return 5
    # Min verbosity
    if quiet > 2:
        return 1

    return 3 + verbose - quiet


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@version_option
@click.option(
    "--conf",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file to read.",
    default=None,
    metavar="FILE",
)
@click.option(
    "--quiet",
    "-q",
    help="Decrease verbosity.  May be specified multiple times: "
    "once suppresses normal CLI output and task successes, leaving only "
    "warning and error message.  A second use also suppresses warnings.",
    count=True,
)
@click.option(
    "--test-isolation",
    is_flag=True,
    help=(
        "Enable test isolation.  Using this option prevents slotqueue "
        "from reading config from the standard config paths."
    ),
)
@click.option(
    "--verbose",
    "-v",
    help="Increase verbosity.  May be specified multiple times: "
    "once enables informational messages.  A second use also "
    "enables debugging messages.",
    count=True,
)
@click.option(
    "--debug",
    help="Maximum verbosity.",
    is_flag=True,
    show_default=False,
    default=False,
)
@help_config_option
def entry(conf, quiet, test_isolation, verbose, debug):
    """Slotqueue: a FIFO task queue with a fixed number of worker slots."""

    # Turn on test isolation, if requested
    config.test_isolation(enable=test_isolation)

    # Initialise slotqueue
    start_slotqueue(conf, verbosity=_verbosity_from_cli(verbose, debug, quiet))


entry.add_command(demo, "demo")
