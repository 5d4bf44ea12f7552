r"""For configuring slotqueue from the config file.

Configuration file search order:

- `/etc/slotqueue/slotqueue.conf`
- `/etc/xdg/slotqueue/slotqueue.conf`
- `~/.config/slotqueue/slotqueue.conf`
- `SLOTQUEUE_CONFIG_FILE` environment variable
- the path passed via `-c` or `--conf` on the command line

This is in order of increasing precedence, with options in later files
overriding those in earlier entries. Configuration is merged recursively by
`merge_dict_tree`.  Unlike a daemon that needs a database, slotqueue runs
fine on its defaults, so having no config file at all is not an error.

Example config:

.. codeblock:: yaml

    # Logging configuration.  By default, slotqueue sends all log message to
    # standard error.
    logging:
        # Set the overall logging level
        level: debug

        # Allow overriding the level on a module by module basis
        module_levels:
            slotqueue.scheduler: info

        # File logging.  This is _in addition_ to the log sent to standard
        # error, which is always enabled.
        file:
            name: /path/to/file.log

            # If a third-party (like logrotate) is rotating the log
            # file, set this to "true" to tell slotqueue to watch for log-file
            # rotation.
            watch: false

            # Alternately, slotqueue can manage log file rotation itself.  Set
            # "rotate" to true to enable.  At most one of "watch" and "rotate"
            # may be true.
            rotate: true

            # Maximum number of rotated files to keep.  Must be at least one.
            backup_count: 100

            # Size, in bytes, at which log file rotation occurs.  May include
            # a suffix: k, M, or G.
            max_bytes: 4G

    # The task queue
    queue:
        # Number of worker slots (tasks run concurrently).  Must be positive.
        concurrency: 2

        # Queue name, used in log messages, thread names and metric labels
        name: queue

    metrics:
        # Prometheus client port.  Setting this to a positive value will
        # start the prometheus client HTTP server on that port.
        prom_client_port: 8080
"""

from __future__ import annotations

import logging
import os
from typing import Any

import yaml
from click import ClickException

log = logging.getLogger(__name__)

config = None

_default_config = {
    "logging": {},
    "queue": {
        "concurrency": 2,
        "name": "queue",
    },
    "metrics": {"prom_client_port": 0},
}

_test_isolation = False

# Used to detect a missing default in get()
_no_default = object()


def test_isolation(enable: bool = True) -> None:
    """Enable or disable test isolation.

    Test isolation disables the reading of config files installed
    in the standard paths, but still allows specifying a config
    file via command line or environmental variable.

    For this function to have an effect, it must be called before
    the first `load_config` call.

    Parameters:
    -----------
    enable : bool
        Whether to enable (the default) or disable test
        isolation.
    """
    global _test_isolation
    _test_isolation = enable


def load_config(cli_conf: str | os.PathLike | None = None) -> None:
    """Find and load the configuration from a file."""

    global config, _test_isolation

    # Initialise with the default configuration
    config = merge_dict_tree({}, _default_config)

    # Construct the configuration file path
    if _test_isolation:
        config_files = []
    else:
        config_files = [
            "/etc/slotqueue/slotqueue.conf",
            "/etc/xdg/slotqueue/slotqueue.conf",
            "~/.config/slotqueue/slotqueue.conf",
        ]

    enviro_conf = os.environ.get("SLOTQUEUE_CONFIG_FILE", None)
    if enviro_conf:
        config_files.append(enviro_conf)

    if cli_conf:
        config_files.append(str(cli_conf))

    for cfile in config_files:
        # Expand the configuration file path
        absfile = os.path.abspath(os.path.expanduser(os.path.expandvars(cfile)))

        if not os.path.exists(absfile):
            # Warn if a user-supplied config file is missing
            if cfile == str(cli_conf):
                log.warning(f"Config file {absfile} defined on command line not found.")
            elif cfile == enviro_conf:
                log.warning(
                    f"Config file {absfile} defined by SLOTQUEUE_CONFIG_FILE not found."
                )
            continue

        log.info("Loading config file %s", cfile)

        with open(absfile) as fh:
            try:
                conf = yaml.safe_load(fh)
            except yaml.YAMLError as e:
                raise ClickException(f"Unable to parse config file {absfile}: {e}")

        if conf is None:
            continue
        if not isinstance(conf, dict):
            raise ClickException(f"Config file {absfile} is not a YAML mapping.")

        config = merge_dict_tree(config, conf)


def get(key: str, default: Any = _no_default, as_type: type | None = None) -> Any:
    """Look up a value in the config.

    Parameters
    ----------
    key : str
        The config key.  Nested sections are separated by dots:
        e.g. "queue.concurrency".
    default : any, optional
        Returned if `key` is not present.  If omitted, a missing key
        raises KeyError.
    as_type : type, optional
        If given, the value found must be an instance of this type.
        The default is never type-checked.

    Raises
    ------
    KeyError
        `key` was not found, and no default was given.
    ValueError
        The value found was not of type `as_type`.
    """
    # Lazy-load the defaults if nothing has been loaded yet
    if config is None:
        value = _default_config
    else:
        value = config

    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            if default is _no_default:
                raise KeyError(f"missing config key: {key}")
            return default
        value = value[part]

    # bool is a subclass of int, but we never want to accept one for the other
    if as_type is not None:
        if as_type is int and isinstance(value, bool):
            raise ValueError(f"expected integer for {key}, got: {value!r}")
        if not isinstance(value, as_type):
            raise ValueError(
                f"expected {as_type.__name__} for {key}, got: {value!r}"
            )

    return value


def get_int(
    key: str,
    default: Any = _no_default,
    min: int | None = None,
    max: int | None = None,
) -> int:
    """Look up an integer in the config, with optional bounds checking.

    Raises
    ------
    KeyError
        `key` was not found, and no default was given.
    ValueError
        The value found was not an integer or was out of bounds.
    """
    value = get(key, default=default, as_type=int)

    if min is not None and value < min:
        raise ValueError(f"{key} must be at least {min}, got: {value}")
    if max is not None and value > max:
        raise ValueError(f"{key} must be at most {max}, got: {value}")

    return value


def merge_dict_tree(a: Any, b: Any) -> Any:
    """Merge two dictionaries recursively.

    The following rules applied:

      - Dictionaries at each level are merged, with `b` updating `a`.
      - Lists at the same level are combined, with that in `b` appended to `a`.
      - For all other cases, scalars, mixed types etc, `b` replaces `a`.

    Parameters
    ----------
    a, b : dict
        Two dictionaries to merge recursively. Where there are conflicts `b`
        takes preference over `a`.

    Returns
    -------
    c : dict
        Merged dictionary.
    """

    # Different types should return b
    if type(a) is not type(b):
        return b

    # From this point on both have the same type, so we only need to check
    # either a or b.
    if isinstance(a, list):
        return a + b

    # Dict's should be merged recursively
    if isinstance(a, dict):
        keys_a = set(a.keys())
        keys_b = set(b.keys())

        c = {}

        # Add the keys only in a...
        for k in keys_a - keys_b:
            c[k] = a[k]

        # ... now the ones only in b
        for k in keys_b - keys_a:
            c[k] = merge_dict_tree({}, b[k]) if isinstance(b[k], dict) else b[k]

        # Recursively merge any common keys
        for k in keys_a & keys_b:
            c[k] = merge_dict_tree(a[k], b[k])

        return c

    # All other cases (scalars etc) we should favour b
    return b
