"""Slotqueue

A FIFO task queue run by a fixed number of worker slots.

Submodules
==========

.. autosummary::
    :toctree: _autosummary

    cli
    common
    scheduler
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("slotqueue")
except PackageNotFoundError:
    # package is not installed
    __version__ = "unknown"

del version, PackageNotFoundError
