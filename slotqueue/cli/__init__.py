"""``slotqueue.cli``: The slotqueue CLI.

This module implements the slotqueue CLI using `click`.
The CLI entry point is in `slotqueue.cli.entry`.
"""

from .entry import entry
