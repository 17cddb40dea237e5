"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Cancelling at a confirmation prompt is not a failure and exits with ``OK``.
    """

    OK = 0
    FAILURE = 1
