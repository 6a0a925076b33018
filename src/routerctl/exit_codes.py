"""Process exit codes returned by ``routerctl`` commands."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes shared by every command.

    A cancelled bootstrap exits with ``OK``; conflicts with existing local
    state are reported as ``VALIDATION``.
    """

    OK = 0
    VALIDATION = 2
    # local filesystem or keyring failures
    ENVIRONMENT = 3
    # metadata server unreachable or rejecting a statement
    PROVIDER = 4
