"""Exception hierarchy for bootstrap failures."""
from __future__ import annotations

from ..exit_codes import ExitCode


class BootstrapError(RuntimeError):
    """Base class for every failure raised while provisioning a router."""

    kind = "error"
    exit_code = ExitCode.ENVIRONMENT


class BootstrapValidationError(BootstrapError):
    """Bad operator input, detected before anything is mutated."""

    kind = "validation"
    exit_code = ExitCode.VALIDATION


class BootstrapConflictError(BootstrapError):
    """The existing deployment state forbids the requested bootstrap."""

    kind = "conflict"
    exit_code = ExitCode.VALIDATION


class BootstrapRemoteError(BootstrapError):
    """The metadata server rejected or failed a request."""

    kind = "remote"
    exit_code = ExitCode.PROVIDER


class BootstrapIOError(BootstrapError):
    """A local file or directory operation failed."""

    kind = "io"
    exit_code = ExitCode.ENVIRONMENT


__all__ = [
    "BootstrapConflictError",
    "BootstrapError",
    "BootstrapIOError",
    "BootstrapRemoteError",
    "BootstrapValidationError",
]
