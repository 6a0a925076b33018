"""Resolve the on-disk layout of a router deployment."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..config import AppConfig
from .errors import BootstrapConflictError, BootstrapIOError, BootstrapValidationError
from .ledger import CompensatingLedger

LOGGER = logging.getLogger(__name__)

SYSTEM_ROUTER_NAME = "system"
MAX_ROUTER_NAME_LENGTH = 255
DIRECTORY_MODE = 0o700


class DeploymentKind(str, Enum):
    """Where the router configuration lives."""

    SYSTEM = "system"
    DIRECTORY = "directory"


@dataclass(slots=True, frozen=True)
class DeploymentLayout:
    """Resolved paths used by one bootstrap run."""

    kind: DeploymentKind
    config_path: Path
    logdir: Path | None
    rundir: Path | None
    socketsdir: Path
    keyring_path: Path
    master_key_path: Path | None = None
    directory: Path | None = None


def validate_router_name(name: str | None, *, directory_deployment: bool) -> str:
    """Return the effective router name or raise a validation error.

    System deployments fall back to the reserved ``system`` name; directory
    deployments may not use it.
    """
    if not name:
        return "" if directory_deployment else SYSTEM_ROUTER_NAME
    if directory_deployment and name == SYSTEM_ROUTER_NAME:
        raise BootstrapValidationError(f"Router name '{SYSTEM_ROUTER_NAME}' is reserved")
    if "\r" in name or "\n" in name:
        raise BootstrapValidationError(f"Router name '{name}' contains invalid characters.")
    if len(name) > MAX_ROUTER_NAME_LENGTH:
        raise BootstrapValidationError(
            f"Router name '{name}' too long (max {MAX_ROUTER_NAME_LENGTH})."
        )
    return name


def resolve_directory_layout(
    directory: Path,
    *,
    ledger: CompensatingLedger,
    force: bool = False,
    logdir: Path | None = None,
    rundir: Path | None = None,
    socketsdir: Path | None = None,
    config_name: str = "mysqlrouter.conf",
    keyring_name: str = "keyring",
    master_key_path: Path | None = None,
) -> DeploymentLayout:
    """Prepare a self-contained deployment under *directory*.

    Every directory created here is recorded in *ledger* so a failed run
    leaves nothing behind.
    """
    target = Path(directory).expanduser()
    if not target.exists():
        try:
            target.mkdir(mode=DIRECTORY_MODE, parents=False)
        except OSError as exc:
            raise BootstrapIOError(
                f"Cannot create directory {target}: {exc.strerror or exc}"
            ) from exc
        ledger.record_directory(target, recursive=True)
        LOGGER.debug("Created deployment directory %s", target)
    elif not target.is_dir():
        raise BootstrapConflictError(f"{target} exists and is not a directory.")

    root = target.resolve()
    config_path = root / config_name
    if not config_path.exists() and not force and any(root.iterdir()):
        raise BootstrapConflictError(f"Directory {target} already contains files")

    resolved_logdir = Path(logdir).expanduser() if logdir else root / "log"
    resolved_rundir = Path(rundir).expanduser() if rundir else root / "run"
    resolved_socketsdir = Path(socketsdir).expanduser() if socketsdir else root

    for path in (resolved_logdir, resolved_rundir):
        _ensure_directory(path, ledger)

    return DeploymentLayout(
        kind=DeploymentKind.DIRECTORY,
        config_path=config_path,
        logdir=resolved_logdir,
        rundir=resolved_rundir,
        socketsdir=resolved_socketsdir,
        keyring_path=resolved_rundir.resolve() / keyring_name,
        master_key_path=Path(master_key_path).expanduser() if master_key_path else None,
        directory=root,
    )


def resolve_system_layout(
    config: AppConfig,
    *,
    socketsdir: Path | None = None,
    logdir: Path | None = None,
    rundir: Path | None = None,
    master_key_path: Path | None = None,
) -> DeploymentLayout:
    """Return the fixed system-wide layout; nothing is created on disk."""
    system = config.system
    key_path = master_key_path or system.master_key_path
    return DeploymentLayout(
        kind=DeploymentKind.SYSTEM,
        config_path=system.config_file,
        logdir=Path(logdir).expanduser() if logdir else None,
        rundir=Path(rundir).expanduser() if rundir else None,
        socketsdir=Path(socketsdir).expanduser() if socketsdir else system.sockets_dir,
        keyring_path=system.keyring_path,
        master_key_path=Path(key_path).expanduser() if key_path else None,
    )


def _ensure_directory(path: Path, ledger: CompensatingLedger) -> None:
    try:
        os.mkdir(path, DIRECTORY_MODE)
    except FileExistsError:
        return
    except OSError as exc:
        raise BootstrapIOError(f"Cannot create directory {path}: {exc.strerror or exc}") from exc
    ledger.record_directory(path)
    LOGGER.debug("Created %s", path)


__all__ = [
    "DeploymentKind",
    "DeploymentLayout",
    "MAX_ROUTER_NAME_LENGTH",
    "SYSTEM_ROUTER_NAME",
    "resolve_directory_layout",
    "resolve_system_layout",
    "validate_router_name",
]
