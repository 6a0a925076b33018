"""Stage, back up, and atomically install the rendered configuration."""
from __future__ import annotations

import filecmp
import logging
import os
import shutil
from pathlib import Path

from .document import ConfigDocument
from .errors import BootstrapIOError
from .ledger import CompensatingLedger

LOGGER = logging.getLogger(__name__)

PRIVATE_MODE = 0o600


def staged_path(final: Path) -> Path:
    return final.with_name(final.name + ".tmp")


def backup_path(final: Path) -> Path:
    return final.with_name(final.name + ".bak")


def write_temporary_config(
    document: ConfigDocument,
    final: Path,
    ledger: CompensatingLedger,
) -> Path:
    """Render *document* next to *final* as ``<final>.tmp`` and return that path."""
    tmp = staged_path(final)
    try:
        handle = tmp.open("w", encoding="utf-8")
    except OSError as exc:
        raise BootstrapIOError(
            f"Could not open {tmp} for writing: {exc.strerror or exc}"
        ) from exc
    ledger.record_file(tmp)
    try:
        with handle:
            handle.write(document.render())
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        raise BootstrapIOError(f"Could not write {tmp}: {exc.strerror or exc}") from exc
    return tmp


def backup_if_different(final: Path, candidate: Path) -> Path | None:
    """Copy *final* to ``<final>.bak`` when its bytes differ from *candidate*.

    Returns the backup path, or ``None`` when no backup was needed.
    """
    if not final.exists():
        return None
    if filecmp.cmp(final, candidate, shallow=False):
        return None
    backup = backup_path(final)
    try:
        shutil.copyfile(final, backup)
        os.chmod(backup, PRIVATE_MODE)
    except OSError as exc:
        raise BootstrapIOError(
            f"Could not back up {final} to {backup}: {exc.strerror or exc}"
        ) from exc
    LOGGER.info("Backed up %s to %s", final, backup)
    return backup


def install_config(tmp: Path, final: Path, ledger: CompensatingLedger) -> None:
    """Move *tmp* over *final* in one rename and make it owner-only."""
    try:
        os.replace(tmp, final)
    except OSError as exc:
        raise BootstrapIOError(
            f"Could not move configuration file '{tmp}' to final location: "
            f"{exc.strerror or exc}"
        ) from exc
    ledger.forget(tmp)
    try:
        os.chmod(final, PRIVATE_MODE)
    except OSError as exc:
        raise BootstrapIOError(
            f"Could not restrict permissions of {final}: {exc.strerror or exc}"
        ) from exc


__all__ = [
    "backup_if_different",
    "backup_path",
    "install_config",
    "staged_path",
    "write_temporary_config",
]
