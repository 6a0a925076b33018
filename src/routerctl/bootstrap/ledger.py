"""Compensating-action ledger for local filesystem side effects.

A bootstrap creates directories and files before it knows whether the remote
registration will succeed. Every such artifact is recorded here; leaving the
``with`` block without calling :meth:`CompensatingLedger.commit` removes them
again, newest first.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import TracebackType

LOGGER = logging.getLogger(__name__)


class EntryKind(str, Enum):
    """How an entry is undone."""

    FILE = "file"
    DIRECTORY = "directory"
    DIRECTORY_RECURSIVE = "directory-recursive"


@dataclass(slots=True, frozen=True)
class LedgerEntry:
    """A single artifact created by the current run."""

    path: Path
    kind: EntryKind


@dataclass(slots=True)
class CompensatingLedger:
    """Record created artifacts and remove them unless committed."""

    _entries: list[LedgerEntry] = field(default_factory=list)
    _committed: bool = False

    def __enter__(self) -> CompensatingLedger:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._committed:
            self.unwind()

    @property
    def entries(self) -> list[LedgerEntry]:
        """Return the recorded entries, oldest first."""
        return list(self._entries)

    @property
    def committed(self) -> bool:
        return self._committed

    def record_file(self, path: Path) -> None:
        """Remember that *path* was created by this run."""
        self._record(LedgerEntry(Path(path), EntryKind.FILE))

    def record_directory(self, path: Path, *, recursive: bool = False) -> None:
        """Remember a created directory; *recursive* removes its contents on undo."""
        kind = EntryKind.DIRECTORY_RECURSIVE if recursive else EntryKind.DIRECTORY
        self._record(LedgerEntry(Path(path), kind))

    def forget(self, path: Path) -> None:
        """Drop *path* from the ledger so it survives an unwind."""
        target = Path(path)
        self._entries = [entry for entry in self._entries if entry.path != target]

    def commit(self) -> None:
        """Keep every recorded artifact. May only be called once."""
        if self._committed:
            raise RuntimeError("Ledger has already been committed.")
        self._committed = True
        self._entries.clear()

    def unwind(self) -> None:
        """Undo recorded entries newest first; failures are logged, never raised."""
        while self._entries:
            entry = self._entries.pop()
            try:
                _undo(entry)
            except OSError as exc:
                LOGGER.warning("Could not remove %s during rollback: %s", entry.path, exc)

    def _record(self, entry: LedgerEntry) -> None:
        self.forget(entry.path)
        self._entries.append(entry)


def _undo(entry: LedgerEntry) -> None:
    path = entry.path
    if entry.kind is EntryKind.FILE:
        path.unlink(missing_ok=True)
        LOGGER.debug("Removed %s", path)
        return
    if not path.exists():
        return
    if entry.kind is EntryKind.DIRECTORY_RECURSIVE:
        shutil.rmtree(path)
        LOGGER.debug("Removed directory tree %s", path)
        return
    if any(path.iterdir()):
        LOGGER.debug("Keeping non-empty directory %s", path)
        return
    path.rmdir()
    LOGGER.debug("Removed directory %s", path)


__all__ = ["CompensatingLedger", "EntryKind", "LedgerEntry"]
