"""Structured operation logging for routerctl commands.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps performed and a final result, then appends a single JSON
record to ``operations.jsonl`` plus a one-line summary to ``routerctl.log``.

Logging must never be the reason a provisioning run fails: when the log
directory cannot be created or a write fails the logger disables itself and
subsequent operations become no-ops.
"""
from __future__ import annotations

import json
import logging
import os
import secrets
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

LOGGER = logging.getLogger("routerctl.operations")

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "routerctl.log"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitise(value: object) -> object:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the final result for one command invocation."""

    command: str
    args: dict[str, object] = field(default_factory=dict)
    target: dict[str, object] = field(default_factory=dict)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    op_id: str = field(default_factory=lambda: secrets.token_hex(8))
    started_at: str = field(default_factory=_now_iso)
    _started: float = field(default_factory=time.monotonic)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an individual step performed by the command."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            backups=backups,
            context=context,
            rc=0,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            backups=backups,
            context=context,
            rc=0,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            context=context,
            rc=rc,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
        rc: int,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "warnings": [str(item) for item in warnings or []],
            "errors": [str(item) for item in errors or []],
            "changed": changed,
            "backups": [str(item) for item in backups or []],
            "context": _sanitise(dict(context or {})),
            "rc": rc,
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        return {
            "op_id": self.op_id,
            "started_at": self.started_at,
            "finished_at": _now_iso(),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "command": self.command,
            "args": _sanitise(self.args),
            "target": _sanitise(self.target),
            "context": {"routerctl_version": __version__, "pid": os.getpid()},
            "steps": list(self.steps),
            "result": self.result,
        }


class StructuredLogger:
    """Append-only JSONL operations log with a human-readable companion."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the log directory, disabling logging when it is unavailable."""
        self._log_dir = Path(log_dir).expanduser()
        self._operations_log_path = self._log_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self._log_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Operations logging disabled: %s", exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSONL operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a command inside an operation scope and persist its record."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
        )
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        record = scope.to_record()
        result = record["result"] if isinstance(record["result"], dict) else {}
        summary = f"{scope.command}: {result.get('status')} - {result.get('message')}"
        LOGGER.info(summary)
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(f"{record['finished_at']} [{scope.op_id}] {summary}\n")
        except OSError as exc:
            LOGGER.debug("Operations logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
