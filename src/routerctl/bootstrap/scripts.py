"""Emit start/stop scripts for directory deployments."""
from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

from ..templates import TemplateEngine, TemplateError
from .errors import BootstrapIOError, BootstrapValidationError

LOGGER = logging.getLogger(__name__)

SCRIPT_MODE = 0o700

POSIX_SCRIPTS = (
    ("start.sh", "scripts/start.sh.j2"),
    ("stop.sh", "scripts/stop.sh.j2"),
)
WINDOWS_SCRIPTS = (
    ("start.ps1", "scripts/start.ps1.j2"),
    ("stop.ps1", "scripts/stop.ps1.j2"),
)


def resolve_executable(candidate: str) -> str:
    """Return the absolute path of the router executable.

    Bare names are looked up on ``PATH``; anything containing a path
    separator must point at an executable file.
    """
    if os.sep in candidate or (os.altsep and os.altsep in candidate):
        path = Path(candidate).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return str(path.resolve())
        raise BootstrapValidationError(f"Router executable {candidate} is not an executable file.")
    found = shutil.which(candidate)
    if found is None:
        raise BootstrapValidationError(f"Could not find router executable '{candidate}' on PATH.")
    return str(Path(found).resolve())


def emit_lifecycle_scripts(
    templates: TemplateEngine,
    directory: Path,
    executable: str,
    *,
    interactive_master_key: bool,
    pid_name: str = "mysqlrouter.pid",
    config_name: str = "mysqlrouter.conf",
    platform: str | None = None,
) -> list[Path]:
    """Render the start and stop scripts into *directory* and return their paths."""
    windows = (platform or sys.platform).startswith("win")
    scripts = WINDOWS_SCRIPTS if windows else POSIX_SCRIPTS
    context = {
        "directory": str(directory),
        "executable": executable,
        "pid_name": pid_name,
        "config_name": config_name,
        "interactive_master_key": interactive_master_key,
    }
    written: list[Path] = []
    for name, template_name in scripts:
        path = directory / name
        try:
            templates.render_to_path(template_name, path, context, mode=SCRIPT_MODE)
        except TemplateError as exc:
            raise BootstrapIOError(f"Could not write {path}: {exc}") from exc
        written.append(path)
        LOGGER.debug("Wrote %s", path)
    return written


__all__ = ["emit_lifecycle_scripts", "resolve_executable"]
