"""Jinja2 template rendering with operator overrides.

Built-in templates ship inside this package. Operators may shadow any of them
by placing a file with the same relative name under the configured
``templates_dir``.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
)

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent


class TemplateError(RuntimeError):
    """Raised when a template cannot be rendered or written."""


@dataclass(slots=True)
class TemplateEngine:
    """Render templates to strings or files."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates from *override_dir*."""
        loaders: list[FileSystemLoader] = []
        if override_dir is not None and Path(override_dir).expanduser().is_dir():
            loaders.append(FileSystemLoader(str(Path(override_dir).expanduser())))
        loaders.append(FileSystemLoader(str(BUILTIN_TEMPLATES_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**dict(context))
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render template {template_name}: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*, returning ``True`` when the file changed."""
        rendered = self.render_to_string(template_name, context)
        if destination.exists():
            try:
                current = destination.read_text(encoding="utf-8")
            except OSError as exc:
                raise TemplateError(f"Failed to read {destination}: {exc}") from exc
            if current == rendered:
                if (destination.stat().st_mode & 0o777) != mode:
                    os.chmod(destination, mode)
                return False

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(destination.parent),
                prefix=f".{destination.name}.",
            )
        except OSError as exc:
            raise TemplateError(f"Could not open {destination} for writing: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, destination)
        except OSError as exc:
            raise TemplateError(f"Could not write {destination}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return True


__all__ = ["BUILTIN_TEMPLATES_DIR", "TemplateEngine", "TemplateError"]
