"""Jinja2 template rendering for nginx sites and systemd units."""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, StrictUndefined

BUILTIN_PACKAGE = "peertubectl"
BUILTIN_DIRECTORY = "templates"


class TemplateEngine:
    """Render packaged templates, optionally shadowed by an override directory."""

    def __init__(self, environment: Environment) -> None:
        """Wrap a configured Jinja2 *environment*."""
        self._environment = environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine where templates in *override_dir* win over built-ins."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader(BUILTIN_PACKAGE, BUILTIN_DIRECTORY))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders config files, not HTML
        )
        return cls(environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        template = self._environment.get_template(template_name)
        return template.render(**context)

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*; return ``True`` when the content changed."""
        content = self.render_to_string(template_name, context)
        return write_atomic(destination, content, mode=mode)


def write_atomic(destination: Path, content: str, *, mode: int = 0o644) -> bool:
    """Replace *destination* with *content* in one rename.

    Returns ``False`` without touching the file when the content and mode
    already match.
    """
    if destination.exists() and not destination.is_symlink():
        current = destination.read_text(encoding="utf-8")
        current_mode = destination.stat().st_mode & 0o777
        if current == content and current_mode == mode:
            return False
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.", dir=str(destination.parent))
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        temp_path.chmod(mode)
        os.replace(temp_path, destination)
    finally:
        temp_path.unlink(missing_ok=True)
    return True


__all__ = ["TemplateEngine", "write_atomic"]
