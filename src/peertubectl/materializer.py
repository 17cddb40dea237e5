"""Field-by-field materialization of PeerTube's ``production.yaml``.

Values are addressed by their full structural path (``webserver.port`` is a
different field from ``listen.port``); the document is parsed with PyYAML,
edited as a mapping tree and serialised back. YAML comments from the
template are not preserved.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .templates import write_atomic

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_MODE = 0o600


class MaterializeError(RuntimeError):
    """Raised when a config document cannot be loaded or edited."""


FieldPath = tuple[str, ...]


def parse_path(path: str | Iterable[str]) -> FieldPath:
    """Return *path* as a tuple of keys (``"a.b.c"`` or an iterable)."""
    parts = tuple(path.split(".")) if isinstance(path, str) else tuple(path)
    if not parts or any(not part for part in parts):
        raise MaterializeError(f"Invalid field path: {path!r}")
    return parts


def get_field(document: Mapping[str, object], path: str | Iterable[str]) -> object | None:
    """Return the value at *path*, or ``None`` when any segment is missing."""
    current: object = document
    for key in parse_path(path):
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def set_field(
    document: MutableMapping[str, object],
    path: str | Iterable[str],
    value: object,
) -> bool:
    """Set the value at *path*, creating missing sections.

    Returns ``True`` when the stored value changed.
    """
    keys = parse_path(path)
    current: MutableMapping[str, object] = document
    walked: list[str] = []
    for key in keys[:-1]:
        walked.append(key)
        child = current.get(key)
        if child is None:
            child = {}
            current[key] = child
        if not isinstance(child, MutableMapping):
            raise MaterializeError(
                f"Cannot set {'.'.join(keys)}: {'.'.join(walked)} is a scalar, not a section."
            )
        current = child
    leaf = keys[-1]
    if leaf in current and current[leaf] == value:
        return False
    current[leaf] = value
    return True


@dataclass(slots=True)
class MaterializeResult:
    """Outcome of :meth:`ConfigMaterializer.materialize`."""

    path: Path
    changed: bool
    base: Path
    updated_fields: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ConfigMaterializer:
    """Produce ``production.yaml`` from the shipped example plus targeted values."""

    config_dir: Path
    template_dir: Path
    file_name: str = "production.yaml"
    template_name: str = "production.yaml.example"

    @property
    def target(self) -> Path:
        """Return the path of the materialized config file."""
        return self.config_dir / self.file_name

    def base_document(self) -> tuple[Path, dict[str, object]]:
        """Return the base path and document: the live file when present, else the example."""
        for candidate in (self.target, self.template_dir / self.template_name):
            if candidate.is_file():
                return candidate, self._load(candidate)
        raise MaterializeError(
            f"Neither {self.target} nor {self.template_dir / self.template_name} exists."
        )

    def materialize(
        self,
        values: Mapping[str, object],
        *,
        generated_secrets: Iterable[str] = (),
    ) -> MaterializeResult:
        """Apply *values* and write the config with owner-only permissions.

        Every field named in *generated_secrets* receives a random hex token
        unless it already holds a non-empty value.
        """
        base, document = self.base_document()
        updated: list[str] = []
        for path, value in values.items():
            if set_field(document, path, value):
                updated.append(path)
        for path in generated_secrets:
            current = get_field(document, path)
            if current in (None, ""):
                set_field(document, path, secrets.token_hex(32))
                updated.append(path)

        content = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
        changed = write_atomic(self.target, content, mode=CONFIG_FILE_MODE)
        LOGGER.debug("Materialized %s from %s (fields: %s)", self.target, base, updated)
        return MaterializeResult(
            path=self.target, changed=changed, base=base, updated_fields=updated
        )

    def _load(self, path: Path) -> dict[str, object]:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise MaterializeError(f"Failed to parse {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise MaterializeError(f"{path} must contain a mapping at the top level.")
        return data


def peertube_values(
    *,
    domain: str,
    backend_host: str,
    backend_port: int,
    db_name: str,
    db_user: str,
    db_password: str,
    admin_email: str,
) -> dict[str, object]:
    """Return the field values peertubectl owns in ``production.yaml``."""
    values: dict[str, object] = {
        "listen.hostname": backend_host,
        "listen.port": backend_port,
        "webserver.https": True,
        "webserver.hostname": domain,
        "webserver.port": 443,
        "database.hostname": "127.0.0.1",
        "database.port": 5432,
        "database.name": db_name,
        "database.username": db_user,
        "database.password": db_password,
        "redis.hostname": "127.0.0.1",
        "redis.port": 6379,
        "admin.email": admin_email,
    }
    return values


GENERATED_SECRETS = ("secrets.peertube",)


__all__ = [
    "CONFIG_FILE_MODE",
    "ConfigMaterializer",
    "GENERATED_SECRETS",
    "MaterializeError",
    "MaterializeResult",
    "get_field",
    "parse_path",
    "peertube_values",
    "set_field",
]
