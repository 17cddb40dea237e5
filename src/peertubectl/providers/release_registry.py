"""Latest-release lookup against the GitHub releases API, with a local cache."""
from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from packaging.version import InvalidVersion, Version

from ..network import HTTP_ERRORS, NetworkError, RetryPolicy, fetch_json, with_retries

LOGGER = logging.getLogger(__name__)

CACHE_FILE_NAME = "latest-release.json"


class ReleaseLookupError(RuntimeError):
    """Raised when the registry cannot produce a usable version."""


def normalize_version(raw: str) -> str:
    """Strip a leading ``v`` and validate *raw* as a release version."""
    candidate = raw.strip()
    if candidate[:1] in {"v", "V"}:
        candidate = candidate[1:]
    if not candidate:
        raise ReleaseLookupError("Version identifier must be a non-empty string.")
    try:
        Version(candidate)
    except InvalidVersion as exc:
        raise ReleaseLookupError(f"'{raw}' is not a valid release version.") from exc
    return candidate


@dataclass(slots=True)
class GitHubReleaseRegistry:
    """Resolve the latest release tag of *repo*."""

    repo: str
    api_url: str = "https://api.github.com/repos/{repo}/releases/latest"
    cache_dir: Path | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    fetch: Callable[..., Any] = fetch_json

    @property
    def cache_path(self) -> Path | None:
        """Return the cache file location, if caching is enabled."""
        if self.cache_dir is None:
            return None
        return self.cache_dir / CACHE_FILE_NAME

    def latest(self) -> str:
        """Return the latest release version, querying the API with retries."""
        url = self.api_url.format(repo=self.repo)
        try:
            payload = with_retries(
                lambda: self.fetch(url, timeout=self.retry.timeout),
                policy=self.retry,
                description=f"lookup latest release of {self.repo}",
                retry_on=HTTP_ERRORS,
            )
        except NetworkError as exc:
            raise ReleaseLookupError(str(exc)) from exc
        if not isinstance(payload, Mapping) or not isinstance(payload.get("tag_name"), str):
            raise ReleaseLookupError(f"{url} returned no tag_name.")
        version = normalize_version(payload["tag_name"])
        self._store(version)
        return version

    def cached(self) -> str | None:
        """Return the last successfully resolved version, if any."""
        path = self.cache_path
        if path is None or not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return normalize_version(str(data["version"]))
        except (OSError, ValueError, KeyError, TypeError, ReleaseLookupError) as exc:
            LOGGER.debug("Ignoring unreadable release cache %s: %s", path, exc)
            return None

    def _store(self, version: str) -> None:
        path = self.cache_path
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps({"repo": self.repo, "version": version}, sort_keys=True) + "\n",
                encoding="utf-8",
            )
        except OSError as exc:
            LOGGER.debug("Could not write release cache %s: %s", path, exc)


__all__ = [
    "CACHE_FILE_NAME",
    "GitHubReleaseRegistry",
    "ReleaseLookupError",
    "normalize_version",
]
