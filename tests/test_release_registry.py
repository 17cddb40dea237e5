"""Tests for the GitHub release registry."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from peertubectl.network import RetryPolicy
from peertubectl.providers.release_registry import (
    CACHE_FILE_NAME,
    GitHubReleaseRegistry,
    ReleaseLookupError,
    normalize_version,
)

NO_WAIT = RetryPolicy(attempts=3, timeout=5, backoff=0)


def _registry(tmp_path: Path, fetch: object) -> GitHubReleaseRegistry:
    return GitHubReleaseRegistry(
        repo="Chocobozzz/PeerTube",
        cache_dir=tmp_path,
        retry=NO_WAIT,
        fetch=fetch,  # type: ignore[arg-type]
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("v7.1.0", "7.1.0"), ("7.1.0", "7.1.0"), (" V6.4.2 ", "6.4.2"), ("v7.0.0-rc.1", "7.0.0-rc.1")],
)
def test_normalize_version_strips_prefix(raw: str, expected: str) -> None:
    """Leading v/V and whitespace are dropped."""
    assert normalize_version(raw) == expected


@pytest.mark.parametrize("raw", ["", "v", "latest", "7.x"])
def test_normalize_version_rejects_garbage(raw: str) -> None:
    """Non-version strings are refused."""
    with pytest.raises(ReleaseLookupError):
        normalize_version(raw)


def test_latest_reads_tag_and_updates_cache(tmp_path: Path) -> None:
    """The tag_name of the latest release is normalised and cached."""
    requested: list[str] = []

    def fetch(url: str, *, timeout: float) -> dict[str, str]:
        requested.append(url)
        return {"tag_name": "v7.1.0"}

    registry = _registry(tmp_path, fetch)

    assert registry.latest() == "7.1.0"
    assert requested == ["https://api.github.com/repos/Chocobozzz/PeerTube/releases/latest"]
    cache = json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8"))
    assert cache == {"repo": "Chocobozzz/PeerTube", "version": "7.1.0"}
    assert registry.cached() == "7.1.0"


def test_latest_retries_transient_errors(tmp_path: Path) -> None:
    """Failures before the last attempt are retried."""
    attempts: list[int] = []

    def fetch(url: str, *, timeout: float) -> dict[str, str]:
        attempts.append(1)
        if len(attempts) < 3:
            raise OSError("temporary failure in name resolution")
        return {"tag_name": "v7.1.0"}

    assert _registry(tmp_path, fetch).latest() == "7.1.0"
    assert len(attempts) == 3


def test_latest_raises_after_exhausting_retries(tmp_path: Path) -> None:
    """Persistent failures become ReleaseLookupError and leave the cache alone."""

    def fetch(url: str, *, timeout: float) -> dict[str, str]:
        raise OSError("network unreachable")

    registry = _registry(tmp_path, fetch)

    with pytest.raises(ReleaseLookupError, match="after 3 attempt"):
        registry.latest()
    assert registry.cached() is None


def test_latest_requires_tag_name(tmp_path: Path) -> None:
    """A payload without tag_name is an error."""

    def fetch(url: str, *, timeout: float) -> dict[str, str]:
        return {"message": "API rate limit exceeded"}

    with pytest.raises(ReleaseLookupError, match="no tag_name"):
        _registry(tmp_path, fetch).latest()


def test_cached_ignores_corrupt_file(tmp_path: Path) -> None:
    """An unreadable cache is treated as empty."""
    (tmp_path / CACHE_FILE_NAME).write_text("{not json", encoding="utf-8")

    assert _registry(tmp_path, lambda url, timeout: {}).cached() is None


def test_cache_disabled_without_directory() -> None:
    """No cache directory means no cached version."""
    registry = GitHubReleaseRegistry(
        repo="Chocobozzz/PeerTube",
        retry=NO_WAIT,
        fetch=lambda url, timeout: {"tag_name": "v7.1.0"},
    )

    assert registry.latest() == "7.1.0"
    assert registry.cache_path is None
    assert registry.cached() is None
