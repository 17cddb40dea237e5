"""Tests for the systemd provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

from peertubectl.providers.systemd import SystemdError, SystemdProvider
from peertubectl.templates import TemplateEngine


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def provider(tmp_path: Path) -> SystemdProvider:
    """Return a provider instance scoped to the temporary path."""
    return SystemdProvider(
        templates=TemplateEngine.with_overrides(None),
        systemd_dir=tmp_path / "systemd",
        systemctl_bin="systemctl",
    )


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Record systemctl invocations; every command succeeds."""
    recorded: list[list[str]] = []

    def fake_run(
        self: SystemdProvider, args: Sequence[str], *, check: bool, error_prefix: str
    ) -> DummyResult:
        recorded.append(list(args))
        return DummyResult()

    monkeypatch.setattr(SystemdProvider, "_run_command", fake_run)
    return recorded


def _context() -> dict[str, object]:
    return {
        "name": "peertube",
        "description": "PeerTube daemon",
        "user": "peertube",
        "group": "peertube",
        "exec_start": "/usr/bin/node dist/server",
        "working_dir": "/var/www/peertube/peertube-latest",
        "config_dir": "/var/www/peertube/config",
        "data_dir": "/var/www/peertube",
        "restart_sec": 10,
    }


def test_unit_name_appends_suffix(provider: SystemdProvider) -> None:
    """Bare names gain ``.service``; full unit names are kept."""
    assert provider.unit_name("peertube") == "peertube.service"
    assert provider.unit_name("redis-server.service") == "redis-server.service"


def test_install_unit_renders_and_reloads(
    provider: SystemdProvider, calls: list[list[str]]
) -> None:
    """A new unit file is written and systemd reloads its configuration."""
    changed = provider.install_unit("peertube", _context())

    content = provider.unit_path("peertube").read_text(encoding="utf-8")
    assert changed is True
    assert "ExecStart=/usr/bin/node dist/server" in content
    assert "User=peertube" in content
    assert "WorkingDirectory=/var/www/peertube/peertube-latest" in content
    assert "Restart=on-failure" in content
    assert "ReadWritePaths=/var/www/peertube /tmp" in content
    assert calls == [["systemctl", "daemon-reload"]]


def test_install_unit_is_idempotent(
    provider: SystemdProvider, calls: list[list[str]]
) -> None:
    """Rendering identical content neither rewrites nor reloads."""
    provider.install_unit("peertube", _context())
    calls.clear()

    assert provider.install_unit("peertube", _context()) is False
    assert calls == []


def test_lifecycle_commands(provider: SystemdProvider, calls: list[list[str]]) -> None:
    """enable --now, restart, stop and disable target the unit name."""
    provider.enable_now("peertube")
    provider.restart("peertube")
    provider.stop("peertube")
    provider.disable("peertube")

    assert calls == [
        ["systemctl", "enable", "peertube.service", "--now"],
        ["systemctl", "restart", "peertube.service"],
        ["systemctl", "stop", "peertube.service"],
        ["systemctl", "disable", "peertube.service"],
    ]


def test_ensure_running_starts_inactive_service(
    monkeypatch: pytest.MonkeyPatch, provider: SystemdProvider
) -> None:
    """An inactive OS service is enabled and started."""
    recorded: list[list[str]] = []

    def fake_run(
        self: SystemdProvider, args: Sequence[str], *, check: bool, error_prefix: str
    ) -> DummyResult:
        recorded.append(list(args))
        return DummyResult(returncode=3 if args[1] == "is-active" else 0)

    monkeypatch.setattr(SystemdProvider, "_run_command", fake_run)

    provider.ensure_running("redis-server")

    assert recorded[-1] == ["systemctl", "enable", "redis-server.service", "--now"]


def test_ensure_running_skips_active_service(
    provider: SystemdProvider, calls: list[list[str]]
) -> None:
    """A service that is active and enabled is left alone."""
    provider.ensure_running("postgresql")

    assert [call[1] for call in calls] == ["is-active", "is-enabled"]


def test_remove_deletes_unit_and_reloads(
    provider: SystemdProvider, calls: list[list[str]]
) -> None:
    """Removing a unit deletes the file and reloads; a missing file is a no-op."""
    provider.install_unit("peertube", _context())
    calls.clear()

    provider.remove("peertube")
    provider.remove("peertube")

    assert not provider.unit_path("peertube").exists()
    assert calls == [["systemctl", "daemon-reload"]]


def test_failing_systemctl_raises(
    monkeypatch: pytest.MonkeyPatch, provider: SystemdProvider
) -> None:
    """Non-zero exits carry systemctl's message."""

    def fake_subprocess_run(*args: object, **kwargs: object) -> DummyResult:
        return DummyResult(returncode=5, stderr="Unit peertube.service not loaded.")

    monkeypatch.setattr(subprocess, "run", fake_subprocess_run)

    with pytest.raises(SystemdError, match="not loaded"):
        provider.stop("peertube")
    assert provider.is_active("peertube") is False


def test_missing_systemctl_raises(
    monkeypatch: pytest.MonkeyPatch, provider: SystemdProvider
) -> None:
    """A missing systemctl binary becomes SystemdError."""

    def fake_subprocess_run(*args: object, **kwargs: object) -> DummyResult:
        raise FileNotFoundError("systemctl")

    monkeypatch.setattr(subprocess, "run", fake_subprocess_run)

    with pytest.raises(SystemdError, match="not found"):
        provider.enable_now("peertube")
