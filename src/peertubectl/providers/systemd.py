"""Systemd provider for the PeerTube unit and the OS services it depends on."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage systemd service units."""

    templates: TemplateEngine
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    template_name: str = "systemd/peertube.service.j2"

    def unit_name(self, name: str) -> str:
        """Return the systemd unit name for service *name*."""
        safe = name.replace("/", "-")
        return safe if safe.endswith(".service") else f"{safe}.service"

    def unit_path(self, name: str) -> Path:
        """Return the full path for the unit file."""
        return self.systemd_dir / self.unit_name(name)

    def install_unit(self, name: str, context: Mapping[str, object]) -> bool:
        """Render the unit file for *name* using *context*."""
        path = self.unit_path(name)
        changed = self.templates.render_to_path(self.template_name, path, context, mode=0o644)
        if changed:
            self._reload_daemon()
        return changed

    def enable_now(self, name: str) -> None:
        """Enable the unit and start it immediately."""
        self._systemctl("enable", self.unit_name(name), "--now")

    def restart(self, name: str) -> None:
        """Restart the unit."""
        self._systemctl("restart", self.unit_name(name))

    def stop(self, name: str) -> None:
        """Stop the unit."""
        self._systemctl("stop", self.unit_name(name))

    def disable(self, name: str) -> None:
        """Disable the unit."""
        self._systemctl("disable", self.unit_name(name))

    def is_active(self, name: str) -> bool:
        """Return True when the unit is running."""
        result = self._systemctl("is-active", self.unit_name(name), check=False)
        return result.returncode == 0

    def is_enabled(self, name: str) -> bool:
        """Return True when the unit starts at boot."""
        result = self._systemctl("is-enabled", self.unit_name(name), check=False)
        return result.returncode == 0

    def ensure_running(self, name: str) -> None:
        """Enable and start *name* unless it is already active and enabled."""
        if self.is_active(name) and self.is_enabled(name):
            return
        self.enable_now(name)

    def remove(self, name: str) -> None:
        """Remove the unit file for *name*."""
        path = self.unit_path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        self._reload_daemon()

    # ------------------------------------------------------------------
    def _reload_daemon(self) -> None:
        self._systemctl("daemon-reload")

    def _systemctl(
        self,
        command: str,
        *args: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return self._run_command(
            [self.systemctl_bin, command, *args],
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdProvider", "SystemdError"]
