"""Service unit lifecycle for the PeerTube process."""
from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from jinja2 import TemplateError

from .adapters import ServiceManager
from .errors import ProvisioningError
from .providers.systemd import SystemdError


class UnitState(str, Enum):
    """Desired state of a service unit."""

    STOPPED = "stopped"
    ENABLED_RUNNING = "enabled-running"


@dataclass(frozen=True, slots=True)
class ServiceUnit:
    """Binds a service name to what it runs, where and as whom."""

    name: str
    exec_path: Path
    working_dir: Path
    account: str
    args: tuple[str, ...] = ()
    desired_state: UnitState = UnitState.STOPPED
    file_changed: bool = False

    @property
    def exec_start(self) -> str:
        """Return the ``ExecStart=`` command line."""
        return " ".join([str(self.exec_path), *self.args])


Which = Callable[[str], str | None]


class ServiceLifecycleManager:
    """Install, start, stop and remove the application unit."""

    def __init__(
        self,
        manager: ServiceManager,
        *,
        restart_sec: int = 10,
        which: Which = shutil.which,
    ) -> None:
        """Wrap *manager*; *which* resolves bare executable names."""
        self._manager = manager
        self._restart_sec = restart_sec
        self._which = which

    def resolve_exec_path(self, exec_path: str | Path) -> Path:
        """Return an absolute executable path or raise :class:`ProvisioningError`."""
        raw = str(exec_path)
        if os.sep in raw:
            candidate = Path(raw)
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return candidate
            raise ProvisioningError(
                f"Executable {candidate} does not exist or is not executable."
            )
        resolved = self._which(raw)
        if not resolved:
            raise ProvisioningError(f"Executable '{raw}' was not found on PATH.")
        return Path(resolved)

    def install_unit(
        self,
        name: str,
        exec_path: str | Path,
        working_dir: Path,
        account: str,
        *,
        args: Sequence[str] = (),
        config_dir: Path | None = None,
        data_dir: Path | None = None,
        description: str = "PeerTube daemon",
    ) -> ServiceUnit:
        """Render the unit file; the executable must resolve now, not at start time."""
        unit = ServiceUnit(
            name=name,
            exec_path=self.resolve_exec_path(exec_path),
            working_dir=working_dir,
            account=account,
            args=tuple(args),
        )
        context: dict[str, object] = {
            "name": name,
            "description": description,
            "user": account,
            "group": account,
            "exec_start": unit.exec_start,
            "working_dir": str(working_dir),
            "config_dir": str(config_dir or working_dir / "config"),
            "data_dir": str(data_dir or working_dir),
            "restart_sec": self._restart_sec,
        }
        try:
            changed = self._manager.install_unit(name, context)
        except (SystemdError, TemplateError, OSError) as exc:
            raise ProvisioningError(f"Could not install unit {name}: {exc}") from exc
        return replace(unit, file_changed=changed)

    def enable_and_start(self, unit: ServiceUnit, *, restart: bool = False) -> ServiceUnit:
        """Enable the unit at boot and start it now.

        A unit that was already running is restarted when its unit file
        changed or *restart* is set.
        """
        try:
            was_active = self._manager.is_active(unit.name)
            self._manager.enable_now(unit.name)
            if was_active and (restart or unit.file_changed):
                self._manager.restart(unit.name)
        except SystemdError as exc:
            raise ProvisioningError(f"Could not start {unit.name}: {exc}") from exc
        if not self._manager.is_active(unit.name):
            raise ProvisioningError(
                f"{unit.name} did not stay running; inspect it with journalctl -u {unit.name}."
            )
        return replace(unit, desired_state=UnitState.ENABLED_RUNNING)

    def stop_and_disable(self, name: str) -> None:
        """Stop the unit and remove it from boot targets."""
        if self._manager.is_active(name):
            self._manager.stop(name)
        self._manager.disable(name)

    def remove_unit(self, name: str) -> bool:
        """Delete the unit file; return False when it was already absent."""
        if not self._manager.unit_path(name).exists():
            return False
        self._manager.remove(name)
        return True


__all__ = ["ServiceLifecycleManager", "ServiceUnit", "UnitState"]
