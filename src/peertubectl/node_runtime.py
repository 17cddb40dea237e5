"""Helpers for enforcing the required Node.js major version from NodeSource."""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

from .adapters import PackageManager
from .commands import CommandError, Runner, run_command
from .errors import ResourceConflictError
from .providers.packages import PackageManagerError

LOGGER = logging.getLogger(__name__)

NODE_PACKAGE = "nodejs"


class NodeRuntimeError(RuntimeError):
    """Raised when Node runtime management fails."""


@dataclass(slots=True)
class NodeVersionInfo:
    """Parsed Node version details."""

    raw: str
    version: str
    major: int
    minor: int
    patch: int


@dataclass(slots=True)
class NodeEnsureResult:
    """Outcome of :meth:`NodeRuntimeManager.ensure_major`."""

    version: str
    major: int
    installation_performed: bool
    removed_conflicts: list[str] = field(default_factory=list)
    yarn_installed: bool = False

    @property
    def changed(self) -> bool:
        """Return True when anything on the host was modified."""
        return self.installation_performed or bool(self.removed_conflicts) or self.yarn_installed


@dataclass(slots=True)
class NodeRuntimeManager:
    """Converge the host on one Node.js major plus a global yarn."""

    packages: PackageManager
    setup_url: str = "https://deb.nodesource.com/setup_{major}.x"
    conflicting_packages: Sequence[str] = ("libnode-dev",)
    runner: Runner = run_command
    node_bin: str = "node"
    npm_bin: str = "npm"
    yarn_bin: str = "yarn"

    def detect_version(self) -> NodeVersionInfo | None:
        """Return the currently available Node version."""
        try:
            result = subprocess.run(  # noqa: S603,S607
                [self.node_bin, "--version"],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            return None
        output = (result.stdout or result.stderr or "").strip()
        if result.returncode != 0 or not output:
            return None
        version = output.lstrip("v").strip()
        major, minor, patch = _parse_semver(version)
        return NodeVersionInfo(raw=output, version=version, major=major, minor=minor, patch=patch)

    def yarn_available(self) -> bool:
        """Return True when the yarn executable is on PATH."""
        return shutil.which(self.yarn_bin) is not None

    def ensure_major(self, major: int) -> NodeEnsureResult:
        """Ensure Node.js *major* from NodeSource and a global yarn are installed.

        Conflicting distribution packages are purged first; when the purge
        does not converge they are force-removed once, and any survivor is a
        fatal :class:`ResourceConflictError`.
        """
        if major <= 0:
            raise NodeRuntimeError("Node major version must be greater than zero.")

        info = self.detect_version()
        if info is not None and info.major == major and self.yarn_available():
            return NodeEnsureResult(
                version=info.version, major=major, installation_performed=False
            )

        conflicts = [name for name in self.conflicting_packages if self.packages.is_installed(name)]
        if info is not None and info.major != major and self.packages.is_installed(NODE_PACKAGE):
            conflicts.append(NODE_PACKAGE)
        if conflicts:
            self._remove_conflicts(conflicts)

        installation_performed = False
        if info is None or info.major != major:
            try:
                self.packages.add_source(self.setup_url.format(major=major))
                self.packages.install([NODE_PACKAGE])
            except PackageManagerError as exc:
                raise NodeRuntimeError(f"Failed to install Node.js {major}: {exc}") from exc
            installation_performed = True
            info = self.detect_version()
            if info is None or info.major != major:
                found = info.version if info is not None else "none"
                raise NodeRuntimeError(
                    f"Installed {NODE_PACKAGE} but node reports version {found}, expected {major}.x."
                )

        yarn_installed = False
        if not self.yarn_available():
            try:
                self.runner([self.npm_bin, "install", "--global", self.yarn_bin])
            except CommandError as exc:
                raise NodeRuntimeError(f"Failed to install {self.yarn_bin}: {exc}") from exc
            yarn_installed = True

        LOGGER.debug(
            "Node ensure completed: version=%s installed=%s removed=%s",
            info.version,
            installation_performed,
            conflicts,
        )
        return NodeEnsureResult(
            version=info.version,
            major=major,
            installation_performed=installation_performed,
            removed_conflicts=conflicts,
            yarn_installed=yarn_installed,
        )

    # ------------------------------------------------------------------
    def _remove_conflicts(self, conflicts: list[str]) -> None:
        try:
            self.packages.purge(conflicts)
        except PackageManagerError as exc:
            LOGGER.debug("Purge of %s failed, forcing removal: %s", conflicts, exc)

        remaining = [name for name in conflicts if self.packages.is_installed(name)]
        for name in remaining:
            try:
                self.packages.force_remove(name)
            except PackageManagerError as exc:
                LOGGER.debug("Forced removal of %s failed: %s", name, exc)

        survivors = [name for name in remaining if self.packages.is_installed(name)]
        if survivors:
            joined = ", ".join(survivors)
            raise ResourceConflictError(
                f"Conflicting package(s) {joined} are still installed after forced removal. "
                f"Remove them manually (dpkg --remove --force-depends {joined}) and re-run."
            )
        try:
            self.packages.autoremove()
        except PackageManagerError as exc:
            purged = ", ".join(conflicts)
            raise NodeRuntimeError(f"Failed to autoremove after purging {purged}: {exc}") from exc


def _parse_semver(value: str) -> tuple[int, int, int]:
    parts = [segment for segment in value.split(".") if segment]
    numbers: list[int] = []
    for segment in parts[:3]:
        try:
            numbers.append(int(segment))
        except ValueError:
            numbers.append(0)
    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


__all__ = [
    "NodeEnsureResult",
    "NodeRuntimeError",
    "NodeRuntimeManager",
    "NodeVersionInfo",
]
