"""apt/dpkg provider for OS packages and vendor repositories."""
from __future__ import annotations

import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..commands import CommandError, Runner, run_command
from ..network import HTTP_ERRORS, NetworkError, RetryPolicy, download, with_retries


class PackageManagerError(RuntimeError):
    """Raised when apt-get or dpkg fails."""


NONINTERACTIVE_ENV = {
    "DEBIAN_FRONTEND": "noninteractive",
    "PATH": "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
}


@dataclass(slots=True)
class AptProvider:
    """Install, purge and inspect Debian packages."""

    runner: Runner = run_command
    apt_bin: str = "apt-get"
    dpkg_bin: str = "dpkg"
    dpkg_query_bin: str = "dpkg-query"
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def is_installed(self, package: str) -> bool:
        """Return True when dpkg reports *package* as fully installed."""
        result = self.runner(
            [self.dpkg_query_bin, "-W", "-f=${Status}", package],
            check=False,
        )
        return result.returncode == 0 and "install ok installed" in (result.stdout or "")

    def update(self) -> None:
        """Refresh the package indexes."""
        self._apt(["update"])

    def install(self, packages: Sequence[str]) -> None:
        """Install *packages* without prompting."""
        if packages:
            self._apt(["install", "-y", "--no-install-recommends", *packages])

    def purge(self, packages: Sequence[str]) -> None:
        """Remove *packages* and their configuration files."""
        if packages:
            self._apt(["purge", "-y", *packages])

    def force_remove(self, package: str) -> None:
        """Remove *package* even when other packages depend on it."""
        self._run([self.dpkg_bin, "--remove", "--force-depends", package])

    def autoremove(self) -> None:
        """Remove packages that are no longer needed."""
        self._apt(["autoremove", "-y"])

    def add_source(self, setup_url: str) -> None:
        """Download and run a vendor repository setup script."""
        with tempfile.TemporaryDirectory(prefix="peertubectl-apt-") as workdir:
            script = Path(workdir) / "setup.sh"
            try:
                with_retries(
                    lambda: download(setup_url, script, timeout=self.retry.timeout),
                    policy=self.retry,
                    description=f"download {setup_url}",
                    retry_on=HTTP_ERRORS,
                )
            except NetworkError as exc:
                raise PackageManagerError(str(exc)) from exc
            self._run(["bash", str(script)])

    # ------------------------------------------------------------------
    def _apt(self, args: Sequence[str]) -> None:
        self._run([self.apt_bin, *args])

    def _run(self, command: Sequence[str]) -> None:
        try:
            self.runner(command, env=NONINTERACTIVE_ENV)
        except CommandError as exc:
            raise PackageManagerError(str(exc)) from exc


__all__ = ["AptProvider", "PackageManagerError"]
