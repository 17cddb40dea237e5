"""Installer utilities for PeerTube release bundles."""
from __future__ import annotations

import os
import shutil
import stat
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from ..commands import CommandError, Runner, as_user, run_command
from ..network import HTTP_ERRORS, NetworkError, RetryPolicy, download, with_retries


class VersionInstallError(RuntimeError):
    """Raised when installing a PeerTube version fails."""


@dataclass(frozen=True, slots=True)
class VersionInstallResult:
    """Outcome of unpacking a release bundle."""

    version: str
    path: Path
    changed: bool


@dataclass(slots=True)
class VersionInstaller:
    """Download, unpack and activate PeerTube release bundles.

    Every version lives in ``<install_root>/peertube-v<version>``; the active
    one is selected by a symlink that is swapped atomically.
    """

    install_root: Path
    download_url: str
    repo: str = "Chocobozzz/PeerTube"
    yarn_bin: str = "yarn"
    runner: Runner = run_command
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def version_dir(self, version: str) -> Path:
        """Return the directory holding *version*."""
        return self.install_root / f"peertube-v{version}"

    def archive_path(self, version: str) -> Path:
        """Return where the downloaded zip for *version* is kept."""
        return self.install_root / f"peertube-v{version}.zip"

    def install(self, version: str) -> VersionInstallResult:
        """Download and unpack *version*; skip both when it is already unpacked."""
        normalized_version = version.strip()
        if not normalized_version:
            raise VersionInstallError("Version identifier must be a non-empty string.")

        target_dir = self.version_dir(normalized_version)
        if target_dir.is_dir():
            return VersionInstallResult(
                version=normalized_version, path=target_dir, changed=False
            )

        self.install_root.mkdir(parents=True, exist_ok=True)
        archive = self._fetch(normalized_version)

        staging_dir = Path(
            tempfile.mkdtemp(
                prefix=f".peertubectl-install-{normalized_version}-",
                dir=str(self.install_root),
            )
        )
        staging_to_cleanup: Path | None = staging_dir
        try:
            _extract_zip(archive, staging_dir)
            unpacked = staging_dir / target_dir.name
            if not unpacked.is_dir():
                raise VersionInstallError(
                    f"{archive.name} does not contain the expected {target_dir.name}/ directory."
                )
            shutil.move(str(unpacked), str(target_dir))
        finally:
            if staging_to_cleanup and staging_to_cleanup.exists():
                shutil.rmtree(staging_to_cleanup, ignore_errors=True)
        return VersionInstallResult(version=normalized_version, path=target_dir, changed=True)

    def dependencies_installed(self, path: Path) -> bool:
        """Return True when production node modules are present in *path*."""
        return (path / "node_modules").is_dir()

    def install_dependencies(self, path: Path, user: str) -> None:
        """Run ``yarn install --production`` in *path* as *user*."""
        command = as_user(
            user, [self.yarn_bin, "install", "--production", "--pure-lockfile"]
        )
        try:
            self._run_install_command(path, command)
        except CommandError as exc:
            raise VersionInstallError(f"yarn install failed in {path}: {exc}") from exc

    def activate(self, path: Path, link: Path) -> bool:
        """Point *link* at *path*; return False when it already does."""
        if link.is_symlink() and Path(os.readlink(link)) == path:
            return False
        if link.exists() and not link.is_symlink():
            raise VersionInstallError(f"{link} exists and is not a symlink.")
        temp_link = link.with_name(f".{link.name}.tmp")
        temp_link.unlink(missing_ok=True)
        temp_link.symlink_to(path)
        os.replace(temp_link, link)
        return True

    # ------------------------------------------------------------------
    def _fetch(self, version: str) -> Path:
        archive = self.archive_path(version)
        if archive.exists() and zipfile.is_zipfile(archive):
            return archive
        url = self.download_url.format(repo=self.repo, version=version)
        try:
            return with_retries(
                lambda: download(url, archive, timeout=self.retry.timeout),
                policy=self.retry,
                description=f"download {url}",
                retry_on=HTTP_ERRORS,
            )
        except NetworkError as exc:
            raise VersionInstallError(str(exc)) from exc

    def _run_install_command(self, cwd: Path, command: list[str]) -> None:
        """Execute the dependency install command (isolated for testing)."""
        self.runner(command, cwd=cwd, timeout=3600)


def _extract_zip(archive: Path, destination: Path) -> None:
    """Extract *archive* into *destination*, keeping executable bits."""
    root = destination.resolve()
    try:
        with zipfile.ZipFile(archive) as bundle:
            for member in bundle.infolist():
                target = (destination / member.filename).resolve()
                if root != target and root not in target.parents:
                    raise VersionInstallError(
                        f"{archive.name} contains an unsafe path: {member.filename}"
                    )
                bundle.extract(member, destination)
                mode = (member.external_attr >> 16) & 0o777
                if mode and not member.is_dir():
                    target.chmod(mode | stat.S_IRUSR)
    except zipfile.BadZipFile as exc:
        raise VersionInstallError(f"{archive} is not a valid zip archive: {exc}") from exc


__all__ = ["VersionInstallError", "VersionInstallResult", "VersionInstaller"]
