"""Concrete host adapters for peertubectl."""
from __future__ import annotations

from .certbot import CertbotError, CertbotProvider, Certificate, CertificateState
from .database import DatabaseError, PostgresAdmin
from .nginx import NginxError, NginxProvider
from .packages import AptProvider, PackageManagerError
from .release_registry import GitHubReleaseRegistry, ReleaseLookupError, normalize_version
from .systemd import SystemdError, SystemdProvider
from .version_installer import VersionInstaller, VersionInstallError, VersionInstallResult

__all__ = [
    "AptProvider",
    "CertbotError",
    "CertbotProvider",
    "Certificate",
    "CertificateState",
    "DatabaseError",
    "GitHubReleaseRegistry",
    "NginxError",
    "NginxProvider",
    "PackageManagerError",
    "PostgresAdmin",
    "ReleaseLookupError",
    "SystemdError",
    "SystemdProvider",
    "VersionInstallError",
    "VersionInstallResult",
    "VersionInstaller",
    "normalize_version",
]
