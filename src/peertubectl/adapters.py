"""Narrow interfaces for every host collaborator the orchestrators drive.

Concrete implementations live in :mod:`peertubectl.providers` and
:mod:`peertubectl.bootstrap`; the test suite substitutes in-memory fakes.
"""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .bootstrap.service_accounts import AccountStatus, ServiceAccountSpec
from .providers.certbot import Certificate


class PackageManager(Protocol):
    """apt/dpkg operations."""

    def is_installed(self, package: str) -> bool:
        """Return True when *package* is installed."""

    def update(self) -> None:
        """Refresh package indexes."""

    def install(self, packages: Sequence[str]) -> None:
        """Install *packages* non-interactively."""

    def purge(self, packages: Sequence[str]) -> None:
        """Remove *packages* together with their configuration."""

    def force_remove(self, package: str) -> None:
        """Remove *package* ignoring reverse dependencies."""

    def autoremove(self) -> None:
        """Drop packages that are no longer required."""

    def add_source(self, setup_url: str) -> None:
        """Run a vendor repository setup script fetched from *setup_url*."""


class DatabaseAdmin(Protocol):
    """PostgreSQL administration as the database superuser."""

    def role_exists(self, role: str) -> bool:
        """Return True when *role* exists."""

    def database_exists(self, database: str) -> bool:
        """Return True when *database* exists."""

    def create_role(self, role: str, password: str) -> None:
        """Create a login role."""

    def set_role_password(self, role: str, password: str) -> None:
        """Reset the password of an existing role."""

    def create_database(self, database: str, owner: str) -> None:
        """Create *database* owned by *owner*."""

    def create_extension(self, database: str, extension: str) -> None:
        """Enable *extension* inside *database*."""

    def drop_database(self, database: str) -> None:
        """Drop *database* if it exists."""

    def drop_role(self, role: str) -> None:
        """Drop *role* if it exists."""


class ProxyController(Protocol):
    """nginx site files, validation and reload."""

    def site_path(self, domain: str) -> Path:
        """Return the site file path in sites-available."""

    def enabled_path(self, domain: str) -> Path:
        """Return the symlink path in sites-enabled."""

    def site_exists(self, domain: str) -> bool:
        """Return True when the site file exists."""

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is linked into sites-enabled."""

    def test_candidate(self, content: str) -> None:
        """Validate *content* in isolation; raise ``NginxError`` if invalid."""

    def write_site(self, domain: str, content: str) -> Path:
        """Replace the site file for *domain* wholesale."""

    def discard_site(self, domain: str) -> None:
        """Delete the site file, keeping any sites-enabled link."""

    def enable(self, domain: str) -> bool:
        """Link the site into sites-enabled; return True when a link was created."""

    def disable(self, domain: str) -> None:
        """Remove the sites-enabled link."""

    def remove(self, domain: str) -> None:
        """Remove both the site file and the link."""

    def test_config(self) -> None:
        """Validate the live configuration tree; raise ``NginxError`` if invalid."""

    def reload(self) -> None:
        """Reload the running nginx process."""


class CertificateAuthority(Protocol):
    """ACME client operations keyed by domain."""

    def certificate(self, domain: str) -> Certificate:
        """Return the certificate record for *domain* (issued or absent)."""

    def issue_http01(
        self, domain: str, email: str, webroot: Path, *, force: bool = False
    ) -> Certificate:
        """Obtain a certificate through HTTP-01; *force* replaces an existing lineage."""

    def ensure_tls_parameters(self, options_file: Path, dhparam_file: Path) -> list[Path]:
        """Create the CA-recommended TLS parameter files when missing."""

    def delete(self, domain: str) -> None:
        """Revoke/delete the certificate lineage named after *domain*."""


class ServiceManager(Protocol):
    """systemd unit management."""

    def unit_path(self, name: str) -> Path:
        """Return the unit file path for service *name*."""

    def install_unit(self, name: str, context: dict[str, object]) -> bool:
        """Render the unit file and reload the daemon."""

    def enable_now(self, name: str) -> None:
        """Enable the unit and start it immediately."""

    def restart(self, name: str) -> None:
        """Restart the unit."""

    def stop(self, name: str) -> None:
        """Stop the unit."""

    def disable(self, name: str) -> None:
        """Disable the unit."""

    def is_active(self, name: str) -> bool:
        """Return True when the unit is running."""

    def is_enabled(self, name: str) -> bool:
        """Return True when the unit starts at boot."""

    def remove(self, name: str) -> None:
        """Delete the unit file and reload the daemon."""

    def ensure_running(self, name: str) -> None:
        """Enable and start an OS service (postgresql, redis) if it is not running."""


class AccountManager(Protocol):
    """System account database and ownership changes."""

    def lookup(self, name: str) -> AccountStatus:
        """Return the current state of account *name*."""

    def create(self, spec: ServiceAccountSpec) -> None:
        """Create the account described by *spec*."""

    def set_password(self, name: str, password: str) -> None:
        """Set the login password for *name*."""

    def chown(self, path: Path, owner: str, *, recursive: bool = False) -> None:
        """Give *path* (and optionally its tree) to *owner*."""

    def owner_of(self, path: Path) -> str | None:
        """Return the owning user name of *path*, or None when it is missing."""

    def delete(self, name: str) -> None:
        """Delete account *name* together with its home directory."""


__all__ = [
    "AccountManager",
    "CertificateAuthority",
    "DatabaseAdmin",
    "PackageManager",
    "ProxyController",
    "ServiceManager",
]
