"""Idempotent provisioning of the host resources PeerTube depends on.

Every ``ensure_*`` operation inspects the host first and only acts on what is
missing, returning a :class:`ProvisionedResource`. Conflicts that cannot be
remediated raise :class:`~peertubectl.errors.ResourceConflictError`; any
other failed step raises :class:`~peertubectl.errors.ProvisioningError`.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .adapters import AccountManager, DatabaseAdmin, PackageManager, ServiceManager
from .bootstrap.filesystem import DirectorySpec, apply_directory_plan, plan_directories
from .bootstrap.service_accounts import ServiceAccountSpec, plan_service_account
from .commands import CommandError
from .errors import ExternalLookupFailure, ProvisioningError, ResourceConflictError
from .node_runtime import NodeRuntimeError, NodeRuntimeManager
from .providers.database import DatabaseError
from .providers.packages import PackageManagerError
from .providers.release_registry import (
    GitHubReleaseRegistry,
    ReleaseLookupError,
    normalize_version,
)
from .providers.systemd import SystemdError
from .providers.version_installer import VersionInstaller, VersionInstallError

LOGGER = logging.getLogger(__name__)


class ResourceState(str, Enum):
    """Observed state of a provisioned resource."""

    ABSENT = "absent"
    PRESENT_EXPECTED = "present-expected"
    PRESENT_CONFLICTING = "present-conflicting"


@dataclass(frozen=True, slots=True)
class ProvisionedResource:
    """Outcome of one ``ensure_*`` operation."""

    name: str
    state: ResourceState
    changed: bool = False
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedVersion:
    """A release version and where it came from (registry, cache or manual)."""

    version: str
    source: str
    warning: str | None = None


@dataclass(slots=True)
class ResourceProvisioner:
    """Converge OS packages, runtime, account, database, directories and bundle."""

    packages: PackageManager
    database: DatabaseAdmin
    services: ServiceManager
    accounts: AccountManager
    runtime: NodeRuntimeManager
    releases: GitHubReleaseRegistry
    installer: VersionInstaller
    baseline_packages: Sequence[str] = ()
    system_services: Sequence[str] = ()

    def ensure_package_baseline(self) -> ProvisionedResource:
        """Install the missing baseline packages and start the system services."""
        try:
            missing = [
                name for name in self.baseline_packages if not self.packages.is_installed(name)
            ]
            if missing:
                self.packages.update()
                self.packages.install(missing)
            for service in self.system_services:
                self.services.ensure_running(service)
        except (CommandError, PackageManagerError, SystemdError) as exc:
            raise ProvisioningError(f"Package baseline failed: {exc}") from exc
        detail = f"installed {', '.join(missing)}" if missing else "all packages present"
        return ProvisionedResource(
            name="package-baseline",
            state=ResourceState.PRESENT_EXPECTED,
            changed=bool(missing),
            detail=detail,
        )

    def ensure_runtime_major_version(self, major: int) -> ProvisionedResource:
        """Converge on Node.js *major*; a surviving conflict is fatal."""
        try:
            result = self.runtime.ensure_major(major)
        except NodeRuntimeError as exc:
            raise ProvisioningError(str(exc)) from exc
        detail = f"node {result.version}"
        if result.removed_conflicts:
            detail += f" (removed {', '.join(result.removed_conflicts)})"
        return ProvisionedResource(
            name="node-runtime",
            state=ResourceState.PRESENT_EXPECTED,
            changed=result.changed,
            detail=detail,
        )

    def ensure_system_account(
        self, name: str, password: str, *, home: Path
    ) -> ProvisionedResource:
        """Create the account when absent; otherwise only repair its home directory."""
        spec = ServiceAccountSpec(name=name, home=home)
        status = self.accounts.lookup(name)
        plan = plan_service_account(
            spec,
            status,
            home_exists=home.is_dir(),
            home_owner=self.accounts.owner_of(home),
        )
        try:
            for action in plan.actions:
                LOGGER.debug("account action: %s", action.description)
                if action.kind == "create-user":
                    self.accounts.create(spec)
                    self.accounts.set_password(name, password)
                elif action.kind == "ensure-home":
                    home.mkdir(parents=True, exist_ok=True)
                elif action.kind == "chown-home":
                    self.accounts.chown(home, name)
        except (CommandError, OSError) as exc:
            raise ProvisioningError(
                f"Service account '{name}' could not be prepared: {exc}"
            ) from exc
        return ProvisionedResource(
            name=f"account:{name}",
            state=(
                ResourceState.PRESENT_CONFLICTING if plan.warnings else ResourceState.PRESENT_EXPECTED
            ),
            changed=bool(plan.actions),
            detail="; ".join(plan.warnings) or None,
        )

    def ensure_database_role_and_schema(
        self,
        name: str,
        password: str,
        dbname: str,
        extensions: Sequence[str],
    ) -> ProvisionedResource:
        """Create the role, database and extensions; "already exists" is success."""
        changed = False
        try:
            if self.database.role_exists(name):
                self.database.set_role_password(name, password)
            else:
                changed |= self._create_tolerant(lambda: self.database.create_role(name, password))
            if not self.database.database_exists(dbname):
                changed |= self._create_tolerant(
                    lambda: self.database.create_database(dbname, name)
                )
            for extension in extensions:
                self.database.create_extension(dbname, extension)
        except DatabaseError as exc:
            raise ProvisioningError(f"Database provisioning failed: {exc}") from exc
        return ProvisionedResource(
            name=f"database:{dbname}",
            state=ResourceState.PRESENT_EXPECTED,
            changed=changed,
            detail=f"role {name}, extensions {', '.join(extensions) or 'none'}",
        )

    def ensure_filesystem_layout(
        self, root: Path, subdirs: Sequence[str], *, owner: str
    ) -> ProvisionedResource:
        """Create *root* and its *subdirs* owned by *owner*."""
        specs = [DirectorySpec(path=root, owner=owner)]
        specs.extend(DirectorySpec(path=root / sub, owner=owner) for sub in subdirs)
        plan = plan_directories(specs, owner_of=self.accounts.owner_of)
        if plan.warnings:
            raise ResourceConflictError("; ".join(plan.warnings))
        try:
            apply_directory_plan(
                plan, chown=lambda path, user: self.accounts.chown(path, user)
            )
        except (CommandError, OSError) as exc:
            raise ProvisioningError(f"Directory layout under {root} failed: {exc}") from exc
        return ProvisionedResource(
            name=f"filesystem:{root}",
            state=ResourceState.PRESENT_EXPECTED,
            changed=bool(plan.actions),
        )

    def resolve_version(self, manual_version: str | None = None) -> ResolvedVersion:
        """Return the latest release, else the cached lookup, else *manual_version*."""
        try:
            return ResolvedVersion(version=self.releases.latest(), source="registry")
        except ReleaseLookupError as exc:
            lookup_error = str(exc)
        LOGGER.debug("Release lookup failed: %s", lookup_error)

        cached = self.releases.cached()
        if cached is not None:
            return ResolvedVersion(
                version=cached,
                source="cache",
                warning=f"Release lookup failed ({lookup_error}); using cached {cached}.",
            )
        if manual_version:
            return self.manual_version(manual_version, reason=lookup_error)
        raise ExternalLookupFailure(
            f"Could not determine the PeerTube version: {lookup_error}. "
            "Re-run with --version-override to supply one."
        )

    def manual_version(self, raw: str, *, reason: str) -> ResolvedVersion:
        """Validate an operator-supplied version used after a failed lookup."""
        try:
            version = normalize_version(raw)
        except ReleaseLookupError as exc:
            raise ExternalLookupFailure(str(exc)) from exc
        return ResolvedVersion(
            version=version,
            source="manual",
            warning=f"Release lookup failed ({reason}); using manual {version}.",
        )

    def fetch_and_install_bundle(
        self, version: str, *, owner: str, link: Path
    ) -> ProvisionedResource:
        """Unpack *version*, install its dependencies and repoint the current link."""
        try:
            result = self.installer.install(version)
            if result.changed:
                self.accounts.chown(result.path, owner, recursive=True)
            installed_dependencies = False
            if not self.installer.dependencies_installed(result.path):
                self.installer.install_dependencies(result.path, owner)
                installed_dependencies = True
            activated = self.installer.activate(result.path, link)
        except (VersionInstallError, CommandError) as exc:
            raise ProvisioningError(f"PeerTube {version} could not be installed: {exc}") from exc
        return ProvisionedResource(
            name=f"bundle:{result.version}",
            state=ResourceState.PRESENT_EXPECTED,
            changed=result.changed or installed_dependencies or activated,
            detail=str(result.path),
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _create_tolerant(action: Callable[[], None]) -> bool:
        try:
            action()
        except DatabaseError as exc:
            if exc.already_exists:
                return False
            raise
        return True


__all__ = [
    "ProvisionedResource",
    "ResolvedVersion",
    "ResourceProvisioner",
    "ResourceState",
]
