"""Inspecting, planning and applying the PeerTube service account."""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..commands import Runner, run_command


@dataclass(slots=True)
class ServiceAccountSpec:
    """Desired attributes for the application's runtime account."""

    name: str
    home: Path
    shell: str = "/bin/bash"


@dataclass(slots=True)
class ServiceAccountStatus:
    """Current state of the account on the host."""

    user_exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    primary_group: str | None = None


AccountStatus = ServiceAccountStatus


@dataclass(slots=True)
class ServiceAccountAction:
    """Single remediation step required to satisfy the desired state."""

    kind: Literal["create-user", "ensure-home", "chown-home"]
    description: str
    path: Path | None = None


@dataclass(slots=True)
class ServiceAccountPlan:
    """Aggregated actions and warnings required to satisfy the spec."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def inspect_service_account(name: str) -> ServiceAccountStatus:
    """Return the current status for *name* from the passwd/group databases."""
    try:
        pw_entry = pwd.getpwnam(name)
    except KeyError:
        return ServiceAccountStatus(user_exists=False)
    try:
        primary_group: str | None = grp.getgrgid(pw_entry.pw_gid).gr_name
    except KeyError:
        primary_group = None
    return ServiceAccountStatus(
        user_exists=True,
        uid=pw_entry.pw_uid,
        gid=pw_entry.pw_gid,
        home=Path(pw_entry.pw_dir),
        shell=pw_entry.pw_shell,
        primary_group=primary_group,
    )


def plan_service_account(
    spec: ServiceAccountSpec,
    status: ServiceAccountStatus,
    *,
    home_exists: bool,
    home_owner: str | None,
) -> ServiceAccountPlan:
    """Return a plan describing how to satisfy *spec* on the current host.

    An existing account is never recreated: only its home directory and the
    ownership of that directory are repaired.
    """
    plan = ServiceAccountPlan(spec=spec, status=status)

    if not status.user_exists:
        plan.actions.append(
            ServiceAccountAction(
                kind="create-user",
                description=f"Create system user '{spec.name}' with home {spec.home}.",
                path=spec.home,
            )
        )
        return plan

    if not home_exists:
        plan.actions.append(
            ServiceAccountAction(
                kind="ensure-home",
                description=f"Create missing home directory {spec.home}.",
                path=spec.home,
            )
        )
    if not home_exists or home_owner != spec.name:
        plan.actions.append(
            ServiceAccountAction(
                kind="chown-home",
                description=f"Give {spec.home} to '{spec.name}'.",
                path=spec.home,
            )
        )
    if status.home is not None and status.home != spec.home:
        plan.warnings.append(
            f"User '{spec.name}' home '{status.home}' differs from desired '{spec.home}'."
        )
    if status.shell and status.shell != spec.shell:
        plan.warnings.append(
            f"User '{spec.name}' shell '{status.shell}' differs from desired '{spec.shell}'."
        )
    return plan


@dataclass(slots=True)
class SystemAccounts:
    """Account operations backed by shadow-utils."""

    runner: Runner = run_command

    def lookup(self, name: str) -> ServiceAccountStatus:
        """Return the current state of account *name*."""
        return inspect_service_account(name)

    def create(self, spec: ServiceAccountSpec) -> None:
        """Create the account with its home directory."""
        self.runner(["useradd", "-m", "-d", str(spec.home), "-s", spec.shell, spec.name])

    def set_password(self, name: str, password: str) -> None:
        """Set the login password through ``chpasswd`` (never on argv)."""
        self.runner(["chpasswd"], input_text=f"{name}:{password}\n")

    def chown(self, path: Path, owner: str, *, recursive: bool = False) -> None:
        """Give *path* to *owner* and the owner's login group."""
        command = ["chown"]
        if recursive:
            command.append("-R")
        command.extend([f"{owner}:", str(path)])
        self.runner(command)

    def owner_of(self, path: Path) -> str | None:
        """Return the owning user name of *path*."""
        try:
            uid = path.stat().st_uid
        except FileNotFoundError:
            return None
        try:
            return pwd.getpwuid(uid).pw_name
        except KeyError:
            return str(uid)

    def delete(self, name: str) -> None:
        """Delete the account and its home directory."""
        self.runner(["userdel", "-r", name])


__all__ = [
    "AccountStatus",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "SystemAccounts",
    "inspect_service_account",
    "plan_service_account",
]
