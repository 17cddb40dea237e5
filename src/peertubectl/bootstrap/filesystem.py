"""Planning helpers for the application directory tree."""
from __future__ import annotations

import stat
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


@dataclass(slots=True)
class DirectorySpec:
    """Desired state for a single directory."""

    path: Path
    mode: int = 0o755
    owner: str | None = None


@dataclass(slots=True)
class DirectoryAction:
    """One change required to satisfy a :class:`DirectorySpec`."""

    kind: Literal["mkdir", "chmod", "chown"]
    spec: DirectorySpec
    description: str


@dataclass(slots=True)
class DirectoryPlan:
    """Actions and warnings computed for a set of directories."""

    actions: list[DirectoryAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


OwnerLookup = Callable[[Path], str | None]
Chown = Callable[[Path, str], None]


def plan_directories(
    specs: Iterable[DirectorySpec],
    *,
    owner_of: OwnerLookup | None = None,
) -> DirectoryPlan:
    """Compare *specs* with the filesystem and return the required actions."""
    plan = DirectoryPlan()
    for spec in specs:
        path = spec.path
        if path.exists() and not path.is_dir():
            plan.warnings.append(f"{path} exists but is not a directory.")
            continue
        if not path.exists():
            plan.actions.append(
                DirectoryAction(kind="mkdir", spec=spec, description=f"Create {path}.")
            )
            if spec.owner is not None:
                plan.actions.append(
                    DirectoryAction(
                        kind="chown", spec=spec, description=f"Give {path} to {spec.owner}."
                    )
                )
            continue
        current_mode = stat.S_IMODE(path.stat().st_mode)
        if current_mode != spec.mode:
            plan.actions.append(
                DirectoryAction(
                    kind="chmod",
                    spec=spec,
                    description=f"Change {path} mode {current_mode:04o} -> {spec.mode:04o}.",
                )
            )
        if spec.owner is not None and owner_of is not None and owner_of(path) != spec.owner:
            plan.actions.append(
                DirectoryAction(
                    kind="chown", spec=spec, description=f"Give {path} to {spec.owner}."
                )
            )
    return plan


def apply_directory_plan(
    plan: DirectoryPlan,
    *,
    chown: Chown | None = None,
    dry_run: bool = False,
) -> None:
    """Execute the actions in *plan*."""
    if dry_run:
        return
    for action in plan.actions:
        path = action.spec.path
        if action.kind == "mkdir":
            path.mkdir(parents=True, exist_ok=True)
            path.chmod(action.spec.mode)
        elif action.kind == "chmod":
            path.chmod(action.spec.mode)
        elif action.kind == "chown" and chown is not None and action.spec.owner is not None:
            chown(path, action.spec.owner)


__all__ = [
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "apply_directory_plan",
    "plan_directories",
]
