"""Host bootstrap helpers: service account and directory tree."""
from __future__ import annotations

from .filesystem import (
    DirectoryAction,
    DirectoryPlan,
    DirectorySpec,
    apply_directory_plan,
    plan_directories,
)
from .service_accounts import (
    AccountStatus,
    ServiceAccountAction,
    ServiceAccountPlan,
    ServiceAccountSpec,
    ServiceAccountStatus,
    SystemAccounts,
    inspect_service_account,
    plan_service_account,
)

__all__ = [
    # service account helpers
    "AccountStatus",
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "SystemAccounts",
    "inspect_service_account",
    "plan_service_account",
    # filesystem helpers
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "apply_directory_plan",
    "plan_directories",
]
