"""Best-effort removal of everything an install created for a domain."""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .adapters import AccountManager, CertificateAuthority, DatabaseAdmin, ProxyController
from .commands import CommandError
from .console import Reporter
from .context import UNINSTALL_CONFIRMATION, UninstallRequest
from .errors import BestEffortFailure, PeerTubeCtlError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers.certbot import CertbotError
from .providers.database import DatabaseError
from .providers.nginx import NginxError
from .providers.systemd import SystemdError
from .service import ServiceLifecycleManager

STEP_FAILURES: tuple[type[BaseException], ...] = (
    PeerTubeCtlError,
    CommandError,
    CertbotError,
    DatabaseError,
    NginxError,
    SystemdError,
    OSError,
)

REMOVED = "removed"
ABSENT = "absent"
WARNING = "warning"


@dataclass(slots=True)
class TeardownStep:
    """Result of one teardown step."""

    name: str
    status: str
    detail: str


@dataclass(slots=True)
class TeardownReport:
    """Per-step outcome of an uninstall run."""

    domain: str
    confirmed: bool
    steps: list[TeardownStep] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        """Return the detail of every step that did not remove something."""
        return [f"{step.name}: {step.detail}" for step in self.steps if step.status != REMOVED]

    @property
    def exit_code(self) -> ExitCode:
        """Teardown never fails once confirmed; warnings still exit 0."""
        return ExitCode.OK


@dataclass(slots=True)
class TeardownTargets:
    """Names and paths removed by teardown."""

    service_name: str
    app_root: Path
    service_user: str
    db_name: str
    db_user: str


class TeardownOrchestrator:
    """Reverse an install step by step; a failing step never stops the next."""

    def __init__(
        self,
        *,
        service: ServiceLifecycleManager,
        proxy: ProxyController,
        authority: CertificateAuthority,
        database: DatabaseAdmin,
        accounts: AccountManager,
        targets: TeardownTargets,
        logger: StructuredLogger,
        reporter: Reporter,
        remove_tree: Callable[[Path], None] = shutil.rmtree,
    ) -> None:
        """Bind the orchestrator to the collaborators it reverses."""
        self._service = service
        self._proxy = proxy
        self._authority = authority
        self._database = database
        self._accounts = accounts
        self._targets = targets
        self._logger = logger
        self._reporter = reporter
        self._remove_tree = remove_tree

    def run(self, request: UninstallRequest) -> TeardownReport:
        """Remove every resource for ``request.domain`` once confirmed."""
        report = TeardownReport(domain=request.domain, confirmed=request.confirmed)
        if not request.confirmed:
            self._reporter.info(
                f"Uninstall cancelled: type '{UNINSTALL_CONFIRMATION}' exactly to confirm."
            )
            return report

        with self._logger.operation(
            "uninstall",
            args={"domain": request.domain},
            target={"kind": "site", "domain": request.domain},
        ) as op:
            steps: list[tuple[str, Callable[[], tuple[str, str]]]] = [
                ("service.stop", self._stop_service),
                ("service.unit", self._remove_unit),
                ("nginx.site", lambda: self._remove_site(request.domain)),
                ("certificate", lambda: self._delete_certificate(request.domain)),
                ("data", self._remove_data),
                ("database", self._drop_database),
                ("account", self._delete_account),
            ]
            for name, action in steps:
                report.steps.append(self._run_step(op, name, action))

            warnings = report.warnings
            if warnings:
                op.warning(
                    f"Uninstall of {request.domain} finished with warnings.",
                    warnings=warnings,
                    changed=sum(1 for step in report.steps if step.status == REMOVED),
                )
                self._reporter.warn(
                    f"Uninstall of {request.domain} finished with {len(warnings)} warning(s)."
                )
            else:
                op.success(f"Uninstalled {request.domain}.", changed=len(report.steps))
                self._reporter.success(f"PeerTube for {request.domain} has been removed.")
        return report

    # ------------------------------------------------------------------
    def _run_step(
        self,
        op: OperationScope,
        name: str,
        action: Callable[[], tuple[str, str]],
    ) -> TeardownStep:
        try:
            status, detail = action()
        except STEP_FAILURES as exc:
            failure = BestEffortFailure(f"{name} failed: {exc}")
            status, detail = WARNING, str(failure)
        if status == REMOVED:
            op.add_step(name, status="success", detail=detail)
            self._reporter.info(detail)
        else:
            op.add_step(name, status="warning", detail=detail)
            self._reporter.warn(detail)
        return TeardownStep(name=name, status=status, detail=detail)

    def _stop_service(self) -> tuple[str, str]:
        name = self._targets.service_name
        self._service.stop_and_disable(name)
        return REMOVED, f"Stopped and disabled {name}."

    def _remove_unit(self) -> tuple[str, str]:
        name = self._targets.service_name
        if self._service.remove_unit(name):
            return REMOVED, f"Removed the {name} unit file."
        return ABSENT, f"Unit file for {name} already absent."

    def _remove_site(self, domain: str) -> tuple[str, str]:
        if not self._proxy.site_exists(domain) and not self._proxy.is_enabled(domain):
            return ABSENT, f"nginx site for {domain} already absent."
        self._proxy.remove(domain)
        try:
            self._proxy.test_config()
        except NginxError as exc:
            return WARNING, f"Removed the nginx site for {domain}; nginx not reloaded: {exc}"
        self._proxy.reload()
        return REMOVED, f"Removed the nginx site for {domain} and reloaded nginx."

    def _delete_certificate(self, domain: str) -> tuple[str, str]:
        if not self._authority.certificate(domain).issued:
            return ABSENT, f"Certificate for {domain} already absent."
        self._authority.delete(domain)
        return REMOVED, f"Deleted the certificate for {domain}."

    def _remove_data(self) -> tuple[str, str]:
        root = self._targets.app_root
        if not root.exists() and not root.is_symlink():
            return ABSENT, f"{root} already absent."
        self._remove_tree(root)
        return REMOVED, f"Deleted {root}."

    def _drop_database(self) -> tuple[str, str]:
        db_name = self._targets.db_name
        db_user = self._targets.db_user
        removed: list[str] = []
        if self._database.database_exists(db_name):
            self._database.drop_database(db_name)
            removed.append(f"database {db_name}")
        if self._database.role_exists(db_user):
            self._database.drop_role(db_user)
            removed.append(f"role {db_user}")
        if not removed:
            return ABSENT, f"Database {db_name} and role {db_user} already absent."
        return REMOVED, f"Dropped {' and '.join(removed)}."

    def _delete_account(self) -> tuple[str, str]:
        user = self._targets.service_user
        if not self._accounts.lookup(user).user_exists:
            return ABSENT, f"System user {user} already absent."
        self._accounts.delete(user)
        return REMOVED, f"Deleted system user {user}."


__all__ = ["TeardownOrchestrator", "TeardownReport", "TeardownStep", "TeardownTargets"]
