"""End-to-end install: provision, materialize config, roll out TLS, start the unit.

Each stage gates the next. The first fatal error stops the run; there is no
automatic rollback, ``peertubectl uninstall`` is the way back.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .adapters import AccountManager
from .commands import CommandError
from .config import AppConfig
from .console import Reporter
from .context import InstallRequest
from .errors import ExternalLookupFailure, ProvisioningError
from .logging import OperationScope, StructuredLogger
from .materializer import (
    GENERATED_SECRETS,
    ConfigMaterializer,
    MaterializeError,
    MaterializeResult,
    peertube_values,
)
from .provisioner import ProvisionedResource, ResourceProvisioner, ResourceState
from .proxy import ProxyRolloutResult, TLSProxyOrchestrator
from .service import ServiceLifecycleManager, ServiceUnit

LOGGER = logging.getLogger(__name__)

SERVER_ENTRYPOINT = ("dist/server",)
NODE_EXECUTABLE = "node"


@dataclass(slots=True)
class InstallResult:
    """Everything an install run converged on."""

    domain: str
    version: str
    resources: list[ProvisionedResource] = field(default_factory=list)
    config: MaterializeResult | None = None
    proxy: ProxyRolloutResult | None = None
    unit: ServiceUnit | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Return the number of resources that were modified."""
        count = sum(1 for resource in self.resources if resource.changed)
        if self.config is not None and self.config.changed:
            count += 1
        return count


class InstallOrchestrator:
    """Sequence the provisioner, materializer, proxy rollout and service unit."""

    def __init__(
        self,
        *,
        config: AppConfig,
        provisioner: ResourceProvisioner,
        materializer: ConfigMaterializer,
        proxy: TLSProxyOrchestrator,
        service: ServiceLifecycleManager,
        accounts: AccountManager,
        logger: StructuredLogger,
        reporter: Reporter,
        ask_version: Callable[[], str | None] | None = None,
    ) -> None:
        """Bind the orchestrator to its stages.

        *ask_version* is consulted when no release version can be resolved
        from the registry, the cache or the request.
        """
        self._config = config
        self._provisioner = provisioner
        self._materializer = materializer
        self._proxy = proxy
        self._service = service
        self._accounts = accounts
        self._logger = logger
        self._reporter = reporter
        self._ask_version = ask_version

    def run(self, request: InstallRequest) -> InstallResult:
        """Install PeerTube for ``request.domain``."""
        app = self._config.app
        with self._logger.operation(
            "install",
            args=request.log_args(),
            target={"kind": "site", "domain": request.domain},
        ) as op:
            self._reporter.rule(f"Installing PeerTube for {request.domain}")
            resources, version = self._provision(op, request)
            result = InstallResult(domain=request.domain, version=version, resources=resources)
            result.warnings.extend(op.warnings())

            result.config = self._materialize(op, request)

            result.proxy = self._proxy.run(request.domain, request.admin_email)
            for outcome in result.proxy.outcomes:
                op.add_step(
                    f"proxy.{outcome.phase.value}", status=outcome.status, detail=outcome.detail
                )
            for warning in result.proxy.warnings:
                op.add_step("proxy.warning", status="warning", detail=warning)
                self._reporter.warn(warning)
            result.warnings.extend(result.proxy.warnings)
            self._reporter.success(
                f"nginx serves https://{request.domain} ({result.proxy.source} site)."
            )

            unit = self._service.install_unit(
                app.service_name,
                NODE_EXECUTABLE,
                app.current_path,
                app.service_user,
                args=SERVER_ENTRYPOINT,
                config_dir=app.config_dir,
                data_dir=app.root,
            )
            op.add_step("service.unit", detail=str(unit.exec_start))
            result.unit = self._service.enable_and_start(unit, restart=bool(result.changed))
            op.add_step("service.start", detail=result.unit.desired_state.value)

            context = {"version": result.version, "site": str(result.proxy.site.path)}
            if result.warnings:
                op.warning(
                    f"Installed PeerTube {result.version} with warnings.",
                    warnings=result.warnings,
                    changed=result.changed,
                    context=context,
                )
            else:
                op.success(
                    f"Installed PeerTube {result.version}.",
                    changed=result.changed,
                    context=context,
                )
        self._print_next_steps(result)
        return result

    # ------------------------------------------------------------------
    def _provision(
        self, op: OperationScope, request: InstallRequest
    ) -> tuple[list[ProvisionedResource], str]:
        app = self._config.app
        database = self._config.database
        provisioner = self._provisioner
        resources: list[ProvisionedResource] = []

        def record(resource: ProvisionedResource) -> None:
            resources.append(resource)
            status = "warning" if resource.state is ResourceState.PRESENT_CONFLICTING else "success"
            op.add_step(resource.name, status=status, detail=resource.detail)
            if status == "warning":
                self._reporter.warn(f"{resource.name}: {resource.detail}")
            else:
                verb = "updated" if resource.changed else "already in place"
                self._reporter.info(f"{resource.name} {verb}.")

        record(provisioner.ensure_package_baseline())
        record(provisioner.ensure_runtime_major_version(self._config.runtime.node_major))
        record(
            provisioner.ensure_system_account(
                app.service_user, request.account_password, home=app.root
            )
        )
        record(
            provisioner.ensure_filesystem_layout(
                app.root, app.subdirs, owner=app.service_user
            )
        )
        record(
            provisioner.ensure_database_role_and_schema(
                database.user, request.db_password, database.name, database.extensions
            )
        )

        try:
            resolved = provisioner.resolve_version(request.manual_version)
        except ExternalLookupFailure as exc:
            if self._ask_version is None:
                raise
            self._reporter.warn(str(exc))
            answer = self._ask_version()
            if not answer or not answer.strip():
                raise ExternalLookupFailure("A PeerTube version is required.") from exc
            resolved = provisioner.manual_version(answer, reason=str(exc))
        op.add_step(
            "version",
            status="warning" if resolved.warning else "success",
            detail=resolved.warning or f"{resolved.version} ({resolved.source})",
        )
        if resolved.warning:
            self._reporter.warn(resolved.warning)
        self._reporter.info(f"Installing PeerTube {resolved.version}.")

        record(
            provisioner.fetch_and_install_bundle(
                resolved.version, owner=app.service_user, link=app.current_path
            )
        )
        return resources, resolved.version

    def _materialize(self, op: OperationScope, request: InstallRequest) -> MaterializeResult:
        app = self._config.app
        values = peertube_values(
            domain=request.domain,
            backend_host=app.backend_host,
            backend_port=app.backend_port,
            db_name=self._config.database.name,
            db_user=self._config.database.user,
            db_password=request.db_password,
            admin_email=request.admin_email,
        )
        try:
            result = self._materializer.materialize(values, generated_secrets=GENERATED_SECRETS)
            self._accounts.chown(result.path, app.service_user)
        except (MaterializeError, CommandError, OSError) as exc:
            raise ProvisioningError(f"Could not write the PeerTube configuration: {exc}") from exc
        op.add_step("config", detail=f"{result.path} from {result.base}")
        self._reporter.info(f"Configuration written to {result.path}.")
        return result

    def _print_next_steps(self, result: InstallResult) -> None:
        service = self._config.app.service_name
        self._reporter.success(f"PeerTube {result.version} is running at https://{result.domain}.")
        self._reporter.text("The generated 'root' administrator password is printed on first start:")
        self._reporter.text(f"  journalctl -feu {service}")
        self._reporter.text("Reset it at any time with:")
        self._reporter.text(
            f"  cd {self._config.app.current_path} && "
            f"NODE_CONFIG_DIR={self._config.app.config_dir} NODE_ENV=production "
            "npm run reset-password -- -u root"
        )


def default_materializer(config: AppConfig) -> ConfigMaterializer:
    """Return the materializer for the active release's example config."""
    return ConfigMaterializer(
        config_dir=config.app.config_dir,
        template_dir=config.app.current_path / "config",
    )


def shipped_site_template(config: AppConfig) -> Path:
    """Return the nginx template bundled with the active release."""
    return config.app.current_path / "support" / "nginx" / "peertube"


__all__ = [
    "InstallOrchestrator",
    "InstallResult",
    "default_materializer",
    "shipped_site_template",
]
