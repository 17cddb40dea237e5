"""Typer-powered command line for ``peertubectl``.

Running ``peertubectl`` without a subcommand shows the interactive menu
(1 = install, 2 = uninstall). ``install`` and ``uninstall`` accept every
answer as an option and prompt only for what is missing.
"""
from __future__ import annotations

import shutil
import textwrap
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .adapters import (
    AccountManager,
    CertificateAuthority,
    DatabaseAdmin,
    PackageManager,
    ProxyController,
    ServiceManager,
)
from .bootstrap import SystemAccounts
from .config import AppConfig, ConfigError, load_config
from .console import Reporter
from .context import InstallRequest, UninstallRequest, install_confirmed, normalize_domain
from .errors import PeerTubeCtlError, UserInputError
from .exit_codes import ExitCode
from .install import InstallOrchestrator, default_materializer, shipped_site_template
from .logging import OperationScope, StructuredLogger
from .network import RetryPolicy
from .node_runtime import NodeRuntimeManager
from .providers import (
    AptProvider,
    CertbotProvider,
    GitHubReleaseRegistry,
    NginxProvider,
    PostgresAdmin,
    SystemdProvider,
    VersionInstaller,
)
from .provisioner import ResourceProvisioner
from .proxy import TLSProxyOrchestrator
from .service import ServiceLifecycleManager
from .teardown import TeardownOrchestrator, TeardownTargets
from .templates import TemplateEngine
from .tls import CertificateInspector

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to peertubectl's YAML config file.",
)

DOMAIN_OPTION = typer.Option(
    None,
    "--domain",
    help="Public domain name of the PeerTube instance.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        PeerTube provisioner for Debian/Ubuntu hosts.

        Installs the OS packages, Node.js, PostgreSQL database, application
        bundle, nginx site, Let's Encrypt certificate and systemd unit for one
        PeerTube instance, and removes them again on uninstall.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    reporter: Reporter
    packages: PackageManager
    database: DatabaseAdmin
    accounts: AccountManager
    nginx: ProxyController
    systemd: ServiceManager
    certbot: CertificateAuthority
    node_runtime: NodeRuntimeManager
    releases: GitHubReleaseRegistry
    installer: VersionInstaller
    inspector: CertificateInspector
    which: Callable[[str], str | None] = shutil.which
    remove_tree: Callable[[Path], None] = shutil.rmtree


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc

    network = config.network
    retry = RetryPolicy(
        attempts=network.retries, timeout=network.timeout, backoff=network.backoff
    )
    templates = TemplateEngine.with_overrides(config.templates_dir)
    packages = AptProvider(retry=retry)
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=templates,
        reporter=Reporter(console=console),
        packages=packages,
        database=PostgresAdmin(
            admin_user=config.database.admin_user, psql_bin=config.database.psql_bin
        ),
        accounts=SystemAccounts(),
        nginx=NginxProvider(
            sites_available=config.nginx.sites_available,
            sites_enabled=config.nginx.sites_enabled,
            nginx_bin=config.nginx.nginx_bin,
        ),
        systemd=SystemdProvider(
            templates=templates,
            systemd_dir=config.systemd.unit_dir,
            systemctl_bin=config.systemd.systemctl_bin,
        ),
        certbot=CertbotProvider(
            live_dir=config.tls.live_dir, certbot_bin=config.tls.certbot_bin
        ),
        node_runtime=NodeRuntimeManager(
            packages=packages,
            setup_url=config.runtime.setup_url,
            conflicting_packages=config.runtime.conflicting_packages,
        ),
        releases=GitHubReleaseRegistry(
            repo=config.app.release_repo,
            api_url=config.app.release_api_url,
            cache_dir=config.state_dir,
            retry=retry,
        ),
        installer=VersionInstaller(
            install_root=config.app.versions_dir,
            download_url=config.app.download_url,
            repo=config.app.release_repo,
            yarn_bin=config.app.yarn_bin,
            retry=retry,
        ),
        inspector=CertificateInspector(warn_expiry_days=config.tls.warn_expiry_days),
    )
    ctx.obj = runtime
    return runtime


def build_install_orchestrator(
    runtime: RuntimeContext,
    *,
    ask_version: Callable[[], str | None] | None = None,
) -> InstallOrchestrator:
    """Wire the install stages from *runtime*."""
    config = runtime.config
    service = ServiceLifecycleManager(
        runtime.systemd, restart_sec=config.systemd.restart_sec, which=runtime.which
    )
    provisioner = ResourceProvisioner(
        packages=runtime.packages,
        database=runtime.database,
        services=runtime.systemd,
        accounts=runtime.accounts,
        runtime=runtime.node_runtime,
        releases=runtime.releases,
        installer=runtime.installer,
        baseline_packages=config.packages.baseline,
        system_services=config.packages.services,
    )
    proxy = TLSProxyOrchestrator(
        proxy=runtime.nginx,
        authority=runtime.certbot,
        templates=runtime.templates,
        inspector=runtime.inspector,
        backend=config.app.backend_address,
        app_root=config.app.root,
        webroot=config.tls.webroot,
        options_file=config.tls.options_file,
        dhparam_file=config.tls.dhparam_file,
        shipped_template=shipped_site_template(config),
        site_source=config.nginx.site_source,
        client_max_body_size=config.nginx.client_max_body_size,
        reporter=runtime.reporter,
    )
    return InstallOrchestrator(
        config=config,
        provisioner=provisioner,
        materializer=default_materializer(config),
        proxy=proxy,
        service=service,
        accounts=runtime.accounts,
        logger=runtime.logger,
        reporter=runtime.reporter,
        ask_version=ask_version,
    )


def build_teardown_orchestrator(runtime: RuntimeContext) -> TeardownOrchestrator:
    """Wire the teardown steps from *runtime*."""
    config = runtime.config
    return TeardownOrchestrator(
        service=ServiceLifecycleManager(runtime.systemd, which=runtime.which),
        proxy=runtime.nginx,
        authority=runtime.certbot,
        database=runtime.database,
        accounts=runtime.accounts,
        targets=TeardownTargets(
            service_name=config.app.service_name,
            app_root=config.app.root,
            service_user=config.app.service_user,
            db_name=config.database.name,
            db_user=config.database.user,
        ),
        logger=runtime.logger,
        reporter=runtime.reporter,
        remove_tree=runtime.remove_tree,
    )


def _command_error(
    op: OperationScope | None,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    if op is not None:
        op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _ask(value: str | None, label: str, prompt: str, *, hide_input: bool = False) -> str:
    """Return *value*, prompting when it is missing; empty answers are fatal."""
    if value is None:
        value = typer.prompt(prompt, default="", show_default=False, hide_input=hide_input)
    if not value.strip():
        raise UserInputError(f"{label} cannot be empty.")
    return value


def _ask_version() -> str | None:
    return typer.prompt(
        "Enter PeerTube version to install (e.g., 7.1.0)", default="", show_default=False
    )


def _run_install(
    runtime: RuntimeContext,
    *,
    domain: str | None = None,
    account_password: str | None = None,
    db_password: str | None = None,
    admin_email: str | None = None,
    version_override: str | None = None,
    assume_yes: bool = False,
) -> None:
    config = runtime.config
    try:
        domain = _ask(
            domain,
            "Domain name",
            "Enter your domain name for PeerTube (e.g., peertube.example.com)",
        )
        domain = normalize_domain(domain)
        account_password = _ask(
            account_password,
            "System user password",
            f"Enter a password for the '{config.app.service_user}' system user",
            hide_input=True,
        )
        db_password = _ask(
            db_password,
            "Database password",
            f"Enter a password for the '{config.database.user}' PostgreSQL user",
            hide_input=True,
        )
        admin_email = _ask(
            admin_email,
            "Admin email",
            "Enter the email address for the PeerTube administrator (used for TLS)",
        )
        request = InstallRequest.build(
            domain=domain,
            account_password=account_password,
            db_password=db_password,
            admin_email=admin_email,
            manual_version=version_override,
        )
    except UserInputError as exc:
        _command_error(None, str(exc))

    console.print("[bold]--- INSTALLATION SUMMARY ---[/bold]")
    console.print(f"PeerTube domain: {request.domain}")
    console.print(f"Admin email: {request.admin_email}")
    console.print(f"System user: {config.app.service_user}")
    console.print(f"Database: {config.database.name} (user {config.database.user})")
    if not assume_yes:
        answer = typer.prompt(
            "Proceed with installation? (y/N)", default="", show_default=False
        )
        if not install_confirmed(answer):
            runtime.reporter.info("Installation cancelled.")
            raise typer.Exit(code=ExitCode.OK)

    orchestrator = build_install_orchestrator(
        runtime, ask_version=None if assume_yes else _ask_version
    )
    try:
        orchestrator.run(request)
    except PeerTubeCtlError as exc:
        _command_error(None, f"Installation failed: {exc}")


def _run_uninstall(
    runtime: RuntimeContext,
    *,
    domain: str | None = None,
    confirmation: str | None = None,
) -> None:
    config = runtime.config
    try:
        domain = normalize_domain(
            _ask(
                domain,
                "Domain name",
                "Enter the domain name of the PeerTube instance to uninstall",
            )
        )
    except UserInputError as exc:
        _command_error(None, str(exc))

    console.print("[bold red]--- UNINSTALLATION WARNING ---[/bold red]")
    console.print(f"This removes PeerTube for {domain}:")
    console.print(f"  - the {config.app.service_name} service and its unit file")
    console.print(f"  - the nginx site and the TLS certificate for {domain}")
    console.print(f"  - ALL FILES in {config.app.root} (videos, configuration)")
    console.print(
        f"  - the {config.database.name} database and the {config.database.user} role"
    )
    console.print(f"  - the {config.app.service_user} system user")
    console.print("Shared dependencies (nginx, PostgreSQL, Redis, FFmpeg, Node.js) are kept.")
    if confirmation is None:
        confirmation = typer.prompt(
            "Are you absolutely sure? (Type 'yes' to confirm)",
            default="",
            show_default=False,
        )

    request = UninstallRequest(domain=domain, confirmation=confirmation)
    build_teardown_orchestrator(runtime).run(request)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the peertubectl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"peertubectl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    runtime = _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print("[bold]PeerTube Management[/bold]")
        console.print("1. Install PeerTube")
        console.print("2. Uninstall PeerTube")
        choice = typer.prompt("Choose an option (1 or 2)", default="", show_default=False)
        if choice.strip() == "1":
            _run_install(runtime)
        elif choice.strip() == "2":
            _run_uninstall(runtime)
        else:
            _command_error(None, "Invalid option.")
        raise typer.Exit(code=ExitCode.OK)


@app.command()
def install(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    account_password: str | None = typer.Option(
        None,
        "--account-password",
        help="Login password for the service account (set only when it is created).",
    ),
    db_password: str | None = typer.Option(
        None,
        "--db-password",
        help="Password for the PostgreSQL role.",
    ),
    admin_email: str | None = typer.Option(
        None,
        "--admin-email",
        help="Administrator email, also used for the Let's Encrypt account.",
    ),
    version_override: str | None = typer.Option(
        None,
        "--version-override",
        help="PeerTube version to install when the release lookup fails.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt.",
    ),
) -> None:
    """Install PeerTube and everything it needs on this host."""
    runtime = _ensure_runtime(ctx, None)
    _run_install(
        runtime,
        domain=domain,
        account_password=account_password,
        db_password=db_password,
        admin_email=admin_email,
        version_override=version_override,
        assume_yes=yes,
    )


@app.command()
def uninstall(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    confirm: str | None = typer.Option(
        None,
        "--confirm",
        help="Confirmation text; only the exact word 'yes' proceeds.",
    ),
) -> None:
    """Remove the PeerTube instance for a domain (shared services are kept)."""
    runtime = _ensure_runtime(ctx, None)
    _run_uninstall(runtime, domain=domain, confirmation=confirm)


__all__ = [
    "RuntimeContext",
    "app",
    "build_install_orchestrator",
    "build_teardown_orchestrator",
]
