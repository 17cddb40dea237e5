"""Three-phase TLS rollout for the nginx site of one domain.

``NoSite -> ChallengeOnly -> CertIssuing -> FinalizedSSL``

Each phase renders a complete site file. Nothing reaches ``reload`` without
passing ``nginx -t`` first: the challenge-only site is checked in isolation
before it is written, and the live tree is checked again after it is linked.
When the finalized site fails validation the broken file stays in place for
inspection and nginx keeps serving its previous configuration.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .adapters import CertificateAuthority, ProxyController
from .console import Reporter
from .errors import PeerTubeCtlError, ProvisioningError, ValidationFailure
from .network import NetworkError, RetryPolicy, with_retries
from .providers.certbot import CertbotError, Certificate
from .providers.nginx import NginxError
from .sites import (
    SiteTemplateError,
    TLSDirectives,
    bind_shipped_template,
    challenge_site,
    production_site,
    references_certificate,
    render_site,
)
from .templates import TemplateEngine
from .tls import CertificateInspector, TLSValidationSeverity

LOGGER = logging.getLogger(__name__)


class SitePhase(Enum):
    """Lifecycle of a proxy site definition."""

    NO_SITE = "NoSite"
    CHALLENGE_ONLY = "ChallengeOnly"
    CERT_ISSUING = "CertIssuing"
    FINALIZED_SSL = "FinalizedSSL"


PHASE_ORDER = (
    SitePhase.NO_SITE,
    SitePhase.CHALLENGE_ONLY,
    SitePhase.CERT_ISSUING,
    SitePhase.FINALIZED_SSL,
)


class InvalidTransition(PeerTubeCtlError):
    """Raised when a phase change is not the next forward step."""


@dataclass(slots=True)
class ProxySiteConfig:
    """A named nginx site bound to *domain* and its current phase."""

    domain: str
    path: Path
    phase: SitePhase = SitePhase.NO_SITE
    history: list[SitePhase] = field(default_factory=lambda: [SitePhase.NO_SITE])

    def advance(self, target: SitePhase) -> None:
        """Move to *target*, which must immediately follow the current phase."""
        current = PHASE_ORDER.index(self.phase)
        if PHASE_ORDER.index(target) != current + 1:
            raise InvalidTransition(
                f"Cannot move site {self.domain} from {self.phase.value} to {target.value}."
            )
        self.phase = target
        self.history.append(target)


@dataclass(frozen=True, slots=True)
class PhaseOutcome:
    """What happened while entering one phase."""

    phase: SitePhase
    status: str
    detail: str


@dataclass(slots=True)
class ProxyRolloutResult:
    """Final state of the site and the certificate it serves."""

    site: ProxySiteConfig
    certificate: Certificate
    source: str
    outcomes: list[PhaseOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


SITE_SOURCES = ("auto", "bundle", "builtin")


class TLSProxyOrchestrator:
    """Drive a domain's site and certificate from nothing to finalized TLS."""

    def __init__(
        self,
        *,
        proxy: ProxyController,
        authority: CertificateAuthority,
        templates: TemplateEngine,
        inspector: CertificateInspector,
        backend: str,
        app_root: Path,
        webroot: Path,
        options_file: Path,
        dhparam_file: Path,
        shipped_template: Path | None = None,
        site_source: str = "auto",
        client_max_body_size: str = "12G",
        retry: RetryPolicy | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        """Bind the orchestrator to its collaborators and site settings."""
        if site_source not in SITE_SOURCES:
            raise ValueError(f"Unsupported site source '{site_source}'.")
        self._proxy = proxy
        self._authority = authority
        self._templates = templates
        self._inspector = inspector
        self._backend = backend
        self._app_root = app_root
        self._webroot = webroot
        self._options_file = options_file
        self._dhparam_file = dhparam_file
        self._shipped_template = shipped_template
        self._site_source = site_source
        self._client_max_body_size = client_max_body_size
        self._retry = retry or RetryPolicy(attempts=2, timeout=300.0, backoff=30.0)
        self._reporter = reporter

    def run(self, domain: str, email: str) -> ProxyRolloutResult:
        """Take *domain* through every phase.

        When a valid certificate is already issued the challenge phases are
        passed without touching the live proxy, so a finalized site is never
        downgraded on re-runs.
        """
        site = ProxySiteConfig(domain=domain, path=self._proxy.site_path(domain))
        outcomes: list[PhaseOutcome] = []
        warnings: list[str] = []

        certificate = self._authority.certificate(domain)
        reusable = False
        if certificate.issued:
            report = self._inspector.inspect(certificate)
            reusable = not report.has_errors
            if reusable:
                warnings.extend(report.messages(TLSValidationSeverity.WARNING))
        if reusable:
            detail = f"certificate already issued at {certificate.fullchain.parent}"
            site.advance(SitePhase.CHALLENGE_ONLY)
            outcomes.append(PhaseOutcome(SitePhase.CHALLENGE_ONLY, "skipped", detail))
            site.advance(SitePhase.CERT_ISSUING)
            outcomes.append(PhaseOutcome(SitePhase.CERT_ISSUING, "skipped", detail))
            self._info(f"Reusing the certificate for {domain}.")
        else:
            outcomes.append(self.enter_challenge_only(site))
            certificate, outcome, cert_warnings = self.issue_certificate(
                site, email, force=certificate.issued
            )
            outcomes.append(outcome)
            warnings.extend(cert_warnings)

        source, outcome = self.finalize(site, certificate)
        outcomes.append(outcome)
        return ProxyRolloutResult(
            site=site,
            certificate=certificate,
            source=source,
            outcomes=outcomes,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Phase 1: NoSite -> ChallengeOnly
    # ------------------------------------------------------------------
    def enter_challenge_only(self, site: ProxySiteConfig) -> PhaseOutcome:
        """Validate and write the challenge-only site; the live proxy is untouched."""
        self._info(f"Writing the ACME challenge site for {site.domain}.")
        content = render_site(self._templates, challenge_site(site.domain, self._webroot))
        try:
            self._proxy.test_candidate(content)
        except NginxError as exc:
            raise ValidationFailure(
                f"Challenge site for {site.domain} failed validation: {exc}"
            ) from exc
        try:
            path = self._proxy.write_site(site.domain, content)
        except OSError as exc:
            raise ProvisioningError(f"Could not write {site.path}: {exc}") from exc
        site.advance(SitePhase.CHALLENGE_ONLY)
        return PhaseOutcome(SitePhase.CHALLENGE_ONLY, "applied", str(path))

    # ------------------------------------------------------------------
    # Phase 2: ChallengeOnly -> CertIssuing
    # ------------------------------------------------------------------
    def issue_certificate(
        self, site: ProxySiteConfig, email: str, *, force: bool = False
    ) -> tuple[Certificate, PhaseOutcome, list[str]]:
        """Activate the challenge site, reload nginx and obtain the certificate.

        *force* replaces an issued lineage that failed inspection.
        """
        if site.phase is not SitePhase.CHALLENGE_ONLY:
            raise InvalidTransition(
                f"Certificate issuance requires {SitePhase.CHALLENGE_ONLY.value}, "
                f"site {site.domain} is {site.phase.value}."
            )
        try:
            created = self._proxy.enable(site.domain)
        except OSError as exc:
            raise ProvisioningError(f"Could not enable {site.domain}: {exc}") from exc
        try:
            self._proxy.test_config()
        except NginxError as exc:
            if created:
                self._proxy.disable(site.domain)
            raise ValidationFailure(
                f"nginx rejected the configuration with the challenge site enabled: {exc}",
                path=site.path,
            ) from exc
        self._reload()
        site.advance(SitePhase.CERT_ISSUING)

        self._info(f"Requesting a certificate for {site.domain}.")
        try:
            certificate = with_retries(
                lambda: self._authority.issue_http01(
                    site.domain, email, self._webroot, force=force
                ),
                policy=self._retry,
                description=f"certificate issuance for {site.domain}",
                retry_on=(CertbotError,),
            )
        except NetworkError as exc:
            raise ProvisioningError(str(exc)) from exc

        report = self._inspector.inspect(certificate)
        if report.has_errors:
            errors = "; ".join(report.messages(TLSValidationSeverity.ERROR))
            raise ProvisioningError(f"Issued certificate for {site.domain} is unusable: {errors}")
        outcome = PhaseOutcome(
            SitePhase.CERT_ISSUING, "applied", f"issued {certificate.fullchain}"
        )
        return certificate, outcome, report.messages(TLSValidationSeverity.WARNING)

    # ------------------------------------------------------------------
    # Phase 3: CertIssuing -> FinalizedSSL
    # ------------------------------------------------------------------
    def finalize(
        self, site: ProxySiteConfig, certificate: Certificate
    ) -> tuple[str, PhaseOutcome]:
        """Replace the transient site with the production TLS site and reload."""
        if site.phase is not SitePhase.CERT_ISSUING:
            raise InvalidTransition(
                f"Finalizing requires {SitePhase.CERT_ISSUING.value}, "
                f"site {site.domain} is {site.phase.value}."
            )
        if not certificate.issued:
            raise InvalidTransition(f"No issued certificate for {site.domain}.")
        try:
            self._authority.ensure_tls_parameters(self._options_file, self._dhparam_file)
        except CertbotError as exc:
            raise ProvisioningError(str(exc)) from exc

        tls = TLSDirectives(
            certificate=certificate.fullchain,
            certificate_key=certificate.private_key,
            options_include=self._options_file,
            dhparam=self._dhparam_file,
        )
        source, content = self.render_production(site.domain, tls)
        if not references_certificate(content, tls):
            raise ValidationFailure(
                f"Rendered site for {site.domain} does not reference {certificate.fullchain}.",
                path=site.path,
            )

        self._info(f"Writing the production site for {site.domain} ({source} template).")
        try:
            self._proxy.discard_site(site.domain)
            self._proxy.write_site(site.domain, content)
            self._proxy.enable(site.domain)
        except OSError as exc:
            raise ProvisioningError(f"Could not write {site.path}: {exc}") from exc
        try:
            self._proxy.test_config()
        except NginxError as exc:
            raise ValidationFailure(
                f"Production site for {site.domain} failed validation; "
                f"{site.path} was left in place for inspection: {exc}",
                path=site.path,
            ) from exc
        self._reload()
        site.advance(SitePhase.FINALIZED_SSL)
        return source, PhaseOutcome(SitePhase.FINALIZED_SSL, "applied", str(site.path))

    def render_production(self, domain: str, tls: TLSDirectives) -> tuple[str, str]:
        """Return ``(source, content)`` for the finalized site."""
        template = self._shipped_template
        if self._site_source != "builtin" and template is not None and template.is_file():
            try:
                text = template.read_text(encoding="utf-8")
                return "bundle", bind_shipped_template(
                    text, domain=domain, backend=self._backend, tls=tls
                )
            except SiteTemplateError as exc:
                if self._site_source == "bundle":
                    raise ValidationFailure(f"{template}: {exc}", path=template) from exc
                self._warn(f"{template} cannot be used ({exc}); using the built-in site.")
        elif self._site_source == "bundle":
            raise ValidationFailure(
                f"Shipped nginx template {template} is missing.", path=template
            )
        site = production_site(
            domain,
            backend=self._backend,
            tls=tls,
            webroot=self._webroot,
            app_root=self._app_root,
            client_max_body_size=self._client_max_body_size,
        )
        return "builtin", render_site(self._templates, site)

    # ------------------------------------------------------------------
    def _reload(self) -> None:
        try:
            self._proxy.reload()
        except NginxError as exc:
            raise ProvisioningError(f"nginx reload failed: {exc}") from exc

    def _info(self, message: str) -> None:
        LOGGER.debug(message)
        if self._reporter is not None:
            self._reporter.info(message)

    def _warn(self, message: str) -> None:
        LOGGER.debug(message)
        if self._reporter is not None:
            self._reporter.warn(message)


__all__ = [
    "InvalidTransition",
    "PHASE_ORDER",
    "PhaseOutcome",
    "ProxyRolloutResult",
    "ProxySiteConfig",
    "SitePhase",
    "TLSProxyOrchestrator",
]
