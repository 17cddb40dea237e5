"""Tests for the three-phase TLS rollout."""
from __future__ import annotations

from pathlib import Path

import pytest
from fakes import SHIPPED_NGINX, FakeAuthority, FakeProxy, ScriptedRunner, write_certificate

from peertubectl.errors import ProvisioningError, ValidationFailure
from peertubectl.network import RetryPolicy
from peertubectl.providers.certbot import CertbotProvider
from peertubectl.proxy import (
    InvalidTransition,
    ProxySiteConfig,
    SitePhase,
    TLSProxyOrchestrator,
)
from peertubectl.templates import TemplateEngine
from peertubectl.tls import CertificateInspector

DOMAIN = "video.example.org"


def _make(
    tmp_path: Path,
    *,
    shipped: str | None = None,
    site_source: str = "auto",
    failures: int = 0,
) -> tuple[TLSProxyOrchestrator, FakeProxy, FakeAuthority]:
    proxy = FakeProxy(tmp_path / "nginx")
    authority = FakeAuthority(tmp_path / "letsencrypt" / "live", failures=failures)
    template: Path | None = None
    if shipped is not None:
        template = tmp_path / "peertube-latest" / "support" / "nginx" / "peertube"
        template.parent.mkdir(parents=True)
        template.write_text(shipped, encoding="utf-8")
    orchestrator = TLSProxyOrchestrator(
        proxy=proxy,
        authority=authority,
        templates=TemplateEngine.with_overrides(None),
        inspector=CertificateInspector(),
        backend="127.0.0.1:9000",
        app_root=tmp_path / "peertube",
        webroot=tmp_path / "certbot",
        options_file=tmp_path / "letsencrypt" / "options-ssl-nginx.conf",
        dhparam_file=tmp_path / "letsencrypt" / "ssl-dhparams.pem",
        shipped_template=template,
        site_source=site_source,
        retry=RetryPolicy(attempts=2, timeout=1.0, backoff=0.0),
    )
    return orchestrator, proxy, authority


def _assert_reloads_follow_validation(events: list[str]) -> None:
    for index, event in enumerate(events):
        if event == "reload":
            assert index > 0 and events[index - 1] == "test_config:ok", events


def test_run_walks_every_phase_in_order(tmp_path: Path) -> None:
    """A fresh domain goes NoSite -> ChallengeOnly -> CertIssuing -> FinalizedSSL."""
    orchestrator, proxy, authority = _make(tmp_path)

    result = orchestrator.run(DOMAIN, "admin@example.org")

    assert result.site.phase is SitePhase.FINALIZED_SSL
    assert result.site.history == [
        SitePhase.NO_SITE,
        SitePhase.CHALLENGE_ONLY,
        SitePhase.CERT_ISSUING,
        SitePhase.FINALIZED_SSL,
    ]
    assert [outcome.status for outcome in result.outcomes] == ["applied"] * 3
    assert authority.issued == [DOMAIN]
    assert authority.forced == [False]
    assert proxy.is_enabled(DOMAIN)
    _assert_reloads_follow_validation(proxy.events)
    assert proxy.events.count("reload") == 2


def test_challenge_site_serves_only_the_acme_path(tmp_path: Path) -> None:
    """The first reload activates a plaintext site with nothing but the challenge."""
    orchestrator, proxy, _ = _make(tmp_path)

    orchestrator.run(DOMAIN, "admin@example.org")

    challenge = proxy.reloads[0][DOMAIN]
    assert "listen 80;" in challenge
    assert "listen [::]:80;" in challenge
    assert "location ^~ /.well-known/acme-challenge/ {" in challenge
    assert f"root {tmp_path / 'certbot'};" in challenge
    assert "return 404;" in challenge
    assert "listen 443" not in challenge
    assert "proxy_pass" not in challenge


def test_finalized_site_references_exactly_the_issued_paths(tmp_path: Path) -> None:
    """TLS directives point at the lineage under live/<domain>/ and nothing else."""
    orchestrator, proxy, _ = _make(tmp_path)

    result = orchestrator.run(DOMAIN, "admin@example.org")

    live = tmp_path / "letsencrypt" / "live" / DOMAIN
    content = proxy.site_path(DOMAIN).read_text(encoding="utf-8")
    assert f"ssl_certificate {live / 'fullchain.pem'};" in content
    assert f"ssl_certificate_key {live / 'privkey.pem'};" in content
    assert content.count("ssl_certificate ") == 1
    assert f"include {tmp_path / 'letsencrypt' / 'options-ssl-nginx.conf'};" in content
    assert f"ssl_dhparam {tmp_path / 'letsencrypt' / 'ssl-dhparams.pem'};" in content
    assert "server 127.0.0.1:9000;" in content
    assert "proxy_set_header Upgrade $http_upgrade;" in content
    assert result.certificate.fullchain == live / "fullchain.pem"
    assert result.source == "builtin"
    assert proxy.reloads[-1][DOMAIN] == content


def test_invalid_challenge_candidate_touches_nothing(tmp_path: Path) -> None:
    """A rejected candidate aborts before the site is written or nginx reloaded."""
    orchestrator, proxy, authority = _make(tmp_path)
    proxy.reject_candidate = True

    with pytest.raises(ValidationFailure):
        orchestrator.run(DOMAIN, "admin@example.org")

    assert proxy.events == ["test_candidate"]
    assert not proxy.site_exists(DOMAIN)
    assert authority.issued == []


def test_failed_live_validation_removes_new_link(tmp_path: Path) -> None:
    """When nginx -t fails with the challenge site enabled, the link is withdrawn."""
    orchestrator, proxy, _ = _make(tmp_path)
    proxy.reject_live = True

    with pytest.raises(ValidationFailure):
        orchestrator.run(DOMAIN, "admin@example.org")

    assert "reload" not in proxy.events
    assert not proxy.is_enabled(DOMAIN)
    assert proxy.events[-1] == "disable"


def test_malformed_shipped_template_in_bundle_mode_never_reloads_production(
    tmp_path: Path,
) -> None:
    """A template without certificate directives aborts before the final reload."""
    orchestrator, proxy, _ = _make(
        tmp_path, shipped="server { listen 80; }\n", site_source="bundle"
    )

    with pytest.raises(ValidationFailure):
        orchestrator.run(DOMAIN, "admin@example.org")

    assert proxy.events.count("reload") == 1
    assert "discard_site" not in proxy.events


def test_malformed_shipped_template_falls_back_to_builtin(tmp_path: Path) -> None:
    """In auto mode an unusable template is replaced by the built-in site."""
    orchestrator, proxy, _ = _make(tmp_path, shipped="server { listen 80; }\n")

    result = orchestrator.run(DOMAIN, "admin@example.org")

    assert result.source == "builtin"
    assert result.site.phase is SitePhase.FINALIZED_SSL


def test_shipped_template_is_bound_to_domain_and_certificate(tmp_path: Path) -> None:
    """Placeholders are substituted and the options bundle replaces inline TLS settings."""
    orchestrator, proxy, _ = _make(tmp_path, shipped=SHIPPED_NGINX)

    result = orchestrator.run(DOMAIN, "admin@example.org")

    content = proxy.site_path(DOMAIN).read_text(encoding="utf-8")
    live = tmp_path / "letsencrypt" / "live" / DOMAIN
    assert result.source == "bundle"
    assert "${" not in content
    assert f"server_name {DOMAIN};" in content
    assert "server 127.0.0.1:9000;" in content
    assert f"ssl_certificate {live / 'fullchain.pem'};" in content
    assert f"ssl_certificate_key {live / 'privkey.pem'};" in content
    assert "ssl_protocols" not in content
    assert "ssl_session_cache" not in content
    assert content.count("ssl_dhparam") == 1


def test_failed_final_validation_leaves_file_and_skips_reload(tmp_path: Path) -> None:
    """A production site rejected by nginx -t stays on disk for inspection."""
    orchestrator, proxy, _ = _make(tmp_path)
    site = ProxySiteConfig(domain=DOMAIN, path=proxy.site_path(DOMAIN))
    orchestrator.enter_challenge_only(site)
    certificate, _, _ = orchestrator.issue_certificate(site, "admin@example.org")
    reloads_before = proxy.events.count("reload")
    proxy.reject_live = True

    with pytest.raises(ValidationFailure) as excinfo:
        orchestrator.finalize(site, certificate)

    assert excinfo.value.path == proxy.site_path(DOMAIN)
    assert "ssl_certificate" in proxy.site_path(DOMAIN).read_text(encoding="utf-8")
    assert proxy.events.count("reload") == reloads_before
    assert site.phase is SitePhase.CERT_ISSUING


def test_rerun_with_issued_certificate_skips_challenge(tmp_path: Path) -> None:
    """A valid existing certificate means the finalized site is never downgraded."""
    orchestrator, proxy, authority = _make(tmp_path)
    write_certificate(tmp_path / "letsencrypt" / "live" / DOMAIN, DOMAIN)

    result = orchestrator.run(DOMAIN, "admin@example.org")

    assert [outcome.status for outcome in result.outcomes] == ["skipped", "skipped", "applied"]
    assert authority.issued == []
    assert "test_candidate" not in proxy.events
    assert proxy.events.count("reload") == 1
    assert "return 404;" not in proxy.reloads[0][DOMAIN]


def test_rerun_with_broken_certificate_reissues(tmp_path: Path) -> None:
    """A lineage whose key does not match is issued again."""
    orchestrator, _, authority = _make(tmp_path)
    write_certificate(tmp_path / "letsencrypt" / "live" / DOMAIN, DOMAIN, mismatched_key=True)

    result = orchestrator.run(DOMAIN, "admin@example.org")

    assert authority.issued == [DOMAIN]
    assert result.outcomes[0].status == "applied"
    assert authority.forced == [True]


def test_broken_lineage_is_replaced_by_certbot(tmp_path: Path) -> None:
    """certbot only rewrites an unexpired lineage when asked to force renewal."""
    live = tmp_path / "letsencrypt" / "live"
    write_certificate(live / DOMAIN, DOMAIN, mismatched_key=True)

    def respond(args: list[str]) -> tuple[int, str, str]:
        if "--force-renewal" not in args:
            return 0, "Certificate not yet due for renewal; no action taken.", ""
        write_certificate(live / DOMAIN, DOMAIN)
        return 0, "Successfully received certificate.", ""

    runner = ScriptedRunner(respond)
    orchestrator = TLSProxyOrchestrator(
        proxy=FakeProxy(tmp_path / "nginx"),
        authority=CertbotProvider(live_dir=live, runner=runner),
        templates=TemplateEngine.with_overrides(None),
        inspector=CertificateInspector(),
        backend="127.0.0.1:9000",
        app_root=tmp_path / "peertube",
        webroot=tmp_path / "certbot",
        options_file=tmp_path / "letsencrypt" / "options-ssl-nginx.conf",
        dhparam_file=tmp_path / "letsencrypt" / "ssl-dhparams.pem",
        retry=RetryPolicy(attempts=1, timeout=1.0, backoff=0.0),
    )

    result = orchestrator.run(DOMAIN, "admin@example.org")

    certbot_calls = [call for call in runner.calls if call[0] == "certbot"]
    assert len(certbot_calls) == 1
    assert "--force-renewal" in certbot_calls[0]
    assert result.site.phase is SitePhase.FINALIZED_SSL


def test_issuance_is_retried(tmp_path: Path) -> None:
    """One transient certbot failure is absorbed by the retry policy."""
    orchestrator, _, authority = _make(tmp_path, failures=1)

    result = orchestrator.run(DOMAIN, "admin@example.org")

    assert authority.issued == [DOMAIN]
    assert result.site.phase is SitePhase.FINALIZED_SSL


def test_issuance_failure_is_fatal_after_retries(tmp_path: Path) -> None:
    """Exhausted retries stop the rollout in CertIssuing."""
    orchestrator, proxy, _ = _make(tmp_path, failures=5)

    with pytest.raises(ProvisioningError, match="certificate issuance"):
        orchestrator.run(DOMAIN, "admin@example.org")

    assert "return 404;" in proxy.site_path(DOMAIN).read_text(encoding="utf-8")


def test_transitions_only_move_forward(tmp_path: Path) -> None:
    """Skipping or repeating a phase raises InvalidTransition."""
    site = ProxySiteConfig(domain=DOMAIN, path=tmp_path / DOMAIN)

    with pytest.raises(InvalidTransition):
        site.advance(SitePhase.FINALIZED_SSL)
    site.advance(SitePhase.CHALLENGE_ONLY)
    with pytest.raises(InvalidTransition):
        site.advance(SitePhase.CHALLENGE_ONLY)
    with pytest.raises(InvalidTransition):
        site.advance(SitePhase.NO_SITE)


def test_finalize_requires_cert_issuing_phase(tmp_path: Path) -> None:
    """Finalizing straight from NoSite is rejected before any file is touched."""
    orchestrator, proxy, authority = _make(tmp_path)
    site = ProxySiteConfig(domain=DOMAIN, path=proxy.site_path(DOMAIN))

    with pytest.raises(InvalidTransition):
        orchestrator.finalize(site, authority.certificate(DOMAIN))

    assert proxy.events == []


def test_unknown_site_source_is_rejected(tmp_path: Path) -> None:
    """Only auto, bundle and builtin are accepted."""
    with pytest.raises(ValueError, match="Unsupported site source"):
        _make(tmp_path, site_source="patched")
