"""Tests for the certbot provider."""
from __future__ import annotations

from pathlib import Path

import pytest
from fakes import ScriptedRunner, write_certificate

from peertubectl.providers.certbot import CertbotError, CertbotProvider, CertificateState

DOMAIN = "video.example.org"


def test_certificate_reports_absent_lineage(tmp_path: Path) -> None:
    """Without files the lineage is absent."""
    certificate = CertbotProvider(live_dir=tmp_path).certificate(DOMAIN)

    assert certificate.state is CertificateState.ABSENT
    assert certificate.fullchain == tmp_path / DOMAIN / "fullchain.pem"
    assert certificate.to_dict()["state"] == "absent"


def test_issue_http01_runs_webroot_challenge(tmp_path: Path) -> None:
    """Issuance uses the webroot plugin non-interactively."""
    live = tmp_path / "live"

    def respond(args: list[str]) -> tuple[int, str, str]:
        write_certificate(live / DOMAIN, DOMAIN)
        return 0, "Successfully received certificate.", ""

    runner = ScriptedRunner(respond)
    provider = CertbotProvider(live_dir=live, runner=runner)

    certificate = provider.issue_http01(DOMAIN, "admin@example.org", tmp_path / "webroot")

    assert certificate.issued
    assert (tmp_path / "webroot").is_dir()
    command = runner.calls[0]
    assert command[:3] == ["certbot", "certonly", "--webroot"]
    assert command[command.index("-w") + 1] == str(tmp_path / "webroot")
    assert command[command.index("-d") + 1] == DOMAIN
    assert command[command.index("-m") + 1] == "admin@example.org"
    assert "--non-interactive" in command
    assert "--agree-tos" in command


def test_issue_http01_wraps_failures(tmp_path: Path) -> None:
    """A failing challenge surfaces certbot's message."""
    runner = ScriptedRunner(lambda args: (1, "", "Challenge failed for domain"))
    provider = CertbotProvider(live_dir=tmp_path, runner=runner)

    with pytest.raises(CertbotError, match="Challenge failed"):
        provider.issue_http01(DOMAIN, "admin@example.org", tmp_path / "webroot")


def test_issue_http01_requires_files_after_success(tmp_path: Path) -> None:
    """Exit 0 without a lineage on disk is still an error."""
    provider = CertbotProvider(live_dir=tmp_path, runner=ScriptedRunner())

    with pytest.raises(CertbotError, match="is missing"):
        provider.issue_http01(DOMAIN, "admin@example.org", tmp_path / "webroot")


def test_ensure_tls_parameters_creates_missing_files(tmp_path: Path) -> None:
    """Options are written directly; DH parameters come from openssl."""
    runner = ScriptedRunner()
    provider = CertbotProvider(live_dir=tmp_path, runner=runner)
    options = tmp_path / "options-ssl-nginx.conf"
    dhparam = tmp_path / "ssl-dhparams.pem"

    created = provider.ensure_tls_parameters(options, dhparam)

    assert created == [options, dhparam]
    assert "ssl_protocols TLSv1.2 TLSv1.3;" in options.read_text(encoding="utf-8")
    assert runner.calls == [["openssl", "dhparam", "-out", str(dhparam), "2048"]]


def test_ensure_tls_parameters_keeps_existing_files(tmp_path: Path) -> None:
    """Files managed elsewhere are left untouched."""
    runner = ScriptedRunner()
    options = tmp_path / "options-ssl-nginx.conf"
    dhparam = tmp_path / "ssl-dhparams.pem"
    options.write_text("# managed by certbot\n", encoding="utf-8")
    dhparam.write_text("-----BEGIN DH PARAMETERS-----\n", encoding="utf-8")

    created = CertbotProvider(live_dir=tmp_path, runner=runner).ensure_tls_parameters(
        options, dhparam
    )

    assert created == []
    assert runner.calls == []
    assert options.read_text(encoding="utf-8") == "# managed by certbot\n"


def test_delete_names_the_lineage(tmp_path: Path) -> None:
    """Deleting passes the certificate name non-interactively."""
    runner = ScriptedRunner()

    CertbotProvider(live_dir=tmp_path, runner=runner).delete(DOMAIN)

    assert runner.calls == [["certbot", "delete", "--cert-name", DOMAIN, "--non-interactive"]]


def test_issue_http01_keeps_unexpired_lineage_by_default(tmp_path: Path) -> None:
    """Without force certbot may skip a lineage that is not due for renewal."""
    live = tmp_path / "live"
    write_certificate(live / DOMAIN, DOMAIN)
    runner = ScriptedRunner()

    CertbotProvider(live_dir=live, runner=runner).issue_http01(
        DOMAIN, "admin@example.org", tmp_path / "webroot"
    )

    assert "--keep-until-expiring" in runner.calls[0]
    assert "--force-renewal" not in runner.calls[0]


def test_issue_http01_force_replaces_lineage(tmp_path: Path) -> None:
    """Forcing passes --force-renewal so a broken lineage is rewritten."""
    live = tmp_path / "live"
    write_certificate(live / DOMAIN, DOMAIN, mismatched_key=True)
    runner = ScriptedRunner()

    CertbotProvider(live_dir=live, runner=runner).issue_http01(
        DOMAIN, "admin@example.org", tmp_path / "webroot", force=True
    )

    command = runner.calls[0]
    assert "--force-renewal" in command
    assert "--keep-until-expiring" not in command
    assert command[command.index("--cert-name") + 1] == DOMAIN
