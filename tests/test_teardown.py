"""Tests for best-effort uninstall."""
from __future__ import annotations

import json
from pathlib import Path

from fakes import make_runtime

from peertubectl.cli import (
    RuntimeContext,
    build_install_orchestrator,
    build_teardown_orchestrator,
)
from peertubectl.context import InstallRequest, UninstallRequest
from peertubectl.exit_codes import ExitCode
from peertubectl.teardown import ABSENT, REMOVED, WARNING, TeardownReport

DOMAIN = "video.example.org"


def _install(runtime: RuntimeContext) -> None:
    build_install_orchestrator(runtime).run(
        InstallRequest.build(
            domain=DOMAIN,
            account_password="p@ss1",
            db_password="p@ss1",
            admin_email="admin@example.org",
        )
    )


def _statuses(report: TeardownReport) -> dict[str, str]:
    return {step.name: step.status for step in report.steps}


def test_unconfirmed_uninstall_mutates_nothing(tmp_path: Path) -> None:
    """Anything but the exact word "yes" cancels before the first step."""
    runtime = make_runtime(tmp_path)
    _install(runtime)

    for answer in ("y", "YES", "yes ", ""):
        report = build_teardown_orchestrator(runtime).run(
            UninstallRequest(domain=DOMAIN, confirmation=answer)
        )
        assert report.confirmed is False
        assert report.steps == []

    assert runtime.systemd.is_active("peertube")
    assert runtime.nginx.is_enabled(DOMAIN)
    assert runtime.config.app.root.is_dir()
    assert "peertube_prod" in runtime.database.databases
    assert "Uninstall cancelled" in runtime.reporter.console.export_text()


def test_teardown_after_install_removes_everything(tmp_path: Path) -> None:
    """Every resource created by install is gone after a confirmed uninstall."""
    runtime = make_runtime(tmp_path)
    _install(runtime)

    report = build_teardown_orchestrator(runtime).run(
        UninstallRequest(domain=DOMAIN, confirmation="yes")
    )

    assert _statuses(report) == {
        "service.stop": REMOVED,
        "service.unit": REMOVED,
        "nginx.site": REMOVED,
        "certificate": REMOVED,
        "data": REMOVED,
        "database": REMOVED,
        "account": REMOVED,
    }
    assert report.warnings == []
    assert report.exit_code is ExitCode.OK
    assert not runtime.systemd.is_active("peertube")
    assert not runtime.systemd.unit_path("peertube").exists()
    assert not runtime.nginx.site_exists(DOMAIN)
    assert not runtime.nginx.is_enabled(DOMAIN)
    assert runtime.certbot.deleted == [DOMAIN]
    assert not runtime.config.app.root.exists()
    assert runtime.database.databases == {}
    assert runtime.database.roles == {}
    assert not runtime.accounts.lookup("peertube").user_exists


def test_site_removal_reloads_only_after_validation(tmp_path: Path) -> None:
    """nginx is reloaded after the site is removed and the tree validated."""
    runtime = make_runtime(tmp_path)
    _install(runtime)
    runtime.nginx.events.clear()

    build_teardown_orchestrator(runtime).run(UninstallRequest(domain=DOMAIN, confirmation="yes"))

    assert runtime.nginx.events == ["remove", "test_config:ok", "reload"]


def test_teardown_on_empty_host_completes_with_warnings(tmp_path: Path) -> None:
    """Nothing to remove is not an error: every step warns and the exit code is 0."""
    runtime = make_runtime(tmp_path)

    report = build_teardown_orchestrator(runtime).run(
        UninstallRequest(domain=DOMAIN, confirmation="yes")
    )

    statuses = _statuses(report)
    assert statuses["service.stop"] == WARNING
    assert all(statuses[name] == ABSENT for name in list(statuses)[1:])
    assert len(report.warnings) == 7
    assert report.exit_code is ExitCode.OK
    assert "reload" not in runtime.nginx.events


def test_failed_step_does_not_stop_later_steps(tmp_path: Path) -> None:
    """A database failure is reported while the account is still removed."""
    runtime = make_runtime(tmp_path)
    _install(runtime)
    runtime.database.fail_drop = True

    report = build_teardown_orchestrator(runtime).run(
        UninstallRequest(domain=DOMAIN, confirmation="yes")
    )

    statuses = _statuses(report)
    assert statuses["database"] == WARNING
    assert statuses["account"] == REMOVED
    assert any("could not connect" in warning for warning in report.warnings)
    assert report.exit_code is ExitCode.OK


def test_invalid_nginx_after_removal_skips_reload(tmp_path: Path) -> None:
    """When nginx -t fails after removal the reload is skipped and a warning recorded."""
    runtime = make_runtime(tmp_path)
    _install(runtime)
    runtime.nginx.events.clear()
    runtime.nginx.reject_live = True

    report = build_teardown_orchestrator(runtime).run(
        UninstallRequest(domain=DOMAIN, confirmation="yes")
    )

    assert _statuses(report)["nginx.site"] == WARNING
    assert "reload" not in runtime.nginx.events
    assert not runtime.nginx.site_exists(DOMAIN)


def test_teardown_is_logged_as_warning(tmp_path: Path) -> None:
    """An uninstall with warnings is recorded with a warning result."""
    runtime = make_runtime(tmp_path)

    build_teardown_orchestrator(runtime).run(UninstallRequest(domain=DOMAIN, confirmation="yes"))

    lines = runtime.logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[-1])
    assert record["operation"] == "uninstall"
    assert record["result"]["status"] == "warning"
    assert len(record["steps"]) == 7
