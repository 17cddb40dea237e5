"""Nginx provider for managing per-domain site definitions."""
from __future__ import annotations

import subprocess
import tempfile
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import write_atomic


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxProvider:
    """Write, validate, enable and reload nginx sites keyed by domain name."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"

    def site_name(self, domain: str) -> str:
        """Return the canonical site name for *domain*."""
        return domain.replace("/", "-")

    def site_path(self, domain: str) -> Path:
        """Return the path to the nginx site configuration file."""
        return self.sites_available / self.site_name(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the path of the symlink in sites-enabled for *domain*."""
        return self.sites_enabled / self.site_name(domain)

    def write_site(self, domain: str, content: str) -> Path:
        """Replace the site file for *domain* wholesale."""
        destination = self.site_path(domain)
        write_atomic(destination, content, mode=0o644)
        return destination

    def discard_site(self, domain: str) -> None:
        """Delete the site file; an existing sites-enabled link is left dangling."""
        self.site_path(domain).unlink(missing_ok=True)

    def test_candidate(self, content: str) -> None:
        """Validate *content* on its own, without touching the live tree.

        The candidate is included from a throwaway main configuration so a
        syntax error is reported before the site file is written.
        """
        with tempfile.TemporaryDirectory(prefix="peertubectl-nginx-") as workdir:
            root = Path(workdir)
            candidate = root / "candidate.conf"
            candidate.write_text(content, encoding="utf-8")
            wrapper = root / "nginx.conf"
            wrapper.write_text(
                textwrap.dedent(
                    f"""\
                    pid {root / "nginx.pid"};
                    error_log stderr;
                    events {{}}
                    http {{
                        include {candidate};
                    }}
                    """
                ),
                encoding="utf-8",
            )
            self._run_nginx(["-t", "-q", "-p", str(root), "-c", str(wrapper)])

    def enable(self, domain: str) -> bool:
        """Enable the site by creating a symlink in sites-enabled.

        Returns ``True`` when a new link was created.
        """
        source = self.site_path(domain)
        target = self.enabled_path(domain)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            try:
                if target.resolve() == source.resolve():
                    return False
            except FileNotFoundError:
                # Broken symlink; replace it with a fresh one.
                pass
            target.unlink()
        target.symlink_to(source)
        return True

    def disable(self, domain: str) -> None:
        """Disable the site by removing the symlink."""
        self.enabled_path(domain).unlink(missing_ok=True)

    def remove(self, domain: str) -> None:
        """Remove both the configuration and symlink for *domain*."""
        self.disable(domain)
        self.site_path(domain).unlink(missing_ok=True)

    def site_exists(self, domain: str) -> bool:
        """Return True when the site configuration exists."""
        return self.site_path(domain).exists()

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(domain)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.site_path(domain).resolve()
        except FileNotFoundError:
            return False

    def test_config(self) -> None:
        """Run ``nginx -t`` against the live configuration tree."""
        self._run_nginx(["-t"])

    def reload(self) -> None:
        """Reload nginx to apply configuration changes."""
        self._run_nginx(["-s", "reload"])

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.nginx_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise NginxError(f"{self.nginx_bin} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxError(
                f"{self.nginx_bin} {' '.join(args)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["NginxError", "NginxProvider"]
