"""certbot provider for HTTP-01 issuance and certificate deletion."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..commands import CommandError, Runner, run_command
from ..templates import write_atomic


class CertbotError(RuntimeError):
    """Raised when certbot operations fail."""


OPTIONS_SSL_NGINX = """\
# TLS parameters recommended by Let's Encrypt for nginx.
ssl_session_cache shared:le_nginx_SSL:10m;
ssl_session_timeout 1440m;
ssl_session_tickets off;

ssl_protocols TLSv1.2 TLSv1.3;
ssl_prefer_server_ciphers off;

ssl_ciphers "ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256:ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384:ECDHE-ECDSA-CHACHA20-POLY1305:ECDHE-RSA-CHACHA20-POLY1305:DHE-RSA-AES128-GCM-SHA256:DHE-RSA-AES256-GCM-SHA384";
"""


class CertificateState(Enum):
    """Whether a certificate lineage exists for a domain."""

    ABSENT = "absent"
    ISSUED = "issued"


@dataclass(frozen=True, slots=True)
class Certificate:
    """Certificate lineage for *domain* and the files it owns."""

    domain: str
    fullchain: Path
    private_key: Path
    chain: Path
    state: CertificateState = CertificateState.ABSENT

    @property
    def issued(self) -> bool:
        """Return True when the lineage has been issued."""
        return self.state is CertificateState.ISSUED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "state": self.state.value,
            "fullchain": str(self.fullchain),
            "private_key": str(self.private_key),
            "chain": str(self.chain),
        }


@dataclass(slots=True)
class CertbotProvider:
    """Drive ``certbot`` for a single-domain lineage stored under *live_dir*."""

    live_dir: Path = Path("/etc/letsencrypt/live")
    certbot_bin: str = "certbot"
    runner: Runner = run_command
    timeout: float | None = 300.0
    openssl_bin: str = "openssl"

    def certificate(self, domain: str) -> Certificate:
        """Return the lineage for *domain*, marked issued when both files exist."""
        lineage = self.live_dir / domain
        fullchain = lineage / "fullchain.pem"
        private_key = lineage / "privkey.pem"
        state = (
            CertificateState.ISSUED
            if fullchain.exists() and private_key.exists()
            else CertificateState.ABSENT
        )
        return Certificate(
            domain=domain,
            fullchain=fullchain,
            private_key=private_key,
            chain=lineage / "chain.pem",
            state=state,
        )

    def issue_http01(
        self, domain: str, email: str, webroot: Path, *, force: bool = False
    ) -> Certificate:
        """Run ``certbot certonly --webroot`` for *domain*.

        An existing lineage that is not due for renewal is left alone unless
        *force* is set, in which case certbot replaces it.
        """
        webroot.mkdir(parents=True, exist_ok=True)
        self._certbot(
            [
                "certonly",
                "--webroot",
                "-w",
                str(webroot),
                "-d",
                domain,
                "--cert-name",
                domain,
                "--non-interactive",
                "--agree-tos",
                "-m",
                email,
                "--force-renewal" if force else "--keep-until-expiring",
            ]
        )
        certificate = self.certificate(domain)
        if not certificate.issued:
            raise CertbotError(
                f"certbot reported success but {certificate.fullchain} is missing."
            )
        return certificate

    def ensure_tls_parameters(self, options_file: Path, dhparam_file: Path) -> list[Path]:
        """Create the nginx TLS options and DH parameters when they are missing.

        Existing files are left alone; certbot may manage them.
        """
        created: list[Path] = []
        if not options_file.exists():
            write_atomic(options_file, OPTIONS_SSL_NGINX, mode=0o644)
            created.append(options_file)
        if not dhparam_file.exists():
            dhparam_file.parent.mkdir(parents=True, exist_ok=True)
            try:
                self.runner(
                    [self.openssl_bin, "dhparam", "-out", str(dhparam_file), "2048"],
                    timeout=self.timeout,
                )
            except CommandError as exc:
                raise CertbotError(f"Could not generate {dhparam_file}: {exc}") from exc
            created.append(dhparam_file)
        return created

    def delete(self, domain: str) -> None:
        """Delete the lineage named *domain*."""
        self._certbot(["delete", "--cert-name", domain, "--non-interactive"])

    # ------------------------------------------------------------------
    def _certbot(self, args: list[str]) -> None:
        try:
            self.runner([self.certbot_bin, *args], timeout=self.timeout)
        except CommandError as exc:
            raise CertbotError(str(exc)) from exc


__all__ = ["Certificate", "CertificateState", "CertbotError", "CertbotProvider"]
