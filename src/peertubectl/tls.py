"""Checks on issued certificate material before nginx is pointed at it."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .providers.certbot import Certificate


class TLSValidationSeverity(Enum):
    """Validation severities for TLS checks."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class TLSValidationFinding:
    """Individual validation check outcome."""

    scope: str
    check: str
    severity: TLSValidationSeverity
    message: str
    path: Path | None = None


@dataclass(frozen=True)
class TLSValidationReport:
    """Aggregate validation results for one certificate lineage."""

    certificate: Certificate
    findings: tuple[TLSValidationFinding, ...]
    not_valid_after: datetime | None

    @property
    def has_errors(self) -> bool:
        """Return True when any finding is classified as an error."""
        return any(f.severity is TLSValidationSeverity.ERROR for f in self.findings)

    @property
    def has_warnings(self) -> bool:
        """Return True when the report includes warning findings."""
        return any(f.severity is TLSValidationSeverity.WARNING for f in self.findings)

    @property
    def status(self) -> TLSValidationSeverity:
        """Return the overall status derived from the findings."""
        if self.has_errors:
            return TLSValidationSeverity.ERROR
        if self.has_warnings:
            return TLSValidationSeverity.WARNING
        return TLSValidationSeverity.OK

    def messages(self, severity: TLSValidationSeverity) -> list[str]:
        """Return the messages of findings with *severity*."""
        return [
            f"{finding.scope} {finding.check}: {finding.message}"
            for finding in self.findings
            if finding.severity is severity
        ]


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


class CertificateInspector:
    """Verify that an issued lineage is readable, consistent and current."""

    def __init__(self, *, warn_expiry_days: int = 30) -> None:
        """Capture the expiry warning threshold."""
        self._warn_expiry_days = warn_expiry_days

    def inspect(
        self,
        certificate: Certificate,
        *,
        now: datetime | None = None,
    ) -> TLSValidationReport:
        """Validate *certificate* and return a structured report."""
        now = now or datetime.now(UTC)
        findings: list[TLSValidationFinding] = []

        cert_exists = _check_file(certificate.fullchain, "certificate", findings)
        key_exists = _check_file(certificate.private_key, "key", findings)

        cert_obj: x509.Certificate | None = None
        key_obj: PrivateKeyProtocol | None = None
        if cert_exists:
            try:
                cert_obj = _load_certificate(certificate.fullchain)
            except ValueError as exc:
                findings.append(
                    TLSValidationFinding(
                        scope="certificate",
                        check="parse",
                        severity=TLSValidationSeverity.ERROR,
                        message=f"Failed to parse certificate: {exc}",
                        path=certificate.fullchain,
                    )
                )
        if key_exists:
            try:
                key_obj = _load_private_key(certificate.private_key)
            except (ValueError, TypeError) as exc:
                findings.append(
                    TLSValidationFinding(
                        scope="key",
                        check="parse",
                        severity=TLSValidationSeverity.ERROR,
                        message=f"Failed to parse private key: {exc}",
                        path=certificate.private_key,
                    )
                )

        if cert_obj is not None and key_obj is not None and not _public_keys_match(
            cert_obj, key_obj
        ):
            findings.append(
                TLSValidationFinding(
                    scope="certificate",
                    check="match",
                    severity=TLSValidationSeverity.ERROR,
                    message="Certificate does not match the private key.",
                    path=certificate.fullchain,
                )
            )

        not_after: datetime | None = None
        if cert_obj is not None:
            not_after = cert_obj.not_valid_after_utc
            if not_after <= now:
                findings.append(
                    TLSValidationFinding(
                        scope="certificate",
                        check="expiry",
                        severity=TLSValidationSeverity.ERROR,
                        message=f"Certificate expired on {not_after.isoformat()}",
                        path=certificate.fullchain,
                    )
                )
            elif (not_after - now).days <= self._warn_expiry_days:
                findings.append(
                    TLSValidationFinding(
                        scope="certificate",
                        check="expiry",
                        severity=TLSValidationSeverity.WARNING,
                        message=(
                            "Certificate expires soon "
                            f"({not_after.isoformat()}, {(not_after - now).days} day(s) remaining)"
                        ),
                        path=certificate.fullchain,
                    )
                )

        return TLSValidationReport(
            certificate=certificate,
            findings=tuple(findings),
            not_valid_after=not_after,
        )


def _check_file(path: Path, scope: str, findings: list[TLSValidationFinding]) -> bool:
    if not path.is_file():
        findings.append(
            TLSValidationFinding(
                scope=scope,
                check="exists",
                severity=TLSValidationSeverity.ERROR,
                message="File does not exist.",
                path=path,
            )
        )
        return False
    if not os.access(path, os.R_OK):
        findings.append(
            TLSValidationFinding(
                scope=scope,
                check="readable",
                severity=TLSValidationSeverity.ERROR,
                message="File is not readable by the current user.",
                path=path,
            )
        )
        return False
    return True


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


__all__ = [
    "CertificateInspector",
    "TLSValidationFinding",
    "TLSValidationReport",
    "TLSValidationSeverity",
]
