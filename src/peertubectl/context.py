"""Run parameters threaded through every install and uninstall step."""
from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import UserInputError

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$"
)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

UNINSTALL_CONFIRMATION = "yes"
INSTALL_CONFIRMATIONS = frozenset({"y", "Y"})


def _require(value: str | None, label: str) -> str:
    if value is None or not value.strip():
        raise UserInputError(f"{label} cannot be empty.")
    return value


def normalize_domain(value: str | None) -> str:
    """Return *value* as a lower-case host name or raise :class:`UserInputError`."""
    domain = _require(value, "Domain").strip().lower().rstrip(".")
    if not _DOMAIN_RE.match(domain):
        raise UserInputError(f"'{domain}' is not a valid domain name.")
    return domain


@dataclass(frozen=True, slots=True)
class InstallRequest:
    """Validated install parameters."""

    domain: str
    account_password: str
    db_password: str
    admin_email: str
    manual_version: str | None = None

    @classmethod
    def build(
        cls,
        *,
        domain: str | None,
        account_password: str | None,
        db_password: str | None,
        admin_email: str | None,
        manual_version: str | None = None,
    ) -> InstallRequest:
        """Validate every field before anything on the host is touched."""
        normalized_domain = normalize_domain(domain)
        account = _require(account_password, "Account password")
        database = _require(db_password, "Database password")
        email = _require(admin_email, "Admin email").strip()
        if not _EMAIL_RE.match(email):
            raise UserInputError(f"'{email}' is not a valid email address.")
        version = manual_version.strip() if manual_version and manual_version.strip() else None
        return cls(
            domain=normalized_domain,
            account_password=account,
            db_password=database,
            admin_email=email,
            manual_version=version,
        )

    def log_args(self) -> dict[str, object]:
        """Return the arguments recorded in the operations log."""
        return {
            "domain": self.domain,
            "account_password": self.account_password,
            "db_password": self.db_password,
            "admin_email": self.admin_email,
            "manual_version": self.manual_version,
        }


@dataclass(frozen=True, slots=True)
class UninstallRequest:
    """Validated uninstall parameters."""

    domain: str
    confirmation: str

    @classmethod
    def build(cls, *, domain: str | None, confirmation: str | None) -> UninstallRequest:
        """Validate the domain; the confirmation is checked by :attr:`confirmed`."""
        return cls(domain=normalize_domain(domain), confirmation=confirmation or "")

    @property
    def confirmed(self) -> bool:
        """Return True only for the exact literal confirmation string."""
        return self.confirmation == UNINSTALL_CONFIRMATION


def install_confirmed(answer: str | None) -> bool:
    """Return True when *answer* accepts the install summary."""
    return (answer or "").strip() in INSTALL_CONFIRMATIONS


__all__ = [
    "INSTALL_CONFIRMATIONS",
    "InstallRequest",
    "UNINSTALL_CONFIRMATION",
    "UninstallRequest",
    "install_confirmed",
    "normalize_domain",
]
