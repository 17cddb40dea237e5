"""PostgreSQL administration through ``psql`` run as the database superuser."""
from __future__ import annotations

from dataclasses import dataclass

from ..commands import CommandError, Runner, as_user, run_command


class DatabaseError(RuntimeError):
    """Raised when a psql statement fails."""

    def __init__(self, message: str, *, already_exists: bool = False) -> None:
        super().__init__(message)
        self.already_exists = already_exists


def quote_identifier(name: str) -> str:
    """Return *name* quoted as an SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Return *value* quoted as an SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(slots=True)
class PostgresAdmin:
    """Issue administrative SQL as *admin_user*.

    Statements are sent on stdin so passwords never appear in the process
    table.
    """

    admin_user: str = "postgres"
    psql_bin: str = "psql"
    runner: Runner = run_command

    def role_exists(self, role: str) -> bool:
        """Return True when *role* exists."""
        output = self._query(f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(role)};")
        return output.strip() == "1"

    def database_exists(self, database: str) -> bool:
        """Return True when *database* exists."""
        output = self._query(
            f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(database)};"
        )
        return output.strip() == "1"

    def create_role(self, role: str, password: str) -> None:
        """Create a login role with *password*."""
        self._query(
            f"CREATE ROLE {quote_identifier(role)} LOGIN PASSWORD {quote_literal(password)};"
        )

    def set_role_password(self, role: str, password: str) -> None:
        """Reset the password of *role*."""
        self._query(f"ALTER ROLE {quote_identifier(role)} PASSWORD {quote_literal(password)};")

    def create_database(self, database: str, owner: str) -> None:
        """Create a UTF8 database owned by *owner*."""
        self._query(
            f"CREATE DATABASE {quote_identifier(database)} "
            f"OWNER {quote_identifier(owner)} ENCODING 'UTF8' TEMPLATE template0;"
        )

    def create_extension(self, database: str, extension: str) -> None:
        """Enable *extension* inside *database*."""
        self._query(
            f"CREATE EXTENSION IF NOT EXISTS {quote_identifier(extension)};",
            database=database,
        )

    def drop_database(self, database: str) -> None:
        """Drop *database* when it exists."""
        self._query(f"DROP DATABASE IF EXISTS {quote_identifier(database)};")

    def drop_role(self, role: str) -> None:
        """Drop *role* when it exists."""
        self._query(f"DROP ROLE IF EXISTS {quote_identifier(role)};")

    # ------------------------------------------------------------------
    def _query(self, sql: str, *, database: str | None = None) -> str:
        command = [self.psql_bin, "-v", "ON_ERROR_STOP=1", "-tA"]
        if database is not None:
            command.extend(["-d", database])
        try:
            result = self.runner(as_user(self.admin_user, command), input_text=sql)
        except CommandError as exc:
            raise DatabaseError(
                str(exc), already_exists="already exists" in exc.output.lower()
            ) from exc
        return result.stdout or ""


__all__ = ["DatabaseError", "PostgresAdmin", "quote_identifier", "quote_literal"]
