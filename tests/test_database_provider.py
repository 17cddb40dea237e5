"""Tests for the PostgreSQL admin provider."""
from __future__ import annotations

import pytest
from fakes import ScriptedRunner

from peertubectl.providers.database import (
    DatabaseError,
    PostgresAdmin,
    quote_identifier,
    quote_literal,
)

PSQL = ["sudo", "-u", "postgres", "-H", "psql", "-v", "ON_ERROR_STOP=1", "-tA"]


def test_quoting_escapes_embedded_quotes() -> None:
    """Identifiers double ``"`` and literals double ``'``."""
    assert quote_identifier('peer"tube') == '"peer""tube"'
    assert quote_literal("it's") == "'it''s'"


def test_existence_checks_parse_psql_output() -> None:
    """``1`` means present; empty output means absent."""
    runner = ScriptedRunner(lambda args: (0, "1\n", ""))
    admin = PostgresAdmin(runner=runner)

    assert admin.role_exists("peertube") is True
    assert admin.database_exists("peertube_prod") is True
    assert PostgresAdmin(runner=ScriptedRunner()).role_exists("peertube") is False
    assert runner.calls[0] == PSQL
    assert runner.inputs[0] == "SELECT 1 FROM pg_roles WHERE rolname = 'peertube';"


def test_password_travels_on_stdin() -> None:
    """Role passwords are part of the SQL on stdin, never the argv."""
    runner = ScriptedRunner()
    admin = PostgresAdmin(runner=runner)

    admin.create_role("peertube", "p@ss'1")
    admin.set_role_password("peertube", "p@ss2")

    assert runner.inputs == [
        "CREATE ROLE \"peertube\" LOGIN PASSWORD 'p@ss''1';",
        "ALTER ROLE \"peertube\" PASSWORD 'p@ss2';",
    ]
    assert all("p@ss" not in " ".join(call) for call in runner.calls)


def test_create_database_and_extensions() -> None:
    """Databases are UTF8 and extensions are enabled inside the database."""
    runner = ScriptedRunner()
    admin = PostgresAdmin(runner=runner)

    admin.create_database("peertube_prod", "peertube")
    admin.create_extension("peertube_prod", "pg_trgm")

    assert "OWNER \"peertube\" ENCODING 'UTF8'" in (runner.inputs[0] or "")
    assert runner.calls[1] == [*PSQL, "-d", "peertube_prod"]
    assert runner.inputs[1] == 'CREATE EXTENSION IF NOT EXISTS "pg_trgm";'


def test_drop_statements_tolerate_absence() -> None:
    """Drops use IF EXISTS."""
    runner = ScriptedRunner()
    admin = PostgresAdmin(runner=runner)

    admin.drop_database("peertube_prod")
    admin.drop_role("peertube")

    assert runner.inputs == [
        'DROP DATABASE IF EXISTS "peertube_prod";',
        'DROP ROLE IF EXISTS "peertube";',
    ]


def test_already_exists_errors_are_flagged() -> None:
    """psql's "already exists" message sets ``already_exists``."""
    runner = ScriptedRunner(lambda args: (1, "", 'ERROR:  role "peertube" already exists'))

    with pytest.raises(DatabaseError) as excinfo:
        PostgresAdmin(runner=runner).create_role("peertube", "secret")

    assert excinfo.value.already_exists is True


def test_other_errors_are_not_flagged() -> None:
    """Connection failures are plain database errors."""
    runner = ScriptedRunner(lambda args: (2, "", "could not connect to server"))

    with pytest.raises(DatabaseError) as excinfo:
        PostgresAdmin(runner=runner).drop_database("peertube_prod")

    assert excinfo.value.already_exists is False
