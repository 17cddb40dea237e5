"""Subprocess execution shared by the host adapters."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a command exits non-zero (or cannot be executed)."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str],
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        """Return stderr, falling back to stdout."""
        return (self.stderr or self.stdout or "").strip()


class Runner(Protocol):
    """Callable signature of :func:`run_command`; tests substitute fakes."""

    def __call__(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process."""


def run_command(
    args: Sequence[str],
    *,
    check: bool = True,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args*, capturing text output.

    A missing executable is reported as :class:`CommandError` with
    ``returncode=None`` so callers only handle a single exception type.
    """
    command = list(args)
    LOGGER.debug("exec: %s", " ".join(command))
    try:
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=True,
            text=True,
            check=False,
            input=input_text,
            env=dict(env) if env is not None else None,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"{command[0]} not found: {exc}", command=command) from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandError(
            f"{' '.join(command)} timed out after {timeout}s", command=command
        ) from exc
    if check and result.returncode != 0:
        message = (result.stderr or result.stdout or "no output").strip()
        raise CommandError(
            f"{' '.join(command)} failed (exit {result.returncode}): {message}",
            command=command,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
    return result


def as_user(user: str, args: Sequence[str]) -> list[str]:
    """Prefix *args* so they run as *user* via ``sudo``."""
    return ["sudo", "-u", user, "-H", *args]


__all__ = ["CommandError", "Runner", "as_user", "run_command"]
