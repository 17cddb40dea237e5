"""Structured operation logging for peertubectl.

Every CLI operation (install, uninstall) is recorded as a single JSON line in
``<logs_dir>/operations.jsonl``. A record carries the operation name, the
(redacted) arguments, each step executed with its status, and the final
result. The log directory is created when the first record is written. Logging
must never break provisioning: when the log directory cannot be created or
written the logger disables itself and the run continues.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"
REDACTED_ARG_KEYS = frozenset({"password", "db_password", "account_password"})


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _redact(args: Mapping[str, object]) -> dict[str, object]:
    redacted: dict[str, object] = {}
    for key, value in args.items():
        if key in REDACTED_ARG_KEYS and value:
            redacted[key] = "***"
        else:
            redacted[key] = _sanitize(value)
    return redacted


@dataclass(slots=True)
class OperationStep:
    """A single step recorded within an operation."""

    name: str
    status: str
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"name": self.name, "status": self.status}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the final result of one operation."""

    operation: str
    args: dict[str, object]
    target: dict[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = field(default_factory=_timestamp)
    steps: list[OperationStep] = field(default_factory=list)
    result: dict[str, object] | None = None
    _started: float = field(default_factory=time.monotonic)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a step and mirror it to the module logger."""
        self.steps.append(OperationStep(name=name, status=status, detail=detail))
        LOGGER.debug("%s step %s: %s %s", self.operation, name, status, detail or "")

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=list(warnings),
            errors=list(errors),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def warnings(self) -> list[str]:
        """Return the details of every step recorded with a warning status."""
        return [
            f"{step.name}: {step.detail}" if step.detail else step.name
            for step in self.steps
            if step.status == "warning"
        ]

    def to_record(self) -> dict[str, object]:
        """Return the JSON record written to the operations log."""
        return {
            "op_id": self.op_id,
            "operation": self.operation,
            "started_at": self.started_at,
            "finished_at": _timestamp(),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "args": self.args,
            "target": self.target,
            "steps": [step.to_dict() for step in self.steps],
            "result": self.result,
        }

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: list[str] | None = None,
        errors: list[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message, "changed": changed}
        if warnings is not None:
            result["warnings"] = warnings
        if errors is not None:
            result["errors"] = errors
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result


class StructuredLogger:
    """Append operation records to a JSONL file under *log_dir*."""

    def __init__(self, log_dir: Path) -> None:
        """Remember *log_dir*; it is created on the first write."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / OPERATIONS_LOG_NAME
        self._enabled = True

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSONL operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(
            operation=name,
            args=_redact(args or {}),
            target={str(key): _sanitize(value) for key, value in (target or {}).items()},
        )
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Structured logging disabled; cannot create %s: %s", self._log_dir, exc)
            self._enabled = False
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.debug("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "OperationStep", "StructuredLogger"]
