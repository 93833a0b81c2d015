"""Structured operation logging for sysreg.

Each administrative operation (registering an instance, flipping its active
flag, rewriting its configuration, CLI commands) is recorded as one JSON line
in ``<log_dir>/operations.jsonl``::

    with logger.operation("instance register", args={...}, target={...}) as op:
        op.add_step("registry.update", status="success")
        op.success("Instance registered.", changed=2)

Logging never breaks the operation being logged: when the log directory
cannot be prepared or a write fails the logger disables itself and emits a
warning through the standard :mod:`logging` module instead.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _json_safe(value: object) -> Any:
    """Return *value* converted into something :func:`json.dumps` accepts."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationStep:
    """A named sub-step recorded inside an operation."""

    name: str
    status: str
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "status": self.status, "detail": self.detail}


@dataclass(slots=True)
class OperationScope:
    """Collects the steps and outcome of a single logged operation."""

    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: str = field(default_factory=_timestamp)
    steps: list[OperationStep] = field(default_factory=list)
    lock_wait_ms: int | None = None
    result: dict[str, object] | None = None
    _started: float = field(default_factory=time.monotonic)

    def add_step(self, name: str, *, status: str = "success", detail: str = "") -> None:
        """Record a sub-step of the operation."""
        self.steps.append(OperationStep(name=name, status=status, detail=detail))

    def set_lock_wait_ms(self, wait_ms: int) -> None:
        """Record how long the operation waited for its lock."""
        self.lock_wait_ms = wait_ms

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
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=list(warnings or [message]),
            errors=list(errors or []),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors or [message]),
            rc=rc,
            context=context,
        )

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
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": warnings or [],
            "errors": errors or [],
            "rc": rc,
            "context": _json_safe(dict(context or {})),
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing the operation."""
        return {
            "op_id": self.op_id,
            "started_at": self.started_at,
            "finished_at": _timestamp(),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "command": self.command,
            "args": _json_safe(dict(self.args)),
            "target": _json_safe(dict(self.target)),
            "lock_wait_ms": self.lock_wait_ms,
            "steps": [step.to_dict() for step in self.steps],
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records to a JSON-lines file under *log_dir*."""

    def __init__(self, log_dir: Path | None) -> None:
        """Prepare the log directory, disabling the logger on failure."""
        self._log_dir = log_dir
        self._enabled = log_dir is not None
        self._operations_log_path = (
            log_dir / OPERATIONS_LOG_NAME if log_dir is not None else Path(OPERATIONS_LOG_NAME)
        )
        if log_dir is None:
            return
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("structured logging disabled, cannot create %s: %s", log_dir, exc)
            self._enabled = False

    @classmethod
    def disabled(cls) -> StructuredLogger:
        """Return a logger that records nothing."""
        return cls(None)

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit.

        An exception escaping the block is recorded as an error (unless the
        scope already holds a result) and re-raised unchanged.
        """
        scope = OperationScope(command=command, args=dict(args or {}), target=dict(target or {}))
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__, context={"exception": type(exc).__name__})
            raise
        finally:
            if scope.result is None:
                scope.success(f"{command} completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.warning(
                "structured logging disabled after write failure to %s: %s",
                self._operations_log_path,
                exc,
            )
            self._enabled = False


__all__ = ["OperationScope", "OperationStep", "StructuredLogger"]
