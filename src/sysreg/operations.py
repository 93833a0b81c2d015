"""Gate and health-recording wrappers for remote operations."""
from __future__ import annotations

import functools
import inspect
from collections.abc import Awaitable, Callable, Iterator, Mapping
from typing import Any, ParamSpec, TypeVar

from .state.instance import HealthStatus

P = ParamSpec("P")
R = TypeVar("R")

Gate = Callable[[], Awaitable[None]]
StatusRecorder = Callable[[HealthStatus], Awaitable[None]]


def guard_operation(
    operation: Callable[P, Awaitable[R]] | Callable[P, R],
    *,
    gate: Gate,
    record: StatusRecorder,
) -> Callable[P, Awaitable[R]]:
    """Wrap *operation* with the activation gate and health bookkeeping.

    The returned coroutine function awaits *gate* first; a gate failure
    propagates without invoking the operation or recording anything. The
    operation's outcome is then recorded (``working`` or ``not-working``)
    and its result returned, or its exception re-raised unchanged.
    *record* must not raise.
    """

    @functools.wraps(operation)
    async def guarded(*args: P.args, **kwargs: P.kwargs) -> R:
        await gate()
        try:
            result = operation(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            await record(HealthStatus.NOT_WORKING)
            raise
        await record(HealthStatus.WORKING)
        return result  # type: ignore[return-value]

    return guarded


class OperationSet(Mapping[str, Callable[..., Awaitable[Any]]]):
    """Read-only collection of guarded operations.

    Operations are reachable by key (``ops["version"]``) and as attributes
    (``ops.version``).
    """

    __slots__ = ("_operations",)

    def __init__(self, operations: Mapping[str, Callable[..., Awaitable[Any]]]) -> None:
        self._operations = dict(operations)

    def __getitem__(self, name: str) -> Callable[..., Awaitable[Any]]:
        return self._operations[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._operations[name]
        except KeyError:
            raise AttributeError(f"No operation named {name!r}.") from None

    def __repr__(self) -> str:
        return f"OperationSet({sorted(self._operations)!r})"


def wrap_operations(
    operations: Mapping[str, Callable[..., Any]],
    *,
    gate: Gate,
    record: StatusRecorder,
) -> OperationSet:
    """Guard every operation in *operations* with the same gate and recorder."""
    return OperationSet(
        {
            name: guard_operation(operation, gate=gate, record=record)
            for name, operation in operations.items()
        }
    )


__all__ = ["OperationSet", "guard_operation", "wrap_operations"]
