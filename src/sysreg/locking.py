"""Keyed asyncio locks used to linearize access to shared resources.

Every persisted document and every lazily constructed instance handle is
guarded by a lock looked up by a logical key. Locks live in a :class:`LockTable`;
all :class:`LockManager` instances share the process-wide :data:`PROCESS_LOCKS`
table unless given their own, so two registries opened on the same storage
serialize against each other. Locks are kept per running event loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
import weakref
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass

from .errors import SysregError
from .exit_codes import ExitCode

LOGGER = logging.getLogger(__name__)


class LockTimeoutError(SysregError):
    """Raised when a lock cannot be acquired within the allotted time."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.2f}s waiting for lock '{key}'.")
        self.key = key
        self.timeout = timeout


@dataclass(frozen=True, slots=True)
class LockHandle:
    """Information about an acquired lock."""

    key: str
    wait_ms: int


class LockTable:
    """One :class:`asyncio.Lock` per key and running event loop."""

    def __init__(self) -> None:
        self._by_loop: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[str, asyncio.Lock]
        ] = weakref.WeakKeyDictionary()

    def get(self, key: str) -> asyncio.Lock:
        """Return the lock for *key* in the running loop, creating it on first use."""
        locks = self._by_loop.setdefault(asyncio.get_running_loop(), {})
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    def peek(self, key: str) -> asyncio.Lock | None:
        """Return the lock for *key* in the running loop without creating it."""
        return self._by_loop.get(asyncio.get_running_loop(), {}).get(key)


PROCESS_LOCKS = LockTable()


class LockManager:
    """Acquire keyed locks from a shared :class:`LockTable`.

    ``default_timeout`` of ``None`` waits indefinitely. Managers built with
    different timeouts still contend for the same locks.
    """

    def __init__(
        self,
        default_timeout: float | None = None,
        *,
        table: LockTable | None = None,
    ) -> None:
        """Initialise the manager with an optional acquisition timeout."""
        if default_timeout is not None and default_timeout <= 0:
            raise ValueError("default_timeout must be positive or None.")
        self.default_timeout = default_timeout
        self._table = PROCESS_LOCKS if table is None else table

    def lock_for(self, key: str) -> asyncio.Lock:
        """Return the lock associated with *key*, creating it on first use."""
        return self._table.get(key)

    def locked(self, key: str) -> bool:
        """Return ``True`` when the lock for *key* is currently held."""
        lock = self._table.peek(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[LockHandle]:
        """Hold the lock for *key* for the duration of the ``async with`` block."""
        lock = self.lock_for(key)
        effective_timeout = self.default_timeout if timeout is None else timeout
        started = time.monotonic()
        if effective_timeout is None:
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), effective_timeout)
            except asyncio.TimeoutError as exc:
                raise LockTimeoutError(key, effective_timeout) from exc
        wait_ms = int((time.monotonic() - started) * 1000)
        if wait_ms:
            LOGGER.debug("waited %sms for lock %s", wait_ms, key)
        try:
            yield LockHandle(key=key, wait_ms=wait_ms)
        finally:
            lock.release()

    def document_lock(
        self,
        unique_key: str,
        *,
        timeout: float | None = None,
    ) -> AbstractAsyncContextManager[LockHandle]:
        """Return the lock context serializing writers of one document."""
        return self.acquire(f"document:{unique_key}", timeout=timeout)

    def instance_lock(
        self,
        definition_id: str,
        instance_id: str,
        *,
        timeout: float | None = None,
    ) -> AbstractAsyncContextManager[LockHandle]:
        """Return the lock context guarding construction of one instance handle."""
        return self.acquire(f"instance:{definition_id}:{instance_id}", timeout=timeout)


__all__ = ["PROCESS_LOCKS", "LockHandle", "LockManager", "LockTable", "LockTimeoutError"]
