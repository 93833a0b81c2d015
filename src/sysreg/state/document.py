"""Linearized JSON documents backed by files on disk.

A :class:`JsonDocument` serializes every read and write of one file through
an :class:`asyncio.Lock` looked up by the document's *unique key*. Two
documents opened with the same key and the same :class:`LockManager` share
that lock, so concurrent writers never lose each other's updates. Different
keys are independent: there is no atomicity across files.

File access happens in worker threads (``asyncio.to_thread``) and writes are
atomic (temporary file + ``os.replace``).
"""
from __future__ import annotations

import asyncio
import json
import os
import tempfile
from collections.abc import Callable, Mapping, Sequence
from copy import deepcopy
from pathlib import Path
from typing import Any

from ..errors import DocumentStoreError
from ..locking import LockManager

Selector = Sequence[str | int]


class DocumentMissingError(DocumentStoreError):
    """Raised when reading a document whose file does not exist."""


def read_json(path: Path) -> Any:
    """Return the parsed contents of *path*."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise DocumentMissingError(f"Document {path} does not exist.") from exc
    except OSError as exc:
        raise DocumentStoreError(f"Failed to read document {path}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DocumentStoreError(f"Document {path} is corrupted: {exc}") from exc


def write_json_atomic(path: Path, payload: object) -> None:
    """Atomically write *payload* as JSON to *path*, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=4)
            handle.write("\n")
        os.replace(tmp_path, path)
        os.chmod(path, 0o640)
    except (OSError, TypeError, ValueError) as exc:
        raise DocumentStoreError(f"Failed to write document {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)


def _select(data: Any, selector: Selector, path: Path) -> Any:
    current = data
    for segment in selector:
        try:
            current = current[segment]
        except (KeyError, IndexError, TypeError) as exc:
            raise DocumentStoreError(
                f"Selector {list(selector)!r} does not resolve in document {path}."
            ) from exc
    return current


class JsonDocument:
    """A JSON file whose reads and writes are linearized by a unique key."""

    def __init__(
        self,
        path: Path,
        *,
        unique_key: str,
        locks: LockManager,
        initial: object | None = None,
        broadcast_on_update: bool = False,
    ) -> None:
        """Bind the document to *path*; *initial* is used while the file is missing."""
        if broadcast_on_update:
            raise DocumentStoreError(
                "Broadcasting document updates to other processes is not supported."
            )
        if not unique_key:
            raise DocumentStoreError("Documents require a non-empty unique key.")
        self.path = path
        self.unique_key = unique_key
        self._locks = locks
        self._initial = deepcopy(initial)

    @classmethod
    async def open(
        cls,
        path: Path,
        *,
        unique_key: str,
        locks: LockManager,
        initial: object | None = None,
        lazy: bool = True,
        broadcast_on_update: bool = False,
    ) -> JsonDocument:
        """Return a document for *path*.

        With ``lazy=False`` the file is materialised from *initial* when
        missing (or validated when present) before returning.
        """
        document = cls(
            path,
            unique_key=unique_key,
            locks=locks,
            initial=initial,
            broadcast_on_update=broadcast_on_update,
        )
        if not lazy:
            await document.ensure()
        return document

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    async def ensure(self) -> None:
        """Create the file from the initial value if missing, else validate it."""
        async with self._locks.document_lock(self.unique_key):
            await asyncio.to_thread(self._ensure_blocking)

    async def exists(self) -> bool:
        """Return ``True`` when the backing file is present."""
        return await asyncio.to_thread(self.path.is_file)

    async def get(self, selector: Selector = ()) -> Any:
        """Return a copy of the value addressed by *selector* (root when empty)."""
        async with self._locks.document_lock(self.unique_key):
            data = await asyncio.to_thread(self._load_blocking)
        return deepcopy(_select(data, selector, self.path))

    async def set(self, selector: Selector, key: str | int, value: object) -> None:
        """Assign *value* to *key* inside the container addressed by *selector*."""

        def _assign(data: Any) -> Any:
            container = _select(data, selector, self.path)
            try:
                container[key] = deepcopy(value)
            except (TypeError, IndexError) as exc:
                raise DocumentStoreError(
                    f"Cannot assign {key!r} in document {self.path}: {exc}"
                ) from exc
            return data

        await self.transform(_assign)

    async def update_from_provided(self, document: object) -> None:
        """Atomically replace the whole document."""
        payload = deepcopy(document)
        async with self._locks.document_lock(self.unique_key):
            await asyncio.to_thread(write_json_atomic, self.path, payload)

    async def transform(self, mutator: Callable[[Any], Any]) -> Any:
        """Apply *mutator* as one linearized read-modify-write step.

        *mutator* receives the current document and returns its replacement,
        or ``None`` to leave the file untouched. Exceptions raised by
        *mutator* abort the write and propagate.
        """
        async with self._locks.document_lock(self.unique_key):
            data = await asyncio.to_thread(self._load_blocking)
            replacement = mutator(data)
            if replacement is None:
                return data
            await asyncio.to_thread(write_json_atomic, self.path, replacement)
            return deepcopy(replacement)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    # ------------------------------------------------------------------
    def _load_blocking(self) -> Any:
        try:
            return read_json(self.path)
        except DocumentMissingError:
            if self._initial is None:
                raise
            return deepcopy(self._initial)

    def _ensure_blocking(self) -> None:
        if self.path.is_file():
            read_json(self.path)
            return
        if self._initial is None:
            raise DocumentMissingError(f"Document {self.path} does not exist.")
        write_json_atomic(self.path, self._initial)

    def __repr__(self) -> str:
        return f"JsonDocument(path={str(self.path)!r}, unique_key={self.unique_key!r})"


def as_mapping(value: object, label: str) -> Mapping[str, Any]:
    """Return *value* when it is a mapping, raising :class:`DocumentStoreError` otherwise."""
    if not isinstance(value, Mapping):
        raise DocumentStoreError(f"Expected {label} to be a JSON object. Got {type(value).__name__}.")
    return value


__all__ = [
    "DocumentMissingError",
    "JsonDocument",
    "Selector",
    "as_mapping",
    "read_json",
    "write_json_atomic",
]
