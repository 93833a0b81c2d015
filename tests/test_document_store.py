"""Tests for the linearized JSON document store."""
from __future__ import annotations

import asyncio
import json
import stat
from pathlib import Path

import pytest

from sysreg.errors import DocumentStoreError
from sysreg.locking import LockManager
from sysreg.state.document import (
    DocumentMissingError,
    JsonDocument,
    read_json,
    write_json_atomic,
)


def test_write_json_atomic_creates_parents_and_restricts_mode(tmp_path: Path) -> None:
    """Atomic writes create parent directories and leave no temp files."""
    target = tmp_path / "nested" / "doc.json"

    write_json_atomic(target, {"a": 1})

    assert json.loads(target.read_text(encoding="utf-8")) == {"a": 1}
    assert stat.S_IMODE(target.stat().st_mode) == 0o640
    assert [path.name for path in target.parent.iterdir()] == ["doc.json"]


def test_read_json_reports_missing_and_corrupt_files(tmp_path: Path) -> None:
    """Missing and corrupt files raise distinct store errors."""
    with pytest.raises(DocumentMissingError):
        read_json(tmp_path / "absent.json")

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json", encoding="utf-8")
    with pytest.raises(DocumentStoreError, match="corrupted"):
        read_json(corrupt)


def test_get_set_and_update(tmp_path: Path) -> None:
    """Values can be read by selector, assigned, and replaced wholesale."""
    locks = LockManager()
    path = tmp_path / "doc.json"

    async def scenario() -> None:
        document = await JsonDocument.open(
            path,
            unique_key="doc",
            locks=locks,
            initial={"outer": {"inner": 1}},
            lazy=False,
        )
        assert path.is_file()
        assert await document.get(["outer", "inner"]) == 1

        await document.set(["outer"], "inner", 2)
        await document.set([], "top", [1, 2])
        assert await document.get() == {"outer": {"inner": 2}, "top": [1, 2]}

        await document.update_from_provided({"replaced": True})
        assert await document.get() == {"replaced": True}

    asyncio.run(scenario())
    assert json.loads(path.read_text(encoding="utf-8")) == {"replaced": True}


def test_get_returns_a_copy(tmp_path: Path) -> None:
    """Mutating a returned value does not affect the stored document."""
    locks = LockManager()

    async def scenario() -> None:
        document = await JsonDocument.open(
            tmp_path / "doc.json", unique_key="doc", locks=locks, initial={"items": []}, lazy=False
        )
        items = await document.get(["items"])
        items.append("leak")
        assert await document.get(["items"]) == []

    asyncio.run(scenario())


def test_lazy_document_does_not_create_file(tmp_path: Path) -> None:
    """Lazy documents only touch disk on first write."""
    locks = LockManager()
    path = tmp_path / "lazy.json"

    async def scenario() -> None:
        document = await JsonDocument.open(path, unique_key="lazy", locks=locks)
        assert not await document.exists()
        with pytest.raises(DocumentMissingError):
            await document.get()
        await document.update_from_provided({"ok": 1})
        assert await document.exists()

    asyncio.run(scenario())


def test_unresolvable_selector_raises(tmp_path: Path) -> None:
    """Selectors that do not resolve raise DocumentStoreError."""
    locks = LockManager()

    async def scenario() -> None:
        document = await JsonDocument.open(
            tmp_path / "doc.json", unique_key="doc", locks=locks, initial={}, lazy=False
        )
        with pytest.raises(DocumentStoreError, match="does not resolve"):
            await document.get(["missing"])
        with pytest.raises(DocumentStoreError):
            await document.set(["missing"], "key", 1)

    asyncio.run(scenario())


def test_broadcast_on_update_is_rejected(tmp_path: Path) -> None:
    """Cross-process broadcast is not supported and fails loudly."""
    with pytest.raises(DocumentStoreError, match="not supported"):
        JsonDocument(
            tmp_path / "doc.json",
            unique_key="doc",
            locks=LockManager(),
            broadcast_on_update=True,
        )


def test_empty_unique_key_is_rejected(tmp_path: Path) -> None:
    """Documents must be keyed."""
    with pytest.raises(DocumentStoreError):
        JsonDocument(tmp_path / "doc.json", unique_key="", locks=LockManager())


def test_transform_skips_write_when_mutator_returns_none(tmp_path: Path) -> None:
    """A mutator returning None leaves the file untouched."""
    locks = LockManager()
    path = tmp_path / "doc.json"
    write_json_atomic(path, {"a": 1})
    before = path.stat().st_mtime_ns

    async def scenario() -> None:
        document = JsonDocument(path, unique_key="doc", locks=locks)
        current = await document.transform(lambda data: None)
        assert current == {"a": 1}

    asyncio.run(scenario())
    assert path.stat().st_mtime_ns == before


def test_transform_propagates_mutator_errors_without_writing(tmp_path: Path) -> None:
    """Exceptions from the mutator abort the write."""
    locks = LockManager()
    path = tmp_path / "doc.json"
    write_json_atomic(path, {"a": 1})

    def explode(data: object) -> object:
        raise ValueError("nope")

    async def scenario() -> None:
        document = JsonDocument(path, unique_key="doc", locks=locks)
        with pytest.raises(ValueError, match="nope"):
            await document.transform(explode)

    asyncio.run(scenario())
    assert read_json(path) == {"a": 1}


@pytest.mark.mutation_timeout
def test_concurrent_sets_through_shared_key_lose_nothing(tmp_path: Path) -> None:
    """Writers sharing a unique key are linearized, so no update is lost."""
    locks = LockManager()
    path = tmp_path / "doc.json"

    async def scenario() -> None:
        first = await JsonDocument.open(
            path, unique_key="shared", locks=locks, initial={}, lazy=False
        )
        second = await JsonDocument.open(path, unique_key="shared", locks=locks)
        writers = [
            (first if index % 2 else second).set([], f"key{index}", index)
            for index in range(20)
        ]
        await asyncio.gather(*writers)

    asyncio.run(scenario())
    assert read_json(path) == {f"key{index}": index for index in range(20)}
