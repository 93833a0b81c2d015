"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from sysreg.definition import ConfigAccessor, Definition, Operation


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class RecordingDefinition(Definition[dict[str, Any]]):
    """In-memory remote system that records every plugin call."""

    def __init__(
        self,
        storage_root: Path,
        *,
        definition_id: str = "TestSystem",
        reachable: bool = True,
        build_delay: float = 0.0,
    ) -> None:
        super().__init__(definition_id, storage_root)
        self.reachable = reachable
        self.build_delay = build_delay
        self.connection_tests: list[dict[str, Any] | None] = []
        self.build_calls = 0

    async def test_connection(self, config: dict[str, Any]) -> bool:
        self.connection_tests.append(dict(config) if config is not None else config)
        await asyncio.sleep(0)
        return self.reachable

    async def build_operations(
        self,
        accessor: ConfigAccessor[dict[str, Any]],
    ) -> Mapping[str, Operation]:
        self.build_calls += 1
        if self.build_delay:
            await asyncio.sleep(self.build_delay)

        async def foo() -> str:
            return "bar"

        async def echo_config() -> dict[str, Any]:
            return await accessor.get_configuration()

        async def add(left: int, right: int = 0) -> int:
            return left + right

        async def fail() -> None:
            raise ConnectionError("remote exploded")

        return {"foo": foo, "echo_config": echo_config, "add": add, "fail": fail}


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Return the storage root used by the recording definition."""
    return tmp_path / "storage"


@pytest.fixture
def definition(storage_root: Path) -> RecordingDefinition:
    """Return a reachable recording definition."""
    return RecordingDefinition(storage_root)


@pytest.fixture
def make_definition(storage_root: Path) -> Callable[..., RecordingDefinition]:
    """Return a factory building recording definitions on the shared storage root."""

    def _make(**kwargs: Any) -> RecordingDefinition:
        return RecordingDefinition(storage_root, **kwargs)

    return _make
