"""The plugin interface implemented once per remote system."""
from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any, Generic, TypeVar

from .paths import DefinitionLayout

ConfigT = TypeVar("ConfigT")

Operation = Callable[..., Awaitable[Any]]


class ConfigAccessor(Generic[ConfigT]):
    """Give operations read access to the live persisted configuration."""

    def __init__(self, loader: Callable[[], Awaitable[ConfigT]]) -> None:
        self._loader = loader

    async def get_configuration(self) -> ConfigT:
        """Return the configuration as currently persisted on disk."""
        return await self._loader()


class Definition(ABC, Generic[ConfigT]):
    """Describe how to reach one kind of remote system.

    Subclasses implement exactly two hooks: :meth:`test_connection`, a quick
    reachability check, and :meth:`build_operations`, which returns the
    remote operations callers may invoke on an instance. Either hook may be
    a plain function or a coroutine function.
    """

    def __init__(self, definition_id: str, storage_root: Path | str) -> None:
        """Bind the definition to a stable id and its storage directory."""
        normalized = definition_id.strip()
        if not normalized:
            raise ValueError("definition_id must be a non-empty string.")
        self._definition_id = normalized
        self._layout = DefinitionLayout.from_root(storage_root)

    @property
    def definition_id(self) -> str:
        """Return the stable key of this definition, e.g. ``"OdooErp"``."""
        return self._definition_id

    @property
    def storage_root(self) -> Path:
        """Return the directory holding this definition's registry files."""
        return self._layout.root

    @property
    def layout(self) -> DefinitionLayout:
        """Return the storage layout rooted at :attr:`storage_root`."""
        return self._layout

    @abstractmethod
    def test_connection(self, config: ConfigT) -> bool | Awaitable[bool]:
        """Return whether the remote system described by *config* is reachable."""

    @abstractmethod
    def build_operations(
        self,
        accessor: ConfigAccessor[ConfigT],
    ) -> Mapping[str, Operation] | Awaitable[Mapping[str, Operation]]:
        """Return the remote operations available on an instance."""

    async def check_connection(self, config: ConfigT) -> bool:
        """Run :meth:`test_connection`, awaiting it when needed."""
        outcome = self.test_connection(config)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return bool(outcome)

    async def operations_for(self, accessor: ConfigAccessor[ConfigT]) -> dict[str, Operation]:
        """Run :meth:`build_operations` and validate its result."""
        operations = self.build_operations(accessor)
        if inspect.isawaitable(operations):
            operations = await operations
        if not isinstance(operations, Mapping):
            raise TypeError(
                f"{type(self).__name__}.build_operations must return a mapping of callables."
            )
        built: dict[str, Operation] = {}
        for name, operation in operations.items():
            if not callable(operation):
                raise TypeError(f"Operation '{name}' of {self.definition_id} is not callable.")
            built[str(name)] = operation
        return built

    def __repr__(self) -> str:
        return f"{type(self).__name__}(definition_id={self._definition_id!r})"


__all__ = ["ConfigAccessor", "Definition", "Operation"]
