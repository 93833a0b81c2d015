"""Per-instance configuration and health documents."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from ..errors import DocumentStoreError
from ..locking import LockManager
from ..paths import InstancePaths
from .document import JsonDocument, as_mapping

LOGGER = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Last observed outcome of an instance's operations."""

    UNKNOWN = "unknown"
    WORKING = "working"
    NOT_WORKING = "not-working"

    @classmethod
    def from_outcome(cls, succeeded: bool) -> HealthStatus:
        """Translate a boolean outcome into a status."""
        return cls.WORKING if succeeded else cls.NOT_WORKING

    @classmethod
    def parse(cls, value: object) -> HealthStatus:
        """Return the status named by *value*, ``UNKNOWN`` when unrecognised."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


def instance_key(definition_id: str, instance_id: str, kind: str) -> str:
    """Return the unique key for one of an instance's documents."""
    return f"connection_instance:{definition_id}:{instance_id}:{kind}"


class InstanceConfigStore:
    """The opaque configuration document of one instance."""

    def __init__(self, document: JsonDocument) -> None:
        self._document = document

    @classmethod
    def for_instance(
        cls,
        paths: InstancePaths,
        *,
        definition_id: str,
        instance_id: str,
        locks: LockManager,
    ) -> InstanceConfigStore:
        """Return the store for *instance_id*; the file is not touched."""
        return cls(
            JsonDocument(
                paths.config_path,
                unique_key=instance_key(definition_id, instance_id, "config"),
                locks=locks,
            )
        )

    @property
    def document(self) -> JsonDocument:
        """Return the underlying JSON document."""
        return self._document

    async def read(self) -> Any:
        """Return the persisted configuration."""
        return await self._document.get()

    async def read_or_none(self) -> Any | None:
        """Return the configuration, or ``None`` when missing or unreadable."""
        try:
            return await self._document.get()
        except DocumentStoreError as exc:
            LOGGER.warning("instance configuration unavailable: %s", exc)
            return None

    async def is_readable(self) -> bool:
        """Return ``True`` when the configuration file exists and parses.

        A stored JSON ``null`` is a readable configuration.
        """
        try:
            await self._document.get()
        except DocumentStoreError as exc:
            LOGGER.warning("instance configuration unavailable: %s", exc)
            return False
        return True

    async def write(self, config: object) -> None:
        """Replace the persisted configuration wholesale."""
        await self._document.update_from_provided(config)


class InstanceStatusStore:
    """The ``status.json`` document of one instance."""

    def __init__(self, document: JsonDocument) -> None:
        self._document = document

    @classmethod
    async def open(
        cls,
        paths: InstancePaths,
        *,
        definition_id: str,
        instance_id: str,
        locks: LockManager,
    ) -> InstanceStatusStore:
        """Open the status document, creating it as ``unknown`` when missing."""
        document = await JsonDocument.open(
            paths.status_path,
            unique_key=instance_key(definition_id, instance_id, "status"),
            locks=locks,
            initial={"last_known_status": HealthStatus.UNKNOWN.value},
            lazy=False,
        )
        return cls(document)

    @property
    def document(self) -> JsonDocument:
        """Return the underlying JSON document."""
        return self._document

    async def get(self) -> HealthStatus:
        """Return the last recorded status."""
        data = as_mapping(await self._document.get(), "instance status")
        return HealthStatus.parse(data.get("last_known_status"))

    async def record(self, status: HealthStatus) -> None:
        """Persist *status* as the last known status."""
        await self._document.set([], "last_known_status", status.value)


__all__ = [
    "HealthStatus",
    "InstanceConfigStore",
    "InstanceStatusStore",
    "instance_key",
]
