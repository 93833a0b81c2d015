"""The main registry document of a definition.

``main.json`` is the single authority for which instances exist and whether
they are active. It is only ever mutated through :meth:`MainRegistry.mutate`,
a read-modify-write performed under the document's unique key.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..errors import AlreadyRegisteredError, DocumentStoreError, InstanceNotFoundError
from ..locking import LockManager
from ..paths import DefinitionLayout
from .document import JsonDocument, as_mapping

T = TypeVar("T")


def main_registry_key(definition_id: str) -> str:
    """Return the unique key serializing writers of a definition's ``main.json``."""
    return f"system_integration_instance:{definition_id}"


@dataclass(slots=True)
class InstanceRecord:
    """Registry entry describing one instance."""

    config_path: str
    active: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"instance_configuration_path": self.config_path, "active": self.active}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, label: str) -> InstanceRecord:
        """Parse a record, raising :class:`DocumentStoreError` when malformed."""
        config_path = data.get("instance_configuration_path")
        if not isinstance(config_path, str) or not config_path:
            raise DocumentStoreError(f"{label} is missing 'instance_configuration_path'.")
        return cls(config_path=config_path, active=bool(data.get("active", False)))


@dataclass(slots=True)
class MainRegistryDocument:
    """Parsed contents of ``main.json``."""

    definition_id: str
    instances: dict[str, InstanceRecord] = field(default_factory=dict)

    def get(self, instance_id: str) -> InstanceRecord | None:
        """Return the record for *instance_id* if registered."""
        return self.instances.get(instance_id)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self.instances

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "definition_id": self.definition_id,
            "instances": {
                instance_id: record.to_dict() for instance_id, record in self.instances.items()
            },
        }

    @classmethod
    def empty(cls, definition_id: str) -> MainRegistryDocument:
        """Return a document without instances."""
        return cls(definition_id=definition_id)

    @classmethod
    def from_dict(cls, raw: object, *, definition_id: str) -> MainRegistryDocument:
        """Parse *raw*, falling back to *definition_id* when the key is absent."""
        data = as_mapping(raw, "main registry")
        raw_instances = as_mapping(data.get("instances", {}), "main registry instances")
        instances: dict[str, InstanceRecord] = {}
        for instance_id, entry in raw_instances.items():
            label = f"main registry entry '{instance_id}'"
            instances[str(instance_id)] = InstanceRecord.from_dict(
                as_mapping(entry, label),
                label=label,
            )
        return cls(
            definition_id=str(data.get("definition_id") or definition_id),
            instances=instances,
        )


class MainRegistry:
    """High-level access to a definition's ``main.json``."""

    def __init__(self, document: JsonDocument, definition_id: str) -> None:
        """Wrap an opened *document* for *definition_id*."""
        self._document = document
        self.definition_id = definition_id

    @classmethod
    async def open(
        cls,
        layout: DefinitionLayout,
        definition_id: str,
        locks: LockManager,
    ) -> MainRegistry:
        """Open (creating when missing) the main registry under *layout*."""
        document = await JsonDocument.open(
            layout.main_path,
            unique_key=main_registry_key(definition_id),
            locks=locks,
            initial=MainRegistryDocument.empty(definition_id).to_dict(),
            lazy=False,
        )
        return cls(document, definition_id)

    @property
    def document(self) -> JsonDocument:
        """Return the underlying JSON document."""
        return self._document

    async def get(self) -> MainRegistryDocument:
        """Return the current registry contents."""
        raw = await self._document.get()
        return MainRegistryDocument.from_dict(raw, definition_id=self.definition_id)

    async def update(self, document: MainRegistryDocument) -> None:
        """Atomically replace the registry contents."""
        await self._document.update_from_provided(document.to_dict())

    async def mutate(self, mutator: Callable[[MainRegistryDocument], T]) -> T:
        """Run *mutator* against the registry as one linearized step.

        The file is rewritten only when *mutator* actually changed the
        document. The mutator's return value is passed through.
        """
        outcome: list[T] = []

        def _apply(raw: object) -> dict[str, object] | None:
            parsed = MainRegistryDocument.from_dict(raw, definition_id=self.definition_id)
            before = parsed.to_dict()
            outcome.append(mutator(parsed))
            after = parsed.to_dict()
            return None if after == before else after

        await self._document.transform(_apply)
        return outcome[0]

    # Instance helpers -------------------------------------------------
    async def is_active(self, instance_id: str) -> bool:
        """Return ``True`` when *instance_id* is registered and active."""
        record = (await self.get()).get(instance_id)
        return record is not None and record.active

    async def insert(
        self,
        instance_id: str,
        record: InstanceRecord,
        *,
        replace_orphan: bool = False,
    ) -> None:
        """Add *record* for *instance_id*.

        Raises :class:`AlreadyRegisteredError` when the id is present, unless
        *replace_orphan* is set (the caller determined the entry's config
        file is gone).
        """

        def _insert(document: MainRegistryDocument) -> None:
            if instance_id in document and not replace_orphan:
                raise AlreadyRegisteredError(instance_id, self.definition_id)
            document.instances[instance_id] = record

        await self.mutate(_insert)

    async def set_active(self, instance_id: str, active: bool) -> bool:
        """Set the active flag for *instance_id*, returning whether it changed."""

        def _toggle(document: MainRegistryDocument) -> bool:
            record = document.get(instance_id)
            if record is None:
                raise InstanceNotFoundError(instance_id, self.definition_id)
            if record.active == active:
                return False
            record.active = active
            return True

        return await self.mutate(_toggle)


__all__ = [
    "InstanceRecord",
    "MainRegistry",
    "MainRegistryDocument",
    "main_registry_key",
]
