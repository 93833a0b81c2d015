"""Entry point turning a :class:`~sysreg.definition.Definition` into a registry.

``await define(definition)`` bootstraps the definition's storage and returns
a :class:`DefinitionRegistry` through which callers register instances, look
them up, and obtain lazily built :class:`~sysreg.instance.InstanceHandle`
objects::

    registry = await define(OdooDefinition("OdooErp", "/var/lib/sysreg/odoo"))
    handle = await registry.register("warehouse-1", {"host": "erp.local"})
    await handle.operations.version()
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic

from .bootstrap import ensure_storage_schema
from .config import AppConfig
from .definition import ConfigT, Definition
from .errors import AlreadyRegisteredError, ConnectionTestFailedError, InstanceNotFoundError
from .instance import InstanceHandle, set_instance_active
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .paths import DefinitionLayout, validate_instance_id
from .state.instance import InstanceConfigStore
from .state.registry import InstanceRecord, MainRegistry, MainRegistryDocument

LOGGER = logging.getLogger(__name__)


class HandleCache(Generic[ConfigT]):
    """Memoize one :class:`InstanceHandle` per instance id.

    Construction of a handle happens under a per-id lock so that concurrent
    first accesses for the same id build exactly one handle (and open its
    documents once); accesses for different ids never wait on each other.
    """

    def __init__(self, locks: LockManager, definition_id: str) -> None:
        self._locks = locks
        self._definition_id = definition_id
        self._handles: dict[str, InstanceHandle[ConfigT]] = {}

    def peek(self, instance_id: str) -> InstanceHandle[ConfigT] | None:
        """Return the cached handle for *instance_id* without building it."""
        return self._handles.get(instance_id)

    async def get_or_build(
        self,
        instance_id: str,
        builder: Callable[[], Awaitable[InstanceHandle[ConfigT]]],
    ) -> InstanceHandle[ConfigT]:
        """Return the cached handle, building it with *builder* on first access."""
        cached = self._handles.get(instance_id)
        if cached is not None:
            return cached
        async with self._locks.instance_lock(self._definition_id, instance_id):
            cached = self._handles.get(instance_id)
            if cached is not None:
                return cached
            handle = await builder()
            self._handles[instance_id] = handle
            return handle

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)


class DefinitionRegistry(Generic[ConfigT]):
    """Register, look up and update the instances of one definition."""

    def __init__(
        self,
        definition: Definition[ConfigT],
        *,
        main_registry: MainRegistry,
        locks: LockManager,
        logger: StructuredLogger,
    ) -> None:
        """Wire the registry; prefer :func:`define`, which also bootstraps storage."""
        self._definition = definition
        self._main = main_registry
        self._locks = locks
        self._logger = logger
        self._handles: HandleCache[ConfigT] = HandleCache(locks, definition.definition_id)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def definition(self) -> Definition[ConfigT]:
        """Return the wrapped definition."""
        return self._definition

    @property
    def definition_id(self) -> str:
        """Return the definition's stable id."""
        return self._definition.definition_id

    @property
    def layout(self) -> DefinitionLayout:
        """Return the storage layout of the definition."""
        return self._definition.layout

    @property
    def main_registry(self) -> MainRegistry:
        """Return the main registry of the definition."""
        return self._main

    @property
    def handles(self) -> HandleCache[ConfigT]:
        """Return the cache of instance handles built so far."""
        return self._handles

    # ------------------------------------------------------------------
    # Main registry
    # ------------------------------------------------------------------
    async def get_main_config(self) -> MainRegistryDocument:
        """Return the current main registry document."""
        return await self._main.get()

    async def update_main_config(self, document: MainRegistryDocument) -> None:
        """Atomically replace the main registry document."""
        await self._main.update(document)

    async def list_instances(self) -> dict[str, InstanceRecord]:
        """Return the registry records keyed by instance id."""
        return dict((await self._main.get()).instances)

    async def is_instance_active(self, instance_id: str) -> bool:
        """Return ``True`` when *instance_id* is registered and active."""
        validate_instance_id(instance_id)
        return await self._main.is_active(instance_id)

    async def activate(self, instance_id: str) -> bool:
        """Mark *instance_id* active, returning whether the flag changed."""
        validate_instance_id(instance_id)
        return await set_instance_active(self._main, instance_id, True, logger=self._logger)

    async def deactivate(self, instance_id: str) -> bool:
        """Mark *instance_id* inactive, returning whether the flag changed."""
        validate_instance_id(instance_id)
        return await set_instance_active(self._main, instance_id, False, logger=self._logger)

    # ------------------------------------------------------------------
    # Instance configuration
    # ------------------------------------------------------------------
    async def get_instance_configuration(self, instance_id: str) -> ConfigT | None:
        """Return the persisted configuration, ``None`` when missing or unreadable."""
        config: Any = await self._config_store(instance_id).read_or_none()
        return config

    async def update_instance_configuration(self, instance_id: str, config: ConfigT) -> None:
        """Overwrite the configuration of a registered instance."""
        validate_instance_id(instance_id)
        with self._logger.operation(
            "instance config update",
            args={"instance_id": instance_id},
            target=self._target(instance_id),
        ) as op:
            await asyncio.to_thread(ensure_storage_schema, self.layout, self.definition_id)
            if instance_id not in await self._main.get():
                raise InstanceNotFoundError(instance_id, self.definition_id)
            await self._config_store(instance_id).write(config)
            op.add_step("config.write", status="success")
            op.success("Instance configuration replaced.", changed=1)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    async def register(self, instance_id: str, config: ConfigT) -> InstanceHandle[ConfigT]:
        """Register a new instance after a successful connectivity test."""
        validate_instance_id(instance_id)
        with self._logger.operation(
            "instance register",
            args={"instance_id": instance_id},
            target=self._target(instance_id),
        ) as op:
            await self._require_connection(instance_id, config)
            op.add_step("connection.test", status="success")
            await self._create_instance(instance_id, config, op)
            op.add_step("registry.insert", status="success")
            op.add_step("config.write", status="success")
            handle = await self._require_instance(instance_id)
            op.success("Instance registered.", changed=2)
            return handle

    async def get_or_register_instance(
        self,
        instance_id: str,
        config: ConfigT,
    ) -> InstanceHandle[ConfigT]:
        """Register *instance_id*, or overwrite its configuration when it exists.

        The connectivity test always runs first; nothing is persisted when it
        fails.
        """
        validate_instance_id(instance_id)
        with self._logger.operation(
            "instance upsert",
            args={"instance_id": instance_id},
            target=self._target(instance_id),
        ) as op:
            await self._require_connection(instance_id, config)
            op.add_step("connection.test", status="success")
            if instance_id not in await self._main.get():
                try:
                    await self._create_instance(instance_id, config, op)
                except AlreadyRegisteredError:
                    LOGGER.debug("instance %s registered concurrently, updating", instance_id)
                else:
                    op.add_step("registry.insert", status="success")
                    op.add_step("config.write", status="success")
                    handle = await self._require_instance(instance_id)
                    op.success("Instance registered.", changed=2)
                    return handle
            await self._config_store(instance_id).write(config)
            op.add_step("config.write", status="success")
            handle = await self._require_instance(instance_id)
            op.success("Instance configuration replaced.", changed=1)
            return handle

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------
    async def get_instance(self, instance_id: str) -> InstanceHandle[ConfigT] | None:
        """Return the handle for *instance_id*, or ``None`` when not registered.

        An id whose configuration file is missing or unreadable counts as not
        registered.
        """
        validate_instance_id(instance_id)
        if instance_id not in await self._main.get():
            return None
        if not await self._config_store(instance_id).is_readable():
            LOGGER.warning(
                "instance %s of %s has no readable configuration, treating as unregistered",
                instance_id,
                self.definition_id,
            )
            return None
        return await self._handles.get_or_build(
            instance_id,
            lambda: InstanceHandle.build(
                instance_id,
                definition=self._definition,
                registry=self._main,
                paths=self.layout.instance_paths(instance_id),
                locks=self._locks,
                logger=self._logger,
            ),
        )

    # Internal helpers -------------------------------------------------
    def _config_store(self, instance_id: str) -> InstanceConfigStore:
        return InstanceConfigStore.for_instance(
            self.layout.instance_paths(instance_id),
            definition_id=self.definition_id,
            instance_id=instance_id,
            locks=self._locks,
        )

    def _target(self, instance_id: str) -> dict[str, object]:
        return {"kind": "instance", "definition": self.definition_id, "id": instance_id}

    async def _require_connection(self, instance_id: str, config: ConfigT) -> None:
        if not await self._definition.check_connection(config):
            raise ConnectionTestFailedError(instance_id)

    async def _create_instance(
        self, instance_id: str, config: ConfigT, op: OperationScope
    ) -> None:
        # Held until the config is written so a concurrent registration of the
        # same id cannot mistake the half-created entry for an orphan.
        async with self._locks.instance_lock(self.definition_id, instance_id) as held:
            op.set_lock_wait_ms(held.wait_ms)
            paths = self.layout.instance_paths(instance_id)
            config_store = self._config_store(instance_id)
            orphaned = (
                instance_id in await self._main.get()
                and not await config_store.is_readable()
            )
            await self._main.insert(
                instance_id,
                InstanceRecord(config_path=str(paths.config_path), active=True),
                replace_orphan=orphaned,
            )
            await asyncio.to_thread(paths.directory.mkdir, parents=True, exist_ok=True)
            await config_store.write(config)

    async def _require_instance(self, instance_id: str) -> InstanceHandle[ConfigT]:
        handle = await self.get_instance(instance_id)
        if handle is None:
            raise InstanceNotFoundError(instance_id, self.definition_id)
        return handle


async def define(
    definition: Definition[ConfigT],
    *,
    config: AppConfig | None = None,
    locks: LockManager | None = None,
    logger: StructuredLogger | None = None,
) -> DefinitionRegistry[ConfigT]:
    """Bootstrap *definition*'s storage and return its registry.

    *config* supplies the lock timeout and the structured log directory when
    *locks* or *logger* are not given explicitly. Locks come from the
    process-wide lock table, so registries opened on the same storage root
    serialize their writes against each other.
    """
    if locks is None:
        locks = LockManager(config.lock_timeout if config is not None else None)
    if logger is None:
        if config is not None and config.logging.enabled:
            logger = StructuredLogger(config.logs_dir)
        else:
            logger = StructuredLogger.disabled()

    artifacts = await asyncio.to_thread(
        ensure_storage_schema, definition.layout, definition.definition_id
    )
    if artifacts.created:
        LOGGER.info("created storage schema for %s", definition.definition_id)
    main_registry = await MainRegistry.open(definition.layout, definition.definition_id, locks)
    return DefinitionRegistry(
        definition,
        main_registry=main_registry,
        locks=locks,
        logger=logger,
    )


__all__ = ["DefinitionRegistry", "HandleCache", "define"]
