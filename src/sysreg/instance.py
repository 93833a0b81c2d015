"""Runtime handles wrapping one registered instance.

An :class:`InstanceHandle` owns the instance's config and status documents
and exposes the definition's operations wrapped so that every call

1. re-reads the main registry and refuses to run while the instance is
   deactivated,
2. invokes the underlying operation,
3. records ``working`` or ``not-working`` in ``status.json``.

The active flag is never cached on the handle.
"""
from __future__ import annotations

import logging
from typing import Any, Generic

from .definition import ConfigAccessor, ConfigT, Definition
from .errors import InstanceDeactivatedError
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .operations import OperationSet, wrap_operations
from .paths import InstancePaths
from .state.instance import HealthStatus, InstanceConfigStore, InstanceStatusStore
from .state.registry import MainRegistry

LOGGER = logging.getLogger(__name__)


async def apply_active_flag(
    registry: MainRegistry,
    instance_id: str,
    active: bool,
    op: OperationScope,
) -> bool:
    """Flip the active flag of *instance_id* and record the outcome on *op*.

    Setting the flag to its current value performs no write.
    """
    changed = await registry.set_active(instance_id, active)
    state = "active" if active else "inactive"
    if changed:
        op.add_step("registry.update", status="success", detail=f"active={active}")
        op.success(f"Instance marked {state}.", changed=1)
    else:
        op.add_step("registry.update", status="skipped", detail=f"already {state}")
        op.success(f"Instance already {state}.", changed=0)
    return changed


async def set_instance_active(
    registry: MainRegistry,
    instance_id: str,
    active: bool,
    *,
    logger: StructuredLogger,
) -> bool:
    """Flip the active flag in its own logged operation, returning whether it changed."""
    command = "instance activate" if active else "instance deactivate"
    with logger.operation(
        command,
        args={"instance_id": instance_id},
        target={"kind": "instance", "definition": registry.definition_id, "id": instance_id},
    ) as op:
        return await apply_active_flag(registry, instance_id, active, op)


class InstanceHandle(Generic[ConfigT]):
    """Config/status accessors plus guarded operations for one instance."""

    def __init__(
        self,
        instance_id: str,
        *,
        definition: Definition[ConfigT],
        registry: MainRegistry,
        paths: InstancePaths,
        config_store: InstanceConfigStore,
        status_store: InstanceStatusStore,
        logger: StructuredLogger,
    ) -> None:
        """Assemble a handle; use :meth:`build` to also create its operations."""
        self._instance_id = instance_id
        self._definition = definition
        self._registry = registry
        self._paths = paths
        self._config_store = config_store
        self._status_store = status_store
        self._logger = logger
        self.operations: OperationSet = OperationSet({})

    @classmethod
    async def build(
        cls,
        instance_id: str,
        *,
        definition: Definition[ConfigT],
        registry: MainRegistry,
        paths: InstancePaths,
        locks: LockManager,
        logger: StructuredLogger,
    ) -> InstanceHandle[ConfigT]:
        """Open the instance documents and wrap the definition's operations."""
        config_store = InstanceConfigStore.for_instance(
            paths,
            definition_id=definition.definition_id,
            instance_id=instance_id,
            locks=locks,
        )
        status_store = await InstanceStatusStore.open(
            paths,
            definition_id=definition.definition_id,
            instance_id=instance_id,
            locks=locks,
        )
        handle = cls(
            instance_id,
            definition=definition,
            registry=registry,
            paths=paths,
            config_store=config_store,
            status_store=status_store,
            logger=logger,
        )
        accessor: ConfigAccessor[ConfigT] = ConfigAccessor(handle.get_config)
        raw_operations = await definition.operations_for(accessor)
        handle.operations = wrap_operations(
            raw_operations,
            gate=handle._ensure_active,
            record=handle._record_status,
        )
        LOGGER.debug(
            "built handle for %s:%s with operations %s",
            definition.definition_id,
            instance_id,
            sorted(handle.operations),
        )
        return handle

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def id(self) -> str:
        """Return the instance identifier."""
        return self._instance_id

    @property
    def paths(self) -> InstancePaths:
        """Return the instance's storage paths."""
        return self._paths

    @property
    def config_store(self) -> InstanceConfigStore:
        """Return the store holding the instance configuration."""
        return self._config_store

    async def get_config(self) -> ConfigT:
        """Return the live persisted configuration."""
        config: Any = await self._config_store.read()
        return config

    async def update_config(self, config: ConfigT) -> None:
        """Replace the persisted configuration wholesale."""
        await self._config_store.write(config)

    async def last_known_status(self) -> HealthStatus:
        """Return the status recorded by the most recent call."""
        return await self._status_store.get()

    async def is_active(self) -> bool:
        """Return the active flag as currently stored in the main registry."""
        return await self._registry.is_active(self._instance_id)

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------
    async def activate(self) -> bool:
        """Allow operations again; no-op when already active."""
        return await set_instance_active(
            self._registry, self._instance_id, True, logger=self._logger
        )

    async def deactivate(self) -> bool:
        """Refuse further operations; no-op when already inactive."""
        return await set_instance_active(
            self._registry, self._instance_id, False, logger=self._logger
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    async def test_connection(self) -> bool:
        """Re-run the definition's connectivity test against the live config."""
        await self._ensure_active()
        try:
            succeeded = await self._definition.check_connection(await self.get_config())
        except Exception:
            await self._record_status(HealthStatus.NOT_WORKING)
            raise
        await self._record_status(HealthStatus.from_outcome(succeeded))
        return succeeded

    async def _ensure_active(self) -> None:
        if not await self.is_active():
            raise InstanceDeactivatedError(self._instance_id)

    async def _record_status(self, status: HealthStatus) -> None:
        try:
            await self._status_store.record(status)
        except Exception:
            LOGGER.warning(
                "failed to record status %s for instance %s",
                status.value,
                self._instance_id,
                exc_info=True,
            )

    def __repr__(self) -> str:
        return (
            f"InstanceHandle(definition={self._definition.definition_id!r}, "
            f"id={self._instance_id!r})"
        )


__all__ = ["InstanceHandle", "apply_active_flag", "set_instance_active"]
