"""Error taxonomy raised by the instance registry."""
from __future__ import annotations

from .exit_codes import ExitCode


class SysregError(RuntimeError):
    """Base class for registry failures."""

    exit_code: ExitCode = ExitCode.VALIDATION


class InvalidArgumentError(SysregError):
    """Raised when an instance identifier is malformed."""


class AlreadyRegisteredError(SysregError):
    """Raised when registering an identifier that already exists."""

    def __init__(self, instance_id: str, definition_id: str) -> None:
        super().__init__(
            f"Connection id '{instance_id}' is already used in {definition_id}."
        )
        self.instance_id = instance_id
        self.definition_id = definition_id


class InstanceNotFoundError(SysregError):
    """Raised when an identifier is not present in the main registry."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, instance_id: str, definition_id: str) -> None:
        super().__init__(
            f"Integration instance with id '{instance_id}' is not registered "
            f"in {definition_id}."
        )
        self.instance_id = instance_id
        self.definition_id = definition_id


class ConnectionTestFailedError(SysregError):
    """Raised when a definition's connectivity test returns ``False``."""

    exit_code = ExitCode.PROVIDER

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Connection test failed for '{instance_id}'.")
        self.instance_id = instance_id


class InstanceDeactivatedError(SysregError):
    """Raised when a gated call targets an inactive instance."""

    exit_code = ExitCode.NOT_AUTHORIZED

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Connection instance '{instance_id}' is deactivated.")
        self.instance_id = instance_id


class DocumentStoreError(SysregError):
    """Raised when a persisted document is unreadable or misconfigured."""

    exit_code = ExitCode.ENVIRONMENT


__all__ = [
    "AlreadyRegisteredError",
    "ConnectionTestFailedError",
    "DocumentStoreError",
    "InstanceDeactivatedError",
    "InstanceNotFoundError",
    "InvalidArgumentError",
    "SysregError",
]
