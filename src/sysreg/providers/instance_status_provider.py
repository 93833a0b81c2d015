"""Read instance health without building an instance handle."""
from __future__ import annotations

from dataclasses import dataclass

from ..errors import DocumentStoreError
from ..paths import DefinitionLayout
from ..state.document import DocumentMissingError, read_json
from ..state.instance import HealthStatus


@dataclass(frozen=True)
class InstanceStatus:
    """Represents the last known status of an instance."""

    state: HealthStatus
    detail: str = ""


class InstanceStatusProvider:
    """Return status information recorded in an instance's ``status.json``.

    Blocking; intended for the CLI and other synchronous callers.
    """

    def status(self, layout: DefinitionLayout, instance_id: str) -> InstanceStatus:
        """Return the status for *instance_id* stored under *layout*."""
        status_path = layout.instance_paths(instance_id).status_path
        try:
            data = read_json(status_path)
        except DocumentMissingError:
            return InstanceStatus(
                state=HealthStatus.UNKNOWN,
                detail="No operation has been recorded yet.",
            )
        except DocumentStoreError as exc:
            return InstanceStatus(state=HealthStatus.UNKNOWN, detail=str(exc))

        raw_state = data.get("last_known_status") if isinstance(data, dict) else None
        state = HealthStatus.parse(raw_state)
        if state is HealthStatus.UNKNOWN:
            detail = "Status has not been determined."
        else:
            detail = "Recorded by the most recent operation."
        return InstanceStatus(state=state, detail=detail)


__all__ = ["InstanceStatus", "InstanceStatusProvider"]
