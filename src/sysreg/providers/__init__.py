"""Provider interfaces for sysreg."""
from __future__ import annotations

from .instance_status_provider import InstanceStatus, InstanceStatusProvider

__all__ = ["InstanceStatus", "InstanceStatusProvider"]
