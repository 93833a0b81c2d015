"""Persisted state: documents, the main registry and per-instance stores."""
from __future__ import annotations

from .document import DocumentMissingError, JsonDocument
from .instance import HealthStatus, InstanceConfigStore, InstanceStatusStore
from .registry import InstanceRecord, MainRegistry, MainRegistryDocument

__all__ = [
    "DocumentMissingError",
    "HealthStatus",
    "InstanceConfigStore",
    "InstanceRecord",
    "InstanceStatusStore",
    "JsonDocument",
    "MainRegistry",
    "MainRegistryDocument",
]
