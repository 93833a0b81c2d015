"""Content-addressed storage paths for definitions and their instances.

Every instance lives in a directory named after the SHA-256 digest of its
identifier so that registry entries and filesystem locations stay
reconcilable across restarts::

    <storage_root>/main.json
    <storage_root>/instances/<sha256(id)>/config.json
    <storage_root>/instances/<sha256(id)>/status.json
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from .errors import InvalidArgumentError

MIN_INSTANCE_ID_LENGTH = 3
MAIN_FILE_NAME = "main.json"
INSTANCES_DIR_NAME = "instances"
CONFIG_FILE_NAME = "config.json"
STATUS_FILE_NAME = "status.json"


@dataclass(frozen=True, slots=True)
class InstancePaths:
    """Filesystem locations owned by a single instance."""

    directory: Path
    config_path: Path
    status_path: Path


@dataclass(frozen=True, slots=True)
class DefinitionLayout:
    """Filesystem layout rooted at a definition's storage directory."""

    root: Path

    @classmethod
    def from_root(cls, root: Path | str) -> DefinitionLayout:
        """Build a layout for *root*, expanding ``~``."""
        return cls(Path(root).expanduser())

    @property
    def main_path(self) -> Path:
        """Return the path of the main registry document."""
        return self.root / MAIN_FILE_NAME

    @property
    def instances_dir(self) -> Path:
        """Return the directory holding per-instance folders."""
        return self.root / INSTANCES_DIR_NAME

    def instance_paths(self, instance_id: str) -> InstancePaths:
        """Return the paths for *instance_id* under this layout."""
        return resolve(self.instances_dir, instance_id)


def validate_instance_id(instance_id: str) -> str:
    """Return *instance_id* unchanged, raising when it is too short."""
    if not isinstance(instance_id, str) or len(instance_id) < MIN_INSTANCE_ID_LENGTH:
        raise InvalidArgumentError(
            "Connection instance identifier must be at least "
            f"{MIN_INSTANCE_ID_LENGTH} characters long."
        )
    return instance_id


def instance_digest(instance_id: str) -> str:
    """Return the hex digest used as the directory name for *instance_id*."""
    return hashlib.sha256(validate_instance_id(instance_id).encode("utf-8")).hexdigest()


def resolve(instances_dir: Path, instance_id: str) -> InstancePaths:
    """Map *instance_id* to its deterministic storage location."""
    directory = instances_dir / instance_digest(instance_id)
    return InstancePaths(
        directory=directory,
        config_path=directory / CONFIG_FILE_NAME,
        status_path=directory / STATUS_FILE_NAME,
    )


__all__ = [
    "DefinitionLayout",
    "InstancePaths",
    "MIN_INSTANCE_ID_LENGTH",
    "instance_digest",
    "resolve",
    "validate_instance_id",
]
