"""Storage schema bootstrap for a definition's storage root."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .paths import DefinitionLayout
from .state.document import write_json_atomic
from .state.registry import MainRegistryDocument

LOGGER = logging.getLogger(__name__)

ROOT_GITIGNORE = "\nmain.json\n\n\n!**/.gitignore\n"
INSTANCES_GITIGNORE = "\n*.*\n**/*.*\n\n!**/.gitignore\n"


@dataclass(slots=True)
class SchemaArtifacts:
    """Paths touched while bootstrapping a storage root."""

    main: Path
    instances_dir: Path
    created: bool


def ensure_storage_schema(layout: DefinitionLayout, definition_id: str) -> SchemaArtifacts:
    """Create ``main.json`` and the instances directory when missing.

    Existing storage is left untouched. Blocking; call through
    ``asyncio.to_thread`` from async code.
    """
    main_path = layout.main_path
    instances_dir = layout.instances_dir
    if main_path.exists():
        instances_dir.mkdir(parents=True, exist_ok=True)
        return SchemaArtifacts(main=main_path, instances_dir=instances_dir, created=False)

    LOGGER.info("bootstrapping storage for %s at %s", definition_id, layout.root)
    layout.root.mkdir(parents=True, exist_ok=True)
    (layout.root / ".gitignore").write_text(ROOT_GITIGNORE, encoding="utf-8")
    write_json_atomic(main_path, MainRegistryDocument.empty(definition_id).to_dict())
    instances_dir.mkdir(parents=True, exist_ok=True)
    (instances_dir / ".gitignore").write_text(INSTANCES_GITIGNORE, encoding="utf-8")
    return SchemaArtifacts(main=main_path, instances_dir=instances_dir, created=True)


__all__ = ["SchemaArtifacts", "ensure_storage_schema"]
