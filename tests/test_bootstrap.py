"""Tests for storage schema bootstrapping."""
from __future__ import annotations

import json
from pathlib import Path

from sysreg.bootstrap import INSTANCES_GITIGNORE, ROOT_GITIGNORE, ensure_storage_schema
from sysreg.paths import DefinitionLayout


def test_bootstrap_creates_schema(tmp_path: Path) -> None:
    """A fresh root gets main.json, the instances dir and both ignore files."""
    layout = DefinitionLayout.from_root(tmp_path / "odoo")

    artifacts = ensure_storage_schema(layout, "OdooErp")

    assert artifacts.created is True
    assert json.loads(layout.main_path.read_text(encoding="utf-8")) == {
        "definition_id": "OdooErp",
        "instances": {},
    }
    assert layout.instances_dir.is_dir()
    assert (layout.root / ".gitignore").read_text(encoding="utf-8") == ROOT_GITIGNORE
    assert (layout.instances_dir / ".gitignore").read_text(encoding="utf-8") == (
        INSTANCES_GITIGNORE
    )
    assert "main.json" in ROOT_GITIGNORE
    assert "!**/.gitignore" in INSTANCES_GITIGNORE


def test_bootstrap_leaves_existing_storage_untouched(tmp_path: Path) -> None:
    """Existing registries are never rewritten."""
    layout = DefinitionLayout.from_root(tmp_path)
    layout.root.mkdir(parents=True, exist_ok=True)
    existing = {"definition_id": "OdooErp", "instances": {"abc": {}}}
    layout.main_path.write_text(json.dumps(existing), encoding="utf-8")

    artifacts = ensure_storage_schema(layout, "OdooErp")

    assert artifacts.created is False
    assert json.loads(layout.main_path.read_text(encoding="utf-8")) == existing
    assert layout.instances_dir.is_dir()
    assert not (layout.root / ".gitignore").exists()


def test_bootstrap_is_idempotent(tmp_path: Path) -> None:
    """Running the bootstrap twice only creates the schema once."""
    layout = DefinitionLayout.from_root(tmp_path / "root")

    assert ensure_storage_schema(layout, "OdooErp").created is True
    assert ensure_storage_schema(layout, "OdooErp").created is False
