"""Tests for the synchronous instance status provider."""
from __future__ import annotations

import json
from pathlib import Path

from sysreg.paths import DefinitionLayout
from sysreg.providers import InstanceStatusProvider
from sysreg.state import HealthStatus


def _write_status(layout: DefinitionLayout, instance_id: str, payload: str) -> None:
    paths = layout.instance_paths(instance_id)
    paths.directory.mkdir(parents=True, exist_ok=True)
    paths.status_path.write_text(payload, encoding="utf-8")


def test_missing_status_reports_unknown(tmp_path: Path) -> None:
    """Instances that never ran an operation report unknown."""
    status = InstanceStatusProvider().status(DefinitionLayout.from_root(tmp_path), "abc123")

    assert status.state is HealthStatus.UNKNOWN
    assert "No operation" in status.detail


def test_recorded_status_is_reported(tmp_path: Path) -> None:
    """Recorded outcomes are surfaced with their state."""
    layout = DefinitionLayout.from_root(tmp_path)
    _write_status(layout, "abc123", json.dumps({"last_known_status": "not-working"}))

    status = InstanceStatusProvider().status(layout, "abc123")

    assert status.state is HealthStatus.NOT_WORKING
    assert status.detail == "Recorded by the most recent operation."


def test_unreadable_status_reports_unknown_with_error(tmp_path: Path) -> None:
    """Corrupt status files degrade to unknown with the error as detail."""
    layout = DefinitionLayout.from_root(tmp_path)
    _write_status(layout, "abc123", "{oops")

    status = InstanceStatusProvider().status(layout, "abc123")

    assert status.state is HealthStatus.UNKNOWN
    assert "corrupted" in status.detail


def test_initial_unknown_status(tmp_path: Path) -> None:
    """The initial unknown document is reported as undetermined."""
    layout = DefinitionLayout.from_root(tmp_path)
    _write_status(layout, "abc123", json.dumps({"last_known_status": "unknown"}))

    status = InstanceStatusProvider().status(layout, "abc123")

    assert status.state is HealthStatus.UNKNOWN
    assert status.detail == "Status has not been determined."
