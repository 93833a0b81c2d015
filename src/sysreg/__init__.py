"""sysreg package bootstrap.

Registry of independently configured connections ("instances") to remote
systems, each described once by a reusable :class:`~sysreg.definition.Definition`.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
