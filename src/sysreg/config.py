"""Configuration loader for sysreg.

Settings are resolved from layered sources, later layers winning:

1. Built-in defaults.
2. ``/etc/sysreg/config.yml`` (or the path given by ``--config-file`` or
   ``SYSREG_CONFIG_FILE``).
3. Environment variables prefixed with ``SYSREG_``.
4. Explicit overrides, which is how the CLI passes ``--state-dir`` and
   ``--lock-timeout``.

Every setting has a dotted name (``state_dir``, ``logging.level`` ...). In
YAML the ``logging`` settings live in a nested mapping; in the environment
the dot becomes a double underscore::

    export SYSREG_STATE_DIR=/srv/integrations
    export SYSREG_LOGGING__LEVEL=debug

Environment values are parsed with PyYAML's ``safe_load`` so that booleans
and numbers read naturally. Error messages name the layer a bad value came
from.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "SYSREG_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
DEFAULT_CONFIG_FILE = Path("/etc/sysreg/config.yml")

ALLOWED_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging preferences."""

    enabled: bool = True
    level: str = "warning"

    @property
    def level_number(self) -> int:
        """Return the numeric :mod:`logging` level."""
        return cast(int, logging.getLevelName(self.level.upper()))

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"enabled": self.enabled, "level": self.level}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for sysreg."""

    config_file: Path
    state_dir: Path
    logs_dir: Path
    lock_timeout: float | None
    logging: LoggingConfig

    def definition_root(self, definition_id: str) -> Path:
        """Return the default storage root for *definition_id*."""
        return self.state_dir / definition_id

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "logs_dir": str(self.logs_dir),
            "lock_timeout": self.lock_timeout,
            "logging": self.logging.to_dict(),
        }


@dataclass(frozen=True)
class _Layer:
    """Flat ``dotted name -> raw value`` settings contributed by one source."""

    origin: str
    values: dict[str, object]


def _parse_path(value: object, name: str, origin: str) -> Path:
    if isinstance(value, (str, Path)) and str(value):
        return Path(value).expanduser()
    raise ConfigError(f"Expected {name} to be a path ({origin}). Got {value!r}.")


def _parse_lock_timeout(value: object, name: str, origin: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"Expected {name} to be a number ({origin}). Got {value!r}.")
    try:
        seconds = float(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {name}: {value!r} ({origin}).") from exc
    if seconds <= 0:
        raise ConfigError(f"{name} must be greater than zero ({origin}). Got {seconds}.")
    return seconds


def _parse_enabled(value: object, name: str, origin: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"Expected {name} to be a boolean ({origin}). Got {value!r}.")
    return value


def _parse_level(value: object, name: str, origin: str) -> str:
    level = str(value).lower()
    if level not in ALLOWED_LOG_LEVELS:
        allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ConfigError(f"Unsupported log level '{value}'. Allowed: {allowed}.")
    return level


# Each setting: its default and the parser turning a raw value into the typed one.
SETTINGS: dict[str, tuple[object, Callable[[object, str, str], object]]] = {
    "state_dir": ("/var/lib/sysreg", _parse_path),
    "logs_dir": ("/var/log/sysreg", _parse_path),
    "lock_timeout": (None, _parse_lock_timeout),
    "logging.enabled": (True, _parse_enabled),
    "logging.level": ("warning", _parse_level),
}

SECTIONS = {name.split(".", 1)[0] for name in SETTINGS if "." in name}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`.

    *overrides* accepts dotted names (``{"logging.level": "debug"}``) or the
    nested form used in YAML.
    """
    resolved_env = os.environ if env is None else env
    if config_file:
        config_path = Path(config_file)
    elif resolved_env.get(CONFIG_ENV_VAR):
        config_path = Path(resolved_env[CONFIG_ENV_VAR])
    else:
        config_path = DEFAULT_CONFIG_FILE

    layers = [
        _Layer("defaults", {name: default for name, (default, _) in SETTINGS.items()}),
        _file_layer(config_path),
        _env_layer(resolved_env),
    ]
    if overrides:
        layers.append(_Layer("overrides", _flatten(overrides, "overrides")))

    winners: dict[str, tuple[object, str]] = {}
    for layer in layers:
        for name, value in layer.values.items():
            winners[name] = (value, layer.origin)

    parsed: dict[str, object] = {}
    for name, (_, parser) in SETTINGS.items():
        value, origin = winners[name]
        parsed[name] = parser(value, name, origin)

    return AppConfig(
        config_file=config_path,
        state_dir=cast(Path, parsed["state_dir"]),
        logs_dir=cast(Path, parsed["logs_dir"]),
        lock_timeout=cast("float | None", parsed["lock_timeout"]),
        logging=LoggingConfig(
            enabled=cast(bool, parsed["logging.enabled"]),
            level=cast(str, parsed["logging.level"]),
        ),
    )


def _file_layer(path: Path) -> _Layer:
    origin = f"file {path}"
    if not path.exists():
        return _Layer(origin, {})
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if data is None:
        return _Layer(origin, {})
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _Layer(origin, _flatten(data, origin))


def _env_layer(env: Mapping[str, str]) -> _Layer:
    values: dict[str, object] = {}
    unknown: list[str] = []
    for key, raw in env.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_ENV_VAR:
            continue
        name = key[len(ENV_PREFIX) :].lower().replace("__", ".")
        if name not in SETTINGS:
            unknown.append(key)
            continue
        try:
            values[name] = yaml.safe_load(raw.strip())
        except yaml.YAMLError:
            values[name] = raw.strip()
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")
    return _Layer("environment", values)


def _flatten(data: Mapping[object, object], origin: str) -> dict[str, object]:
    """Return *data* keyed by dotted setting names, rejecting unknown keys."""
    values: dict[str, object] = {}
    unknown: list[str] = []
    for key, value in data.items():
        name = str(key)
        if name in SECTIONS and isinstance(value, Mapping):
            section_unknown = []
            for sub_key, sub_value in value.items():
                dotted = f"{name}.{sub_key}"
                if dotted in SETTINGS:
                    values[dotted] = sub_value
                else:
                    section_unknown.append(str(sub_key))
            if section_unknown:
                joined = ", ".join(sorted(section_unknown))
                raise ConfigError(f"Unknown {name} configuration keys: {joined}.")
        elif name in SECTIONS and value is not None:
            raise ConfigError(f"Expected {name} to be a mapping ({origin}).")
        elif name in SETTINGS:
            values[name] = value
        elif name not in SECTIONS:
            unknown.append(name)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")
    return values


__all__ = ["AppConfig", "ConfigError", "LoggingConfig", "SETTINGS", "load_config"]
