"""Configuration loader tests."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

from sysreg.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.config_file == tmp_path / "absent.yml"
    assert config.state_dir == Path("/var/lib/sysreg")
    assert config.logs_dir == Path("/var/log/sysreg")
    assert config.lock_timeout is None
    assert config.logging.enabled is True
    assert config.logging.level == "warning"
    assert config.logging.level_number == logging.WARNING


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "sysreg.yml"
    cfg.write_text(
        f"state_dir: {tmp_path / 'state'}\n"
        "lock_timeout: 2.5\n"
        "logging:\n"
        "  enabled: false\n"
        "  level: DEBUG\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.state_dir == tmp_path / "state"
    assert config.definition_root("OdooErp") == tmp_path / "state" / "OdooErp"
    assert config.lock_timeout == 2.5
    assert config.logging.enabled is False
    assert config.logging.level == "debug"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "sysreg.yml"
    cfg.write_text("lock_timeout: 10\nlogging:\n  level: info\n")
    env = {
        "SYSREG_STATE_DIR": str(tmp_path / "state"),
        "SYSREG_LOGS_DIR": str(tmp_path / "logs"),
        "SYSREG_LOCK_TIMEOUT": "45",
        "SYSREG_LOGGING__LEVEL": "error",
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.state_dir == tmp_path / "state"
    assert config.logs_dir == tmp_path / "logs"
    assert config.lock_timeout == 45.0
    assert config.logging.level == "error"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text(f"logs_dir: {tmp_path / 'logs'}\n")

    config = load_config(env={"SYSREG_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.logs_dir == tmp_path / "logs"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"SYSREG_LOCK_TIMEOUT": "5"},
        overrides={"lock_timeout": 1},
    )

    assert config.lock_timeout == 1.0


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unsupported_log_level_raises(tmp_path: Path) -> None:
    """Log levels outside the standard set raise ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("logging:\n  level: chatty\n")

    with pytest.raises(ConfigError, match="Unsupported log level"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("value", ["0", "-3", "soon"])
def test_invalid_lock_timeout_raises(tmp_path: Path, value: str) -> None:
    """Lock timeouts must be positive numbers."""
    with pytest.raises(ConfigError, match="lock_timeout"):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"SYSREG_LOCK_TIMEOUT": value},
        )


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The resolved config renders with string paths."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    payload = config.to_dict()

    assert payload["config_file"] == str(tmp_path / "absent.yml")
    assert payload["lock_timeout"] is None
    assert payload["logging"] == {"enabled": True, "level": "warning"}


def test_overrides_accept_dotted_and_nested_names(tmp_path: Path) -> None:
    """Overrides address logging settings either way and accept Path values."""
    dotted = load_config(
        config_file=tmp_path / "absent.yml",
        env={},
        overrides={"logging.level": "info", "state_dir": tmp_path / "state"},
    )
    nested = load_config(
        config_file=tmp_path / "absent.yml",
        env={},
        overrides={"logging": {"enabled": False}},
    )

    assert dotted.logging.level == "info"
    assert dotted.state_dir == tmp_path / "state"
    assert nested.logging.enabled is False
    assert nested.logging.level == "warning"


def test_bad_value_names_its_source(tmp_path: Path) -> None:
    """The error for an invalid value says which layer supplied it."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("lock_timeout: 3\n")

    with pytest.raises(ConfigError, match="environment"):
        load_config(config_file=cfg, env={"SYSREG_LOCK_TIMEOUT": "soon"})
    cfg.write_text("lock_timeout: true\n")
    with pytest.raises(ConfigError, match=r"file .*config\.yml"):
        load_config(config_file=cfg, env={})


def test_unknown_environment_setting_raises(tmp_path: Path) -> None:
    """A misspelt SYSREG_ variable is rejected rather than ignored."""
    with pytest.raises(ConfigError, match="SYSREG_STATEDIR"):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"SYSREG_STATEDIR": str(tmp_path)},
        )


def test_unknown_logging_key_raises(tmp_path: Path) -> None:
    """Keys inside the logging section are checked too."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("logging:\n  colour: true\n")

    with pytest.raises(ConfigError, match="Unknown logging configuration keys: colour"):
        load_config(config_file=cfg, env={})


def test_empty_file_uses_defaults(tmp_path: Path) -> None:
    """An empty YAML document contributes nothing."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("")

    config = load_config(config_file=cfg, env={})

    assert config.state_dir == Path("/var/lib/sysreg")
