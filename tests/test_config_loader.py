"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from devinfra.config import AppConfig, ConfigError, load_config, resolve_config_dir


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(tmp_path, env={})

    assert isinstance(config, AppConfig)
    assert config.config_dir == tmp_path
    assert config.dns_port == 5354
    assert config.tld == "test"
    assert config.network == "traefik"
    assert config.registry_path == tmp_path / "projects.yaml"
    assert config.compose_file == tmp_path / "compose" / "docker-compose.yaml"
    assert config.templates_dir is None
    assert config.doctor.max_concurrency == 8
    assert config.is_initialized() is False


def test_config_dir_priority(tmp_path: Path) -> None:
    """Flag beats DEVINFRA_HOME beats XDG_CONFIG_HOME beats ~/.config."""
    env = {"DEVINFRA_HOME": str(tmp_path / "home"), "XDG_CONFIG_HOME": str(tmp_path / "xdg")}

    assert resolve_config_dir(tmp_path / "flag", env) == tmp_path / "flag"
    assert resolve_config_dir(None, env) == tmp_path / "home"
    assert resolve_config_dir(None, {"XDG_CONFIG_HOME": str(tmp_path / "xdg")}) == (
        tmp_path / "xdg" / "devinfra"
    )
    assert resolve_config_dir(None, {}) == Path.home() / ".config" / "devinfra"


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from ``config.yml`` inside the config directory."""
    (tmp_path / "config.yml").write_text(
        "dns_port: 5400\n"
        "tld: localdev\n"
        "templates_dir: {templates}\n"
        "tools:\n"
        "  mkcert: /opt/bin/mkcert\n"
        "timeouts:\n"
        "  probe: 2.5\n".format(templates=tmp_path / "tpl")
    )

    config = load_config(tmp_path, env={})

    assert config.dns_port == 5400
    assert config.tld == "localdev"
    assert config.templates_dir == tmp_path / "tpl"
    assert config.tools.mkcert == "/opt/bin/mkcert"
    assert config.tools.docker == "docker"
    assert config.timeouts.probe == 2.5
    assert config.timeouts.clone == 300.0


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    (tmp_path / "config.yml").write_text("dns_port: 5400\nnetwork: edge\n")
    env = {
        "DNS_PORT": "5500",
        "DEVINFRA_NETWORK": "proxy",
        "DEVINFRA_DOCTOR__MAX_CONCURRENCY": "2",
        "DEVINFRA_TIMEOUTS__CLONE": "60",
        "UNRELATED": "ignored",
    }

    config = load_config(tmp_path, env=env)

    assert config.dns_port == 5500
    assert config.network == "proxy"
    assert config.doctor.max_concurrency == 2
    assert config.timeouts.clone == 60.0


def test_devinfra_dns_port_beats_plain_dns_port(tmp_path: Path) -> None:
    config = load_config(tmp_path, env={"DNS_PORT": "5500", "DEVINFRA_DNS_PORT": "5600"})

    assert config.dns_port == 5600


def test_overrides_apply_last(tmp_path: Path) -> None:
    config = load_config(tmp_path, env={"DEVINFRA_TLD": "dev"}, overrides={"tld": "local"})

    assert config.tld == "local"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A config file that is not a mapping raises a ConfigError."""
    (tmp_path / "config.yml").write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(tmp_path, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    (tmp_path / "config.yml").write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(tmp_path, env={})


def test_unknown_nested_keys_raise(tmp_path: Path) -> None:
    (tmp_path / "config.yml").write_text("tools:\n  kubectl: kubectl\n")

    with pytest.raises(ConfigError, match="Unknown tools configuration keys"):
        load_config(tmp_path, env={})


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("dns_port: 70000\n", "dns_port must be between"),
        ("dns_port: true\n", "integer"),
        ("tld: my.dev\n", "single DNS label"),
        ("timeouts:\n  probe: 0\n", "greater than zero"),
        ("doctor:\n  max_concurrency: 0\n", "at least 1"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, content: str, message: str) -> None:
    (tmp_path / "config.yml").write_text(content)

    with pytest.raises(ConfigError, match=message):
        load_config(tmp_path, env={})


def test_ensure_dirs_creates_private_layout(tmp_path: Path) -> None:
    config = load_config(tmp_path / "cfg", env={})

    config.ensure_dirs()

    for directory in (config.config_dir, config.compose_dir, config.certs_dir, config.dynamic_dir):
        assert directory.is_dir()
    assert (config.certs_dir.stat().st_mode & 0o777) == 0o700


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    config = load_config(tmp_path, env={})

    payload = config.to_dict()

    assert payload["registry_path"] == str(tmp_path / "projects.yaml")
    assert payload["tools"] == {"docker": "docker", "mkcert": "mkcert", "git": "git", "dig": "dig"}
