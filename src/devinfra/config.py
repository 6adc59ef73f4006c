"""Configuration loader for devinfra.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``<config_dir>/config.yml`` (optional).
3. Environment variables prefixed with ``DEVINFRA_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

The configuration directory itself is resolved once, in priority order:
an explicit ``--config-dir`` value, ``$DEVINFRA_HOME``,
``$XDG_CONFIG_HOME/devinfra`` and finally ``~/.config/devinfra``.

Environment keys use double underscores to express nesting, e.g.::

    export DEVINFRA_TIMEOUTS__CLONE=120
    export DEVINFRA_DOCTOR__MAX_CONCURRENCY=4

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` and threaded through every component explicitly; nothing
below the CLI reads the environment on its own.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import ConfigError

ENV_PREFIX = "DEVINFRA_"
HOME_ENV_VAR = f"{ENV_PREFIX}HOME"
DNS_PORT_ENV_VAR = "DNS_PORT"
RESERVED_ENV_KEYS = {HOME_ENV_VAR}
CONFIG_FILE_NAME = "config.yml"


@dataclass(frozen=True)
class ToolsConfig:
    """Names (or absolute paths) of the external binaries devinfra drives."""

    docker: str = "docker"
    mkcert: str = "mkcert"
    git: str = "git"
    dig: str = "dig"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"docker": self.docker, "mkcert": self.mkcert, "git": self.git, "dig": self.dig}


@dataclass(frozen=True)
class TimeoutsConfig:
    """Upper bounds (seconds) for long-running external operations."""

    clone: float = 300.0
    probe: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"clone": self.clone, "probe": self.probe}


@dataclass(frozen=True)
class DoctorConfig:
    """Doctor engine tunables."""

    max_concurrency: int = 8

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"max_concurrency": self.max_concurrency}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for devinfra."""

    config_dir: Path
    dns_port: int
    tld: str
    network: str
    compose_project: str
    templates_dir: Path | None
    tools: ToolsConfig
    timeouts: TimeoutsConfig
    doctor: DoctorConfig

    @property
    def config_file(self) -> Path:
        """Return the optional YAML config file path."""
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def registry_path(self) -> Path:
        """Return the path of the project registry."""
        return self.config_dir / "projects.yaml"

    @property
    def compose_dir(self) -> Path:
        """Return the directory holding the infrastructure compose bundle."""
        return self.config_dir / "compose"

    @property
    def compose_file(self) -> Path:
        """Return the infrastructure compose file."""
        return self.compose_dir / "docker-compose.yaml"

    @property
    def dnsmasq_conf(self) -> Path:
        """Return the DNSMasq configuration rendered at init."""
        return self.compose_dir / "dnsmasq.conf"

    @property
    def certs_dir(self) -> Path:
        """Return the directory that stores mkcert output."""
        return self.config_dir / "certs"

    @property
    def dynamic_dir(self) -> Path:
        """Return the Traefik file-provider directory."""
        return self.config_dir / "dynamic"

    @property
    def env_file(self) -> Path:
        """Return the ``.env`` file consumed by the infrastructure compose bundle."""
        return self.config_dir / ".env"

    @property
    def logs_dir(self) -> Path:
        """Return the directory holding the structured operations log."""
        return self.config_dir / "logs"

    @property
    def scripts_dir(self) -> Path:
        """Return the directory platform setup scripts are looked up in."""
        return self.config_dir / "scripts"

    def is_initialized(self) -> bool:
        """Return ``True`` when ``init`` has rendered the infrastructure bundle."""
        return self.compose_file.is_file()

    def ensure_dirs(self) -> None:
        """Create every directory devinfra writes into (mode 0700)."""
        for directory in (self.config_dir, self.compose_dir, self.certs_dir, self.dynamic_dir):
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_dir": str(self.config_dir),
            "config_file": str(self.config_file),
            "registry_path": str(self.registry_path),
            "dns_port": self.dns_port,
            "tld": self.tld,
            "network": self.network,
            "compose_project": self.compose_project,
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "tools": self.tools.to_dict(),
            "timeouts": self.timeouts.to_dict(),
            "doctor": self.doctor.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "dns_port": 5354,
    "tld": "test",
    "network": "traefik",
    "compose_project": "devinfra",
    "templates_dir": None,
    "tools": {
        "docker": "docker",
        "mkcert": "mkcert",
        "git": "git",
        "dig": "dig",
    },
    "timeouts": {
        "clone": 300.0,
        "probe": 10.0,
    },
    "doctor": {
        "max_concurrency": 8,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_NESTED_KEYS: dict[str, set[str]] = {
    "tools": {"docker", "mkcert", "git", "dig"},
    "timeouts": {"clone", "probe"},
    "doctor": {"max_concurrency"},
}


def resolve_config_dir(
    cli_override: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Return the configuration directory following the documented priority."""
    resolved_env = os.environ if env is None else env
    if cli_override:
        return Path(cli_override).expanduser()
    home_override = resolved_env.get(HOME_ENV_VAR)
    if home_override:
        return Path(home_override).expanduser()
    xdg_home = resolved_env.get("XDG_CONFIG_HOME")
    if xdg_home:
        return Path(xdg_home).expanduser() / "devinfra"
    return Path.home() / ".config" / "devinfra"


def load_config(
    config_dir: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)
    directory = resolve_config_dir(config_dir, resolved_env)

    file_values = _load_yaml_file(directory / CONFIG_FILE_NAME)
    if file_values:
        _deep_merge(merged, file_values)

    if DNS_PORT_ENV_VAR in resolved_env:
        merged["dns_port"] = _coerce_value(resolved_env[DNS_PORT_ENV_VAR])

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    _validate_structure(merged)

    return _build_app_config(directory, merged)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _NESTED_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    tld = raw.get("tld")
    if not isinstance(tld, str) or not tld.strip() or "." in tld.strip(". "):
        raise ConfigError(f"tld must be a single DNS label. Got {tld!r}.")


def _build_app_config(config_dir: Path, raw: Mapping[str, object]) -> AppConfig:
    dns_port = _expect_int(raw.get("dns_port"), "dns_port", default=5354)
    if not 1 <= dns_port <= 65535:
        raise ConfigError(f"dns_port must be between 1 and 65535. Got {dns_port}.")

    tools_map = _as_dict(raw.get("tools"), "tools")
    tools = ToolsConfig(
        docker=str(tools_map.get("docker", "docker")),
        mkcert=str(tools_map.get("mkcert", "mkcert")),
        git=str(tools_map.get("git", "git")),
        dig=str(tools_map.get("dig", "dig")),
    )

    timeouts_map = _as_dict(raw.get("timeouts"), "timeouts")
    timeouts = TimeoutsConfig(
        clone=_expect_positive_float(timeouts_map.get("clone"), "timeouts.clone", default=300.0),
        probe=_expect_positive_float(timeouts_map.get("probe"), "timeouts.probe", default=10.0),
    )

    doctor_map = _as_dict(raw.get("doctor"), "doctor")
    max_concurrency = _expect_int(
        doctor_map.get("max_concurrency"),
        "doctor.max_concurrency",
        default=8,
    )
    if max_concurrency < 1:
        raise ConfigError("doctor.max_concurrency must be at least 1.")

    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    return AppConfig(
        config_dir=config_dir,
        dns_port=dns_port,
        tld=str(raw.get("tld", "test")).strip(". "),
        network=str(raw.get("network", "traefik")),
        compose_project=str(raw.get("compose_project", "devinfra")),
        templates_dir=templates_dir,
        tools=tools,
        timeouts=timeouts,
        doctor=DoctorConfig(max_concurrency=max_concurrency),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DoctorConfig",
    "TimeoutsConfig",
    "ToolsConfig",
    "load_config",
    "resolve_config_dir",
]
