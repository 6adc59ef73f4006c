"""Helpers used by ``devinfra init`` to lay down the shared infrastructure."""
from __future__ import annotations

import logging
import os
import platform
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .config import AppConfig
from .errors import ConfigError, PersistenceError
from .templates import TemplateEngine

LOGGER = logging.getLogger(__name__)

INFRA_BUNDLE: tuple[tuple[str, str], ...] = (
    ("infra/docker-compose.yaml.j2", "compose/docker-compose.yaml"),
    ("infra/dnsmasq.conf.j2", "compose/dnsmasq.conf"),
    ("infra/tls-infra.yaml.j2", "dynamic/tls-infra.yaml"),
)
SUPPORTED_PLATFORMS = {"Linux": "linux", "Darwin": "darwin"}


@dataclass(slots=True)
class ImportSummary:
    """What ``init --import-from`` copied from an older layout."""

    registry: bool = False
    certificates: int = 0
    dynamic_configs: int = 0
    backups: list[Path] = field(default_factory=list)


def _timestamp() -> str:
    return f"{datetime.now(tz=UTC).timestamp():.0f}"


def _back_up(path: Path) -> Path | None:
    if not path.exists():
        return None
    backup_path = path.with_suffix(f"{path.suffix or ''}.bak.{_timestamp()}")
    backup_path.write_bytes(path.read_bytes())
    backup_path.chmod(path.stat().st_mode)
    return backup_path


def infra_context(config: AppConfig) -> dict[str, object]:
    """Return the template context shared by the infrastructure bundle."""
    return {
        "compose_project": config.compose_project,
        "network": config.network,
        "tld": config.tld,
        "dns_port": config.dns_port,
        "certs_dir": str(config.certs_dir),
        "dynamic_dir": str(config.dynamic_dir),
    }


def render_infra_bundle(config: AppConfig, templates: TemplateEngine) -> list[Path]:
    """Render the Traefik/DNSMasq bundle; return the files that changed."""
    context = infra_context(config)
    changed: list[Path] = []
    for template_name, relative in INFRA_BUNDLE:
        destination = config.config_dir / relative
        try:
            if templates.render_to_path(template_name, destination, context):
                changed.append(destination)
        except OSError as exc:
            raise PersistenceError(f"could not write {destination}: {exc}") from exc
    return changed


def import_layout(source: Path, config: AppConfig) -> ImportSummary:
    """Copy ``projects.yaml``, certificates and dynamic configs from *source*."""
    if not source.is_dir():
        raise ConfigError(f"import source {str(source)!r} is not a directory")
    summary = ImportSummary()

    registry = source / "projects.yaml"
    if registry.is_file():
        backup = _back_up(config.registry_path)
        if backup is not None:
            summary.backups.append(backup)
        shutil.copyfile(registry, config.registry_path)
        os.chmod(config.registry_path, 0o640)
        summary.registry = True

    summary.certificates = _copy_files(source / "certs", config.certs_dir, mode=0o600)
    summary.dynamic_configs = _copy_files(source / "dynamic", config.dynamic_dir, mode=0o644)
    return summary


def _copy_files(source_dir: Path, destination_dir: Path, *, mode: int) -> int:
    if not source_dir.is_dir():
        return 0
    copied = 0
    for entry in sorted(source_dir.iterdir()):
        if not entry.is_file():
            continue
        destination = destination_dir / entry.name
        try:
            destination.write_bytes(entry.read_bytes())
            os.chmod(destination, mode)
        except OSError as exc:
            LOGGER.warning("skipping %s: %s", entry, exc)
            continue
        copied += 1
    return copied


def platform_name() -> str | None:
    """Return ``linux``/``darwin`` or ``None`` for unsupported systems."""
    return SUPPORTED_PLATFORMS.get(platform.system())


def write_platform_script(config: AppConfig, templates: TemplateEngine, name: str) -> Path:
    """Render ``scripts/setup-<name>.sh`` and return its path."""
    destination = config.scripts_dir / f"setup-{name}.sh"
    templates.render_to_path(
        f"scripts/setup-{name}.sh.j2",
        destination,
        {"tld": config.tld, "dns_port": config.dns_port},
        mode=0o755,
    )
    return destination


def write_env_file(config: AppConfig) -> bool:
    """Create the infrastructure ``.env`` when missing; return ``True`` if written."""
    if config.env_file.exists():
        return False
    config.env_file.write_text(f"DNS_PORT={config.dns_port}\n", encoding="utf-8")
    os.chmod(config.env_file, 0o644)
    return True


__all__ = [
    "INFRA_BUNDLE",
    "ImportSummary",
    "import_layout",
    "infra_context",
    "platform_name",
    "render_infra_bundle",
    "write_env_file",
    "write_platform_script",
]
