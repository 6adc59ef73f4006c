"""Tests for the ``init`` bootstrap helpers."""
from __future__ import annotations

from pathlib import Path

import pytest

from devinfra import bootstrap
from devinfra.config import AppConfig
from devinfra.errors import ConfigError
from devinfra.templates import TemplateEngine


def test_render_infra_bundle_is_idempotent(config: AppConfig, templates: TemplateEngine) -> None:
    config.ensure_dirs()

    changed = bootstrap.render_infra_bundle(config, templates)

    assert changed == [
        config.compose_dir / "docker-compose.yaml",
        config.compose_dir / "dnsmasq.conf",
        config.dynamic_dir / "tls-infra.yaml",
    ]
    assert config.is_initialized()
    assert "address=/test/127.0.0.1" in config.dnsmasq_conf.read_text()
    assert "traefik.test+1.pem" in (config.dynamic_dir / "tls-infra.yaml").read_text()
    assert bootstrap.render_infra_bundle(config, templates) == []


def test_write_env_file_only_once(config: AppConfig) -> None:
    config.ensure_dirs()

    assert bootstrap.write_env_file(config) is True
    assert config.env_file.read_text() == "DNS_PORT=5354\n"
    config.env_file.write_text("DNS_PORT=9999\n")
    assert bootstrap.write_env_file(config) is False
    assert config.env_file.read_text() == "DNS_PORT=9999\n"


def test_import_layout_copies_state(tmp_path: Path, config: AppConfig) -> None:
    config.ensure_dirs()
    config.registry_path.write_text("projects: []\n")
    source = tmp_path / "old"
    (source / "certs").mkdir(parents=True)
    (source / "dynamic").mkdir()
    (source / "projects.yaml").write_text("projects:\n  - name: blog\n    dir: /srv/blog\n")
    (source / "certs" / "blog.test+1.pem").write_text("cert")
    (source / "certs" / "blog.test+1-key.pem").write_text("key")
    (source / "dynamic" / "tls-blog.yaml").write_text("tls: {}\n")

    summary = bootstrap.import_layout(source, config)

    assert summary.registry is True
    assert summary.certificates == 2
    assert summary.dynamic_configs == 1
    assert len(summary.backups) == 1
    assert summary.backups[0].read_text() == "projects: []\n"
    assert "blog" in config.registry_path.read_text()
    assert (config.registry_path.stat().st_mode & 0o777) == 0o640
    assert ((config.certs_dir / "blog.test+1-key.pem").stat().st_mode & 0o777) == 0o600
    assert ((config.dynamic_dir / "tls-blog.yaml").stat().st_mode & 0o777) == 0o644


def test_import_layout_requires_directory(tmp_path: Path, config: AppConfig) -> None:
    with pytest.raises(ConfigError):
        bootstrap.import_layout(tmp_path / "missing", config)


@pytest.mark.parametrize("name", ["linux", "darwin"])
def test_write_platform_script(config: AppConfig, templates: TemplateEngine, name: str) -> None:
    script = bootstrap.write_platform_script(config, templates, name)

    assert script == config.scripts_dir / f"setup-{name}.sh"
    assert (script.stat().st_mode & 0o777) == 0o755
    text = script.read_text()
    assert text.startswith("#!")
    assert "5354" in text
