"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest

from devinfra.errors import ConfigError
from devinfra.templates import TemplateEngine


def _context() -> dict[str, object]:
    return {
        "project_name": "blog",
        "postgres_password": "pg-secret",
        "rabbitmq_password": "mq-secret",
        "minio_password": "minio-secret",
        "network": "traefik",
        "tld": "test",
    }


def test_base_templates_map_dotfiles() -> None:
    """``dot-`` templates render under their hidden file name."""
    engine = TemplateEngine.with_overrides(None)

    outputs = dict(engine.base_templates())

    assert outputs == {
        "base/Makefile.j2": "Makefile",
        "base/dot-env.example.j2": ".env.example",
    }


def test_flavors_are_discovered() -> None:
    engine = TemplateEngine.with_overrides(None)

    assert engine.flavors() == ["mailpit", "minio", "postgres", "rabbitmq", "redis"]
    assert TemplateEngine.flavor_template("redis") == "flavors/redis.yaml.j2"


def test_render_env_example_uses_secrets() -> None:
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("base/dot-env.example.j2", _context())

    assert "POSTGRES_PASSWORD=pg-secret" in output
    assert "MINIO_ROOT_PASSWORD=minio-secret" in output


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "nested" / "docker-compose.postgres.yaml"

    changed = engine.render_to_path("flavors/postgres.yaml.j2", destination, _context(), mode=0o600)

    assert changed is True
    assert (destination.stat().st_mode & 0o777) == 0o600
    assert engine.render_to_path("flavors/postgres.yaml.j2", destination, _context()) is False
    assert (destination.stat().st_mode & 0o777) == 0o644


def test_override_directory_takes_precedence(tmp_path: Path) -> None:
    override = tmp_path / "overrides" / "flavors"
    override.mkdir(parents=True)
    (override / "redis.yaml.j2").write_text("custom {{ project_name }}\n")
    (override / "valkey.yaml.j2").write_text("valkey\n")

    engine = TemplateEngine.with_overrides(tmp_path / "overrides")

    assert engine.render_to_string("flavors/redis.yaml.j2", _context()) == "custom blog\n"
    assert "valkey" in engine.flavors()


def test_missing_template_raises_config_error() -> None:
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(ConfigError, match="not found"):
        engine.render_to_string("flavors/oracle.yaml.j2", _context())


def test_strict_undefined_variables() -> None:
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(Exception, match="project_name"):
        engine.render_to_string("base/Makefile.j2", {})
