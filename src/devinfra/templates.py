"""Jinja2 template rendering for project scaffolding and the infra bundle.

Built-in templates ship inside the package under ``devinfra/templates``::

    base/      rendered into every new project (Makefile, .env.example)
    flavors/   one ``<flavor>.yaml.j2`` compose overlay per flavor
    infra/     the shared Traefik/DNSMasq compose bundle written by ``init``

An optional override directory (``templates_dir`` in ``config.yml``) is
searched first, so operators can shadow any single template without copying
the rest.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateNotFound,
)

from .errors import ConfigError

TEMPLATE_SUFFIX = ".j2"
FLAVOR_SUFFIX = ".yaml.j2"
# ``base/dot-env.example.j2`` renders as ``.env.example``.
DOTFILE_PREFIX = "dot-"


@dataclass(frozen=True)
class TemplateEngine:
    """Thin wrapper around a configured Jinja2 environment."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine that prefers *override_dir* over built-in templates."""
        loaders = []
        if override_dir is not None:
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("devinfra", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        try:
            template = self.environment.get_template(template_name)
        except TemplateNotFound as exc:
            raise ConfigError(f"template {template_name!r} not found") from exc
        return template.render(**context)

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*; return ``True`` when the file changed."""
        content = self.render_to_string(template_name, context)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists() and destination.read_text(encoding="utf-8") == content:
            os.chmod(destination, mode)
            return False
        destination.write_text(content, encoding="utf-8")
        os.chmod(destination, mode)
        return True

    def list_templates(self, prefix: str) -> list[str]:
        """Return template names under *prefix* (``base/``, ``flavors/`` ...)."""
        return sorted(
            name
            for name in self.environment.list_templates()
            if name.startswith(prefix) and name.endswith(TEMPLATE_SUFFIX)
        )

    def base_templates(self) -> list[tuple[str, str]]:
        """Return ``(template_name, output_name)`` pairs for the base set."""
        pairs: list[tuple[str, str]] = []
        for name in self.list_templates("base/"):
            output = name[len("base/") : -len(TEMPLATE_SUFFIX)]
            if "/" in output:
                continue
            if output.startswith(DOTFILE_PREFIX):
                output = "." + output[len(DOTFILE_PREFIX) :]
            pairs.append((name, output))
        return pairs

    def flavors(self) -> list[str]:
        """Return the names of every available flavor overlay."""
        return [
            name[len("flavors/") : -len(FLAVOR_SUFFIX)]
            for name in self.list_templates("flavors/")
            if name.endswith(FLAVOR_SUFFIX)
        ]

    @staticmethod
    def flavor_template(flavor: str) -> str:
        """Return the template name for *flavor*."""
        return f"flavors/{flavor}{FLAVOR_SUFFIX}"


__all__ = ["TemplateEngine"]
