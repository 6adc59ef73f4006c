"""Built-in doctor checks.

Each check is a name, a zero-argument probe returning ``bool`` and a
remediation hint. Probes shell out through the shared
:class:`~devinfra.providers.process.ProcessRunner`, so every external call
is bounded by the configured probe timeout.
"""
from __future__ import annotations

import platform
from pathlib import Path

from ..config import AppConfig
from ..providers.certs import INFRA_HOST, CertificateProvider
from ..providers.compose import INFRA_CONTAINERS, ComposeProvider
from ..providers.process import ProcessRunner
from ..state.registry import Registry
from .models import CheckDefinition

RESOLVER_DIR = Path("/etc/resolver")


def collect_checks(
    config: AppConfig,
    compose: ComposeProvider,
    certs: CertificateProvider,
    runner: ProcessRunner,
    *,
    system: str | None = None,
    resolver_dir: Path = RESOLVER_DIR,
) -> list[CheckDefinition]:
    """Return the concurrent battery: tools, network, containers, certs, DNS."""
    timeout = config.timeouts.probe
    checks = [
        CheckDefinition(
            "Docker",
            compose.docker_available,
            "Install Docker: https://docs.docker.com/get-docker/",
        ),
        CheckDefinition(
            "mkcert",
            lambda: runner.which(config.tools.mkcert) is not None,
            "Install mkcert: brew install mkcert (macOS) or apt install mkcert (Ubuntu)",
        ),
        CheckDefinition(
            "mkcert CA",
            lambda: certs.ca_root() is not None,
            "Run 'mkcert -install' to set up the local CA",
        ),
        CheckDefinition(
            "Docker network",
            compose.network_exists,
            f"Run 'di init' or 'docker network create {config.network}'",
        ),
    ]
    for container in INFRA_CONTAINERS:
        checks.append(
            CheckDefinition(
                f"{container} container",
                lambda name=container: compose.container_running(name),
                "Run 'di up' to start infrastructure",
            )
        )
    checks.append(
        CheckDefinition(
            "Infra certs",
            lambda: certs.cert_paths(INFRA_HOST).cert.is_file(),
            "Run 'di init' to generate infrastructure certificates",
        )
    )

    def dns_resolves() -> bool:
        result = runner.run(
            [
                config.tools.dig,
                "+short",
                f"{config.tld}.{config.tld}",
                "@127.0.0.1",
                "-p",
                str(config.dns_port),
            ],
            timeout=timeout,
            check=False,
        )
        return result.ok and "127.0.0.1" in result.stdout

    checks.append(
        CheckDefinition(
            "DNS resolution",
            dns_resolves,
            "Run 'di init' to configure DNS, then 'di up' to start DNSMasq",
        )
    )
    checks.extend(
        platform_checks(
            config,
            runner,
            system=system or platform.system(),
            resolver_dir=resolver_dir,
        )
    )
    return checks


def platform_checks(
    config: AppConfig,
    runner: ProcessRunner,
    *,
    system: str,
    resolver_dir: Path = RESOLVER_DIR,
) -> list[CheckDefinition]:
    """Return checks specific to the host operating system."""
    timeout = config.timeouts.probe
    if system == "Linux":

        def resolved_routes_tld() -> bool:
            result = runner.run(["resolvectl", "status"], timeout=timeout, check=False)
            return result.ok and config.tld in result.stdout

        def in_docker_group() -> bool:
            result = runner.run(["id", "-nG"], timeout=timeout, check=False)
            return result.ok and "docker" in result.stdout.split()

        return [
            CheckDefinition(
                "libnss3-tools",
                lambda: runner.succeeds(["dpkg", "-s", "libnss3-tools"], timeout=timeout),
                "Install libnss3-tools: sudo apt install libnss3-tools",
            ),
            CheckDefinition(
                f"systemd-resolved .{config.tld}",
                resolved_routes_tld,
                f"Run 'di init' to configure systemd-resolved for .{config.tld} domains",
            ),
            CheckDefinition(
                "Docker group",
                in_docker_group,
                "Add yourself to the docker group: "
                "sudo usermod -aG docker $USER && newgrp docker",
            ),
        ]
    if system == "Darwin":
        resolver = resolver_dir / config.tld

        def resolver_contains(text: str) -> bool:
            return resolver.is_file() and text in resolver.read_text(encoding="utf-8")

        return [
            CheckDefinition(
                "Homebrew",
                lambda: runner.which("brew") is not None,
                "Install Homebrew: https://brew.sh",
            ),
            CheckDefinition(
                str(resolver),
                resolver.is_file,
                "Run 'di init' to configure DNS resolver",
            ),
            CheckDefinition(
                "Resolver content",
                lambda: resolver_contains("nameserver 127.0.0.1"),
                "Run 'di init' to configure DNS resolver",
            ),
            CheckDefinition(
                "Resolver port",
                lambda: resolver_contains(f"port {config.dns_port}"),
                "Run 'di init' to update resolver port "
                f"(currently using port {config.dns_port})",
            ),
        ]
    return []


def collect_project_checks(
    registry: Registry,
    certs: CertificateProvider,
) -> list[CheckDefinition]:
    """Return ``<name>: directory`` and ``<name>: certs`` for every project."""
    checks: list[CheckDefinition] = []
    for project in registry:
        checks.append(
            CheckDefinition(
                f"{project.name}: directory",
                project.path.is_dir,
                f"Directory '{project.directory}' does not exist",
            )
        )
        checks.append(
            CheckDefinition(
                f"{project.name}: certs",
                lambda name=project.name: certs.has_certificates(name),
                f"Run 'di certs regen {project.name}'",
            )
        )
    return checks


__all__ = ["RESOLVER_DIR", "collect_checks", "collect_project_checks", "platform_checks"]
