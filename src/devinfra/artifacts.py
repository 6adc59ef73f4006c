"""Deterministic producers of routing and compose artifacts.

Every function here is pure: the same project name and service list always
yield byte-identical text. No timestamps or random values are embedded, so
regenerated files diff cleanly.

The first service of a project answers on both ``<project>.<tld>`` and
``<service>.<project>.<tld>``; every later service only on its own
service-qualified name.
"""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from .state.registry import Project, Service

DEFAULT_TLD = "test"
DEFAULT_NETWORK = "traefik"
PLACEHOLDER_IMAGE = "nginx:alpine"
HOST_GATEWAY = "host.docker.internal"
GENERATED_COMPOSE = "docker-compose.yaml"
IMPORT_OVERLAY = "docker-compose.devinfra.yaml"
README_NAME = "README.md"


def router_name(project: str, service: Service) -> str:
    """Return the Traefik router/service identifier for *service*."""
    return f"{project}-{service.name}"


def routing_rule(project: str, service: Service, index: int, *, tld: str = DEFAULT_TLD) -> str:
    """Return the Traefik ``Host`` rule for the service at position *index*."""
    qualified = f"Host(`{service.name}.{project}.{tld}`)"
    if index == 0:
        return f"Host(`{project}.{tld}`) || {qualified}"
    return qualified


def project_urls(project: str, services: Sequence[Service], *, tld: str = DEFAULT_TLD) -> list[str]:
    """Return every HTTPS URL the project answers on, bare domain first."""
    urls = [f"https://{project}.{tld}"]
    urls.extend(f"https://{service.name}.{project}.{tld}" for service in services)
    return urls


def host_routing_name(project: str) -> str:
    """File name of the host-mode routing config in the dynamic directory."""
    return f"host-{project}.yaml"


def tls_descriptor_name(project: str) -> str:
    """File name of the TLS descriptor in the dynamic directory."""
    return f"tls-{project}.yaml"


def flavor_file_name(flavor: str) -> str:
    """File name of a flavor overlay inside the project directory."""
    return f"docker-compose.{flavor}.yaml"


def _traefik_labels(
    project: str,
    service: Service,
    index: int,
    *,
    network: str,
    tld: str,
) -> list[str]:
    router = router_name(project, service)
    return [
        '      - "traefik.enable=true"',
        f'      - "traefik.http.routers.{router}.rule={routing_rule(project, service, index, tld=tld)}"',
        f'      - "traefik.http.routers.{router}.entrypoints=websecure"',
        f'      - "traefik.http.routers.{router}.tls=true"',
        f'      - "traefik.http.services.{router}.loadbalancer.server.port={service.port}"',
        f'      - "traefik.docker.network={network}"',
    ]


def render_compose(
    project: str,
    services: Sequence[Service],
    *,
    network: str = DEFAULT_NETWORK,
    tld: str = DEFAULT_TLD,
) -> str:
    """Return a container-mode compose file with one placeholder per service."""
    lines = ["services:"]
    for index, service in enumerate(services):
        lines.extend(
            [
                f"  {service.name}:",
                f"    image: {PLACEHOLDER_IMAGE}",
                "    networks:",
                "      - default",
                f"      - {network}",
                "    labels:",
            ]
        )
        lines.extend(_traefik_labels(project, service, index, network=network, tld=tld))
        lines.append("")
    lines.extend(
        [
            "networks:",
            f"  {network}:",
            "    external: true",
            "  default:",
            f"    name: {project}",
        ]
    )
    return "\n".join(lines) + "\n"


def render_host_routing(
    project: str,
    services: Sequence[Service],
    *,
    tld: str = DEFAULT_TLD,
) -> str:
    """Return a Traefik file-provider config forwarding to services on the host."""
    lines = ["http:", "  routers:"]
    for index, service in enumerate(services):
        router = router_name(project, service)
        lines.extend(
            [
                f"    {router}:",
                f'      rule: "{routing_rule(project, service, index, tld=tld)}"',
                "      entryPoints:",
                "        - websecure",
                f"      service: {router}",
                "      tls: {}",
            ]
        )
    lines.extend(["", "  services:"])
    for service in services:
        lines.extend(
            [
                f"    {router_name(project, service)}:",
                "      loadBalancer:",
                "        servers:",
                f'          - url: "http://{HOST_GATEWAY}:{service.port}"',
            ]
        )
    return "\n".join(lines) + "\n"


def render_network_stub(project: str) -> str:
    """Return a service-less compose file that only declares the project network."""
    return f"networks:\n  default:\n    name: {project}\n"


def render_tls_descriptor(project: str, *, tld: str = DEFAULT_TLD) -> str:
    """Return the Traefik TLS descriptor pointing at the project's mkcert pair."""
    return (
        "tls:\n"
        "  certificates:\n"
        f"    - certFile: /certs/{project}.{tld}+1.pem\n"
        f"      keyFile: /certs/{project}.{tld}+1-key.pem\n"
    )


def render_import_overlay(
    project: str,
    services: Sequence[Service],
    *,
    network: str = DEFAULT_NETWORK,
    tld: str = DEFAULT_TLD,
) -> str:
    """Return a compose override attaching existing services to Traefik.

    Used for imported checkouts whose own compose file must stay untouched.
    """
    lines = ["services:"]
    for index, service in enumerate(services):
        lines.extend(
            [
                f"  {service.name}:",
                "    networks:",
                "      - default",
                f"      - {network}",
                "    labels:",
            ]
        )
        lines.extend(_traefik_labels(project, service, index, network=network, tld=tld))
        lines.append("")
    lines.extend(["networks:", f"  {network}:", "    external: true"])
    return "\n".join(lines) + "\n"


def render_readme(project: str, services: Sequence[Service], *, tld: str = DEFAULT_TLD) -> str:
    """Return the README summary written into new projects."""
    lines = [
        f"# {project}",
        "",
        "## Quick Start",
        "",
        "```bash",
        "make up      # Start project",
        "make down    # Stop project",
        "make logs    # Tail logs",
        "make ps      # Show containers",
        "```",
        "",
        "## URLs",
        "",
    ]
    lines.extend(f"- {url}" for url in project_urls(project, services, tld=tld))
    lines.extend(
        [
            "",
            "## Infrastructure",
            "",
            "This project uses devinfra for local development infrastructure.",
            "",
            "```bash",
            "di up      # Start infrastructure",
            "di doctor  # Verify everything works",
            "```",
        ]
    )
    return "\n".join(lines) + "\n"


def compose_files_for(project: Project) -> list[Path]:
    """Return the compose files ``docker compose -f`` should receive, in order.

    Generated projects use ``docker-compose.yaml``. Imported projects use
    their own file plus the routing overlay when any service is routed.
    Flavor overlays follow in the order they were added.
    """
    directory = project.path
    if project.compose_file:
        files = [directory / project.compose_file]
        if project.services:
            files.append(directory / IMPORT_OVERLAY)
    else:
        files = [directory / GENERATED_COMPOSE]
    files.extend(directory / flavor_file_name(flavor) for flavor in project.flavors)
    return files


__all__ = [
    "GENERATED_COMPOSE",
    "IMPORT_OVERLAY",
    "README_NAME",
    "compose_files_for",
    "flavor_file_name",
    "host_routing_name",
    "project_urls",
    "render_compose",
    "render_host_routing",
    "render_import_overlay",
    "render_network_stub",
    "render_readme",
    "render_tls_descriptor",
    "router_name",
    "routing_rule",
    "tls_descriptor_name",
]
