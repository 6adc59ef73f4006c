"""Pure validators for project names, ports, services and flavors.

Every function here is side-effect free. Failures raise
:class:`~devinfra.errors.ValidationError` whose message is the human readable
reason shown to the operator.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from .errors import ValidationError
from .state.registry import Service

MAX_NAME_LENGTH = 63
DEFAULT_DNS_PORT = 5354

_NAME_PATTERN = re.compile(r"[a-z][a-z0-9-]*[a-z0-9]")
_SINGLE_CHAR_PATTERN = re.compile(r"[a-z]")

RESERVED_NAMES = frozenset(
    {
        "traefik",
        "dnsmasq",
        "infra",
        "test",
        "default",
        "socket-proxy",
        "devinfra",
        "di",
        "all",
        "localhost",
    }
)

ALWAYS_RESERVED_PORTS = frozenset({80, 443})


def validate_name(name: str) -> str:
    """Validate *name* as an RFC 1123 DNS label and return it unchanged."""
    if not name:
        raise ValidationError("name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"name must be {MAX_NAME_LENGTH} characters or fewer (DNS label limit)"
        )
    if not (_NAME_PATTERN.fullmatch(name) or _SINGLE_CHAR_PATTERN.fullmatch(name)):
        raise ValidationError(
            "name must be lowercase alphanumeric with hyphens, start with a letter, "
            "not end with hyphen"
        )
    if name in RESERVED_NAMES:
        raise ValidationError(f"name {name!r} is reserved")
    return name


def reserved_ports(dns_port: int = DEFAULT_DNS_PORT) -> frozenset[int]:
    """Return the ports no project service may claim."""
    return ALWAYS_RESERVED_PORTS | {dns_port}


def validate_port(port: int, *, dns_port: int = DEFAULT_DNS_PORT) -> int:
    """Validate *port* and return it unchanged."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(f"port must be an integer: {port!r}")
    if port < 1 or port > 65535:
        raise ValidationError("port must be between 1 and 65535")
    if port in reserved_ports(dns_port):
        raise ValidationError(f"port {port} is reserved by devinfra")
    return port


def parse_port(raw: str, *, dns_port: int = DEFAULT_DNS_PORT) -> int:
    """Parse *raw* into a validated port number."""
    text = raw.strip()
    try:
        port = int(text)
    except ValueError as exc:
        raise ValidationError(f"port must be an integer: {raw}") from exc
    return validate_port(port, dns_port=dns_port)


def parse_services(raw: str | None, *, dns_port: int = DEFAULT_DNS_PORT) -> list[Service]:
    """Parse ``name:port`` pairs separated by commas.

    An empty value yields the default single ``web`` service on port 3000.
    """
    if raw is None or not raw.strip():
        return [Service(name="web", port=3000)]

    services: list[Service] = []
    for pair in raw.split(","):
        pair = pair.strip()
        name, sep, port_text = pair.partition(":")
        if not sep or not name or not port_text:
            raise ValidationError(f"invalid service format: {pair!r} (expected name:port)")
        services.append(Service(name=name, port=parse_port(port_text, dns_port=dns_port)))
    validate_services(services, dns_port=dns_port)
    return services


def validate_services(
    services: Sequence[Service],
    *,
    dns_port: int = DEFAULT_DNS_PORT,
) -> None:
    """Check service names and ports, including uniqueness within the project."""
    seen_names: set[str] = set()
    seen_ports: set[int] = set()
    for service in services:
        try:
            validate_name(service.name)
        except ValidationError as exc:
            raise ValidationError(f"invalid service name {service.name!r}: {exc}") from exc
        validate_port(service.port, dns_port=dns_port)
        if service.name in seen_names:
            raise ValidationError(f"duplicate service name: {service.name}")
        if service.port in seen_ports:
            raise ValidationError(f"duplicate port: {service.port}")
        seen_names.add(service.name)
        seen_ports.add(service.port)


def validate_flavors(
    flavors: Sequence[str],
    services: Iterable[Service],
    available: Iterable[str] | None = None,
) -> None:
    """Check flavors are known, unique, and do not shadow a service name."""
    known = set(available) if available is not None else None
    service_names = {service.name for service in services}
    seen: set[str] = set()
    for flavor in flavors:
        if known is not None and flavor not in known:
            listing = ", ".join(sorted(known)) or "none"
            raise ValidationError(f"unknown flavor {flavor!r}; available: {listing}")
        if flavor in seen:
            raise ValidationError(f"duplicate flavor: {flavor}")
        if flavor in service_names:
            raise ValidationError(f"flavor name {flavor!r} conflicts with a service name")
        seen.add(flavor)


__all__ = [
    "RESERVED_NAMES",
    "parse_port",
    "parse_services",
    "reserved_ports",
    "validate_flavors",
    "validate_name",
    "validate_port",
    "validate_services",
]
