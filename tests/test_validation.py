"""Validator tests for names, ports, services and flavors."""
from __future__ import annotations

import pytest

from devinfra.errors import ValidationError
from devinfra.state import Service
from devinfra.validation import (
    parse_port,
    parse_services,
    reserved_ports,
    validate_flavors,
    validate_name,
    validate_port,
    validate_services,
)


@pytest.mark.parametrize("name", ["a", "blog", "my-app", "app2", "x" * 63])
def test_valid_names(name: str) -> None:
    assert validate_name(name) == name


@pytest.mark.parametrize(
    "name",
    ["", "Blog", "2fast", "-app", "app-", "my_app", "my.app", "x" * 64, "traefik", "all"],
)
def test_invalid_names(name: str) -> None:
    with pytest.raises(ValidationError):
        validate_name(name)


def test_reserved_name_message() -> None:
    with pytest.raises(ValidationError, match="reserved"):
        validate_name("localhost")


def test_reserved_ports_follow_dns_port() -> None:
    assert reserved_ports(5354) == {80, 443, 5354}
    assert 5354 not in reserved_ports(5400)
    assert validate_port(5354, dns_port=5400) == 5354
    with pytest.raises(ValidationError, match="reserved"):
        validate_port(5400, dns_port=5400)


@pytest.mark.parametrize("port", [0, -1, 65536, 80, 443, True])
def test_invalid_ports(port: int) -> None:
    with pytest.raises(ValidationError):
        validate_port(port)


def test_parse_port_rejects_text() -> None:
    assert parse_port(" 8080 ") == 8080
    with pytest.raises(ValidationError, match="integer"):
        parse_port("http")


def test_parse_services_default() -> None:
    assert parse_services(None) == [Service("web", 3000)]
    assert parse_services("  ") == [Service("web", 3000)]


def test_parse_services_pairs() -> None:
    services = parse_services("web:3000, api:8080")

    assert services == [Service("web", 3000), Service("api", 8080)]


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("web", "expected name:port"),
        ("web:", "expected name:port"),
        (":3000", "expected name:port"),
        ("web:3000,web:3001", "duplicate service name"),
        ("web:3000,api:3000", "duplicate port"),
        ("Web:3000", "invalid service name"),
        ("web:443", "reserved"),
    ],
)
def test_parse_services_errors(raw: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        parse_services(raw)


def test_validate_services_accepts_empty() -> None:
    validate_services([])


def test_validate_flavors() -> None:
    services = [Service("web", 3000), Service("redis", 6380)]
    available = ["postgres", "redis", "mailpit"]

    validate_flavors(["postgres", "mailpit"], [Service("web", 3000)], available)
    with pytest.raises(ValidationError, match="unknown flavor"):
        validate_flavors(["oracle"], services, available)
    with pytest.raises(ValidationError, match="duplicate flavor"):
        validate_flavors(["postgres", "postgres"], services, available)
    with pytest.raises(ValidationError, match="conflicts with a service"):
        validate_flavors(["redis"], services, available)


def test_validate_flavors_without_catalogue() -> None:
    """Without a catalogue only uniqueness and collisions are checked."""
    validate_flavors(["anything"], [Service("web", 3000)])
