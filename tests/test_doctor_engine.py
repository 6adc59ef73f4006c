"""Tests for the doctor check harness and built-in checks."""

from __future__ import annotations

import threading
import time
from pathlib import Path

from conftest import FakeRunner
from devinfra.config import AppConfig
from devinfra.doctor import (
    CheckDefinition,
    CheckStatus,
    DoctorEngine,
    collect_checks,
    collect_project_checks,
    run_check,
    run_checks,
    serialize_report,
)
from devinfra.doctor.checks import platform_checks
from devinfra.errors import CorruptRegistryError
from devinfra.providers import CertificateProvider, ComposeProvider
from devinfra.state import Project, Registry


def _raise() -> bool:
    raise RuntimeError("probe exploded")


def test_run_check_maps_outcomes() -> None:
    ok = run_check(CheckDefinition("Docker", lambda: True, "install docker"))
    failed = run_check(CheckDefinition("Docker", lambda: False, "install docker"))
    crashed = run_check(CheckDefinition("Docker", _raise, "install docker"))

    assert ok.status is CheckStatus.OK
    assert ok.remediation is None
    assert failed.status is CheckStatus.FAIL
    assert failed.remediation == "install docker"
    assert crashed.is_failure


def test_run_checks_keeps_definition_order_under_concurrency() -> None:
    """Slow early checks still come back first."""

    def sleeper(delay: float) -> bool:
        time.sleep(delay)
        return True

    definitions = [
        CheckDefinition(f"check-{index}", lambda d=delay: sleeper(d), "fix")
        for index, delay in enumerate([0.2, 0.0, 0.1, 0.0])
    ]

    results = run_checks(definitions, max_concurrency=4)

    assert [result.name for result in results] == ["check-0", "check-1", "check-2", "check-3"]


def test_run_checks_respects_concurrency_bound() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def probe() -> bool:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.05)
        with lock:
            active -= 1
        return True

    definitions = [CheckDefinition(f"c{i}", probe, "fix") for i in range(8)]

    results = run_checks(definitions, max_concurrency=2)

    assert len(results) == 8
    assert peak <= 2


def test_engine_appends_project_checks_and_counts_errors(tmp_path: Path) -> None:
    registry = Registry()
    registry.add(Project(name="blog", directory=str(tmp_path), domain="*.blog.test"))

    engine = DoctorEngine(
        [CheckDefinition("Docker", lambda: True, "install"), CheckDefinition("mkcert", lambda: False, "brew")],
        lambda: registry,
        lambda reg: [CheckDefinition(f"{p.name}: directory", p.path.is_dir, "gone") for p in reg],
        max_concurrency=1,
    )

    report = engine.run()

    assert [check.name for check in report.checks] == ["Docker", "mkcert", "blog: directory"]
    assert report.errors == 1
    assert report.passed is False
    payload = serialize_report(report)
    assert payload["checks"][1] == {"name": "mkcert", "status": "fail", "remediation": "brew"}
    assert payload["checks"][0]["remediation"] is None


def test_engine_reports_unreadable_registry() -> None:
    def broken() -> Registry:
        raise CorruptRegistryError("parsing registry: bad")

    report = DoctorEngine([], broken, lambda reg: []).run()

    assert [check.name for check in report.checks] == ["Registry"]
    assert report.checks[0].status is CheckStatus.FAIL
    assert "parsing registry" in (report.checks[0].remediation or "")


def test_collect_checks_names(config: AppConfig, certs: CertificateProvider, compose: ComposeProvider) -> None:
    runner = FakeRunner()

    names = [check.name for check in collect_checks(config, compose, certs, runner, system="Plan9")]  # type: ignore[arg-type]

    assert names == [
        "Docker",
        "mkcert",
        "mkcert CA",
        "Docker network",
        "traefik container",
        "socket-proxy container",
        "dnsmasq container",
        "Infra certs",
        "DNS resolution",
    ]


def test_dns_check_queries_local_resolver(config: AppConfig, certs: CertificateProvider, compose: ComposeProvider) -> None:
    runner = FakeRunner(stdout={"dig": "127.0.0.1\n"})
    checks = {
        check.name: check
        for check in collect_checks(config, compose, certs, runner, system="Plan9")  # type: ignore[arg-type]
    }

    assert run_check(checks["DNS resolution"]).status is CheckStatus.OK
    assert runner.calls[-1] == ["dig", "+short", "test.test", "@127.0.0.1", "-p", "5354"]


def test_darwin_resolver_checks(tmp_path: Path, config: AppConfig) -> None:
    resolver_dir = tmp_path / "resolver"
    resolver_dir.mkdir()
    (resolver_dir / "test").write_text("nameserver 127.0.0.1\nport 5300\n")
    runner = FakeRunner(installed={"brew"})

    results = {
        check.name: run_check(check).status
        for check in platform_checks(config, runner, system="Darwin", resolver_dir=resolver_dir)  # type: ignore[arg-type]
    }

    assert results == {
        "Homebrew": CheckStatus.OK,
        str(resolver_dir / "test"): CheckStatus.OK,
        "Resolver content": CheckStatus.OK,
        "Resolver port": CheckStatus.FAIL,
    }


def test_linux_docker_group_check(config: AppConfig) -> None:
    runner = FakeRunner(stdout={"id": "me adm docker\n", "resolvectl": "DNS Domain: ~test\n"})

    results = {
        check.name: run_check(check).status
        for check in platform_checks(config, runner, system="Linux")  # type: ignore[arg-type]
    }

    assert results == {
        "libnss3-tools": CheckStatus.OK,
        "systemd-resolved .test": CheckStatus.OK,
        "Docker group": CheckStatus.OK,
    }


def test_project_checks(tmp_path: Path, config: AppConfig, certs: CertificateProvider) -> None:
    config.ensure_dirs()
    registry = Registry()
    registry.add(Project(name="blog", directory=str(tmp_path), domain="*.blog.test"))
    registry.add(Project(name="gone", directory=str(tmp_path / "missing"), domain="*.gone.test"))
    paths = certs.cert_paths("blog")
    paths.cert.write_text("cert")
    paths.key.write_text("key")

    results = {check.name: run_check(check) for check in collect_project_checks(registry, certs)}

    assert results["blog: directory"].status is CheckStatus.OK
    assert results["blog: certs"].status is CheckStatus.OK
    assert results["gone: directory"].status is CheckStatus.FAIL
    assert str(tmp_path / "missing") in (results["gone: directory"].remediation or "")
    assert results["gone: certs"].remediation == "Run 'di certs regen gone'"
