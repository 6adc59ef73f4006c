"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from devinfra.config import AppConfig, load_config
from devinfra.errors import ExternalToolError
from devinfra.lifecycle import ProjectLifecycle
from devinfra.providers import CertificateProvider, ComposeProvider, GitProvider, ProcessResult
from devinfra.state import RegistryStore
from devinfra.templates import TemplateEngine


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@dataclass
class FakeRunner:
    """Stand-in for :class:`ProcessRunner` that records calls.

    ``mkcert`` writes a pair into its working directory, ``git clone`` creates
    the destination with ``clone_files``; binaries listed in ``failing`` raise
    :class:`ExternalToolError` instead. ``stdout`` maps a binary to the text
    captured commands return.
    """

    calls: list[list[str]] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)
    stdout: dict[str, str] = field(default_factory=dict)
    clone_files: dict[str, str] = field(default_factory=dict)
    partial_mkcert: bool = False
    installed: set[str] = field(default_factory=set)

    def which(self, binary: str) -> str | None:
        return f"/usr/bin/{binary}" if binary in self.installed else None

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        mode: object = None,
        timeout: float | None = None,
        cancel: object = None,
        env: object = None,
        check: bool = True,
        error_prefix: str | None = None,
    ) -> ProcessResult:
        command = [str(arg) for arg in args]
        self.calls.append(command)
        binary = command[0]
        if binary == "mkcert" and cwd is not None and len(command) == 3:
            domain = command[1]
            (Path(cwd) / f"{domain}+1.pem").write_text("cert\n")
            if self.partial_mkcert or binary in self.failing:
                raise ExternalToolError("mkcert failed (exit 1)", output="boom")
            (Path(cwd) / f"{domain}+1-key.pem").write_text("key\n")
        if binary in self.failing:
            if not check:
                return ProcessResult(args=command, returncode=1, stderr="failed")
            raise ExternalToolError(f"{error_prefix or binary} failed (exit 1)")
        if binary == "git" and "clone" in command:
            destination = Path(command[-1])
            destination.mkdir(parents=True, exist_ok=True)
            for name, content in self.clone_files.items():
                (destination / name).write_text(content)
        return ProcessResult(args=command, returncode=0, stdout=self.stdout.get(binary, ""))

    def succeeds(self, args: Sequence[str], *, timeout: float | None = None, cancel: object = None) -> bool:
        return self.run(args, timeout=timeout, cancel=cancel, check=False).ok

    def commands(self, binary: str) -> list[list[str]]:
        """Return recorded invocations of *binary*."""
        return [call for call in self.calls if call[0] == binary]


@pytest.fixture()
def config(tmp_path: Path) -> AppConfig:
    """Return a config rooted in a temporary directory with no environment input."""
    return load_config(tmp_path / "config", env={})


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def templates() -> TemplateEngine:
    return TemplateEngine.with_overrides(None)


@pytest.fixture()
def store(config: AppConfig) -> RegistryStore:
    return RegistryStore(config.registry_path)


@pytest.fixture()
def certs(config: AppConfig, fake_runner: FakeRunner) -> CertificateProvider:
    return CertificateProvider(
        runner=fake_runner,  # type: ignore[arg-type]
        certs_dir=config.certs_dir,
        dynamic_dir=config.dynamic_dir,
    )


@pytest.fixture()
def compose(config: AppConfig, fake_runner: FakeRunner) -> ComposeProvider:
    return ComposeProvider(runner=fake_runner, compose_dir=config.compose_dir)  # type: ignore[arg-type]


@pytest.fixture()
def lifecycle(
    config: AppConfig,
    store: RegistryStore,
    templates: TemplateEngine,
    certs: CertificateProvider,
    compose: ComposeProvider,
    fake_runner: FakeRunner,
) -> ProjectLifecycle:
    return ProjectLifecycle(
        config=config,
        store=store,
        templates=templates,
        certs=certs,
        compose=compose,
        git=GitProvider(runner=fake_runner),  # type: ignore[arg-type]
        secret=lambda: "s3cret",
    )
