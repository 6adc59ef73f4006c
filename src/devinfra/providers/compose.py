"""Docker and Docker Compose provider."""
from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..errors import ExternalToolError, ValidationError
from .process import OutputMode, ProcessResult, ProcessRunner

COMPOSE_FILE_NAMES: tuple[str, ...] = (
    "compose.yaml",
    "compose.yml",
    "docker-compose.yaml",
    "docker-compose.yml",
)
COMPOSE_PROJECT_LABEL = "com.docker.compose.project="
INFRA_CONTAINERS: tuple[str, ...] = ("traefik", "socket-proxy", "dnsmasq")


@dataclass(frozen=True, slots=True)
class DetectedService:
    """A service discovered in an existing compose file."""

    name: str
    port: int | None = None


@dataclass(slots=True)
class ComposeProvider:
    """Drive ``docker`` and ``docker compose`` for infra and projects."""

    runner: ProcessRunner
    compose_dir: Path
    compose_project: str = "devinfra"
    network: str = "traefik"
    dns_port: int = 5354
    docker_bin: str = "docker"
    probe_timeout: float | None = 10.0
    _env: dict[str, str] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self._env = {"DNS_PORT": str(self.dns_port)}

    # ------------------------------------------------------------------
    # Infrastructure
    @property
    def infra_compose_file(self) -> Path:
        return self.compose_dir / "docker-compose.yaml"

    def infra_up(self, *, cancel: threading.Event | None = None) -> None:
        """Start Traefik, DNSMasq and the socket proxy."""
        self._infra(["up", "-d"], cancel=cancel)

    def infra_down(self, *, cancel: threading.Event | None = None) -> None:
        """Stop the core infrastructure."""
        self._infra(["down"], cancel=cancel)

    def infra_logs(self, *, follow: bool = True, cancel: threading.Event | None = None) -> None:
        """Stream core infrastructure logs to the terminal."""
        self._infra(["logs", "-f"] if follow else ["logs"], cancel=cancel)

    def is_infra_running(self) -> bool:
        """Return ``True`` when the Traefik container is running."""
        return self.container_running("traefik")

    def _infra(self, args: Sequence[str], *, cancel: threading.Event | None) -> ProcessResult:
        command = [
            self.docker_bin,
            "compose",
            "-p",
            self.compose_project,
            "-f",
            str(self.infra_compose_file),
            *args,
        ]
        return self.runner.run(
            command,
            cwd=self.compose_dir,
            mode=OutputMode.ATTACHED,
            cancel=cancel,
            env=self._env,
            error_prefix=f"docker compose {args[0]}",
        )

    # ------------------------------------------------------------------
    # Projects
    def up(
        self,
        directory: Path,
        files: Sequence[Path],
        *,
        project: str | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Start a project's containers in the background."""
        self._project(directory, files, ["up", "-d"], project=project, cancel=cancel)

    def down(
        self,
        directory: Path,
        files: Sequence[Path],
        *,
        project: str | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Stop a project's containers."""
        self._project(directory, files, ["down"], project=project, cancel=cancel)

    def logs(
        self,
        directory: Path,
        files: Sequence[Path],
        *,
        project: str | None = None,
        follow: bool = True,
        cancel: threading.Event | None = None,
    ) -> None:
        """Stream a project's logs to the terminal."""
        args = ["logs", "-f"] if follow else ["logs"]
        self._project(directory, files, args, project=project, cancel=cancel)

    def _project(
        self,
        directory: Path,
        files: Sequence[Path],
        args: Sequence[str],
        *,
        project: str | None,
        cancel: threading.Event | None,
    ) -> ProcessResult:
        command = [self.docker_bin, "compose"]
        if project:
            command.extend(["-p", project])
        for path in files:
            command.extend(["-f", str(path)])
        command.extend(args)
        return self.runner.run(
            command,
            cwd=directory,
            mode=OutputMode.ATTACHED,
            cancel=cancel,
            env=self._env,
            error_prefix=f"docker compose {args[0]}",
        )

    def list_running(self) -> dict[str, list[str]]:
        """Map compose project name to its running container names.

        One ``docker ps`` call covers every project.
        """
        result = self.runner.run(
            [
                self.docker_bin,
                "ps",
                "--format",
                "{{.Labels}}\t{{.Names}}",
                "--filter",
                "status=running",
            ],
            timeout=self.probe_timeout,
            error_prefix="docker ps",
        )
        return parse_running(result.stdout)

    # ------------------------------------------------------------------
    # Docker primitives
    def docker_available(self) -> bool:
        """Return ``True`` when the Docker daemon answers ``docker info``."""
        return self.runner.succeeds([self.docker_bin, "info"], timeout=self.probe_timeout)

    def container_running(self, name: str) -> bool:
        """Return ``True`` when container *name* exists and is running."""
        try:
            result = self.runner.run(
                [self.docker_bin, "inspect", "-f", "{{.State.Running}}", name],
                timeout=self.probe_timeout,
                check=False,
            )
        except ExternalToolError:
            return False
        return result.ok and result.stdout.strip() == "true"

    def network_exists(self, name: str | None = None) -> bool:
        """Return ``True`` when the network (default: the shared one) exists."""
        return self.runner.succeeds(
            [self.docker_bin, "network", "inspect", name or self.network],
            timeout=self.probe_timeout,
        )

    def network_ensure(self, name: str | None = None) -> bool:
        """Create the shared network if absent; return ``True`` when created."""
        target = name or self.network
        if self.network_exists(target):
            return False
        result = self.runner.run(
            [self.docker_bin, "network", "create", target],
            timeout=self.probe_timeout,
            check=False,
        )
        if result.ok:
            return True
        if "already exists" in result.output:
            return False
        raise ExternalToolError(
            f"docker network create {target} failed (exit {result.returncode})",
            output=result.output,
        )


def parse_running(output: str) -> dict[str, list[str]]:
    """Parse ``docker ps --format '{{.Labels}}\\t{{.Names}}'`` output."""
    running: dict[str, list[str]] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        labels, sep, name = line.partition("\t")
        if not sep:
            continue
        for label in labels.split(","):
            if label.startswith(COMPOSE_PROJECT_LABEL):
                project = label[len(COMPOSE_PROJECT_LABEL) :]
                running.setdefault(project, []).append(name.strip())
                break
    return running


def find_compose_file(directory: Path) -> str | None:
    """Return the first compose file name present in *directory*."""
    for name in COMPOSE_FILE_NAMES:
        if (directory / name).is_file():
            return name
    return None


def parse_services(directory: Path, compose_file: str) -> list[DetectedService]:
    """Read *compose_file* and return its services with their first container port."""
    path = directory / compose_file
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ValidationError(f"reading compose file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ValidationError(f"parsing compose file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ValidationError(f"compose file {path} must contain a mapping")

    services = data.get("services") or {}
    if not isinstance(services, Mapping):
        raise ValidationError(f"compose file {path}: 'services' must be a mapping")

    detected: list[DetectedService] = []
    for name, definition in services.items():
        port = None
        if isinstance(definition, Mapping):
            ports = definition.get("ports") or []
            if isinstance(ports, list) and ports:
                port = container_port(ports[0])
        detected.append(DetectedService(name=str(name), port=port))
    return detected


def container_port(entry: object) -> int | None:
    """Extract the container port from a short or long compose port entry.

    Short form: ``"8000"``, ``"8080:8000"``, ``"127.0.0.1:8080:8000/tcp"``,
    ``"8000-8005"``. Long form: a mapping with ``target``.
    """
    if isinstance(entry, bool):
        return None
    if isinstance(entry, int):
        return entry if entry > 0 else None
    if isinstance(entry, str):
        text = entry.split("/", 1)[0]
        text = text.rsplit(":", 1)[-1]
        text = text.split("-", 1)[0]
        try:
            port = int(text)
        except ValueError:
            return None
        return port if port > 0 else None
    if isinstance(entry, Mapping):
        target = entry.get("target")
        if isinstance(target, bool):
            return None
        try:
            port = int(target)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        return port if port > 0 else None
    return None


__all__ = [
    "COMPOSE_FILE_NAMES",
    "INFRA_CONTAINERS",
    "ComposeProvider",
    "DetectedService",
    "container_port",
    "find_compose_file",
    "parse_running",
    "parse_services",
]
