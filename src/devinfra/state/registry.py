"""Project registry model and its YAML backing store.

The registry file (``<config_dir>/projects.yaml``) is the single
authoritative record of every project devinfra manages. It is read fully
into memory, mutated there, and written back wholesale. Writes go through a
temporary file in the same directory which is synced and then renamed over
the target, so a crash leaves either the previous file or the new one,
never a partial write.

:class:`Registry` never persists on its own. Callers stage ``add`` or
``remove`` on the in-memory snapshot and call :meth:`RegistryStore.save`
once the rest of their work has succeeded.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConflictError, CorruptRegistryError, NotFoundError, PersistenceError
from ..paths import canonicalize

REGISTRY_FILE_MODE = 0o640


@dataclass(frozen=True, slots=True)
class Service:
    """A routed service inside a project."""

    name: str
    port: int

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "port": self.port}


@dataclass(frozen=True, slots=True)
class Project:
    """A registered project checkout."""

    name: str
    directory: str
    domain: str
    host_mode: bool = False
    services: tuple[Service, ...] = ()
    flavors: tuple[str, ...] = ()
    compose_file: str | None = None
    created_at: str = ""

    @property
    def path(self) -> Path:
        """Return :attr:`directory` as a :class:`Path`."""
        return Path(self.directory)

    @property
    def mode(self) -> str:
        """Return ``host`` or ``docker``."""
        return "host" if self.host_mode else "docker"

    def with_flavor(self, flavor: str) -> Project:
        """Return a copy of the project with *flavor* appended."""
        return _replace_flavors(self, (*self.flavors, flavor))

    def to_dict(self) -> dict[str, object]:
        """Return the on-disk representation (keys match ``projects.yaml``)."""
        payload: dict[str, object] = {
            "name": self.name,
            "dir": self.directory,
            "domain": self.domain,
            "host_mode": self.host_mode,
            "services": [service.to_dict() for service in self.services],
        }
        if self.flavors:
            payload["flavors"] = list(self.flavors)
        if self.compose_file:
            payload["compose_file"] = self.compose_file
        payload["created_at"] = self.created_at
        return payload

    @classmethod
    def from_mapping(cls, entry: Mapping[str, Any]) -> Project:
        """Build a project from a registry mapping, validating its shape."""
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise CorruptRegistryError("Registry entry is missing 'name'.")
        directory = entry.get("dir")
        if not isinstance(directory, str) or not directory.strip():
            raise CorruptRegistryError(f"Registry entry '{name}' is missing 'dir'.")

        raw_services = entry.get("services") or []
        if not isinstance(raw_services, list):
            raise CorruptRegistryError(f"Registry entry '{name}' has invalid 'services'.")
        services: list[Service] = []
        for item in raw_services:
            if not isinstance(item, Mapping):
                raise CorruptRegistryError(f"Registry entry '{name}' has an invalid service.")
            service_name = item.get("name")
            port = item.get("port")
            if not isinstance(service_name, str) or isinstance(port, bool) or not isinstance(
                port, int
            ):
                raise CorruptRegistryError(
                    f"Registry entry '{name}' has an invalid service: {dict(item)!r}"
                )
            services.append(Service(name=service_name, port=port))

        raw_flavors = entry.get("flavors") or []
        if not isinstance(raw_flavors, list) or not all(
            isinstance(flavor, str) for flavor in raw_flavors
        ):
            raise CorruptRegistryError(f"Registry entry '{name}' has invalid 'flavors'.")

        compose_file = entry.get("compose_file")
        created_at = entry.get("created_at")
        return cls(
            name=name,
            directory=directory,
            domain=str(entry.get("domain") or f"*.{name}.test"),
            host_mode=bool(entry.get("host_mode", False)),
            services=tuple(services),
            flavors=tuple(raw_flavors),
            compose_file=str(compose_file) if compose_file else None,
            created_at=str(created_at) if created_at is not None else "",
        )


def _replace_flavors(project: Project, flavors: tuple[str, ...]) -> Project:
    return Project(
        name=project.name,
        directory=project.directory,
        domain=project.domain,
        host_mode=project.host_mode,
        services=project.services,
        flavors=flavors,
        compose_file=project.compose_file,
        created_at=project.created_at,
    )


@dataclass
class Registry:
    """In-memory snapshot of every registered project, in registration order."""

    projects: list[Project] = field(default_factory=list)

    def __iter__(self) -> Iterator[Project]:
        return iter(self.projects)

    def __len__(self) -> int:
        return len(self.projects)

    def get(self, name: str) -> Project | None:
        """Return the project called *name*, if registered."""
        for project in self.projects:
            if project.name == name:
                return project
        return None

    def add(self, project: Project) -> None:
        """Append *project*; names must be unique."""
        if self.get(project.name) is not None:
            raise ConflictError(f"project {project.name!r} already exists")
        self.projects.append(project)

    def replace(self, project: Project) -> None:
        """Swap the stored entry that shares *project*'s name."""
        for index, existing in enumerate(self.projects):
            if existing.name == project.name:
                self.projects[index] = project
                return
        raise NotFoundError(f"project {project.name!r} not found in registry")

    def remove(self, name: str) -> Project:
        """Remove and return the project called *name*."""
        for index, project in enumerate(self.projects):
            if project.name == name:
                return self.projects.pop(index)
        raise NotFoundError(f"project {name!r} not found in registry")

    def list(self) -> list[str]:
        """Return project names in registration order."""
        return [project.name for project in self.projects]

    def has_port(self, port: int) -> str | None:
        """Return the name of the project already routing *port*, if any."""
        for project in self.projects:
            for service in project.services:
                if service.port == port:
                    return project.name
        return None

    def has_directory(self, path: str | os.PathLike[str]) -> str | None:
        """Return the project registered at *path* (compared canonically)."""
        target = canonicalize(path)
        for project in self.projects:
            if canonicalize(project.directory) == target:
                return project.name
        return None

    def to_dict(self) -> dict[str, object]:
        """Return the on-disk representation of the registry."""
        return {"projects": [project.to_dict() for project in self.projects]}

    @classmethod
    def from_entries(cls, entries: Iterable[Project]) -> Registry:
        """Build a registry from already-parsed projects."""
        return cls(projects=list(entries))


@dataclass(frozen=True)
class RegistryStore:
    """Atomic YAML persistence for :class:`Registry`."""

    path: Path

    def __post_init__(self) -> None:
        """Normalise the registry path after initialisation."""
        object.__setattr__(self, "path", Path(self.path).expanduser())

    def load(self) -> Registry:
        """Read the registry; a missing file yields an empty registry."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Registry()
        except OSError as exc:
            raise PersistenceError(f"reading registry {self.path}: {exc}") from exc

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise CorruptRegistryError(f"parsing registry {self.path}: {exc}") from exc

        if data is None:
            return Registry()
        if not isinstance(data, Mapping):
            raise CorruptRegistryError(
                f"registry {self.path} must contain a mapping with a 'projects' list"
            )
        raw_projects = data.get("projects")
        if raw_projects is None:
            return Registry()
        if not isinstance(raw_projects, list):
            raise CorruptRegistryError(f"registry {self.path}: 'projects' must be a list")

        projects: list[Project] = []
        for entry in raw_projects:
            if not isinstance(entry, Mapping):
                raise CorruptRegistryError(f"registry {self.path}: invalid project entry")
            projects.append(Project.from_mapping(entry))
        return Registry.from_entries(projects)

    def save(self, registry: Registry) -> None:
        """Atomically replace the backing file with *registry*."""
        directory = self.path.parent
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"creating registry directory {directory}: {exc}") from exc

        payload = yaml.safe_dump(registry.to_dict(), sort_keys=False)
        try:
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        except OSError as exc:
            raise PersistenceError(f"creating temp file in {directory}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, REGISTRY_FILE_MODE)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"writing registry {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["Project", "Registry", "RegistryStore", "Service"]
