"""Project lifecycle: create, import, remove and flavor management.

``create`` and ``register_existing`` are transactions over plain files. Each
side effect that needs undoing registers a labelled step on a
:class:`~devinfra.lifecycle.rollback.RollbackLedger`; any failure before the
end runs the ledger newest-first and re-raises the original error. All
validation happens before the first side effect, so validation and conflict
errors never leave anything behind.

``remove`` is deliberately not transactional. Stopping containers and
deleting certificates are best effort; dropping the registry entry is fatal
on failure; deleting the project directory (only when asked) runs last so a
failure there cannot leave a registry entry pointing at nothing.
"""
from __future__ import annotations

import logging
import secrets
import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from .. import artifacts
from ..config import AppConfig
from ..errors import (
    ConflictError,
    DevinfraError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ..logging import OperationScope
from ..paths import canonicalize, is_empty_dir
from ..providers.compose import (
    ComposeProvider,
    DetectedService,
    find_compose_file,
    parse_services,
)
from ..providers.certs import CertificateProvider
from ..providers.git import GitProvider, validate_url
from ..state.registry import Project, Registry, RegistryStore, Service
from ..templates import TemplateEngine
from ..validation import validate_flavors, validate_name, validate_services
from .rollback import RollbackLedger

LOGGER = logging.getLogger(__name__)

SECRET_LENGTH = 24


def random_password(length: int = SECRET_LENGTH) -> str:
    """Return a hex secret of exactly *length* characters."""
    return secrets.token_hex(length // 2 + 1)[:length]


@dataclass(frozen=True, slots=True)
class CreateRequest:
    """Fully specified input for :meth:`ProjectLifecycle.create`."""

    name: str
    directory: Path
    services: tuple[Service, ...] = (Service("web", 3000),)
    flavors: tuple[str, ...] = ()
    host_mode: bool = False


@dataclass(frozen=True, slots=True)
class ImportRequest:
    """Input for :meth:`ProjectLifecycle.register_existing`.

    ``source_url`` makes the import clone into ``directory`` first.
    ``compose_file`` defaults to whatever compose file is detected.
    ``services`` left as ``None`` routes every detected service with a
    published port, or whatever ``pick_services`` selects from them.
    ``generate_compose`` writes a ``docker-compose.yaml`` for checkouts
    without one (the selected services then become placeholders).
    """

    name: str
    directory: Path
    services: tuple[Service, ...] | None = None
    source_url: str | None = None
    compose_file: str | None = None
    generate_compose: bool = False
    pick_services: Callable[[list[DetectedService]], Sequence[Service]] | None = None


@dataclass(slots=True)
class RemoveResult:
    """Outcome of :meth:`ProjectLifecycle.remove`."""

    project: Project
    warnings: list[str] = field(default_factory=list)
    directory_deleted: bool = False


def _noop(_message: str) -> None:
    return None


@dataclass(slots=True)
class ProjectLifecycle:
    """Orchestrate project side effects against one registry file."""

    config: AppConfig
    store: RegistryStore
    templates: TemplateEngine
    certs: CertificateProvider
    compose: ComposeProvider
    git: GitProvider | None = None
    today: Callable[[], date] = date.today
    secret: Callable[[], str] = random_password
    on_progress: Callable[[str], None] = _noop
    on_warning: Callable[[str], None] = _noop

    # ------------------------------------------------------------------
    # Queries
    def available_flavors(self) -> list[str]:
        """Return every flavor overlay the template engine can render."""
        return self.templates.flavors()

    # ------------------------------------------------------------------
    # Create
    def create(self, request: CreateRequest, *, scope: OperationScope | None = None) -> Project:
        """Create, scaffold, certify and register a new project."""
        registry = self.store.load()
        directory = canonicalize(request.directory)
        self._validate_new(registry, request.name, directory, request.services)
        if not request.services:
            raise ValidationError("at least one service is required")
        validate_flavors(request.flavors, request.services, self.available_flavors())
        if directory.exists() and not directory.is_dir():
            raise ValidationError(f"path {str(directory)!r} exists and is not a directory")
        if not is_empty_dir(directory):
            raise ConflictError(f"directory {str(directory)!r} already exists and is not empty")

        self.config.ensure_dirs()
        ledger = RollbackLedger()
        try:
            self.on_progress(f"Creating project directory: {directory}")
            self._make_directory(directory, ledger)
            _step(scope, "directory", str(directory))

            context = self._template_context(request.name)
            self.on_progress("Rendering templates...")
            for template_name, output in self.templates.base_templates():
                self.templates.render_to_path(template_name, directory / output, context)
            _step(scope, "templates", ", ".join(o for _, o in self.templates.base_templates()))

            if request.host_mode:
                self.on_progress("Generating host-mode Traefik config...")
                routing = self.config.dynamic_dir / artifacts.host_routing_name(request.name)
                ledger.add("host-routing", lambda: routing.unlink(missing_ok=True))
                routing.write_text(
                    artifacts.render_host_routing(
                        request.name, request.services, tld=self.config.tld
                    ),
                    encoding="utf-8",
                )
                _step(scope, "host-routing", str(routing))
                compose_text = artifacts.render_network_stub(request.name)
            else:
                self.on_progress("Generating docker-compose.yaml...")
                compose_text = artifacts.render_compose(
                    request.name,
                    request.services,
                    network=self.config.network,
                    tld=self.config.tld,
                )
            (directory / artifacts.GENERATED_COMPOSE).write_text(compose_text, encoding="utf-8")
            _step(scope, "compose", artifacts.GENERATED_COMPOSE)

            self._write_readme(directory, request.name, request.services, scope)

            for flavor in request.flavors:
                self.on_progress(f"Adding flavor: {flavor}")
                self._render_flavor(directory, flavor, context)
                _step(scope, f"flavor.{flavor}", artifacts.flavor_file_name(flavor))

            self._issue_certificates(request.name, ledger, scope)

            project = Project(
                name=request.name,
                directory=str(directory),
                domain=f"*.{request.name}.{self.config.tld}",
                host_mode=request.host_mode,
                services=tuple(request.services),
                flavors=tuple(request.flavors),
                created_at=self.today().isoformat(),
            )
            self._register(registry, project, ledger, scope)
            ledger.disarm()
        except BaseException:
            self._roll_back(ledger, scope)
            raise
        return project

    # ------------------------------------------------------------------
    # Import
    def register_existing(
        self,
        request: ImportRequest,
        *,
        scope: OperationScope | None = None,
    ) -> Project:
        """Register an existing (or freshly cloned) checkout."""
        registry = self.store.load()
        directory = canonicalize(request.directory)
        self._validate_new(registry, request.name, directory, request.services or ())
        if request.source_url is not None:
            validate_url(request.source_url)
            if self.git is None:
                raise ValidationError("cloning requires a git provider")
            if directory.exists() and not is_empty_dir(directory):
                raise ConflictError(
                    f"directory {str(directory)!r} already exists and is not empty"
                )
        elif not directory.is_dir():
            raise ValidationError(
                f"path {str(directory)!r} does not exist or is not a directory"
            )

        self.config.ensure_dirs()
        ledger = RollbackLedger()
        try:
            if request.source_url is not None:
                assert self.git is not None
                self.on_progress(f"Cloning {request.source_url} -> {directory}")
                self._track_new_directory(directory, ledger, label="clone")
                self.git.clone(request.source_url, directory)
                _step(scope, "clone", request.source_url)

            compose_file = request.compose_file or find_compose_file(directory)
            services = request.services
            if services is None:
                services = self._detect_services(directory, compose_file, request.pick_services)
                self._validate_new(registry, request.name, directory, services)

            if compose_file is not None and services:
                overlay = directory / artifacts.IMPORT_OVERLAY
                self._write_tracked(
                    overlay,
                    artifacts.render_import_overlay(
                        request.name,
                        services,
                        network=self.config.network,
                        tld=self.config.tld,
                    ),
                    ledger,
                    label="overlay",
                )
                _step(scope, "overlay", overlay.name)
            elif compose_file is None and services and request.generate_compose:
                generated = directory / artifacts.GENERATED_COMPOSE
                self._write_tracked(
                    generated,
                    artifacts.render_compose(
                        request.name,
                        services,
                        network=self.config.network,
                        tld=self.config.tld,
                    ),
                    ledger,
                    label="overlay",
                )
                _step(scope, "overlay", generated.name)

            self._issue_certificates(request.name, ledger, scope)

            project = Project(
                name=request.name,
                directory=str(directory),
                domain=f"*.{request.name}.{self.config.tld}",
                host_mode=False,
                services=tuple(services),
                compose_file=compose_file,
                created_at=self.today().isoformat(),
            )
            self._register(registry, project, ledger, scope)
            ledger.disarm()
        except BaseException:
            self._roll_back(ledger, scope)
            raise
        return project

    def _detect_services(
        self,
        directory: Path,
        compose_file: str | None,
        pick: Callable[[list[DetectedService]], Sequence[Service]] | None,
    ) -> tuple[Service, ...]:
        if compose_file is None:
            return ()
        try:
            detected = parse_services(directory, compose_file)
        except ValidationError as exc:
            self.on_warning(f"could not parse compose file: {exc}")
            return ()
        # Services with a published port first, then alphabetically.
        detected.sort(key=lambda item: (item.port is None, item.name))
        unrouted = [item.name for item in detected if item.port is None]
        if unrouted:
            self.on_progress(f"Services without ports (no routing): {', '.join(unrouted)}")
        if pick is not None:
            return tuple(pick(detected))
        return tuple(
            Service(name=item.name, port=item.port) for item in detected if item.port is not None
        )

    # ------------------------------------------------------------------
    # Remove
    def remove(
        self,
        name: str,
        *,
        delete_directory: bool = False,
        scope: OperationScope | None = None,
    ) -> RemoveResult:
        """Unregister *name*, tolerating container and certificate failures."""
        registry = self.store.load()
        project = registry.get(name)
        if project is None:
            raise NotFoundError(f"project {name!r} not found in registry")
        result = RemoveResult(project=project)

        files = [path for path in artifacts.compose_files_for(project) if path.is_file()]
        if files:
            self.on_progress("Stopping project containers...")
            try:
                self.compose.down(project.path, files, project=name)
                _step(scope, "compose.down")
            except DevinfraError as exc:
                self._warn(result.warnings, f"could not stop containers: {exc}")
                _step(scope, "compose.down", str(exc), status="warning")

        self.on_progress("Removing certs...")
        try:
            self.certs.revoke(name)
            _step(scope, "certificates")
        except DevinfraError as exc:
            self._warn(result.warnings, f"could not remove certificates: {exc}")
            _step(scope, "certificates", str(exc), status="warning")

        self.on_progress("Removing from registry...")
        registry.remove(name)
        self.store.save(registry)
        _step(scope, "registry")

        if delete_directory:
            self.on_progress(f"Removing project directory: {project.directory}")
            try:
                shutil.rmtree(project.path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise PersistenceError(
                    f"project {name!r} was unregistered but removing "
                    f"{project.directory} failed: {exc}"
                ) from exc
            result.directory_deleted = True
            _step(scope, "directory", project.directory)
        return result

    # ------------------------------------------------------------------
    # Flavors
    def add_flavor(
        self,
        name: str,
        flavor: str,
        *,
        scope: OperationScope | None = None,
    ) -> Path:
        """Render *flavor* into an existing project and record it."""
        registry = self.store.load()
        project = registry.get(name)
        if project is None:
            raise NotFoundError(f"project {name!r} not found in registry")
        if flavor in project.flavors:
            raise ConflictError(f"flavor {flavor!r} already added to project {name!r}")
        validate_flavors([*project.flavors, flavor], project.services, self.available_flavors())

        destination = project.path / artifacts.flavor_file_name(flavor)
        ledger = RollbackLedger()
        try:
            self._write_tracked(
                destination,
                self.templates.render_to_string(
                    TemplateEngine.flavor_template(flavor),
                    self._template_context(name),
                ),
                ledger,
                label="flavor",
            )
            _step(scope, f"flavor.{flavor}", destination.name)
            registry.replace(project.with_flavor(flavor))
            self.store.save(registry)
            _step(scope, "registry")
            ledger.disarm()
        except BaseException:
            self._roll_back(ledger, scope)
            raise
        return destination

    # ------------------------------------------------------------------
    # Internals
    def _validate_new(
        self,
        registry: Registry,
        name: str,
        directory: Path,
        services: Sequence[Service],
    ) -> None:
        validate_name(name)
        validate_services(services, dns_port=self.config.dns_port)
        if registry.get(name) is not None:
            raise ConflictError(f"project {name!r} already exists")
        owner = registry.has_directory(directory)
        if owner is not None:
            raise ConflictError(
                f"directory already registered as project {owner!r}; "
                f"run 'di remove {owner}' first"
            )
        for service in services:
            owner = registry.has_port(service.port)
            if owner is not None:
                raise ConflictError(f"port {service.port} is already used by project {owner!r}")

    def _template_context(self, name: str) -> dict[str, object]:
        return {
            "project_name": name,
            "postgres_password": self.secret(),
            "rabbitmq_password": self.secret(),
            "minio_password": self.secret(),
            "network": self.config.network,
            "tld": self.config.tld,
        }

    def _make_directory(self, directory: Path, ledger: RollbackLedger) -> None:
        if directory.is_dir():
            ledger.add("directory", lambda: _empty_directory(directory))
            return
        self._track_new_directory(directory, ledger, label="directory")
        directory.mkdir(mode=0o755, parents=True)

    def _track_new_directory(self, directory: Path, ledger: RollbackLedger, *, label: str) -> None:
        if directory.is_dir():
            ledger.add(label, lambda: _empty_directory(directory))
            return
        top = _topmost_missing(directory)
        ledger.add(label, lambda: shutil.rmtree(top, ignore_errors=False) if top.exists() else None)

    def _write_tracked(
        self,
        path: Path,
        content: str,
        ledger: RollbackLedger,
        *,
        label: str,
    ) -> None:
        previous = path.read_bytes() if path.is_file() else None

        def undo() -> None:
            if previous is None:
                path.unlink(missing_ok=True)
            else:
                path.write_bytes(previous)

        ledger.add(label, undo)
        path.write_text(content, encoding="utf-8")

    def _render_flavor(self, directory: Path, flavor: str, context: dict[str, object]) -> None:
        self.templates.render_to_path(
            TemplateEngine.flavor_template(flavor),
            directory / artifacts.flavor_file_name(flavor),
            context,
        )

    def _write_readme(
        self,
        directory: Path,
        name: str,
        services: Sequence[Service],
        scope: OperationScope | None,
    ) -> None:
        try:
            (directory / artifacts.README_NAME).write_text(
                artifacts.render_readme(name, services, tld=self.config.tld),
                encoding="utf-8",
            )
        except OSError as exc:
            self.on_warning(f"could not write README: {exc}")
            _step(scope, "readme", str(exc), status="warning")
            return
        _step(scope, "readme", artifacts.README_NAME)

    def _issue_certificates(
        self,
        name: str,
        ledger: RollbackLedger,
        scope: OperationScope | None,
    ) -> None:
        self.on_progress(f"Generating certs for {name}.{self.config.tld}...")
        # Registered before issuing so a partial mkcert run is also cleaned up.
        ledger.add("certificates", lambda: self.certs.revoke(name))
        self.certs.issue(name)
        _step(scope, "certificates", f"{name}.{self.config.tld}")

    def _register(
        self,
        registry: Registry,
        project: Project,
        ledger: RollbackLedger,
        scope: OperationScope | None,
    ) -> None:
        self.on_progress("Registering project...")
        registry.add(project)
        self.store.save(registry)

        def unregister() -> None:
            current = self.store.load()
            if current.get(project.name) is not None:
                current.remove(project.name)
                self.store.save(current)

        ledger.add("registry", unregister)
        _step(scope, "registry", project.name)

    def _roll_back(self, ledger: RollbackLedger, scope: OperationScope | None) -> None:
        labels = list(reversed(ledger.labels))
        warnings = ledger.execute()
        for label in labels:
            _step(scope, f"rollback.{label}", status="success")
        for message in warnings:
            self.on_warning(message)
            _step(scope, "rollback", message, status="warning")

    def _warn(self, sink: list[str], message: str) -> None:
        LOGGER.warning(message)
        sink.append(message)
        self.on_warning(message)


def _step(
    scope: OperationScope | None,
    name: str,
    detail: str | None = None,
    *,
    status: str = "success",
) -> None:
    if scope is not None:
        scope.add_step(name, status=status, detail=detail)


def _topmost_missing(directory: Path) -> Path:
    """Return the highest ancestor of *directory* that does not exist yet."""
    top = directory
    for parent in directory.parents:
        if parent.exists():
            break
        top = parent
    return top


def _empty_directory(directory: Path) -> None:
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


__all__ = [
    "CreateRequest",
    "ImportRequest",
    "ProjectLifecycle",
    "RemoveResult",
    "random_password",
]
