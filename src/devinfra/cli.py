"""Typer-powered command line interface for ``devinfra`` (alias ``di``).

Commands are thin: they build a :class:`RuntimeContext` from the resolved
:class:`~devinfra.config.AppConfig`, open a structured operation record,
call into the lifecycle, provider or doctor layers, and translate any
:class:`~devinfra.errors.DevinfraError` into a ``[FAIL]`` line plus the
error's exit code.
"""
from __future__ import annotations

import logging
import platform
import textwrap
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import NoReturn, TypeVar

import typer

from . import __version__, bootstrap, output
from .artifacts import compose_files_for, project_urls
from .config import AppConfig, load_config
from .doctor import (
    DoctorEngine,
    DoctorReport,
    collect_checks,
    collect_project_checks,
    serialize_report,
)
from .errors import ConfigError, ConflictError, DevinfraError, NotFoundError, ValidationError
from .exit_codes import ExitCode
from .lifecycle import CreateRequest, ImportRequest, ProjectLifecycle
from .logging import OperationScope, StructuredLogger
from .paths import expand_dir, validate_project_dir
from .providers import (
    CertificateProvider,
    ComposeProvider,
    DetectedService,
    GitProvider,
    OutputMode,
    ProcessRunner,
    SourceKind,
)
from .providers.git import classify_source, repo_name_from_url, validate_url
from .state import Project, Registry, RegistryStore, Service
from .templates import TemplateEngine
from .validation import parse_services, validate_name

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    help=textwrap.dedent(
        """
        Local development infrastructure manager.

        devinfra (di) manages Traefik, DNSMasq, and Docker Compose projects
        for local development with .test domains and HTTPS.
        """
    ).strip(),
)
certs_app = typer.Typer(help="Manage TLS certificates.")
flavor_app = typer.Typer(help="Manage project flavors.")
app.add_typer(certs_app, name="certs")
app.add_typer(flavor_app, name="flavor")

CONFIG_DIR_OPTION = typer.Option(
    None,
    "--config-dir",
    file_okay=False,
    help="Override the devinfra config directory.",
)
FORCE_OPTION = typer.Option(False, "--force", help="Skip the confirmation prompt.")
ALL_OPTION = typer.Option(False, "--all", help="Apply to every registered project.")
PROJECT_ARGUMENT = typer.Argument(None, help="Project name (omit for the core infrastructure).")

NOT_INITIALIZED = "devinfra not initialized; run 'di init' first"

T = TypeVar("T")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    store: RegistryStore
    logger: StructuredLogger
    templates: TemplateEngine
    runner: ProcessRunner
    compose: ComposeProvider
    certs: CertificateProvider
    git: GitProvider
    json_output: bool = False
    assume_yes: bool = False

    def lifecycle(self) -> ProjectLifecycle:
        """Return a lifecycle wired to this runtime's collaborators."""
        return ProjectLifecycle(
            config=self.config,
            store=self.store,
            templates=self.templates,
            certs=self.certs,
            compose=self.compose,
            git=self.git,
            on_progress=output.info,
            on_warning=output.warn,
        )


def _build_runtime(
    config: AppConfig,
    *,
    json_output: bool = False,
    assume_yes: bool = False,
) -> RuntimeContext:
    runner = ProcessRunner()
    compose = ComposeProvider(
        runner=runner,
        compose_dir=config.compose_dir,
        compose_project=config.compose_project,
        network=config.network,
        dns_port=config.dns_port,
        docker_bin=config.tools.docker,
        probe_timeout=config.timeouts.probe,
    )
    certs = CertificateProvider(
        runner=runner,
        certs_dir=config.certs_dir,
        dynamic_dir=config.dynamic_dir,
        mkcert_bin=config.tools.mkcert,
        tld=config.tld,
    )
    git = GitProvider(runner=runner, git_bin=config.tools.git, timeout=config.timeouts.clone)
    return RuntimeContext(
        config=config,
        store=RegistryStore(config.registry_path),
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        runner=runner,
        compose=compose,
        certs=certs,
        git=git,
        json_output=json_output,
        assume_yes=assume_yes,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_dir: Path | None,
    *,
    json_output: bool = False,
    assume_yes: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    config = load_config(config_dir)
    runtime = _build_runtime(config, json_output=json_output, assume_yes=assume_yes)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the devinfra version and exit.",
    ),
    config_dir: Path | None = CONFIG_DIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Machine-readable JSON output."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmations."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output."),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    output.configure(no_color=no_color, quiet=quiet or json_output)
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        _ensure_runtime(ctx, config_dir, json_output=json_output, assume_yes=yes)
    except ConfigError as exc:
        output.fail(str(exc))
        raise typer.Exit(code=int(exc.exit_code)) from exc

    if version:
        output.line(f"devinfra {__version__}")
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        output.line(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    output.fail(message)
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


@contextmanager
def _operation(
    runtime: RuntimeContext,
    command: str,
    *,
    args: Mapping[str, object] | None = None,
    target: Mapping[str, object] | None = None,
    requires_init: bool = True,
) -> Iterator[OperationScope]:
    """Open an operation record and map devinfra errors onto exit codes."""
    with runtime.logger.operation(command, args=args, target=target) as op:
        if requires_init and not runtime.config.is_initialized():
            _command_error(op, NOT_INITIALIZED, rc=ExitCode.ENVIRONMENT)
        try:
            yield op
        except DevinfraError as exc:
            _command_error(op, str(exc), rc=exc.exit_code)


def _confirm(runtime: RuntimeContext, prompt: str, *, default: bool = False) -> bool:
    if runtime.assume_yes:
        return True
    return typer.confirm(prompt, default=default, err=True)


def _require_project(registry: Registry, name: str) -> Project:
    project = registry.get(name)
    if project is None:
        raise NotFoundError(f"project {name!r} not found in registry")
    return project


# ----------------------------------------------------------------------
# Infrastructure
@app.command()
def init(
    ctx: typer.Context,
    import_from: Path | None = typer.Option(
        None,
        "--import-from",
        file_okay=False,
        help="Import projects.yaml, certs and dynamic configs from an existing layout.",
    ),
    skip_platform: bool = typer.Option(
        False,
        "--skip-platform",
        help="Skip platform-specific DNS/CA setup (requires sudo).",
    ),
) -> None:
    """Initialize the config directory and the shared infrastructure bundle."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    with _operation(
        runtime,
        "init",
        args={
            "import_from": str(import_from) if import_from else None,
            "skip_platform": skip_platform,
        },
        target={"kind": "system", "scope": "infra"},
        requires_init=False,
    ) as op:
        if config.is_initialized() and import_from is None:
            output.ok(f"Already initialized at {config.config_dir}")
            if runtime.json_output:
                output.print_json({"config_dir": str(config.config_dir), "changed": [], "warnings": []})
            op.success("Already initialized.", changed=0)
            return

        output.info(f"Creating config directory at {config.config_dir}...")
        config.ensure_dirs()
        op.add_step("directories", detail=str(config.config_dir))

        output.info("Rendering infrastructure bundle...")
        changed = bootstrap.render_infra_bundle(config, runtime.templates)
        op.add_step("bundle", detail=", ".join(path.name for path in changed) or "unchanged")

        warnings: list[str] = []
        if import_from is not None:
            output.info(f"Importing from {import_from}...")
            summary = bootstrap.import_layout(expand_dir(import_from), config)
            if summary.registry:
                output.ok("Imported projects.yaml")
            output.ok(
                f"Imported {summary.certificates} certificate file(s) and "
                f"{summary.dynamic_configs} dynamic config(s)"
            )
            op.add_step("import", detail=str(import_from))

        if not skip_platform:
            warnings.extend(_run_platform_setup(runtime, op))

        output.info("Creating Docker network...")
        try:
            if runtime.compose.network_ensure():
                op.add_step("network", detail=config.network)
        except DevinfraError as exc:
            message = f"Could not create Docker network: {exc}"
            output.warn(message)
            warnings.append(message)

        output.info("Generating infrastructure certificates...")
        try:
            runtime.certs.issue_infra()
            op.add_step("certificates", detail=f"traefik.{config.tld}")
        except DevinfraError as exc:
            message = f"Could not generate infra certs: {exc}"
            output.warn(message)
            output.warn("Ensure mkcert is installed and run 'di init' again.")
            warnings.append(message)

        if bootstrap.write_env_file(config):
            op.add_step("env", detail=str(config.env_file))

        output.ok("Initialization complete!")
        if runtime.json_output:
            output.print_json(
                {
                    "config_dir": str(config.config_dir),
                    "changed": [path.name for path in changed],
                    "warnings": warnings,
                }
            )
        else:
            output.note()
            output.note("Next steps:")
            output.note("  di up      # Start Traefik + DNSMasq")
            output.note("  di doctor  # Verify everything works")
        if warnings:
            op.warning("Initialized with warnings.", warnings=warnings, changed=len(changed))
        else:
            op.success("Initialized.", changed=len(changed))


def _run_platform_setup(runtime: RuntimeContext, op: OperationScope) -> list[str]:
    name = bootstrap.platform_name()
    if name is None:
        message = (
            f"Platform {platform.system()} not supported for automatic setup. "
            "Use --skip-platform."
        )
        output.warn(message)
        return [message]
    output.info(f"Running platform setup ({name})...")
    script = bootstrap.write_platform_script(runtime.config, runtime.templates, name)
    try:
        runtime.runner.run(
            ["bash", str(script)],
            mode=OutputMode.ATTACHED,
            env={"DNS_PORT": str(runtime.config.dns_port)},
            error_prefix="platform setup",
        )
    except DevinfraError as exc:
        message = f"Platform setup had issues: {exc}"
        output.warn(message)
        output.warn("Run 'di doctor' to check what needs fixing.")
        op.add_step("platform", status="warning", detail=str(exc))
        return [message]
    op.add_step("platform", detail=name)
    return []


@app.command()
def up(
    ctx: typer.Context,
    project: str | None = PROJECT_ARGUMENT,
    all_projects: bool = ALL_OPTION,
) -> None:
    """Start the core infrastructure, one project, or every project."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "up",
        args={"project": project, "all": all_projects},
        target={"kind": "project" if project else "infra", "name": project},
    ) as op:
        compose = runtime.compose
        if all_projects:
            if not compose.is_infra_running():
                _start_infra(runtime, op)
            failures: list[str] = []
            for entry in runtime.store.load():
                if entry.host_mode:
                    output.warn(f"Skipping host-mode project {entry.name}")
                    continue
                output.info(f"Starting {entry.name}...")
                try:
                    compose.up(entry.path, compose_files_for(entry), project=entry.name)
                except DevinfraError as exc:
                    output.warn(f"Failed to start {entry.name}: {exc}")
                    failures.append(f"{entry.name}: {exc}")
                    continue
                output.ok(f"Started {entry.name}")
                op.add_step(f"up.{entry.name}")
            if failures:
                op.warning("Some projects failed to start.", warnings=failures)
            else:
                op.success("Started all projects.")
            return

        if project is None:
            _start_infra(runtime, op)
            op.success("Core infrastructure started.")
            return

        entry = _require_project(runtime.store.load(), project)
        if not compose.is_infra_running():
            if not _confirm(runtime, "Core infrastructure is not running. Start it now?", default=True):
                raise ValidationError("core infrastructure must be running first; run 'di up'")
            _start_infra(runtime, op)
        output.info(f"Starting {project}...")
        compose.up(entry.path, compose_files_for(entry), project=entry.name)
        output.ok(f"Started {project}")
        op.success(f"Started {project}.", changed=1)


def _start_infra(runtime: RuntimeContext, op: OperationScope) -> None:
    output.info("Starting core infrastructure...")
    runtime.compose.infra_up()
    output.ok("Core infrastructure started.")
    op.add_step("infra.up")


@app.command()
def down(
    ctx: typer.Context,
    project: str | None = PROJECT_ARGUMENT,
    all_projects: bool = ALL_OPTION,
) -> None:
    """Stop the core infrastructure, one project, or every project."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "down",
        args={"project": project, "all": all_projects},
        target={"kind": "project" if project else "infra", "name": project},
    ) as op:
        compose = runtime.compose
        if all_projects:
            failures: list[str] = []
            for entry in runtime.store.load():
                if entry.host_mode:
                    continue
                output.info(f"Stopping {entry.name}...")
                try:
                    compose.down(entry.path, compose_files_for(entry), project=entry.name)
                except DevinfraError as exc:
                    output.warn(f"Failed to stop {entry.name}: {exc}")
                    failures.append(f"{entry.name}: {exc}")
                    continue
                output.ok(f"Stopped {entry.name}")
                op.add_step(f"down.{entry.name}")
            if failures:
                op.warning("Some projects failed to stop.", warnings=failures)
            else:
                op.success("Stopped all projects.")
            return

        if project is None:
            output.info("Stopping core infrastructure...")
            compose.infra_down()
            output.ok("Core infrastructure stopped.")
            op.success("Core infrastructure stopped.")
            return

        entry = _require_project(runtime.store.load(), project)
        output.info(f"Stopping {project}...")
        compose.down(entry.path, compose_files_for(entry), project=entry.name)
        output.ok(f"Stopped {project}")
        op.success(f"Stopped {project}.", changed=1)


@app.command()
def logs(
    ctx: typer.Context,
    project: str | None = PROJECT_ARGUMENT,
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Keep streaming new lines."),
) -> None:
    """Tail infrastructure or project logs."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "logs",
        args={"project": project, "follow": follow},
        target={"kind": "project" if project else "infra", "name": project},
    ) as op:
        if project is None:
            runtime.compose.infra_logs(follow=follow)
        else:
            entry = _require_project(runtime.store.load(), project)
            runtime.compose.logs(
                entry.path,
                compose_files_for(entry),
                project=entry.name,
                follow=follow,
            )
        op.success("Streamed logs.", changed=0)


@app.command()
def clean(ctx: typer.Context, force: bool = FORCE_OPTION) -> None:
    """Stop infrastructure and delete all certificates and dynamic configs."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "clean",
        args={"force": force},
        target={"kind": "system", "scope": "infra"},
        requires_init=False,
    ) as op:
        if not force and not runtime.assume_yes:
            output.note("This will:", always=True)
            output.note("  - Stop core infrastructure", always=True)
            output.note("  - Remove all certificates", always=True)
            output.note("  - Remove all Traefik dynamic configs", always=True)
            output.note("  - Keep projects.yaml", always=True)
            if not typer.confirm("Continue?", default=False, err=True):
                output.info("Cancelled.")
                op.success("Cancelled by user.", changed=0)
                return

        warnings: list[str] = []
        output.info("Stopping infrastructure...")
        try:
            runtime.compose.infra_down()
            op.add_step("infra.down")
        except DevinfraError as exc:
            output.warn(f"Could not stop infrastructure: {exc}")
            warnings.append(str(exc))
        removed = runtime.certs.remove_all()
        op.add_step("files", detail=f"{removed} removed")
        output.ok("Cleaned.")
        if warnings:
            op.warning("Cleaned with warnings.", warnings=warnings, changed=removed)
        else:
            op.success("Cleaned.", changed=removed)


# ----------------------------------------------------------------------
# Projects
@app.command()
def new(
    ctx: typer.Context,
    name: str | None = typer.Option(None, "--name", help="Project name."),
    directory: str | None = typer.Option(None, "--dir", help="Project directory."),
    mode: str = typer.Option("docker", "--mode", help="Mode: docker or host."),
    services: str | None = typer.Option(
        None,
        "--services",
        help="Services as name:port pairs (e.g. web:3000,api:8080).",
    ),
    flavors: str | None = typer.Option(
        None,
        "--flavors",
        help="Comma-separated flavors (e.g. postgres,redis).",
    ),
) -> None:
    """Create a new project with routing, certificates and optional flavors.

    Without ``--name`` and ``--dir`` the command prompts for every value.
    """
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "new",
        args={
            "name": name,
            "dir": directory,
            "mode": mode,
            "services": services,
            "flavors": flavors,
        },
        target={"kind": "project", "name": name},
    ) as op:
        lifecycle = runtime.lifecycle()
        if name is None and directory is None:
            if runtime.assume_yes:
                raise ValidationError("both --name and --dir are required with --yes")
            request = _prompt_create_request(runtime, lifecycle.available_flavors())
        else:
            if not name or not directory:
                raise ValidationError("both --name and --dir are required for non-interactive mode")
            request = _build_create_request(runtime, name, directory, mode, services, flavors)

        project = lifecycle.create(request, scope=op)
        _print_created(runtime, project)
        op.success(f"Created project {project.name}.", changed=1, context=project.to_dict())


def _parse_mode(mode: str) -> bool:
    normalized = mode.strip().lower()
    if normalized in {"", "docker"}:
        return False
    if normalized == "host":
        return True
    raise ValidationError(f"invalid mode {mode!r}: use 'docker' or 'host'")


def _parse_flavors(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _checked_directory(raw: str) -> Path:
    path = expand_dir(raw)
    home = Path.home()
    for message in validate_project_dir(path, home=home):
        output.warn(message)
    return path


def _build_create_request(
    runtime: RuntimeContext,
    name: str,
    directory: str,
    mode: str,
    services: str | None,
    flavors: str | None,
) -> CreateRequest:
    validate_name(name)
    return CreateRequest(
        name=name,
        directory=_checked_directory(directory),
        services=tuple(parse_services(services, dns_port=runtime.config.dns_port)),
        flavors=_parse_flavors(flavors),
        host_mode=_parse_mode(mode),
    )


def _prompt_create_request(runtime: RuntimeContext, available: Sequence[str]) -> CreateRequest:
    """Ask for each value until it validates."""
    name = _prompt_until_valid("Project name", validate_name)
    directory = _prompt_until_valid(
        "Project directory",
        _checked_directory,
        default=f"~/projects/{name}",
    )
    mode = _prompt_until_valid("Mode (docker/host)", _parse_mode, default="docker")
    services = _prompt_until_valid(
        "Services (name:port, comma separated)",
        lambda raw: tuple(parse_services(raw, dns_port=runtime.config.dns_port)),
        default="web:3000",
    )
    flavors: tuple[str, ...] = ()
    if available:
        flavors = _prompt_until_valid(
            f"Flavors ({', '.join(available)}; blank for none)",
            _parse_flavors,
            default="",
        )
    return CreateRequest(
        name=name,
        directory=directory,
        services=services,
        flavors=flavors,
        host_mode=mode,
    )


def _prompt_until_valid(
    label: str,
    parse: Callable[[str], T],
    *,
    default: str | None = None,
) -> T:
    while True:
        raw = typer.prompt(label, default=default, err=True)
        try:
            return parse(raw)
        except (ValidationError, ConflictError) as exc:
            output.fail(str(exc))


def _print_created(runtime: RuntimeContext, project: Project) -> None:
    urls = project_urls(project.name, project.services, tld=runtime.config.tld)
    if runtime.json_output:
        output.print_json({**project.to_dict(), "urls": urls})
        return
    output.ok(f"Project {project.name!r} created at {project.directory}")
    output.note()
    output.note("URLs:")
    for url in urls:
        output.note(f"  {url}")
    output.note()
    output.note("Next steps:")
    output.note(f"  di up {project.name}")


@app.command()
def add(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Git URL or path of an existing checkout."),
    name: str | None = typer.Option(
        None,
        "--name",
        help="Project name (default: derived from the directory or repository).",
    ),
    directory: str | None = typer.Option(
        None,
        "--dir",
        help="Clone destination directory (git URL only).",
    ),
    services: str | None = typer.Option(
        None,
        "--services",
        help="Route these name:port pairs instead of detecting them.",
    ),
    generate: bool = typer.Option(
        False,
        "--generate",
        help="Write a docker-compose.yaml when the checkout has none.",
    ),
) -> None:
    """Import an existing project from a git URL or a local path."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "add",
        args={
            "source": source,
            "name": name,
            "dir": directory,
            "services": services,
            "generate": generate,
        },
        target={"kind": "project", "name": name},
    ) as op:
        registry = runtime.store.load()
        kind = classify_source(source)
        source_url: str | None = None
        if kind is SourceKind.GIT_URL:
            source_url = validate_url(source)
            derived = repo_name_from_url(source)
            if directory:
                target_dir = expand_dir(directory)
            else:
                default_dir = Path.home() / "projects" / derived
                if runtime.assume_yes:
                    target_dir = default_dir
                else:
                    target_dir = expand_dir(
                        typer.prompt("Clone to directory", default=str(default_dir), err=True)
                    )
        else:
            target_dir = expand_dir(source)
            if not target_dir.is_dir():
                raise ValidationError(f"path {str(target_dir)!r} does not exist or is not a directory")
            derived = target_dir.name.lower()

        project_name = _choose_import_name(runtime, registry, name, derived)
        selected: tuple[Service, ...] | None = None
        if services:
            selected = tuple(parse_services(services, dns_port=runtime.config.dns_port))
        elif generate and not runtime.assume_yes:
            selected = tuple(
                _prompt_until_valid(
                    "Services (name:port, comma separated)",
                    lambda raw: parse_services(raw, dns_port=runtime.config.dns_port),
                    default="web:3000",
                )
            )

        request = ImportRequest(
            name=project_name,
            directory=target_dir,
            services=selected,
            source_url=source_url,
            generate_compose=generate,
            pick_services=None if runtime.assume_yes else _pick_detected_services,
        )
        project = runtime.lifecycle().register_existing(request, scope=op)
        _print_created(runtime, project)
        op.success(f"Imported project {project.name}.", changed=1, context=project.to_dict())


def _choose_import_name(
    runtime: RuntimeContext,
    registry: Registry,
    explicit: str | None,
    derived: str,
) -> str:
    def check(candidate: str) -> str:
        validate_name(candidate)
        if registry.get(candidate) is not None:
            raise ConflictError(
                f"project {candidate!r} already exists; run 'di remove {candidate}' first"
            )
        return candidate

    if explicit is not None:
        return check(explicit)
    if runtime.assume_yes:
        return check(derived)
    return _prompt_until_valid("Project name", check, default=derived)


def _pick_detected_services(detected: list[DetectedService]) -> list[Service]:
    routable = [item for item in detected if item.port is not None]
    if not routable:
        output.info("No services with ports found")
        return []
    chosen: list[Service] = []
    for item in routable:
        assert item.port is not None
        if typer.confirm(f"Route {item.name} (port {item.port})?", default=True, err=True):
            chosen.append(Service(name=item.name, port=item.port))
    return chosen


@app.command()
def remove(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project to remove."),
    force: bool = FORCE_OPTION,
    delete_directory: bool = typer.Option(
        False,
        "--no-directory-preserve",
        help="Also delete the project directory.",
    ),
) -> None:
    """Stop a project, delete its certificates and unregister it."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "remove",
        args={"project": project, "force": force, "delete_directory": delete_directory},
        target={"kind": "project", "name": project},
    ) as op:
        entry = _require_project(runtime.store.load(), project)
        if not force and not runtime.assume_yes:
            output.note(f"This will remove project '{project}' from devinfra:", always=True)
            output.note("  - Stop project containers (if running)", always=True)
            output.note(f"  - Delete certs for *.{project}.{runtime.config.tld}", always=True)
            output.note("  - Delete Traefik dynamic configs", always=True)
            output.note("  - Remove from projects.yaml", always=True)
            if delete_directory:
                output.note(f"  - DELETE project directory ({entry.directory})", always=True)
            else:
                output.note(
                    f"  NOTE: The project directory ({entry.directory}) will NOT be deleted.",
                    always=True,
                )
            if not typer.confirm("Continue?", default=False, err=True):
                output.info("Cancelled.")
                op.success("Cancelled by user.", changed=0)
                return

        result = runtime.lifecycle().remove(
            project,
            delete_directory=delete_directory,
            scope=op,
        )
        output.ok(f"Project {project!r} removed.")
        if not result.directory_deleted:
            output.info(f"Project directory preserved at {entry.directory}")
        if result.warnings:
            op.warning(f"Removed {project} with warnings.", warnings=result.warnings, changed=1)
        else:
            op.success(f"Removed {project}.", changed=1)


def _project_status(project: Project, running: Mapping[str, object]) -> str:
    if project.host_mode:
        return "host"
    return "running" if project.name in running else "stopped"


def _running_projects(runtime: RuntimeContext) -> dict[str, list[str]]:
    try:
        return runtime.compose.list_running()
    except DevinfraError as exc:
        output.warn(f"Could not query container status: {exc}")
        return {}


@app.command()
def status(ctx: typer.Context) -> None:
    """List registered projects with mode, running state and URLs."""
    runtime = _get_runtime(ctx)
    with _operation(runtime, "status", target={"kind": "project", "scope": "registry"}) as op:
        registry = runtime.store.load()
        if not len(registry):
            if runtime.json_output:
                output.print_json({"projects": []})
            else:
                output.info("No projects registered yet. Create one with: di new")
            op.success("No projects registered.", changed=0)
            return

        running = _running_projects(runtime)
        rows: list[dict[str, object]] = []
        table_rows: list[tuple[str, str, str, str]] = []
        for project in registry:
            state = _project_status(project, running)
            urls = project_urls(project.name, project.services, tld=runtime.config.tld)
            row: dict[str, object] = {
                "name": project.name,
                "mode": project.mode,
                "status": state,
                "urls": urls,
            }
            if project.services:
                row["services"] = [f"{svc.name}:{svc.port}" for svc in project.services]
            if project.flavors:
                row["flavors"] = list(project.flavors)
            rows.append(row)
            table_rows.append((project.name, project.mode, state, ", ".join(urls)))

        if runtime.json_output:
            output.print_json({"projects": rows})
        else:
            output.print_table(["NAME", "MODE", "STATUS", "URLS"], table_rows)
        op.success("Reported project status.", changed=0)


@app.command()
def inspect(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project to show."),
) -> None:
    """Show full detail for one project."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "inspect",
        args={"project": project},
        target={"kind": "project", "name": project},
    ) as op:
        entry = _require_project(runtime.store.load(), project)
        running = {} if entry.host_mode else _running_projects(runtime)
        urls = project_urls(entry.name, entry.services, tld=runtime.config.tld)
        try:
            certificate = runtime.certs.inspect(entry.name)
        except DevinfraError as exc:
            output.warn(str(exc))
            certificate = None

        payload: dict[str, object] = {
            "name": entry.name,
            "dir": entry.directory,
            "domain": entry.domain,
            "mode": entry.mode,
            "status": _project_status(entry, running),
            "services": [service.to_dict() for service in entry.services],
            "urls": urls,
            "created_at": entry.created_at,
            "certificate": certificate.to_dict() if certificate else None,
        }
        if entry.flavors:
            payload["flavors"] = list(entry.flavors)
        if entry.compose_file:
            payload["compose_file"] = entry.compose_file

        if runtime.json_output:
            output.print_json(payload)
            op.success("Displayed project details as JSON.", changed=0)
            return

        output.line(f"Name:      {entry.name}")
        output.line(f"Directory: {entry.directory}")
        output.line(f"Domain:    {entry.domain}")
        output.line(f"Mode:      {payload['mode']}")
        output.line(f"Status:    {payload['status']}")
        output.line(f"Created:   {entry.created_at}")
        output.line()
        output.line("Services:")
        for service in entry.services:
            output.line(f"  {service.name}:{service.port}")
        if entry.flavors:
            output.line()
            output.line(f"Flavors:   {', '.join(entry.flavors)}")
        output.line()
        output.line("URLs:")
        for url in urls:
            output.line(f"  {url}")
        if certificate is not None:
            output.line()
            state = "EXPIRED" if certificate.expired else "valid"
            output.line(f"Certificate: {state} until {certificate.not_after.date().isoformat()}")
        op.success("Displayed project details.", changed=0)


@app.command("list")
def list_resources(
    ctx: typer.Context,
    resource: str = typer.Argument("projects", help="What to list: projects or flavors."),
) -> None:
    """List registered projects or available flavors."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "list",
        args={"resource": resource},
        target={"kind": resource},
        requires_init=False,
    ) as op:
        if resource == "projects":
            names = runtime.store.load().list()
            empty = "No projects registered."
        elif resource == "flavors":
            names = runtime.templates.flavors()
            empty = "No flavors available."
        else:
            raise ValidationError(f"unknown resource: {resource} (use 'projects' or 'flavors')")
        _print_names(runtime, names, empty=empty)
        op.success(f"Listed {resource}.", changed=0)


def _print_names(runtime: RuntimeContext, names: Sequence[str], *, empty: str) -> None:
    if runtime.json_output:
        output.print_json(list(names))
    elif not names:
        output.info(empty)
    else:
        for name in names:
            output.line(name)


@flavor_app.command("add")
def flavor_add(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project to extend."),
    flavor: str = typer.Argument(..., help="Flavor to add."),
) -> None:
    """Add a flavor overlay to an existing project."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "flavor add",
        args={"project": project, "flavor": flavor},
        target={"kind": "project", "name": project},
    ) as op:
        path = runtime.lifecycle().add_flavor(project, flavor, scope=op)
        output.ok(f"Added {flavor} to {project} ({path.name})")
        output.info(f"Restart the project to apply: di down {project} && di up {project}")
        op.success(f"Added flavor {flavor}.", changed=1)


@flavor_app.command("list")
def flavor_list(ctx: typer.Context) -> None:
    """List available flavors."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "flavor list",
        target={"kind": "flavors"},
        requires_init=False,
    ) as op:
        _print_names(runtime, runtime.templates.flavors(), empty="No flavors available.")
        op.success("Listed flavors.", changed=0)


@certs_app.command("regen")
def certs_regen(
    ctx: typer.Context,
    project: str | None = typer.Argument(None, help="Project (omit for infra and every project)."),
) -> None:
    """Regenerate infrastructure and project certificates."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "certs regen",
        args={"project": project},
        target={"kind": "project" if project else "system", "name": project},
    ) as op:
        certs = runtime.certs
        registry = runtime.store.load()
        if project is not None:
            _require_project(registry, project)
            certs.issue(project)
            output.ok(f"Certificates regenerated for {project}.")
            op.success(f"Regenerated certificates for {project}.", changed=1)
            return

        output.info("Regenerating infrastructure certs...")
        certs.issue_infra()
        op.add_step("certificates.infra")
        failures: list[str] = []
        for entry in registry:
            output.info(f"Regenerating certs for {entry.name}...")
            try:
                certs.issue(entry.name)
            except DevinfraError as exc:
                output.warn(f"Failed to regenerate certs for {entry.name}: {exc}")
                failures.append(f"{entry.name}: {exc}")
                continue
            op.add_step(f"certificates.{entry.name}")
        output.ok("All certificates regenerated.")
        if failures:
            op.warning("Some certificates failed to regenerate.", warnings=failures)
        else:
            op.success("Regenerated all certificates.", changed=len(registry) + 1)


# ----------------------------------------------------------------------
# Utilities
@app.command()
def doctor(ctx: typer.Context) -> None:
    """Run environment and per-project health checks."""
    runtime = _get_runtime(ctx)
    with _operation(
        runtime,
        "doctor",
        target={"kind": "system", "scope": "health"},
        requires_init=False,
    ) as op:
        engine = DoctorEngine(
            collect_checks(runtime.config, runtime.compose, runtime.certs, runtime.runner),
            runtime.store.load,
            partial(collect_project_checks, certs=runtime.certs),
            max_concurrency=runtime.config.doctor.max_concurrency,
        )
        report = engine.run()
        if runtime.json_output:
            output.print_json(serialize_report(report))
        else:
            _render_doctor_report(report)

        if report.passed:
            op.success("All checks passed.", changed=0)
            return
        failed = [result.name for result in report.checks if result.is_failure]
        op.error(f"{report.errors} check(s) failed.", errors=failed, rc=ExitCode.FAILURE)
    raise typer.Exit(code=int(ExitCode.FAILURE))


def _render_doctor_report(report: DoctorReport) -> None:
    output.line()
    output.line("Dev-Infra Health Check")
    output.line("======================")
    output.line()
    for result in report.checks:
        if result.is_failure:
            hint = f" -> {result.remediation}" if result.remediation else ""
            output.line(f"  {result.name:<25}  FAIL{hint}")
        else:
            output.line(f"  {result.name:<25}  OK")
    output.line()
    if report.passed:
        output.ok("All checks passed!")
    else:
        output.fail(f"{report.errors} check(s) failed. See remediation steps above.")


@app.command()
def version(ctx: typer.Context) -> None:
    """Print version information."""
    runtime = _get_runtime(ctx)
    payload = {
        "version": __version__,
        "python": platform.python_version(),
        "os": platform.system().lower(),
        "arch": platform.machine(),
    }
    with runtime.logger.operation("version", target={"kind": "meta", "scope": "version"}) as op:
        if runtime.json_output:
            output.print_json(payload)
        else:
            output.line(
                f"devinfra {payload['version']} (Python {payload['python']} "
                f"on {payload['os']}/{payload['arch']})"
            )
        op.success("Reported version.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
