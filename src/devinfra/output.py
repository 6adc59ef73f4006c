"""Terminal output helpers built on :mod:`rich`.

Data (tables, JSON, plain listings) goes to stdout through ``console``;
``[INFO]``/``[OK]``/``[WARN]``/``[FAIL]`` status lines go to stderr through
``err_console``. ``--no-color`` (or ``NO_COLOR``) and ``--quiet`` are applied
in :func:`configure`.
"""
from __future__ import annotations

import json
import os
from collections.abc import Iterable, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console(no_color=bool(os.environ.get("NO_COLOR")), soft_wrap=True)
err_console = Console(stderr=True, no_color=bool(os.environ.get("NO_COLOR")), soft_wrap=True)
_quiet = False


def configure(*, no_color: bool = False, quiet: bool = False) -> None:
    """Rebuild the shared consoles, optionally without styling."""
    global console, err_console, _quiet
    plain = no_color or bool(os.environ.get("NO_COLOR"))
    console = Console(no_color=plain, soft_wrap=True)
    err_console = Console(stderr=True, no_color=plain, soft_wrap=True)
    _quiet = quiet


def info(message: str) -> None:
    """Print an ``[INFO]`` status line unless quiet."""
    if not _quiet:
        err_console.print(f"[cyan][INFO][/cyan] {escape(message)}")


def ok(message: str) -> None:
    """Print an ``[OK]`` status line unless quiet."""
    if not _quiet:
        err_console.print(f"[green][OK][/green] {escape(message)}")


def warn(message: str) -> None:
    """Print a ``[WARN]`` status line."""
    err_console.print(f"[yellow][WARN][/yellow] {escape(message)}")


def fail(message: str) -> None:
    """Print a ``[FAIL]`` status line."""
    err_console.print(f"[red][FAIL][/red] {escape(message)}")


def line(text: str = "") -> None:
    """Print *text* to stdout verbatim."""
    console.print(text, markup=False, highlight=False)


def note(text: str = "", *, always: bool = False) -> None:
    """Print human guidance to stderr, keeping stdout for data."""
    if always or not _quiet:
        err_console.print(text, markup=False, highlight=False)


def print_json(payload: object) -> None:
    """Emit *payload* as indented JSON without markup processing."""
    console.print(json.dumps(payload, indent=2, default=str), markup=False, highlight=False)


def print_table(
    columns: Sequence[str],
    rows: Iterable[Sequence[object]],
    *,
    title: str | None = None,
) -> None:
    """Render *rows* as a rich table."""
    table = Table(*columns, title=title, header_style="bold magenta")
    for row in rows:
        table.add_row(*(escape(str(cell)) for cell in row))
    console.print(table)


__all__ = [
    "configure",
    "console",
    "err_console",
    "fail",
    "info",
    "line",
    "note",
    "ok",
    "print_json",
    "print_table",
    "warn",
]
