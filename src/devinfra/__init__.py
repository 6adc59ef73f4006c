"""devinfra package bootstrap.

Exposes the version string used by the CLI, the operation log, and the
packaging machinery.
"""
from __future__ import annotations

__all__ = ["__version__"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.4.0"
