"""Persistent state for devinfra."""
from __future__ import annotations

from .registry import Project, Registry, RegistryStore, Service

__all__ = ["Project", "Registry", "RegistryStore", "Service"]
