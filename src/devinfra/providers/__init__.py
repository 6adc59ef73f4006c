"""Provider interfaces for devinfra."""
from __future__ import annotations

from .certs import CertificateInfo, CertificatePaths, CertificateProvider
from .compose import ComposeProvider, DetectedService
from .git import GitProvider, SourceKind
from .process import OutputMode, ProcessResult, ProcessRunner

__all__ = [
    "CertificateInfo",
    "CertificatePaths",
    "CertificateProvider",
    "ComposeProvider",
    "DetectedService",
    "GitProvider",
    "OutputMode",
    "ProcessResult",
    "ProcessRunner",
    "SourceKind",
]
