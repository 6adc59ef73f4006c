"""mkcert-backed certificate issuance and inspection.

mkcert names its output after the first host and the count of extra names,
so issuing ``blog.test`` and ``*.blog.test`` produces::

    certs/blog.test+1.pem
    certs/blog.test+1-key.pem

Traefik picks the pair up through ``dynamic/tls-blog.yaml``.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .. import artifacts
from ..errors import PersistenceError, ValidationError
from .process import ProcessRunner

LOGGER = logging.getLogger(__name__)

INFRA_HOST = "traefik"


@dataclass(frozen=True, slots=True)
class CertificatePaths:
    """Certificate and key locations for one mkcert pair."""

    cert: Path
    key: Path

    def exist(self) -> bool:
        """Return ``True`` when both the certificate and its key are on disk."""
        return self.cert.is_file() and self.key.is_file()


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    """Parsed details of an issued certificate."""

    path: Path
    subject: str
    dns_names: tuple[str, ...]
    not_before: datetime
    not_after: datetime
    key_matches: bool | None

    @property
    def expired(self) -> bool:
        """Return ``True`` once the certificate validity window has ended."""
        return self.not_after <= datetime.now(UTC)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "path": str(self.path),
            "subject": self.subject,
            "dns_names": list(self.dns_names),
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "expired": self.expired,
            "key_matches": self.key_matches,
        }


@dataclass(slots=True)
class CertificateProvider:
    """Issue, revoke and inspect per-project TLS material."""

    runner: ProcessRunner
    certs_dir: Path
    dynamic_dir: Path
    mkcert_bin: str = "mkcert"
    tld: str = "test"
    timeout: float | None = None

    def domain(self, name: str) -> str:
        """Return the bare host name certificates are issued for."""
        return f"{name}.{self.tld}"

    def cert_paths(self, name: str) -> CertificatePaths:
        """Return where mkcert writes the pair for *name*."""
        domain = self.domain(name)
        return CertificatePaths(
            cert=self.certs_dir / f"{domain}+1.pem",
            key=self.certs_dir / f"{domain}+1-key.pem",
        )

    def tls_descriptor_path(self, name: str) -> Path:
        """Return the Traefik dynamic file that loads the pair for *name*."""
        return self.dynamic_dir / artifacts.tls_descriptor_name(name)

    def has_certificates(self, name: str) -> bool:
        """Return ``True`` when the mkcert pair for *name* exists."""
        return self.cert_paths(name).exist()

    def issue(self, name: str, *, cancel: threading.Event | None = None) -> CertificatePaths:
        """Issue ``<name>.<tld>`` + wildcard and write the Traefik descriptor."""
        paths = self._mkcert(name, cancel=cancel)
        self.write_tls_descriptor(name)
        return paths

    def issue_infra(self, *, cancel: threading.Event | None = None) -> CertificatePaths:
        """Issue the certificate used by the Traefik dashboard."""
        return self._mkcert(INFRA_HOST, cancel=cancel)

    def write_tls_descriptor(self, name: str) -> Path:
        """Write ``dynamic/tls-<name>.yaml`` pointing at the project's pair."""
        self.dynamic_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        path = self.tls_descriptor_path(name)
        path.write_text(artifacts.render_tls_descriptor(name, tld=self.tld), encoding="utf-8")
        os.chmod(path, 0o644)
        return path

    def revoke(self, name: str) -> list[Path]:
        """Delete the project's certificates and routing descriptors.

        Every file is attempted; a :class:`PersistenceError` naming the files
        that could not be removed is raised afterwards.
        """
        targets = sorted(self.certs_dir.glob(f"{self.domain(name)}*.pem"))
        targets.append(self.tls_descriptor_path(name))
        targets.append(self.dynamic_dir / artifacts.host_routing_name(name))

        removed: list[Path] = []
        failures: list[str] = []
        for path in targets:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                failures.append(f"{path}: {exc}")
                continue
            removed.append(path)
        if failures:
            raise PersistenceError("could not remove " + "; ".join(failures))
        return removed

    def remove_all(self) -> int:
        """Delete every certificate and dynamic config; return the count."""
        count = 0
        for pattern_dir, pattern in ((self.certs_dir, "*.pem"), (self.dynamic_dir, "*.yaml")):
            for path in sorted(pattern_dir.glob(pattern)):
                path.unlink(missing_ok=True)
                count += 1
        return count

    def inspect(self, name: str) -> CertificateInfo | None:
        """Parse the project's certificate, or return ``None`` when absent."""
        paths = self.cert_paths(name)
        if not paths.cert.is_file():
            return None
        try:
            certificate = _load_certificate(paths.cert)
        except ValueError as exc:
            raise ValidationError(f"{paths.cert} is not a readable certificate: {exc}") from exc
        try:
            san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            dns_names = tuple(san.value.get_values_for_type(x509.DNSName))
        except x509.ExtensionNotFound:
            dns_names = ()

        key_matches: bool | None = None
        if paths.key.is_file():
            try:
                key_matches = _public_keys_match(certificate, paths.key)
            except ValueError:
                key_matches = False
        return CertificateInfo(
            path=paths.cert,
            subject=certificate.subject.rfc4514_string(),
            dns_names=dns_names,
            not_before=certificate.not_valid_before_utc,
            not_after=certificate.not_valid_after_utc,
            key_matches=key_matches,
        )

    def ca_root(self) -> Path | None:
        """Return mkcert's CA directory when it exists."""
        result = self.runner.run(
            [self.mkcert_bin, "-CAROOT"],
            timeout=self.timeout,
            check=False,
        )
        if not result.ok or not result.stdout.strip():
            return None
        path = Path(result.stdout.strip())
        return path if path.exists() else None

    # ------------------------------------------------------------------
    def _mkcert(self, host: str, *, cancel: threading.Event | None) -> CertificatePaths:
        self.certs_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        domain = self.domain(host)
        LOGGER.debug("issuing certificate for %s", domain)
        self.runner.run(
            [self.mkcert_bin, domain, f"*.{domain}"],
            cwd=self.certs_dir,
            timeout=self.timeout,
            cancel=cancel,
            error_prefix="mkcert",
        )
        paths = self.cert_paths(host)
        try:
            os.chmod(paths.key, 0o600)
        except OSError as exc:
            LOGGER.warning("could not restrict permissions on %s: %s", paths.key, exc)
        return paths


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _public_keys_match(certificate: x509.Certificate, key_path: Path) -> bool:
    private_key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
    public_format = serialization.PublicFormat.SubjectPublicKeyInfo
    cert_bytes = certificate.public_key().public_bytes(serialization.Encoding.DER, public_format)
    key_bytes = private_key.public_key().public_bytes(serialization.Encoding.DER, public_format)
    return cert_bytes == key_bytes


__all__ = ["CertificateInfo", "CertificatePaths", "CertificateProvider"]
