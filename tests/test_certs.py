"""Certificate provider tests."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from conftest import FakeRunner
from devinfra.config import AppConfig
from devinfra.errors import ExternalToolError, ValidationError
from devinfra.providers import CertificateProvider


def _write_pair(paths_cert: Path, paths_key: Path, *, days: int = 30, mismatched: bool = False) -> None:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, "mkcert development certificate")])
    now = datetime.now(UTC)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName("blog.test"), x509.DNSName("*.blog.test")]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    paths_cert.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    stored_key = ec.generate_private_key(ec.SECP256R1()) if mismatched else key
    paths_key.write_bytes(
        stored_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


def test_issue_runs_mkcert_and_writes_descriptor(
    config: AppConfig,
    certs: CertificateProvider,
    fake_runner: FakeRunner,
) -> None:
    paths = certs.issue("blog")

    assert fake_runner.calls == [["mkcert", "blog.test", "*.blog.test"]]
    assert paths.exist()
    assert (paths.key.stat().st_mode & 0o777) == 0o600
    descriptor = config.dynamic_dir / "tls-blog.yaml"
    assert "certFile: /certs/blog.test+1.pem" in descriptor.read_text()
    assert certs.has_certificates("blog")


def test_issue_failure_leaves_partial_output_for_revoke(
    config: AppConfig,
    certs: CertificateProvider,
    fake_runner: FakeRunner,
) -> None:
    fake_runner.partial_mkcert = True

    with pytest.raises(ExternalToolError):
        certs.issue("blog")

    assert certs.cert_paths("blog").cert.is_file()
    assert certs.revoke("blog") == [certs.cert_paths("blog").cert]
    assert list(config.certs_dir.iterdir()) == []


def test_revoke_removes_routing_files(config: AppConfig, certs: CertificateProvider) -> None:
    certs.issue("blog")
    (config.dynamic_dir / "host-blog.yaml").write_text("http: {}\n")
    certs.issue("blogger")

    removed = certs.revoke("blog")

    assert {path.name for path in removed} == {
        "blog.test+1.pem",
        "blog.test+1-key.pem",
        "tls-blog.yaml",
        "host-blog.yaml",
    }
    assert certs.has_certificates("blogger")
    assert certs.revoke("blog") == []


def test_issue_infra_has_no_descriptor(config: AppConfig, certs: CertificateProvider) -> None:
    paths = certs.issue_infra()

    assert paths.cert.name == "traefik.test+1.pem"
    assert not (config.dynamic_dir / "tls-traefik.yaml").exists()


def test_inspect_reads_certificate_details(config: AppConfig, certs: CertificateProvider) -> None:
    config.ensure_dirs()
    paths = certs.cert_paths("blog")
    _write_pair(paths.cert, paths.key)

    info = certs.inspect("blog")

    assert info is not None
    assert info.dns_names == ("blog.test", "*.blog.test")
    assert info.key_matches is True
    assert info.expired is False
    payload = info.to_dict()
    assert payload["path"] == str(paths.cert)
    assert "mkcert development certificate" in str(payload["subject"])


def test_inspect_detects_mismatched_key(config: AppConfig, certs: CertificateProvider) -> None:
    config.ensure_dirs()
    paths = certs.cert_paths("blog")
    _write_pair(paths.cert, paths.key, mismatched=True)

    info = certs.inspect("blog")

    assert info is not None
    assert info.key_matches is False


def test_inspect_missing_and_garbage(config: AppConfig, certs: CertificateProvider) -> None:
    config.ensure_dirs()
    assert certs.inspect("blog") is None

    certs.cert_paths("blog").cert.write_text("not a certificate")
    with pytest.raises(ValidationError):
        certs.inspect("blog")


def test_ca_root(tmp_path: Path, certs: CertificateProvider, fake_runner: FakeRunner) -> None:
    assert certs.ca_root() is None

    fake_runner.stdout["mkcert"] = f"{tmp_path}\n"
    assert certs.ca_root() == tmp_path
