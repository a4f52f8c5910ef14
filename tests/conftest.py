"""
Shared test fixtures and helpers for the cert-deployer test suite.

Certificates are generated at test time with cryptography (one EC key per
session), so tests control SANs, validity windows and chains exactly.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import NameOID

_KEY = ec.generate_private_key(ec.SECP256R1())


def _now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def key_pem() -> str:
    """PEM (PKCS#8) of the private key every generated certificate uses."""
    return _KEY.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("ascii")


def _build(
    subject: x509.Name,
    issuer: x509.Name,
    sans: Sequence[x509.GeneralName],
    not_before: datetime,
    not_after: datetime,
    signing_key: ec.EllipticCurvePrivateKey,
    is_ca: bool = False,
) -> x509.Certificate:
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(list(sans)), critical=False)
    if is_ca:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
    return builder.sign(signing_key, hashes.SHA256())


def make_certificate(
    dns_names: Sequence[str] = ("example.com",),
    ip_addresses: Sequence[str] = (),
    common_name: str | None = None,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
    issuer_organization: str = "Test Issuer",
) -> x509.Certificate:
    """A self-signed certificate with the given SANs and validity window."""
    now = _now()
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name or (dns_names[0] if dns_names else "test")),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer_organization),
        ]
    )
    sans: list[x509.GeneralName] = [x509.DNSName(d) for d in dns_names]
    sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses]
    return _build(
        subject=name,
        issuer=name,
        sans=sans,
        not_before=not_before or now - timedelta(days=1),
        not_after=not_after or now + timedelta(days=90),
        signing_key=_KEY,
    )


def make_certificate_pem(
    dns_names: Sequence[str] = ("example.com",),
    ip_addresses: Sequence[str] = (),
    common_name: str | None = None,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
    issuer_organization: str = "Test Issuer",
) -> str:
    """PEM text of make_certificate(...)."""
    cert = make_certificate(
        dns_names=dns_names,
        ip_addresses=ip_addresses,
        common_name=common_name,
        not_before=not_before,
        not_after=not_after,
        issuer_organization=issuer_organization,
    )
    return cert.public_bytes(Encoding.PEM).decode("ascii")


def make_chain_pem(dns_names: Sequence[str] = ("example.com",)) -> tuple[str, str]:
    """(full chain PEM, intermediate-only PEM) for a leaf signed by a test CA."""
    now = _now()
    ca_name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "Test Intermediate CA"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test CA Org"),
        ]
    )
    ca = _build(ca_name, ca_name, [], now - timedelta(days=10), now + timedelta(days=365), _KEY, is_ca=True)
    leaf = _build(
        subject=x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, dns_names[0])]),
        issuer=ca_name,
        sans=[x509.DNSName(d) for d in dns_names],
        not_before=now - timedelta(days=1),
        not_after=now + timedelta(days=90),
        signing_key=_KEY,
    )
    ca_pem = ca.public_bytes(Encoding.PEM).decode("ascii")
    return leaf.public_bytes(Encoding.PEM).decode("ascii") + ca_pem, ca_pem


def rewrap_pem(pem: str) -> str:
    """Same PEM content with CRLF line endings, 32-char lines and stray spaces."""
    lines = pem.strip().splitlines()
    header, footer, body = lines[0], lines[-1], "".join(lines[1:-1])
    chunks = [body[i : i + 32] for i in range(0, len(body), 32)]
    return "\r\n".join([header, *(f" {chunk}\t" for chunk in chunks), footer]) + "\r\n"


@pytest.fixture()
def cert_pem() -> str:
    """A certificate for example.com and www.example.com."""
    return make_certificate_pem(("example.com", "www.example.com"))


@pytest.fixture()
def private_key_pem() -> str:
    return key_pem()
