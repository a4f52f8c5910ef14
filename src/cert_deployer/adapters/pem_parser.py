"""
PEM parser — X.509 certificate identity via cryptography.

Adapter layer — turns PEM text into the domain Certificate value object:
  - cryptography: x509.load_pem_x509_certificates() for the chain
  - SHA-1 / SHA-256 fingerprints over the leaf's DER encoding
  - Subject Alternative Names in certificate order, split into DNS/IP subsets

Only the first certificate block (the leaf) is described by Certificate;
split_certificate_chain() separates the leaf from its intermediates for
platforms that take them as two fields.

All exceptions are caught at this adapter boundary via Result.from_computation()
and reported as PARSE_ERROR.
"""

from __future__ import annotations

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.extensions import ExtensionNotFound
from cryptography.x509.oid import NameOID
from railway import ErrorCode
from railway.result import Result

from cert_deployer.domain.models import Certificate

_SHA1 = "sha1"
_SHA256 = "sha256"


# ─────────────────────── Extraction helpers ───────────────────────


def _first_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str | None:
    attributes = name.get_attributes_for_oid(oid)
    if not attributes:
        return None
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")


def _subject_alt_names(cert: x509.Certificate) -> tuple[list[str], list[str], list[str]]:
    """(all SANs, DNS names, IP addresses), each de-duplicated in certificate order."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except ExtensionNotFound:
        return [], [], []

    every: list[str] = []
    dns: list[str] = []
    ips: list[str] = []
    for general_name in ext.value:
        match general_name:
            case x509.DNSName(value=value):
                dns.append(value)
            case x509.IPAddress(value=value):
                ips.append(str(value))
                value = str(value)
            case x509.RFC822Name(value=value) | x509.UniformResourceIdentifier(value=value):
                pass
            case _:
                continue
        if value not in every:
            every.append(value)
    return every, list(dict.fromkeys(dns)), list(dict.fromkeys(ips))


def _to_certificate(cert: x509.Certificate) -> Certificate:
    sans, dns_names, ip_addresses = _subject_alt_names(cert)
    return Certificate(
        raw_der=cert.public_bytes(Encoding.DER),
        common_name=_first_attribute(cert.subject, NameOID.COMMON_NAME),
        subject_alt_names=tuple(sans),
        dns_names=tuple(dns_names),
        ip_addresses=tuple(ip_addresses),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        issuer_organization=_first_attribute(cert.issuer, NameOID.ORGANIZATION_NAME),
        serial_number=format(cert.serial_number, "x"),
        fingerprint_sha1=cert.fingerprint(hashes.SHA1()),
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()),
    )


def _load_chain(pem: str) -> list[x509.Certificate]:
    if not pem or not pem.strip():
        raise ValueError("empty PEM input")
    return x509.load_pem_x509_certificates(pem.encode("utf-8"))


# ─────────────────────── Public API ───────────────────────


def parse_certificate(pem: str) -> Result[Certificate]:
    """
    Parse the leaf certificate of a PEM bundle.

    Returns Result.failure(PARSE_ERROR, ...) on malformed PEM or when the
    text holds no certificate block (e.g. only a private key).
    """
    return Result.from_computation(
        lambda: _to_certificate(_load_chain(pem)[0]),
        ErrorCode.PARSE_ERROR,
        "Failed to parse PEM certificate",
    )


def fingerprint(cert: Certificate, algo: str = _SHA256) -> bytes:
    """SHA-1 or SHA-256 digest of the certificate's DER encoding."""
    match algo.lower().replace("-", ""):
        case "sha1":
            return cert.fingerprint_sha1
        case "sha256":
            return cert.fingerprint_sha256
        case _:
            raise ValueError(f"unsupported fingerprint algorithm: {algo!r}")


def split_certificate_chain(pem: str) -> Result[tuple[str, str]]:
    """
    Split a PEM bundle into (leaf PEM, intermediates PEM).

    The intermediates part is "" when the bundle holds a single certificate.
    """

    def _split() -> tuple[str, str]:
        chain = [c.public_bytes(Encoding.PEM).decode("ascii") for c in _load_chain(pem)]
        return chain[0], "".join(chain[1:])

    return Result.from_computation(
        _split,
        ErrorCode.PARSE_ERROR,
        "Failed to split PEM certificate chain",
    )
