"""
Hostname matching and PEM content comparison.

Rules (all comparisons ASCII case-insensitive, one trailing dot ignored):

  is_wildcard_match("*.example.com", c)
    - true when c has exactly one more, non-empty label than the suffix:
        a.example.com   → True
        x.a.example.com → False
        example.com     → False
    - true when c equals the pattern itself (a platform may list the
      wildcard domain as an inventory entry)

  verifies_hostname(cert, domain)
    - DNS SAN equal to domain, or a wildcard DNS SAN covering exactly the
      left-most label of domain
    - IP-literal domains match IP SANs only
    - a domain that is itself a wildcard matches only an identical SAN
"""

from __future__ import annotations

import ipaddress

from cert_deployer.domain.models import Certificate

_PEM_WHITESPACE = str.maketrans("", "", "\r\n\t ")


def normalize_hostname(name: str) -> str:
    normalized = name.strip().lower()
    if normalized.endswith("."):
        normalized = normalized[:-1]
    return normalized


def is_wildcard_match(pattern: str, candidate: str) -> bool:
    p = normalize_hostname(pattern)
    c = normalize_hostname(candidate)
    if not p or not c:
        return False
    if p == c:
        return True
    if not p.startswith("*."):
        return False
    suffix = p[1:]
    if not c.endswith(suffix):
        return False
    label = c[: -len(suffix)]
    return bool(label) and "." not in label and "*" not in label


def verifies_hostname(cert: Certificate, domain: str) -> bool:
    """Standard TLS hostname verification against the certificate's SANs."""
    host = normalize_hostname(domain)
    if not host:
        return False

    ip = _parse_ip(host)
    if ip is not None:
        return any(_parse_ip(san) == ip for san in cert.ip_addresses)

    if host.startswith("*."):
        return any(normalize_hostname(san) == host for san in cert.dns_names)

    for san in cert.dns_names:
        name = normalize_hostname(san)
        if name == host:
            return True
        if name.startswith("*.") and is_wildcard_match(name, host):
            return True
    return False


def content_equals(pem_a: str, pem_b: str) -> bool:
    """Compare PEM texts ignoring line wrapping and spacing."""
    return pem_a.translate(_PEM_WHITESPACE) == pem_b.translate(_PEM_WHITESPACE)


def _parse_ip(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return None
