from __future__ import annotations

import ipaddress
import re
import socket
from urllib.parse import unquote, urlsplit, urlunsplit

from .models import ErrorKind, ValidationOptions, ValidationResult


_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z\d+.-]*):(?!\d)")
_DANGEROUS_SCHEMES = ("javascript", "data", "vbscript", "file")
_DANGEROUS_TEXT_RE = re.compile(r"\b(?:javascript|vbscript|data|file):", re.IGNORECASE)
_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
# Forms inet_aton accepts beyond dotted quads: 2130706433, 0x7f.1, 0177.0.0.1
_NUMERIC_HOST_RE = re.compile(r"^(0x[0-9a-f]+|\d+)(\.(0x[0-9a-f]+|\d+)){0,3}$", re.IGNORECASE)

_DEFAULT_PORTS = {"http": 80, "https": 443}

_METADATA_HOSTS = {
    "metadata",
    "metadata.google.internal",
    "metadata.goog",
    "instance-data",
    "instance-data.ec2.internal",
}
_METADATA_ADDRESSES = {
    ipaddress.ip_address("169.254.169.254"),
    ipaddress.ip_address("169.254.170.2"),
    ipaddress.ip_address("100.100.100.200"),
    ipaddress.ip_address("fd00:ec2::254"),
}

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _fail(kind: ErrorKind, message: str) -> ValidationResult:
    return ValidationResult(is_valid=False, error=message, error_kind=kind)


def ip_literal(host: str) -> IPAddress | None:
    """Interpret ``host`` the way a resolver would, or return None for DNS names."""
    h = host.strip("[]")
    try:
        return ipaddress.ip_address(h)
    except ValueError:
        pass
    if _NUMERIC_HOST_RE.match(h):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(h))
        except OSError:
            return None
    return None


def is_loopback_host(host: str) -> bool:
    h = host.lower().rstrip(".")
    if h == "localhost" or h.endswith(".localhost"):
        return True
    ip = ip_literal(h)
    return ip is not None and (ip.is_loopback or ip.is_unspecified)


def is_blocked_address(ip: IPAddress) -> bool:
    """True for addresses a server-side fetch must never be pointed at."""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if ip in _METADATA_ADDRESSES:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
        or (isinstance(ip, ipaddress.IPv4Address) and ip in ipaddress.IPv4Network("100.64.0.0/10"))
    )


def _to_ascii_host(host: str) -> str:
    if host.isascii():
        return host.lower()
    return ".".join(label.encode("idna").decode("ascii") if not label.isascii() else label for label in host.lower().split("."))


def _check_host(host: str, opts: ValidationOptions) -> ValidationResult | None:
    if not host:
        return _fail("invalid-domain", "Domain name cannot be empty")
    if len(host) > 253:
        return _fail("invalid-domain", "Domain name too long (max 253 characters)")

    if is_loopback_host(host):
        if not (opts.allow_localhost or opts.allow_private_ips):
            return _fail("security-risk", "Localhost addresses are not allowed")
        return None

    if host.rstrip(".") in _METADATA_HOSTS and not opts.allow_private_ips:
        return _fail("security-risk", "Cloud metadata endpoints are not allowed")

    ip = ip_literal(host)
    if ip is not None:
        if is_blocked_address(ip) and not opts.allow_private_ips:
            return _fail("security-risk", "Private IP addresses are not allowed")
        return None

    labels = host.rstrip(".").split(".")
    if not all(_LABEL_RE.match(label) for label in labels):
        return _fail("invalid-domain", "Invalid domain name format")
    if len(labels) < 2:
        return _fail("invalid-domain", "Domain must have a valid top-level domain")
    if labels[-1].isdigit():
        return _fail("invalid-domain", "Invalid domain name format")
    return None


def _format_host(host: str, ip: IPAddress | None) -> str:
    if isinstance(ip, ipaddress.IPv6Address):
        return f"[{ip.compressed}]"
    if ip is not None:
        return str(ip)
    return host


def validate(url: str, options: ValidationOptions | None = None) -> ValidationResult:
    """Validate an untrusted URL and return its normalized form.

    Rules run in a fixed order and the first failure wins: length and
    emptiness, control characters, scheme, host syntax, the SSRF guard,
    then embedded-redirect and script-scheme patterns. A missing scheme is
    treated as ``https``.
    """
    opts = options or ValidationOptions()

    if url is None or not url.strip():
        return _fail("invalid-format", "URL cannot be empty")
    if len(url) > opts.max_length:
        return _fail("too-long", f"URL exceeds maximum length of {opts.max_length} characters")
    if _CONTROL_RE.search(url):
        return _fail("security-risk", "URL contains invalid control characters")

    value = url.strip()
    m = _SCHEME_RE.match(value)
    if m is None:
        value = "https://" + value
        scheme = "https"
    else:
        scheme = m.group(1).lower()

    if scheme in _DANGEROUS_SCHEMES:
        return _fail("security-risk", "URL contains potentially malicious protocol")
    allowed = {p.lower().rstrip(":") for p in opts.allowed_protocols}
    if scheme not in allowed:
        return _fail(
            "unsupported-protocol",
            f"Protocol {scheme}: not allowed. Allowed protocols: {', '.join(sorted(allowed))}",
        )

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        return _fail("invalid-format", "Invalid URL format")
    if not value[len(scheme) + 1:].startswith("//"):
        return _fail("invalid-format", "Invalid URL format")

    raw_host = parts.hostname or ""
    try:
        host = _to_ascii_host(raw_host)
    except UnicodeError:
        return _fail("invalid-domain", "Invalid internationalized domain name")

    host_error = _check_host(host, opts)
    if host_error is not None:
        return host_error

    path = parts.path or "/"
    if "//" in path or "%2f%2f" in path.lower():
        return _fail("security-risk", "URL contains suspicious redirect patterns")
    if _DANGEROUS_TEXT_RE.search(unquote(value)):
        return _fail("security-risk", "URL contains potentially malicious content")

    ip = ip_literal(host)
    netloc = _format_host(host, ip)
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    userinfo = parts.netloc.rpartition("@")[0] if "@" in parts.netloc else ""
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    normalized = urlunsplit((scheme, netloc, path, parts.query, parts.fragment))
    return ValidationResult(is_valid=True, normalized_url=normalized)
