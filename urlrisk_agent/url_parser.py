from __future__ import annotations

import ipaddress
import re
from urllib.parse import parse_qsl, unquote, urlsplit

import tldextract

from .errors import ParseError
from .models import ParsedUrl, UrlComponents


# Bundled public suffix snapshot only; parsing must never go to the network.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def _split_domain(hostname: str) -> tuple[str, str]:
    ext = _EXTRACT(hostname)
    if not ext.domain or not ext.suffix:
        return hostname, ""
    return f"{ext.domain}.{ext.suffix}", ext.subdomain


def registrable_domain(hostname: str) -> str:
    """``a.b.example.co.uk`` -> ``example.co.uk``; IPs and bare names are returned as-is."""
    host = (hostname or "").split(":")[0].strip().lower().rstrip(".")
    try:
        ipaddress.ip_address(host.strip("[]"))
        return host
    except ValueError:
        pass
    return _split_domain(host)[0]


def parse(url: str) -> ParsedUrl:
    value = (url or "").strip()
    if not re.match(r"^[a-zA-Z][a-zA-Z\d+.-]*://", value):
        value = "https://" + value
    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError as e:
        raise ParseError(f"Invalid URL format: {e}") from e

    hostname = (parts.hostname or "").lower().rstrip(".")
    if not hostname:
        raise ParseError("URL has no host")

    is_ipv4 = is_ipv6 = False
    try:
        ip = ipaddress.ip_address(hostname)
        is_ipv4 = ip.version == 4
        is_ipv6 = ip.version == 6
    except ValueError:
        pass
    is_ip = is_ipv4 or is_ipv6

    if is_ip or "." not in hostname:
        domain, subdomain = hostname, ""
    else:
        domain, subdomain = _split_domain(hostname)

    path_parts = tuple(unquote(p) for p in parts.path.split("/") if p)
    query_params = tuple(parse_qsl(parts.query, keep_blank_values=True))
    domain_parts = tuple(p for p in domain.split(".") if p) if not is_ipv6 else (domain,)

    return ParsedUrl(
        original=(url or "").strip(),
        scheme=parts.scheme.lower(),
        hostname=hostname,
        domain=domain,
        subdomain=subdomain or None,
        port=port,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
        is_ip=is_ip,
        is_ipv4=is_ipv4,
        is_ipv6=is_ipv6,
        components=UrlComponents(
            domain_parts=domain_parts,
            path_parts=path_parts,
            query_params=query_params,
        ),
    )


def full_domain(parsed: ParsedUrl) -> str:
    if parsed.subdomain:
        return f"{parsed.subdomain}.{parsed.domain}"
    return parsed.domain


def url_depth(parsed: ParsedUrl) -> int:
    return len(parsed.components.path_parts)


def file_extension(parsed: ParsedUrl) -> str | None:
    if not parsed.components.path_parts:
        return None
    last = parsed.components.path_parts[-1]
    dot = last.rfind(".")
    if dot == -1 or dot == len(last) - 1:
        return None
    return last[dot + 1:].lower()
