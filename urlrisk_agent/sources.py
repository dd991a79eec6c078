"""
Signal sources: reputation (Safe Browsing), registration age (RDAP) and TLS
certificate posture. The language-model judge lives in ``ai_judge``.

Every source implements ``SignalSource``: ``lookup(domain)`` returns a
payload dict carrying at least ``risk`` (0..1, higher is riskier) and
``summary``, or raises one of the ``errors`` source exceptions. Timeouts,
retries and caching are applied by the orchestrator, not here.
"""
from __future__ import annotations

import asyncio
import os
import socket
import ssl
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from .errors import SourceError, SourceSkipped, TransientSourceError
from .url_parser import registrable_domain
from .validator import ip_literal, is_blocked_address


class SignalSource(Protocol):
    source_id: str

    async def lookup(self, domain: str) -> dict[str, Any]: ...


def _raise_for_status(res: httpx.Response, name: str) -> None:
    if res.status_code == 429 or res.status_code >= 500:
        raise TransientSourceError(f"{name} returned HTTP {res.status_code}")
    if res.status_code < 200 or res.status_code >= 300:
        raise SourceError(f"{name} returned HTTP {res.status_code}")


# ---------------------------------------------------------------------------
# Reputation: Google Safe Browsing v4
# ---------------------------------------------------------------------------

THREAT_RISK = {
    "MALWARE": 1.0,
    "SOCIAL_ENGINEERING": 0.95,
    "UNWANTED_SOFTWARE": 0.8,
    "POTENTIALLY_HARMFUL_APPLICATION": 0.6,
}


class ReputationSource:
    source_id = "reputation"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://safebrowsing.googleapis.com/v4/threatMatches:find",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("GOOGLE_SAFE_BROWSING_API_KEY", "")
        self.base_url = base_url
        self._transport = transport

    def _body(self, domain: str) -> dict[str, Any]:
        return {
            "client": {"clientId": "urlrisk-agent", "clientVersion": "0.1.0"},
            "threatInfo": {
                "threatTypes": list(THREAT_RISK),
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": f"https://{domain}/"}, {"url": f"http://{domain}/"}],
            },
        }

    async def lookup(self, domain: str) -> dict[str, Any]:
        if not self.api_key:
            raise SourceSkipped("GOOGLE_SAFE_BROWSING_API_KEY is not set")
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                res = await client.post(self.base_url, params={"key": self.api_key}, json=self._body(domain))
        except httpx.TransportError as e:
            raise TransientSourceError(f"Safe Browsing unreachable: {e}") from e
        _raise_for_status(res, "Safe Browsing")

        matches = res.json().get("matches") or []
        threats = sorted({str(m.get("threatType")) for m in matches if m.get("threatType")})
        risk = max((THREAT_RISK.get(t, 0.5) for t in threats), default=0.0)
        summary = f"Listed for {', '.join(t.lower().replace('_', ' ') for t in threats)}" if threats else "No known threats listed"
        return {"risk": risk, "is_clean": not threats, "threats": threats, "summary": summary}


# ---------------------------------------------------------------------------
# Registration age: RDAP
# ---------------------------------------------------------------------------


def age_risk(age_days: int) -> float:
    if age_days < 30:
        return 0.9
    if age_days < 90:
        return 0.7
    if age_days < 365:
        return 0.4
    if age_days < 730:
        return 0.2
    return 0.0


class WhoisSource:
    source_id = "whois"

    def __init__(self, base_url: str = "https://rdap.org/domain/", transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self._transport = transport

    async def lookup(self, domain: str) -> dict[str, Any]:
        if ip_literal(domain) is not None:
            raise SourceSkipped("Registration data does not apply to IP addresses")
        registrable = registrable_domain(domain)
        try:
            async with httpx.AsyncClient(transport=self._transport, follow_redirects=True) as client:
                res = await client.get(
                    self.base_url + registrable,
                    headers={"accept": "application/rdap+json, application/json"},
                )
        except httpx.TransportError as e:
            raise TransientSourceError(f"RDAP unreachable: {e}") from e
        _raise_for_status(res, "RDAP")

        data = res.json()
        reg_date = None
        for e in data.get("events") or []:
            action = str(e.get("eventAction") or "").lower()
            if "registration" in action:
                reg_date = e.get("eventDate")
                break
        if not reg_date:
            raise SourceError("RDAP record has no registration date")

        try:
            created = datetime.fromisoformat(str(reg_date).replace("Z", "+00:00"))
        except ValueError as e:
            raise SourceError(f"Unparseable registration date: {reg_date}") from e
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        days = int((datetime.now(timezone.utc) - created).total_seconds() // 86400)
        if days < 0:
            raise SourceError("Registration date is in the future")

        return {
            "risk": age_risk(days),
            "domain": registrable,
            "age_days": days,
            "registered_at": created.isoformat(),
            "summary": f"Domain registered {days} days ago",
        }


# ---------------------------------------------------------------------------
# TLS certificate
# ---------------------------------------------------------------------------

_KNOWN_TLS_ISSUER_HINTS = (
    "let's encrypt",
    "digicert",
    "globalsign",
    "sectigo",
    "comodoca",
    "godaddy",
    "amazon",
    "google trust services",
    "cloudflare",
    "microsoft",
    "entrust",
    "identrust",
)


def _resolve_public(hostname: str, port: int) -> tuple[Any, ...]:
    """Resolve ``hostname`` and refuse to connect if it points at a private address."""
    try:
        infos = socket.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise SourceError(f"DNS resolution failed: {e}") from e
    for family, _, _, _, sockaddr in infos:
        ip = ip_literal(sockaddr[0])
        if ip is not None and is_blocked_address(ip):
            raise SourceError("Host resolves to a private address")
    return infos[0][4]


def _fetch_certificate(hostname: str, timeout: float, port: int = 443) -> dict[str, Any]:
    sockaddr = _resolve_public(hostname, port)
    ctx = ssl.create_default_context()
    try:
        with socket.create_connection((sockaddr[0], port), timeout=timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
                cert = ssock.getpeercert() or {}
    except ssl.SSLCertVerificationError as e:
        return {"supported": True, "valid": False, "error": e.verify_message or str(e)}
    except ssl.SSLError as e:
        return {"supported": False, "valid": False, "error": str(e)}
    except (socket.timeout, TimeoutError) as e:
        raise TransientSourceError("TLS handshake timed out") from e
    except ConnectionRefusedError:
        return {"supported": False, "valid": False, "error": "Port 443 refused the connection"}
    except OSError as e:
        raise TransientSourceError(f"TLS connection failed: {e}") from e

    issuer = ", ".join("=".join(x) for rdn in cert.get("issuer", ()) for x in rdn)
    subject = ", ".join("=".join(x) for rdn in cert.get("subject", ()) for x in rdn)
    not_after = cert.get("notAfter")
    days_to_expiry = None
    if not_after:
        try:
            dt = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
            days_to_expiry = int((dt - datetime.now(timezone.utc)).total_seconds() // 86400)
        except ValueError:
            days_to_expiry = None
    return {
        "supported": True,
        "valid": True,
        "issuer": issuer,
        "subject": subject,
        "not_after": not_after,
        "days_to_expiry": days_to_expiry,
    }


def tls_risk(info: dict[str, Any]) -> tuple[float, str]:
    if not info.get("supported"):
        return 0.6, "Site does not serve HTTPS"
    if not info.get("valid"):
        return 0.9, f"Certificate failed verification ({info.get('error') or 'unknown reason'})"

    risk = 0.0
    notes = []
    days = info.get("days_to_expiry")
    if days is not None and days < 14:
        risk += 0.3
        notes.append(f"expires in {days} days")
    issuer = (info.get("issuer") or "").lower()
    if not any(h in issuer for h in _KNOWN_TLS_ISSUER_HINTS):
        risk += 0.2
        notes.append("issuer is not a widely recognized CA")
    summary = "Valid certificate" + (f"; {'; '.join(notes)}" if notes else "")
    return min(1.0, risk), summary


class TlsSource:
    source_id = "ssl"

    def __init__(self, connect_timeout: float = 10.0, port: int = 443):
        self.connect_timeout = connect_timeout
        self.port = port

    async def lookup(self, domain: str) -> dict[str, Any]:
        info = await asyncio.to_thread(_fetch_certificate, domain, self.connect_timeout, self.port)
        risk, summary = tls_risk(info)
        return {**info, "risk": risk, "summary": summary}
