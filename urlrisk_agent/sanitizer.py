from __future__ import annotations

import re
from urllib.parse import quote, unquote_plus, urlsplit, urlunsplit

from .models import SanitizationChange, SanitizationOptions, SanitizationResult


TRACKING_PARAMETERS = frozenset(
    p.lower()
    for p in (
        # Google Analytics / Ads
        "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
        "utm_id", "utm_source_platform", "utm_creative_format", "utm_marketing_tactic",
        "gclid", "dclid", "gbraid", "wbraid", "_ga", "_gl",
        # Facebook / Instagram
        "fbclid", "fb_action_ids", "fb_action_types", "fb_ref", "fb_source", "igshid", "igsh",
        # Twitter, LinkedIn, Microsoft
        "twclid", "twttr", "twitter_impression", "li_fat_id", "lipi", "licu",
        "msclkid", "ms_c", "ms_id",
        # Amazon affiliate
        "tag", "linkCode", "creative", "creativeASIN", "linkId", "ref", "ref_",
        # Email marketing (Mailchimp, MailerLite, Vero, HubSpot, Salesforce, Adobe)
        "mc_cid", "mc_eid", "ml_subscriber", "ml_subscriber_hash", "vero_conv", "vero_id",
        "_hsenc", "_hsmi", "hsCtaTracking", "sfmc_id", "sfmc_activityid",
        "s_cid", "adobe_mc", "adobe_mc_ref",
        # Generic campaign parameters
        "source", "campaign", "medium", "content", "term", "tracking", "referrer", "ref_src",
        "campaign_id", "ad_id", "creative_id", "placement_id", "site_id",
        "share", "shared", "ncid", "pk_campaign", "pk_kwd", "pk_source",
    )
)

SENSITIVE_PARAMETERS = frozenset(
    (
        "password", "passwd", "pwd", "token", "access_token", "id_token", "key", "secret",
        "api_key", "apikey", "auth", "authorization", "session", "sid", "sessionid",
        "csrf", "email", "user", "username", "code",
    )
)

_UNRESERVED = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~")
_PCT_RE = re.compile(r"%([0-9a-fA-F]{2})?")
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"


def _param_key(piece: str) -> str:
    return unquote_plus(piece.split("=", 1)[0]).lower()


def _split_query(query: str) -> list[str]:
    return [p for p in query.split("&") if p]


def _normalize_path(path: str) -> str:
    # A lone "%" becomes "%25" so decoded bytes can never join it into a new escape.
    def repl(m: re.Match[str]) -> str:
        if m.group(1) is None:
            return "%25"
        ch = chr(int(m.group(1), 16))
        return ch if ch in _UNRESERVED else "%" + m.group(1).upper()

    return quote(_PCT_RE.sub(repl, path), safe=_PATH_SAFE)


def _rebuild_netloc(netloc: str, host: str) -> str:
    userinfo, _, hostport = netloc.rpartition("@")
    if hostport.startswith("["):
        end = hostport.find("]")
        port = hostport[end + 1:]
    else:
        _, sep, port = hostport.partition(":")
        port = sep + port
    rebuilt = f"{host}{port}"
    return f"{userinfo}@{rebuilt}" if userinfo else rebuilt


def _host_of(netloc: str) -> str:
    hostport = netloc.rpartition("@")[2]
    if hostport.startswith("["):
        return hostport[: hostport.find("]") + 1]
    return hostport.partition(":")[0]


def sanitize(url: str, options: SanitizationOptions | None = None) -> SanitizationResult:
    """Normalize a validated URL and record every change that was applied.

    Steps run in a fixed order (protocol, case, ``www.``, tracking
    parameters, fragment, encoding). Each step is a fixed point on its own
    output, so sanitizing an already-sanitized URL yields no changes.
    """
    opts = options or SanitizationOptions()
    original = url.strip()
    value = original if re.match(r"^[a-zA-Z][a-zA-Z\d+.-]*://", original) else "https://" + original

    try:
        scheme, netloc, path, query, fragment = urlsplit(value)
    except ValueError:
        return SanitizationResult(sanitized=original, original=original, was_modified=False)

    changes: list[SanitizationChange] = []

    if opts.upgrade_protocol and scheme.lower() == "http":
        scheme = "https"
        changes.append(SanitizationChange(kind="protocol-upgraded", detail="Upgraded HTTP to HTTPS"))

    host = _host_of(netloc)
    if opts.normalize_case and (scheme != scheme.lower() or host != host.lower()):
        before = host
        scheme = scheme.lower()
        host = host.lower()
        netloc = _rebuild_netloc(netloc, host)
        changes.append(
            SanitizationChange(kind="case-normalized", detail=f"Normalized hostname to lowercase ({before} -> {host})")
        )

    if opts.remove_www:
        stripped = host
        while stripped.lower().startswith("www.") and "." in stripped[4:]:
            stripped = stripped[4:]
        if stripped != host:
            changes.append(SanitizationChange(kind="www-removed", detail=f"Removed www subdomain ({host} -> {stripped})"))
            host = stripped
            netloc = _rebuild_netloc(netloc, host)

    if opts.remove_tracking_params and query:
        blocked = TRACKING_PARAMETERS | {p.lower() for p in opts.custom_tracking_params}
        pieces = _split_query(query)
        kept = [p for p in pieces if _param_key(p) not in blocked]
        if len(kept) != len(pieces):
            removed = len(pieces) - len(kept)
            changes.append(
                SanitizationChange(
                    kind="tracking-removed",
                    detail=f"Removed {removed} tracking parameter(s) ({len(pieces)} -> {len(kept)} parameters)",
                )
            )
            query = "&".join(kept)

    if opts.remove_fragments and fragment:
        fragment = ""
        changes.append(SanitizationChange(kind="fragment-removed", detail="Removed URL fragment"))

    if opts.normalize_encoding:
        normalized_path = _normalize_path(path)
        if normalized_path != path:
            path = normalized_path
            changes.append(SanitizationChange(kind="encoding-normalized", detail="Normalized URL path encoding"))

    sanitized = urlunsplit((scheme, netloc, path, query, fragment)) if changes else value
    return SanitizationResult(
        sanitized=sanitized,
        original=original,
        was_modified=bool(changes),
        changes=tuple(changes),
    )


def tracking_params(url: str, custom_params: list[str] | None = None) -> dict[str, str]:
    """Return the tracking parameters present in ``url`` (first value wins)."""
    blocked = TRACKING_PARAMETERS | {p.lower() for p in (custom_params or [])}
    try:
        query = urlsplit(url).query
    except ValueError:
        return {}
    found: dict[str, str] = {}
    for piece in _split_query(query):
        key = _param_key(piece)
        if key in blocked and key not in found:
            found[key] = unquote_plus(piece.partition("=")[2])
    return found


def has_tracking_params(url: str, custom_params: list[str] | None = None) -> bool:
    return bool(tracking_params(url, custom_params))


def sanitize_for_logging(url: str) -> str:
    """Redact credential-like query values so a URL can be written to logs."""
    try:
        scheme, netloc, path, query, fragment = urlsplit(url)
    except (ValueError, AttributeError):
        return "[INVALID_URL]"
    if not scheme or not netloc:
        return "[INVALID_URL]"
    if "@" in netloc:
        netloc = "[REDACTED]@" + netloc.rpartition("@")[2]
    pieces = []
    for piece in _split_query(query):
        if _param_key(piece) in SENSITIVE_PARAMETERS:
            pieces.append(piece.split("=", 1)[0] + "=[REDACTED]")
        else:
            pieces.append(piece)
    return urlunsplit((scheme, netloc, path, "&".join(pieces), fragment))
