"""
Weighted risk aggregation.

Structural factors come from the URL itself; every other factor comes from
a signal source. When a source did not return ``ok`` its weight is
redistributed over the factors that are available, so the returned weights
always sum to the configured total and scores stay comparable between
requests with different signal coverage.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from .models import AnalysisOutcome, OrchestrationResult, ParsedUrl, RiskFactor, RiskLevel, SanitizationResult
from .url_parser import url_depth

DEFAULT_WEIGHTS: dict[str, float] = {
    "protocol": 0.10,
    "ip-address": 0.10,
    "url-depth": 0.05,
    "query-params": 0.05,
    "tracking-params": 0.05,
    "reputation": 0.25,
    "domain-age": 0.15,
    "ssl-certificate": 0.10,
    "ai-analysis": 0.15,
}

STRUCTURAL_FACTORS = ("protocol", "ip-address", "url-depth", "query-params", "tracking-params")

# Signal source id -> factor type, in factor order.
SOURCE_FACTORS: dict[str, str] = {
    "reputation": "reputation",
    "whois": "domain-age",
    "ssl": "ssl-certificate",
    "ai": "ai-analysis",
}

LOW_MAX = 0.3
MEDIUM_MAX = 0.7

# Confidence: base is the share of configured weight that was available.
MISSING_FACTOR_PENALTY = 0.1
MIN_CONFIDENCE = 0.5
HIGH_VALUE_BONUS = 0.05
HIGH_VALUE_FACTORS = frozenset({"reputation", "ai-analysis"})

_DEPTH_FREE = 3
_QUERY_FREE = 5
_TRACKING_SATURATION = 3


class ScoringInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    # Scheme as submitted, before any protocol upgrade.
    scheme: str
    parsed: ParsedUrl | None = None
    orchestration: OrchestrationResult
    sanitization: SanitizationResult | None = None
    tracking_param_count: int = 0


def risk_level_for(score: float) -> RiskLevel:
    if score <= LOW_MAX:
        return "low"
    if score <= MEDIUM_MAX:
        return "medium"
    return "high"


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _structural(inp: ScoringInput) -> list[tuple[str, float, str]]:
    parsed = inp.parsed
    if parsed is None:
        return []

    out: list[tuple[str, float, str]] = []

    scheme = (inp.scheme or parsed.scheme).lower()
    if scheme == "https":
        out.append(("protocol", 0.0, "Uses HTTPS"))
    else:
        out.append(("protocol", 1.0, f"Uses insecure {scheme.upper()} protocol"))

    if parsed.is_ip:
        out.append(("ip-address", 1.0, "Host is a raw IP address instead of a domain name"))
    else:
        out.append(("ip-address", 0.0, "Host is a domain name"))

    depth = url_depth(parsed)
    if depth > _DEPTH_FREE:
        out.append(("url-depth", min(1.0, (depth - _DEPTH_FREE) / 5), f"Path is {depth} segments deep"))
    else:
        out.append(("url-depth", 0.0, f"Path depth {depth} is normal"))

    n_query = len(parsed.components.query_params)
    if n_query > _QUERY_FREE:
        out.append(("query-params", min(1.0, (n_query - _QUERY_FREE) / 5), f"URL carries {n_query} query parameters"))
    else:
        out.append(("query-params", 0.0, f"{n_query} query parameter(s)"))

    n_tracking = max(0, inp.tracking_param_count)
    if n_tracking:
        out.append((
            "tracking-params",
            min(1.0, n_tracking / _TRACKING_SATURATION),
            f"Contains {n_tracking} tracking parameter(s)",
        ))
    else:
        out.append(("tracking-params", 0.0, "No tracking parameters"))
    return out


def _from_sources(orch: OrchestrationResult) -> tuple[list[tuple[str, float, str]], list[str]]:
    available: list[tuple[str, float, str]] = []
    missing: list[str] = []
    for source_id, factor_type in SOURCE_FACTORS.items():
        res = orch.results.get(source_id)
        if res is None or res.status != "ok" or not res.payload:
            missing.append(factor_type)
            continue
        try:
            raw = _clamp(res.payload.get("risk", 0.0))
        except (TypeError, ValueError):
            missing.append(factor_type)
            continue
        summary = str(res.payload.get("summary") or f"{factor_type} signal received")
        available.append((factor_type, raw, summary))
    return available, missing


def confidence_for(
    available: set[str], missing: list[str], weights: Mapping[str, float] = DEFAULT_WEIGHTS
) -> float:
    """How much of the evidence the score rests on, in 0..1.

    Each missing factor costs ``MISSING_FACTOR_PENALTY``, growing with the
    share of factors missing. Having reputation or AI evidence earns a
    small bonus. Any available evidence keeps the result at or above
    ``MIN_CONFIDENCE``; no evidence at all gives 0.
    """
    weighted = {f: w for f, w in weights.items() if w > 0}
    present = [f for f in available if f in weighted]
    if not present:
        return 0.0
    base = sum(weighted[f] for f in present) / sum(weighted.values())
    n_missing = len([m for m in missing if m in weighted])
    penalty = MISSING_FACTOR_PENALTY * n_missing * (1 + n_missing / len(weighted))
    bonus = HIGH_VALUE_BONUS if HIGH_VALUE_FACTORS.intersection(present) else 0.0
    return _clamp(max(MIN_CONFIDENCE, base - penalty + bonus))


def _explain(level: RiskLevel, factors: list[RiskFactor], inp: ScoringInput, missing: list[str]) -> str:
    parts: list[str] = []
    if level == "low":
        parts.append("This URL appears low risk.")
    elif level == "medium":
        parts.append("This URL shows some risk indicators; proceed with caution.")
    else:
        parts.append("This URL shows strong risk indicators and is likely unsafe.")

    # Stable sort keeps factor order for ties.
    top = [f for f in sorted(factors, key=lambda f: f.raw_score, reverse=True) if f.raw_score > 0][:2]
    if top:
        parts.append("Main factors: " + "; ".join(f.description for f in top) + ".")
    else:
        parts.append("No individual factor raised concern.")

    san = inp.sanitization
    if san is not None:
        if san.was_modified:
            kinds = ", ".join(dict.fromkeys(c.kind for c in san.changes))
            parts.append(f"The URL was sanitized before analysis ({kinds}).")
        else:
            parts.append("The URL was analyzed as submitted.")

    if missing:
        sources_missing = [m for m in missing if m not in STRUCTURAL_FACTORS]
        if sources_missing:
            parts.append(f"{len(sources_missing)} of {len(SOURCE_FACTORS)} signal sources were unavailable.")
    return " ".join(parts)


def score(inp: ScoringInput, weights: Mapping[str, float] = DEFAULT_WEIGHTS, now: datetime | None = None) -> AnalysisOutcome:
    structural = _structural(inp)
    sourced, missing = _from_sources(inp.orchestration)
    if inp.parsed is None:
        missing = list(STRUCTURAL_FACTORS) + missing

    candidates = [c for c in structural + sourced if weights.get(c[0], 0.0) > 0]
    total_weight = sum(w for w in weights.values() if w > 0)
    available_weight = sum(weights[c[0]] for c in candidates)
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    signals = {sid: r.status for sid, r in inp.orchestration.results.items()}

    if available_weight <= 0:
        return AnalysisOutcome(
            url=inp.url,
            risk_score=0.0,
            risk_level="low",
            factors=(),
            explanation="No risk signals were available for this URL; the score could not be computed from evidence.",
            confidence=0.0,
            timestamp=timestamp,
            missing_factors=tuple(missing),
            signals=signals,
        )

    scale = total_weight / available_weight
    factors = [
        RiskFactor(type=ftype, raw_score=raw, weight=weights[ftype] * scale, description=desc)
        for ftype, raw, desc in candidates
    ]
    risk_score = _clamp(sum(f.raw_score * f.weight for f in factors))
    level = risk_level_for(risk_score)

    return AnalysisOutcome(
        url=inp.url,
        risk_score=risk_score,
        risk_level=level,
        factors=tuple(factors),
        explanation=_explain(level, factors, inp, missing),
        confidence=confidence_for({f.type for f in factors}, missing, weights),
        timestamp=timestamp,
        missing_factors=tuple(missing),
        signals=signals,
    )
