from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ErrorKind = Literal["invalid-format", "invalid-domain", "unsupported-protocol", "too-long", "security-risk"]
SignalStatus = Literal["ok", "timeout", "error", "skipped"]
RiskLevel = Literal["low", "medium", "high"]
ChangeKind = Literal[
    "tracking-removed",
    "protocol-upgraded",
    "fragment-removed",
    "encoding-normalized",
    "case-normalized",
    "www-removed",
]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Request options
# ---------------------------------------------------------------------------


class ValidationOptions(BaseModel):
    allowed_protocols: list[str] = Field(default_factory=lambda: ["http", "https"])
    max_length: int = Field(2083, ge=1)
    allow_private_ips: bool = False
    allow_localhost: bool = False


class SanitizationOptions(BaseModel):
    remove_tracking_params: bool = True
    upgrade_protocol: bool = True
    # Fragments are kept for analysis by default.
    remove_fragments: bool = False
    normalize_encoding: bool = True
    normalize_case: bool = True
    remove_www: bool = False
    custom_tracking_params: list[str] = Field(default_factory=list)


class AnalyzeOptions(BaseModel):
    validation: ValidationOptions | None = None
    sanitization: SanitizationOptions | None = None
    skip_validation: bool = False
    skip_sanitization: bool = False


class AnalyzeRequest(BaseModel):
    url: str = Field(..., min_length=1)
    options: AnalyzeOptions | None = None


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------


class ValidationResult(_Frozen):
    is_valid: bool
    normalized_url: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


class SanitizationChange(_Frozen):
    kind: ChangeKind
    detail: str


class SanitizationResult(_Frozen):
    sanitized: str
    original: str
    was_modified: bool
    changes: tuple[SanitizationChange, ...] = ()


class UrlComponents(_Frozen):
    domain_parts: tuple[str, ...] = ()
    path_parts: tuple[str, ...] = ()
    query_params: tuple[tuple[str, str], ...] = ()


class ParsedUrl(_Frozen):
    original: str
    scheme: str
    hostname: str
    domain: str
    subdomain: str | None = None
    port: int | None = None
    path: str = ""
    query: str = ""
    fragment: str = ""
    is_ip: bool = False
    is_ipv4: bool = False
    is_ipv6: bool = False
    components: UrlComponents = UrlComponents()


class SignalResult(_Frozen):
    source_id: str
    status: SignalStatus
    payload: dict[str, Any] | None = None
    latency_ms: int = 0
    error_detail: str | None = None
    from_cache: bool = False
    attempts: int = 0


class OrchestrationResult(_Frozen):
    results: dict[str, SignalResult]
    total_elapsed_ms: int
    deadline_exceeded: bool = False

    def succeeded(self) -> list[str]:
        return [sid for sid, r in self.results.items() if r.status == "ok"]


class RiskFactor(_Frozen):
    type: str
    raw_score: float = Field(..., ge=0.0, le=1.0)
    weight: float = Field(..., gt=0.0)
    description: str


class AnalysisOutcome(_Frozen):
    url: str
    risk_score: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel
    factors: tuple[RiskFactor, ...]
    explanation: str
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    timestamp: str
    missing_factors: tuple[str, ...] = ()
    signals: dict[str, SignalStatus] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


class FactorOut(BaseModel):
    type: str
    score: float
    weight: float
    description: str


class ValidationBlock(BaseModel):
    original: str
    final: str
    was_modified: bool
    changes: list[SanitizationChange]


class AnalyzeResponse(BaseModel):
    url: str
    risk_score: float
    risk_level: RiskLevel
    factors: list[FactorOut]
    explanation: str
    confidence: float
    timestamp: str
    validation: ValidationBlock
    signals: dict[str, SignalStatus] = {}
    timings_ms: dict[str, int] = {}
    warnings: list[str] = []


class ErrorResponse(BaseModel):
    error: str
    message: str
    error_kind: ErrorKind | None = None
