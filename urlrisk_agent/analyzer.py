from __future__ import annotations

import logging
import re
import time
from collections.abc import Sequence
from urllib.parse import urlsplit

from .ai_judge import AiJudgeSource
from .config import ServiceConfig
from .errors import AnalysisFailedError, ParseError, UrlValidationError
from .models import (
    AnalysisOutcome,
    AnalyzeRequest,
    AnalyzeResponse,
    FactorOut,
    ParsedUrl,
    SanitizationResult,
    ValidationBlock,
)
from .orchestrator import AnalysisOrchestrator, OrchestrationOptions
from .sanitizer import sanitize, sanitize_for_logging, tracking_params
from .scoring import DEFAULT_WEIGHTS, ScoringInput, score
from .sources import ReputationSource, SignalSource, TlsSource, WhoisSource
from .url_parser import parse
from .validator import validate

_LOG = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z\d+.-]*)://")


def default_sources() -> list[SignalSource]:
    return [ReputationSource(), WhoisSource(), TlsSource(), AiJudgeSource()]


def _scheme_of(url: str) -> str:
    m = _SCHEME_RE.match(url)
    return m.group(1).lower() if m else "https"


def _host_of(url: str) -> str:
    value = url if _SCHEME_RE.match(url) else "https://" + url
    try:
        return (urlsplit(value).hostname or "").lower().rstrip(".")
    except ValueError:
        return ""


def _to_response(
    outcome: AnalysisOutcome,
    submitted: str,
    sanitization: SanitizationResult,
    timings: dict[str, int],
    warnings: list[str],
) -> AnalyzeResponse:
    return AnalyzeResponse(
        url=outcome.url,
        risk_score=round(outcome.risk_score, 4),
        risk_level=outcome.risk_level,
        factors=[
            FactorOut(type=f.type, score=f.raw_score, weight=round(f.weight, 6), description=f.description)
            for f in outcome.factors
        ],
        explanation=outcome.explanation,
        confidence=round(outcome.confidence, 4),
        timestamp=outcome.timestamp,
        validation=ValidationBlock(
            original=submitted,
            final=sanitization.sanitized,
            was_modified=sanitization.was_modified,
            changes=list(sanitization.changes),
        ),
        signals=outcome.signals,
        timings_ms=timings,
        warnings=warnings,
    )


class RiskAnalyzer:
    """validate -> sanitize -> parse -> orchestrate -> score.

    Input errors surface as ``UrlValidationError`` before any source is
    contacted. Anything unexpected afterwards is logged (with the URL
    redacted) and re-raised as ``AnalysisFailedError``.
    """

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        weights: dict[str, float] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.orchestrator = orchestrator
        self.weights = weights or DEFAULT_WEIGHTS
        self.log = logger or _LOG

    def _prepare(self, req: AnalyzeRequest) -> tuple[str, SanitizationResult, ParsedUrl | None, str, int]:
        opts = req.options
        submitted = req.url.strip()

        if opts and opts.skip_validation:
            validated = submitted
        else:
            result = validate(submitted, opts.validation if opts else None)
            if not result.is_valid:
                raise UrlValidationError(result.error_kind or "invalid-format", result.error or "Invalid URL")
            validated = result.normalized_url or submitted

        san_opts = opts.sanitization if opts else None
        if opts and opts.skip_sanitization:
            sanitization = SanitizationResult(sanitized=validated, original=validated, was_modified=False)
        else:
            sanitization = sanitize(validated, san_opts)

        n_tracking = len(tracking_params(validated, san_opts.custom_tracking_params if san_opts else None))

        try:
            parsed: ParsedUrl | None = parse(sanitization.sanitized)
        except ParseError as e:
            self.log.warning("parse failed for %s: %s", sanitize_for_logging(sanitization.sanitized), e)
            parsed = None

        return validated, sanitization, parsed, _scheme_of(validated), n_tracking

    async def analyze(self, req: AnalyzeRequest, options: OrchestrationOptions | None = None) -> AnalyzeResponse:
        t0 = time.perf_counter()
        timings: dict[str, int] = {}
        warnings: list[str] = []

        start = time.perf_counter()
        _, sanitization, parsed, scheme, n_tracking = self._prepare(req)
        timings["prepare"] = int((time.perf_counter() - start) * 1000)

        safe_url = sanitize_for_logging(sanitization.sanitized)
        domain = parsed.hostname if parsed else _host_of(sanitization.sanitized)
        if not domain:
            raise UrlValidationError("invalid-domain", "Could not determine a host to analyze")
        if parsed is None:
            warnings.append("URL structure could not be parsed; structural factors were skipped.")

        try:
            start = time.perf_counter()
            orchestration = await self.orchestrator.analyze(domain, options)
            timings["signals"] = int((time.perf_counter() - start) * 1000)
            for sid, res in orchestration.results.items():
                timings[sid] = res.latency_ms
                if res.status != "ok":
                    warnings.append(f"{sid}: {res.status}" + (f" ({res.error_detail})" if res.error_detail else ""))
            if orchestration.deadline_exceeded:
                warnings.append("Analysis deadline reached before every signal source finished.")

            outcome = score(
                ScoringInput(
                    url=sanitization.sanitized,
                    scheme=scheme,
                    parsed=parsed,
                    orchestration=orchestration,
                    sanitization=sanitization,
                    tracking_param_count=n_tracking,
                ),
                self.weights,
            )
        except Exception as e:
            self.log.exception("analysis failed for %s", safe_url)
            raise AnalysisFailedError() from e

        timings["total"] = int((time.perf_counter() - t0) * 1000)
        self.log.info(
            "analyzed %s: score=%.3f level=%s signals=%s (%dms)",
            safe_url,
            outcome.risk_score,
            outcome.risk_level,
            ",".join(f"{k}={v}" for k, v in outcome.signals.items()),
            timings["total"],
        )
        return _to_response(outcome, req.url, sanitization, timings, warnings)


def build_analyzer(
    config: ServiceConfig,
    sources: Sequence[SignalSource] | None = None,
    logger: logging.Logger | None = None,
) -> RiskAnalyzer:
    sources = list(sources) if sources is not None else default_sources()
    orchestrator = AnalysisOrchestrator(sources, config, logger=logger)
    return RiskAnalyzer(orchestrator, logger=logger)
