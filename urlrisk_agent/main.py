from __future__ import annotations

import logging
import os
from functools import lru_cache

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .analyzer import RiskAnalyzer, build_analyzer
from .config import config_from_env
from .errors import AnalysisFailedError, UrlValidationError
from .logs import configure_logging
from .models import AnalyzeRequest, AnalyzeResponse, ErrorResponse
from .sanitizer import sanitize_for_logging


# Reads .env from the repo root and the working directory (API keys, URLRISK_* settings).
_CONFIG = config_from_env()
log = configure_logging(_CONFIG.log_level)

app = FastAPI(title="URL Risk Analysis Agent", version="0.1.0")


def _cors_allow_origins() -> list[str]:
    raw = os.getenv("URLRISK_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]


# Defaults to http://localhost:3000 for local dev.
# In production, set URLRISK_CORS_ORIGINS to the deployed frontend origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_analyzer() -> RiskAnalyzer:
    log.info("building analyzer for %s environment", _CONFIG.environment)
    return build_analyzer(_CONFIG, logger=logging.getLogger("urlrisk_agent.analyzer"))


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/analyze")
def describe_analyze():
    return {
        "endpoint": "/analyze",
        "method": "POST",
        "description": "Analyze a URL for phishing, malware and scam risk.",
        "body": {
            "url": "string (required)",
            "options": {
                "validation": {
                    "allowed_protocols": "list[str], default ['http', 'https']",
                    "max_length": "int, default 2083",
                    "allow_private_ips": "bool, default false",
                    "allow_localhost": "bool, default false",
                },
                "sanitization": {
                    "remove_tracking_params": "bool, default true",
                    "upgrade_protocol": "bool, default true",
                    "remove_fragments": "bool, default false",
                    "normalize_encoding": "bool, default true",
                    "normalize_case": "bool, default true",
                    "remove_www": "bool, default false",
                    "custom_tracking_params": "list[str], default []",
                },
                "skip_validation": "bool, default false",
                "skip_sanitization": "bool, default false",
            },
        },
        "risk_levels": {"low": "score <= 0.3", "medium": "0.3 < score <= 0.7", "high": "score > 0.7"},
        "confidence": "float 0..1, share of evidence available (0 when nothing was)",
    }


@app.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def analyze_endpoint(req: AnalyzeRequest, analyzer: RiskAnalyzer = Depends(get_analyzer)):
    try:
        return await analyzer.analyze(req)
    except UrlValidationError as e:
        log.info("rejected %s: %s (%s)", sanitize_for_logging(req.url), e.message, e.kind)
        body = ErrorResponse(error="Invalid URL", message=e.message, error_kind=e.kind)
        return JSONResponse(status_code=400, content=body.model_dump())
    except AnalysisFailedError as e:
        body = ErrorResponse(error="Analysis failed", message=e.message)
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))
    except Exception:
        log.exception("unhandled error analyzing %s", sanitize_for_logging(req.url))
        body = ErrorResponse(error="Analysis failed", message=AnalysisFailedError().message)
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))
