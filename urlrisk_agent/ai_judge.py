"""
Language-model heuristic judge using Google Gemini.

The model only ever sees the domain name. Its JSON verdict is coerced into a
fixed shape (unknown enum values fall back to neutral defaults) and turned
into the common source payload: ``risk`` in 0..1 plus a one-line summary.
"""
from __future__ import annotations

import json
import os
import re
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .errors import SourceError, SourceSkipped, TransientSourceError

GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

# field -> (default, canonical values, aliases)
_CHOICES: dict[str, tuple[str, frozenset[str], dict[str, str]]] = {
    "confidence": (
        "medium",
        frozenset({"high", "medium", "low"}),
        {"med": "medium", "mid": "medium", "moderate": "medium"},
    ),
    "verdict": (
        "caution",
        frozenset({"legitimate", "caution", "suspicious", "likely_deceptive"}),
        {
            "ok": "legitimate",
            "safe": "legitimate",
            "benign": "legitimate",
            "legit": "legitimate",
            "warning": "caution",
            "warn": "caution",
            "sus": "suspicious",
            "phishing": "likely_deceptive",
            "malicious": "likely_deceptive",
            "scam": "likely_deceptive",
            "fraud": "likely_deceptive",
            "deceptive": "likely_deceptive",
        },
    ),
    "threat_type": (
        "unknown",
        frozenset({"none", "phishing", "malware", "scam", "typosquatting", "brand_impersonation", "unknown"}),
        {
            "clean": "none",
            "n/a": "none",
            "typo": "typosquatting",
            "typosquat": "typosquatting",
            "impersonation": "brand_impersonation",
            "fraud": "scam",
        },
    ),
}


def _choice(raw: dict[str, Any], field: str) -> str:
    default, allowed, aliases = _CHOICES[field]
    value = str(raw.get(field) or default).strip().lower().replace("-", "_")
    value = aliases.get(value, value)
    return value if value in allowed else default


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [s for s in (str(item).strip() for item in items if item is not None) if s]


def normalize_ai_output(raw: Any) -> dict[str, Any] | None:
    """Coerce a model answer into the judgment schema, or None if it is not an object."""
    if not isinstance(raw, dict):
        return None

    try:
        risk_score = round(float(raw.get("risk_score")))
    except (TypeError, ValueError):
        risk_score = 50

    return {
        "risk_score": max(0, min(100, risk_score)),
        "confidence": _choice(raw, "confidence"),
        "verdict": _choice(raw, "verdict"),
        "threat_type": _choice(raw, "threat_type"),
        "indicators": _str_list(raw.get("indicators")),
        "summary": str(raw.get("summary") or "").strip() or "Analysis completed",
    }


def build_prompt(domain: str) -> str:
    return f"""You are a security analyst judging whether a web domain is likely to be used for phishing, scams, malware delivery or other deception. You only see the domain name; do not assume page content.

Look for:
1. Brand impersonation: well-known brand names combined with extra words, hyphens or unusual TLDs (e.g. "paypal-secure-login.xyz").
2. Typosquatting and homoglyphs: character swaps, doubled letters, digit-for-letter substitutions, punycode labels (xn--).
3. Deceptive structure: many subdomains, security words ("verify", "account", "login", "update") in the host.
4. Cheap or abused TLDs commonly seen in phishing campaigns.
5. Random-looking or machine-generated labels.

Well-known, established domains of real organizations should receive a low risk score.

Domain: {domain}

Answer with a single JSON object and nothing else:
{{
  "risk_score": <integer 0-100, higher is riskier>,
  "confidence": "high" | "medium" | "low",
  "verdict": "legitimate" | "caution" | "suspicious" | "likely_deceptive",
  "threat_type": "none" | "phishing" | "malware" | "scam" | "typosquatting" | "brand_impersonation" | "unknown",
  "indicators": [<short strings naming what you noticed>],
  "summary": "<one sentence>"
}}"""


class AiJudgeSource:
    source_id = "ai"

    def __init__(self, api_key: str | None = None, model: str = GEMINI_MODEL, client: Any | None = None):
        self.api_key = api_key if api_key is not None else os.environ.get("GEMINI_API_KEY", "")
        self.model = model
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, prompt: str) -> str:
        try:
            resp = await self._get_client().aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    temperature=0.2,
                    max_output_tokens=1024,
                ),
            )
        except genai_errors.ServerError as e:
            raise TransientSourceError(f"Gemini server error: {e}") from e
        except genai_errors.ClientError as e:
            if getattr(e, "code", None) == 429:
                raise TransientSourceError("Gemini rate limited") from e
            raise SourceError(f"Gemini rejected the request: {e}") from e
        return (getattr(resp, "text", None) or "").strip()

    async def lookup(self, domain: str) -> dict[str, Any]:
        if not self.api_key and self._client is None:
            raise SourceSkipped("GEMINI_API_KEY is not set")

        text = await self._generate(build_prompt(domain))
        if not text:
            raise TransientSourceError("Gemini returned an empty response")
        try:
            raw = json.loads(_FENCE_RE.sub("", text))
        except json.JSONDecodeError as e:
            raise SourceError("Gemini returned malformed JSON") from e

        judgment = normalize_ai_output(raw)
        if judgment is None:
            raise SourceError("Gemini returned an unexpected response shape")
        return {**judgment, "risk": judgment["risk_score"] / 100.0}
