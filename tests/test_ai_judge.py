from types import SimpleNamespace

import pytest

from urlrisk_agent.ai_judge import AiJudgeSource, build_prompt, normalize_ai_output
from urlrisk_agent.errors import SourceError, SourceSkipped, TransientSourceError


class FakeModels:
    def __init__(self, text):
        self.text = text
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append((model, contents))
        return SimpleNamespace(text=self.text)


def fake_client(text):
    models = FakeModels(text)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


def test_normalize_clamps_and_maps():
    out = normalize_ai_output(
        {
            "risk_score": "140",
            "confidence": "MED",
            "verdict": "Phishing",
            "threat_type": "Brand-Impersonation",
            "indicators": "hyphenated brand",
        }
    )
    assert out["risk_score"] == 100
    assert out["confidence"] == "medium"
    assert out["verdict"] == "likely_deceptive"
    assert out["threat_type"] == "brand_impersonation"
    assert out["indicators"] == ["hyphenated brand"]
    assert out["summary"] == "Analysis completed"


def test_normalize_defaults_and_rejects_non_dict():
    out = normalize_ai_output({"risk_score": None, "verdict": "???", "indicators": ["", " xn-- label ", None]})
    assert out["risk_score"] == 50
    assert out["verdict"] == "caution"
    assert out["threat_type"] == "unknown"
    assert out["indicators"] == ["xn-- label"]
    assert normalize_ai_output(["not", "a", "dict"]) is None


def test_prompt_contains_domain():
    assert "paypa1-login.xyz" in build_prompt("paypa1-login.xyz")


@pytest.mark.asyncio
async def test_lookup_returns_scaled_risk():
    client, models = fake_client('```json\n{"risk_score": 80, "verdict": "suspicious", "summary": "Brand impersonation"}\n```')
    payload = await AiJudgeSource(api_key="", model="test-model", client=client).lookup("paypa1-login.xyz")
    assert payload["risk"] == 0.8
    assert payload["verdict"] == "suspicious"
    assert payload["summary"] == "Brand impersonation"
    assert models.calls[0][0] == "test-model"


@pytest.mark.asyncio
async def test_lookup_skipped_without_key():
    with pytest.raises(SourceSkipped):
        await AiJudgeSource(api_key="").lookup("example.com")


@pytest.mark.asyncio
async def test_empty_response_is_transient():
    client, _ = fake_client("")
    with pytest.raises(TransientSourceError):
        await AiJudgeSource(client=client).lookup("example.com")


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["not json at all", "[1, 2, 3]"])
async def test_malformed_response_is_error(text):
    client, _ = fake_client(text)
    with pytest.raises(SourceError) as info:
        await AiJudgeSource(client=client).lookup("example.com")
    assert not isinstance(info.value, TransientSourceError)
