import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from urlrisk_agent.analyzer import build_analyzer
from urlrisk_agent.errors import AnalysisFailedError
from urlrisk_agent.main import app, get_analyzer


@pytest_asyncio.fixture
async def client(fast_config, all_ok_sources):
    analyzer = build_analyzer(fast_config, all_ok_sources)
    app.dependency_overrides[get_analyzer] = lambda: analyzer
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_healthz(client):
    res = await client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"ok": True}


@pytest.mark.asyncio
async def test_analyze_success(client):
    res = await client.post("/analyze", json={"url": "example.com/shop?utm_source=ad"})
    assert res.status_code == 200
    body = res.json()
    assert body["url"] == "https://example.com/shop"
    assert body["risk_level"] in ("low", "medium", "high")
    assert 0.0 <= body["risk_score"] <= 1.0
    assert {"type", "score", "weight", "description"} <= set(body["factors"][0])
    assert body["validation"]["was_modified"] is True
    assert body["validation"]["changes"][0]["kind"] == "tracking-removed"
    assert body["signals"] == {"reputation": "ok", "whois": "ok", "ssl": "ok", "ai": "ok"}
    assert body["confidence"] == 1.0


@pytest.mark.asyncio
async def test_analyze_rejects_ssrf_target(client):
    res = await client.post("/analyze", json={"url": "http://192.168.1.1/admin"})
    assert res.status_code == 400
    body = res.json()
    assert body["error_kind"] == "security-risk"
    assert body["error"] == "Invalid URL"
    assert "Private IP" in body["message"]


@pytest.mark.asyncio
async def test_analyze_rejects_script_scheme(client):
    res = await client.post("/analyze", json={"url": "javascript:alert(1)"})
    assert res.status_code == 400
    assert res.json()["error_kind"] == "security-risk"


@pytest.mark.asyncio
async def test_analyze_requires_url(client):
    res = await client.post("/analyze", json={})
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_internal_failure_is_generic(client):
    class Broken:
        async def analyze(self, req):
            raise AnalysisFailedError()

    app.dependency_overrides[get_analyzer] = lambda: Broken()
    res = await client.post("/analyze", json={"url": "https://example.com"})
    assert res.status_code == 500
    assert res.json() == {"error": "Analysis failed", "message": "An unexpected error occurred during URL analysis"}


@pytest.mark.asyncio
async def test_unhandled_exception_is_generic(client):
    class Broken:
        async def analyze(self, req):
            raise KeyError("internal detail")

    app.dependency_overrides[get_analyzer] = lambda: Broken()
    res = await client.post("/analyze", json={"url": "https://example.com"})
    assert res.status_code == 500
    assert "internal detail" not in res.text


@pytest.mark.asyncio
async def test_describe_analyze(client):
    res = await client.get("/analyze")
    assert res.status_code == 200
    body = res.json()
    assert body["method"] == "POST"
    assert "skip_validation" in body["body"]["options"]
