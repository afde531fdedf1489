import pytest
from fastapi.testclient import TestClient

from sitepulse_agent.config import Settings
from sitepulse_agent.main import app

from fakes import FakeSources, FakeStore

AUTH = {"Authorization": "Bearer token-1"}


@pytest.fixture
def client(monkeypatch, sources, store):
    monkeypatch.setattr(app.state, "settings", Settings(openai_api_key="sk-test"))
    monkeypatch.setattr(app.state, "store", store)
    monkeypatch.setattr(app.state, "fetchers", sources.fetchers())
    return TestClient(app)


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"ok": True}


def test_missing_url(client):
    res = client.post("/analyze", json={"url": ""})
    assert res.status_code == 400
    assert res.json() == {"error": "URL is required", "code": "URL_REQUIRED"}


def test_invalid_url(client):
    res = client.post("/analyze", json={"url": "localhost"})
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_URL"


def test_malformed_body(client):
    res = client.post("/analyze", json={"url": 5})
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_anonymous_analysis_is_not_persisted(client, store):
    res = client.post("/analyze", json={"url": "example.no", "keywords": ["bilvask"]})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["overallScore"] == 74
    assert body["seoResults"]["score"] == 80
    assert isinstance(body["contentResults"]["hasCTA"], bool)
    assert body["pageSpeedResults"]["performance"] == 90
    assert body["keywordResearch"][0]["searchVolume"] == 500
    assert body["facets"]["pageSpeed"] == "success"
    assert body["analysisId"] is None
    assert store.writes == 0


def test_snake_case_options_are_accepted(client):
    res = client.post("/analyze", json={"url": "example.no", "options": {"skip_page_speed": True}})
    assert res.status_code == 200
    body = res.json()
    assert body["pageSpeedResults"] is None
    assert body["overallScore"] == 61


def test_authenticated_analysis_is_persisted(client, store):
    res = client.post("/analyze", json={"url": "example.no", "companyId": "c-1"}, headers=AUTH)
    assert res.status_code == 200
    assert res.json()["analysisId"] == "analysis-1"
    assert store.inserted[0]["company_id"] == "c-1"
    assert len(store.usage) == 1


def test_invalid_token(client):
    res = client.post("/analyze", json={"url": "example.no"}, headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid or expired access token", "code": "UNAUTHORIZED"}


def test_quota_exceeded(client, monkeypatch):
    monkeypatch.setattr(app.state, "store", FakeStore(monthly_count=2))
    res = client.post("/analyze", json={"url": "example.no"}, headers=AUTH)
    assert res.status_code == 429
    body = res.json()
    assert body["code"] == "QUOTA_EXCEEDED"
    assert body["details"]["monthlyLimit"] == 2


def test_scrape_failure(client, sources):
    sources.failing_urls.add("https://example.no")
    res = client.post("/analyze", json={"url": "example.no"})
    assert res.status_code == 502
    assert res.json()["code"] == "SCRAPE_FAILED"


def test_pagespeed_followup_requires_auth(client):
    res = client.post("/analyze/pagespeed", json={"analysisId": "a-1"})
    assert res.status_code == 401


def test_pagespeed_followup(client, store):
    store.rows.append({
        "id": "a-1",
        "user_id": "user-1",
        "website_url": "https://example.no",
        "seo_results": {"score": 80},
        "content_results": {"score": 60},
        "security_results": {"score": 70},
        "overall_score": 61,
    })
    res = client.post("/analyze/pagespeed", json={"analysisId": "a-1"}, headers=AUTH)
    assert res.status_code == 200
    assert res.json()["overallScore"] == 74


def test_competitor_followup_not_found(client):
    res = client.post("/analyze/competitor", json={"analysisId": "missing", "competitorUrl": "konkurrent.no"}, headers=AUTH)
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"


def test_competitors_endpoint(client):
    res = client.post("/analyze/competitors", json={"competitorUrls": ["konkurrent.no", "annen.no"]})
    assert res.status_code == 200
    assert [c["url"] for c in res.json()["competitors"]] == ["https://konkurrent.no"]


def test_keywords_endpoint(client):
    res = client.post("/analyze/keywords", json={"keywords": []})
    assert res.status_code == 400
    assert res.json()["code"] == "NO_KEYWORDS"

    res = client.post("/analyze/keywords", json={"keywords": ["bilvask", "bilpleie oslo"]})
    assert res.status_code == 200
    assert [k["keyword"] for k in res.json()["keywordResearch"]] == ["bilvask", "bilpleie oslo"]


def test_ai_visibility_without_key(client, monkeypatch):
    monkeypatch.setattr(app.state, "fetchers", FakeSources(ai=False).fetchers())
    res = client.post("/analyze/ai-visibility", json={"url": "example.no"})
    assert res.status_code == 200
    body = res.json()
    assert body["score"] is None
    assert body["message"]
