import asyncio

import pytest

from sitepulse_agent import security
from sitepulse_agent.models import SSLAnalysis
from sitepulse_agent.security import (
    analyze_security_headers,
    analyze_security_quick,
    grade_certificate,
    security_recommendations,
)

ALL_HEADERS = {
    "Content-Security-Policy": "default-src 'self'",
    "Strict-Transport-Security": "max-age=31536000",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin",
    "Permissions-Policy": "camera=()",
}


def test_all_headers_present():
    headers = analyze_security_headers(ALL_HEADERS)
    assert headers.score == 100
    assert headers.content_security_policy and headers.permissions_policy


def test_partial_headers_and_feature_policy_fallback():
    headers = analyze_security_headers({
        "content-security-policy": "default-src 'self'",
        "strict-transport-security": "max-age=1",
        "feature-policy": "camera 'none'",
    })
    assert headers.permissions_policy
    assert not headers.x_frame_options
    assert headers.score == 50


@pytest.mark.parametrize(
    "days,authorized,grade",
    [(-1, True, "F"), (3, True, "C"), (20, True, "B-"), (90, True, "A"), (90, False, "B"), (None, True, "A")],
)
def test_grade_certificate(days, authorized, grade):
    assert grade_certificate(days, authorized) == grade


def test_quick_scan_assumes_https_certificate():
    results = asyncio.run(analyze_security_quick("https://example.no/", {}))
    assert results.ssl.grade == "A (assumed)"
    # 70*0.55 + 0*0.45 = 38.5
    assert results.score == 39


def test_quick_scan_http_is_failing_grade():
    results = asyncio.run(analyze_security_quick("http://example.no/", ALL_HEADERS))
    assert results.ssl.grade == "F"
    assert results.score == 45


def test_full_scan_combines_tls_and_headers(monkeypatch):
    seen = []

    def fake_tls(hostname, timeout_s=10.0):
        seen.append(hostname)
        return SSLAnalysis(grade="A")

    monkeypatch.setattr(security, "check_ssl_direct", fake_tls)
    results = asyncio.run(security.analyze_security("https://www.example.no/side", {
        "content-security-policy": "x",
        "strict-transport-security": "x",
        "x-frame-options": "x",
    }))
    assert seen == ["www.example.no"]
    # 95*0.55 + 50*0.45 = 74.75
    assert results.score == 75


def test_recommendations_cover_missing_headers():
    results = asyncio.run(analyze_security_quick("http://example.no/", {}))
    recs = security_recommendations(results)
    assert "Improve the SSL/TLS configuration" in recs
    assert any("Content-Security-Policy" in r for r in recs)
    assert any("HSTS" in r for r in recs)
