import pytest

from sitepulse_agent.pagespeed import PageSpeedError, estimate_performance, parse_psi_response

PSI_RESPONSE = {
    "lighthouseResult": {
        "categories": {
            "performance": {"score": 0.87},
            "accessibility": {"score": 0.9},
            "best-practices": {"score": 1},
            "seo": {"score": 0.92},
        },
        "audits": {
            "largest-contentful-paint": {"numericValue": 2100.5},
            "cumulative-layout-shift": {"numericValue": 0.05},
            "total-blocking-time": {"numericValue": 120},
        },
    }
}


def test_parse_psi_response():
    results = parse_psi_response(PSI_RESPONSE)
    assert results.performance == 87
    assert results.accessibility == 90
    assert results.best_practices == 100
    assert results.seo == 92
    assert results.core_web_vitals.lcp == 2100.5
    assert results.core_web_vitals.cls == 0.05
    # falls back to total blocking time without max-potential-fid
    assert results.core_web_vitals.fid == 120
    assert not results.is_estimate


def test_parse_psi_response_without_lighthouse():
    with pytest.raises(PageSpeedError):
        parse_psi_response({"error": {"code": 500}})


def test_estimate_for_small_fast_page():
    results = estimate_performance("<html><body><p>Hei</p></body></html>", 300)
    assert results.performance == 100
    assert results.is_estimate
    assert results.core_web_vitals.lcp == 300


def test_estimate_penalizes_slow_load():
    # load score 40 at 2000ms, everything else perfect
    results = estimate_performance("<html><body><p>Hei</p></body></html>", 2000)
    assert results.performance == 76


def test_category_score_rounds_half_up():
    results = parse_psi_response({"lighthouseResult": {"categories": {"performance": {"score": 0.625}}, "audits": {}}})
    assert results.performance == 63
