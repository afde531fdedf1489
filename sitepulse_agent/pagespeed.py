from __future__ import annotations

import logging
import time

import httpx

from .models import CoreWebVitals, PageSpeedResults
from .scoring import clamp_score, round_half_up
from .seo_analyzer import parse_html

logger = logging.getLogger(__name__)

PSI_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PSI_CATEGORIES = ("performance", "accessibility", "best-practices", "seo")

# Thresholds for the scrape-based estimate
_LOAD_TIME_GOOD_MS = 800
_LOAD_TIME_OK_MS = 2000
_MAX_HTML_KB = 150
_MAX_SCRIPTS = 25
_MAX_STYLES = 15
_MAX_IMAGES = 50


class PageSpeedError(Exception):
    pass


def _category_score(categories: dict, name: str) -> int:
    score = (categories.get(name) or {}).get("score")
    return round_half_up(score * 100) if isinstance(score, (int, float)) else 0


def _audit_value(audits: dict, name: str) -> float:
    value = (audits.get(name) or {}).get("numericValue")
    return float(value) if isinstance(value, (int, float)) else 0.0


def parse_psi_response(data: dict) -> PageSpeedResults:
    lighthouse = data.get("lighthouseResult")
    if not lighthouse:
        raise PageSpeedError("PageSpeed: no lighthouse result")

    categories = lighthouse.get("categories") or {}
    audits = lighthouse.get("audits") or {}
    return PageSpeedResults(
        performance=_category_score(categories, "performance"),
        accessibility=_category_score(categories, "accessibility"),
        best_practices=_category_score(categories, "best-practices"),
        seo=_category_score(categories, "seo"),
        core_web_vitals=CoreWebVitals(
            lcp=_audit_value(audits, "largest-contentful-paint"),
            fid=_audit_value(audits, "max-potential-fid") or _audit_value(audits, "total-blocking-time"),
            cls=_audit_value(audits, "cumulative-layout-shift"),
        ),
    )


async def analyze_pagespeed(url: str, *, timeout_s: float = 45.0, api_key: str | None = None) -> PageSpeedResults:
    """Run a desktop Lighthouse audit through PageSpeed Insights; raises on any failure."""
    params: list[tuple[str, str]] = [("url", url), ("strategy", "desktop")]
    params.extend(("category", c) for c in PSI_CATEGORIES)
    if api_key:
        params.append(("key", api_key))

    started = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            res = await client.get(PSI_URL, params=params)
    except httpx.TimeoutException as e:
        raise PageSpeedError(f"PageSpeed timed out after {timeout_s:g}s") from e
    except httpx.HTTPError as e:
        raise PageSpeedError(f"PageSpeed request failed: {e}") from e

    if res.status_code != 200:
        if res.status_code == 429:
            logger.warning("PageSpeed rate limited; configure GOOGLE_PAGESPEED_API_KEY")
        raise PageSpeedError(f"PageSpeed API error: {res.status_code}")

    results = parse_psi_response(res.json())
    logger.info(
        "PageSpeed %s done in %.1fs, performance %d",
        url, time.perf_counter() - started, results.performance,
    )
    return results


def estimate_performance(html: str, load_time_ms: int) -> PageSpeedResults:
    """Rough performance score from the scrape alone (no Lighthouse run)."""
    soup = parse_html(html)
    inline_scripts = any(not s.get("src") for s in soup.find_all("script"))
    script_count = len(soup.find_all("script", src=True)) + (1 if inline_scripts else 0)
    style_count = len(soup.select('link[rel="stylesheet"]')) + len(soup.find_all("style"))
    image_count = len(soup.find_all("img"))
    html_kb = round_half_up(len(html.encode("utf-8")) / 1024)

    if load_time_ms <= _LOAD_TIME_GOOD_MS:
        load_score = 100.0
    elif load_time_ms <= _LOAD_TIME_OK_MS:
        load_score = max(0.0, 100 - (load_time_ms - _LOAD_TIME_GOOD_MS) / 20)
    else:
        load_score = max(0.0, 50 - (load_time_ms - _LOAD_TIME_OK_MS) / 100)

    size_score = 100.0 if html_kb <= _MAX_HTML_KB else max(0.0, 100 - (html_kb - _MAX_HTML_KB) / 2)
    script_score = 100.0 if script_count <= _MAX_SCRIPTS else max(0.0, 100 - (script_count - _MAX_SCRIPTS) * 3)
    style_score = 100.0 if style_count <= _MAX_STYLES else max(0.0, 100 - (style_count - _MAX_STYLES) * 4)
    image_score = 100.0 if image_count <= _MAX_IMAGES else max(0.0, 100 - (image_count - _MAX_IMAGES))

    performance = round_half_up(
        load_score * 0.4 + size_score * 0.25 + script_score * 0.15 + style_score * 0.1 + image_score * 0.1
    )
    return PageSpeedResults(
        performance=clamp_score(performance),
        core_web_vitals=CoreWebVitals(lcp=load_time_ms),
        is_estimate=True,
    )
