from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

from sitepulse_agent.analyzer import Fetchers
from sitepulse_agent.content_analyzer import analyze_content
from sitepulse_agent.errors import ScrapeError
from sitepulse_agent.models import (
    AISummary,
    AIUsage,
    AIVisibility,
    KeywordAnalysis,
    KeywordData,
    PageSpeedResults,
    ScrapedPage,
    SecurityResults,
    SSLAnalysis,
    VisibilityDetails,
    VisibilityQuery,
)
from sitepulse_agent.security import analyze_security_headers
from sitepulse_agent.seo_analyzer import build_seo_results, parse_html

PAGE_HTML = """<!DOCTYPE html>
<html lang="no">
<head>
  <title>Bilvask i Oslo | Skinnende rene biler hver dag</title>
  <meta name="description" content="Vi vasker bilen din for hand.">
  <meta name="viewport" content="width=device-width, initial-scale=1">
</head>
<body>
  <nav><a href="/">Hjem</a> <a href="/kontakt">Kontakt</a></nav>
  <main>
    <h1>Bilvask i Oslo</h1>
    <p>Vi vasker biler i Oslo hver dag. Bestill time i dag og spar tid.</p>
  </main>
</body>
</html>
"""


def make_seo(score: int):
    seo = build_seo_results(parse_html(PAGE_HTML), "https://example.no/", has_robots_txt=True, sitemap_url=None)
    return seo.model_copy(update={"score": score})


def make_content(score: int):
    return analyze_content(parse_html(PAGE_HTML)).model_copy(update={"score": score})


def make_security(score: int, grade: str = "A") -> SecurityResults:
    return SecurityResults(
        ssl=SSLAnalysis(grade=grade),
        headers=analyze_security_headers({"strict-transport-security": "max-age=31536000"}),
        score=score,
    )


def make_visibility(score: int = 67) -> AIVisibility:
    return AIVisibility(
        score=score,
        level="medium",
        description="Some knowledge",
        details=VisibilityDetails(
            queries_tested=1,
            times_cited=1,
            times_mentioned=1,
            queries=[VisibilityQuery(query="What do you know about example.no?", cited=True, mentioned=True)],
        ),
    )


class FakeSources:
    """In-process stand-ins for every fetcher, counting calls."""

    def __init__(
        self,
        *,
        seo: int = 80,
        content: int = 60,
        security: int = 70,
        performance: int = 90,
        scrape_delay: float = 0.0,
        ai: bool = True,
    ):
        self.seo_score = seo
        self.content_score = content
        self.security_score = security
        self.performance = performance
        self.scrape_delay = scrape_delay
        self.ai = ai

        self.calls: Counter[str] = Counter()
        self.failing_urls: set[str] = set()
        self.pagespeed_error: Exception | None = None
        self.summary_error: Exception | None = None
        self.researched: list[list[str]] = []
        self.summary_kwargs: dict[str, Any] = {}

    async def scrape(self, url: str) -> ScrapedPage:
        self.calls["scrape"] += 1
        if self.scrape_delay:
            await asyncio.sleep(self.scrape_delay)
        if url in self.failing_urls:
            raise ScrapeError(f"Could not connect to {url}")
        return ScrapedPage(
            url=url,
            html=PAGE_HTML,
            status_code=200,
            headers={"strict-transport-security": "max-age=31536000"},
            load_time_ms=300,
        )

    async def seo(self, html: str, url: str):
        self.calls["seo"] += 1
        return make_seo(self.seo_score)

    def content(self, html: str):
        self.calls["content"] += 1
        return make_content(self.content_score)

    async def security(self, url: str, headers: dict[str, str]) -> SecurityResults:
        self.calls["security"] += 1
        return make_security(self.security_score)

    async def quick_security(self, url: str, headers: dict[str, str]) -> SecurityResults:
        self.calls["quick_security"] += 1
        return make_security(self.security_score, grade="A (assumed)")

    async def pagespeed(self, url: str, timeout_s: float) -> PageSpeedResults:
        self.calls["pagespeed"] += 1
        if self.pagespeed_error is not None:
            raise self.pagespeed_error
        return PageSpeedResults(performance=self.performance, accessibility=95, best_practices=100, seo=92)

    def estimate_performance(self, html: str, load_time_ms: int) -> PageSpeedResults:
        self.calls["estimate_performance"] += 1
        return PageSpeedResults(performance=self.performance, is_estimate=True)

    async def ai_summary(self, **kwargs):
        self.calls["ai_summary"] += 1
        self.summary_kwargs = kwargs
        if self.summary_error is not None:
            raise self.summary_error
        summary = AISummary(
            overall_assessment="The site has a solid technical base.",
            keyword_analysis=KeywordAnalysis(primary_keywords=["bilvask"], missing_keywords=["bilpleie"]),
        )
        return summary, AIUsage(tokens_used=1500, cost_usd=0.00045, model="gpt-4o-mini")

    async def keyword_research(self, keywords: list[str], industry: str | None = None):
        self.calls["keyword_research"] += 1
        self.researched.append(list(keywords))
        research = [KeywordData(keyword=k, search_volume=500, cpc=12.5) for k in keywords]
        return research, AIUsage(tokens_used=400, cost_usd=0.0001, model="gpt-4o-mini")

    async def ai_visibility(self, domain: str, company_name: str | None = None, keywords: list[str] | None = None):
        self.calls["ai_visibility"] += 1
        return make_visibility(), AIUsage(tokens_used=300, cost_usd=0.00005, model="gpt-4o-mini")

    def fetchers(self) -> Fetchers:
        fetchers = Fetchers(
            scrape=self.scrape,
            seo=self.seo,
            content=self.content,
            security=self.security,
            quick_security=self.quick_security,
            pagespeed=self.pagespeed,
            estimate_performance=self.estimate_performance,
        )
        if self.ai:
            fetchers.ai_summary = self.ai_summary
            fetchers.keyword_research = self.keyword_research
            fetchers.ai_visibility = self.ai_visibility
        return fetchers


class FakeStore:
    """In-memory store with the same interface as SupabaseStore."""

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        users: dict[str, dict[str, Any]] | None = None,
        subscriptions: dict[str, dict[str, Any]] | None = None,
        monthly_count: int = 0,
    ):
        self.rows = list(rows or [])
        self.users = users if users is not None else {"token-1": {"id": "user-1", "email": "kari@example.no"}}
        self.subscriptions = subscriptions or {}
        self.monthly_count = monthly_count

        self.inserted: list[dict[str, Any]] = []
        self.usage: list[tuple[str, str, int, float]] = []
        self.updates: list[tuple[str, str, dict[str, Any]]] = []

    @property
    def writes(self) -> int:
        return len(self.inserted) + len(self.usage) + len(self.updates)

    def get_user(self, jwt: str):
        return self.users.get(jwt)

    def get_subscription(self, user_id: str):
        return self.subscriptions.get(user_id)

    def count_analyses_since(self, user_id, since) -> int:
        return self.monthly_count

    def recent_analyses(self, user_id, since, limit):
        return self.rows[:limit]

    def insert_analysis(self, row: dict[str, Any]) -> str:
        self.inserted.append(row)
        return f"analysis-{len(self.inserted)}"

    def increment_api_usage(self, user_id: str, date: str, tokens: int, cost: float) -> None:
        self.usage.append((user_id, date, tokens, cost))

    def get_analysis(self, analysis_id: str, user_id: str, columns: str = "*"):
        for row in self.rows:
            if row.get("id") == analysis_id and row.get("user_id") == user_id:
                return dict(row)
        return None

    def update_analysis(self, analysis_id: str, user_id: str, fields: dict[str, Any]) -> None:
        self.updates.append((analysis_id, user_id, fields))
