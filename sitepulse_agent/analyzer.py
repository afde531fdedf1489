from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Mapping

from . import ai_advisor
from .cache import CACHE_SCAN_LIMIT, CACHE_WINDOW, CachedFacets, find_cached_facets
from .config import Settings
from .content_analyzer import analyze_content
from .errors import (
    AIUnavailableError,
    AnalysisError,
    DeadlineExceededError,
    NotFoundError,
    QuotaExceededError,
    UnauthorizedError,
    ValidationError,
)
from .models import (
    AISummary,
    AIUsage,
    AIVisibility,
    AIVisibilityRequest,
    AIVisibilityResponse,
    AnalyzeRequest,
    CompetitorEntry,
    CompetitorResults,
    CompetitorsRequest,
    CompetitorsResponse,
    CompetitorUpdateResponse,
    CompositeReport,
    ContentResults,
    FacetStatus,
    KeywordData,
    KeywordsRequest,
    KeywordsResponse,
    PageSpeedResults,
    PageSpeedUpdateResponse,
    ScrapedPage,
    SecurityResults,
    SEOResults,
)
from .pagespeed import analyze_pagespeed, estimate_performance
from .scoring import overall_score
from .scraper import scrape_url
from .security import analyze_security, analyze_security_quick
from .seo_analyzer import analyze_seo, parse_html
from .urls import domain_of, normalize_competitor_urls, normalize_url

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 50
MAX_RESEARCH_KEYWORDS = 20
MAX_ENDPOINT_KEYWORDS = 10

_FACET_LABELS = {
    "pageSpeed": "PageSpeed",
    "competitors": "Competitor analysis",
    "aiSummary": "AI summary",
    "keywordResearch": "Keyword research",
    "aiVisibility": "AI visibility",
}


@dataclass(frozen=True)
class Caller:
    user_id: str | None = None
    is_premium: bool = False
    subscription: Mapping[str, Any] | None = field(default=None, hash=False, compare=False)


@dataclass
class Fetchers:
    """The leaf data sources the composer fans out to.

    AI fetchers are None when no OpenAI key is configured; the corresponding
    facets are then reported as skipped.
    """

    scrape: Callable[[str], Awaitable[ScrapedPage]]
    seo: Callable[[str, str], Awaitable[SEOResults]]
    content: Callable[[str], ContentResults]
    security: Callable[[str, dict[str, str]], Awaitable[SecurityResults]]
    quick_security: Callable[[str, dict[str, str]], Awaitable[SecurityResults]]
    pagespeed: Callable[[str, float], Awaitable[PageSpeedResults]]
    estimate_performance: Callable[[str, int], PageSpeedResults]
    ai_summary: Callable[..., Awaitable[tuple[AISummary, AIUsage]]] | None = None
    keyword_research: Callable[..., Awaitable[tuple[list[KeywordData], AIUsage]]] | None = None
    ai_visibility: Callable[..., Awaitable[tuple[AIVisibility, AIUsage]]] | None = None


def default_fetchers(settings: Settings) -> Fetchers:
    async def scrape(url: str) -> ScrapedPage:
        return await scrape_url(url, retry=settings.scrape_retry)

    async def pagespeed(url: str, timeout_s: float) -> PageSpeedResults:
        return await analyze_pagespeed(url, timeout_s=timeout_s, api_key=settings.pagespeed_api_key)

    def content(html: str) -> ContentResults:
        return analyze_content(parse_html(html))

    fetchers = Fetchers(
        scrape=scrape,
        seo=analyze_seo,
        content=content,
        security=analyze_security,
        quick_security=analyze_security_quick,
        pagespeed=pagespeed,
        estimate_performance=estimate_performance,
    )

    if not settings.ai_enabled:
        logger.warning("OPENAI_API_KEY not set; AI facets will be skipped")
        return fetchers

    client = ai_advisor.build_client(settings.openai_api_key)
    fetchers.ai_summary = partial(ai_advisor.generate_ai_summary, client, language=settings.report_language)
    fetchers.keyword_research = partial(ai_advisor.generate_keyword_research, client)
    fetchers.ai_visibility = partial(ai_advisor.check_ai_visibility, client)
    return fetchers


# Helpers


class _Deadline:
    def __init__(self, budget_s: float):
        self._loop = asyncio.get_running_loop()
        self._ends_at = self._loop.time() + budget_s
        self.budget_s = budget_s

    def remaining(self) -> float:
        return max(0.0, self._ends_at - self._loop.time())


def _ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _retrieve(task: asyncio.Task) -> None:
    # Abandoned tasks may still fail after the response is built.
    if not task.cancelled():
        task.exception()


def _spawn(coro: Awaitable[Any]) -> asyncio.Task:
    task = asyncio.ensure_future(coro)
    task.add_done_callback(_retrieve)
    return task


async def _settle(tasks: list[asyncio.Task | None], deadline: _Deadline) -> None:
    pending = {t for t in tasks if t is not None and not t.done()}
    if pending:
        await asyncio.wait(pending, timeout=deadline.remaining())


def _facet(
    name: str,
    task: asyncio.Task | None,
    facets: dict[str, FacetStatus],
    warnings: list[str],
) -> Any:
    """Status and value of an optional facet; None unless it succeeded."""
    label = _FACET_LABELS.get(name, name)
    if task is None:
        facets.setdefault(name, "skipped")
        return None
    if not task.done():
        facets[name] = "timed-out"
        logger.warning("%s did not finish before the deadline", label)
        warnings.append(f"{label} timed out")
        return None
    exc = task.exception()
    if exc is not None:
        facets[name] = "failed"
        logger.warning("%s failed: %s", label, exc)
        warnings.append(f"{label} unavailable: {exc}")
        return None
    facets[name] = "success"
    return task.result()


def _clean_keywords(raw: list[str], limit: int) -> list[str]:
    out: list[str] = []
    for k in raw or []:
        k = (k or "").strip()
        if k and k not in out:
            out.append(k)
    return out[:limit]


def _suggested_keywords(summary: AISummary | None) -> list[str]:
    if summary is None or summary.keyword_analysis is None:
        return []
    ka = summary.keyword_analysis
    return _clean_keywords(ka.primary_keywords + ka.missing_keywords, MAX_RESEARCH_KEYWORDS)


def _stored_score(row: Mapping[str, Any], column: str) -> int:
    value = (row.get(column) or {}).get("score")
    return int(value) if isinstance(value, (int, float)) else 0


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json", by_alias=True) if model is not None else None


# Caller, quota, cache


async def resolve_caller(token: str | None, *, store: Any, settings: Settings) -> Caller:
    """Anonymous without a token; an invalid token is rejected."""
    if not token or store is None:
        return Caller()
    user = await asyncio.to_thread(store.get_user, token)
    if user is None:
        raise UnauthorizedError("Invalid or expired access token")
    subscription = await asyncio.to_thread(store.get_subscription, user["id"])
    return Caller(
        user_id=user["id"],
        is_premium=settings.premium.is_premium(user["id"], subscription),
        subscription=subscription,
    )


def _require_user(caller: Caller, store: Any) -> str:
    if store is None or not caller.user_id:
        raise UnauthorizedError("Unauthorized")
    return caller.user_id


async def check_quota(caller: Caller, *, store: Any, settings: Settings, now: datetime) -> None:
    if store is None or not caller.user_id:
        return
    limit = settings.premium.monthly_limit(caller.is_premium, caller.subscription)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    used = await asyncio.to_thread(store.count_analyses_since, caller.user_id, month_start)
    if used >= limit:
        raise QuotaExceededError(
            f"You have used all {limit} analyses for this month. Upgrade to Premium for more analyses.",
            details={"analysisCount": used, "monthlyLimit": limit, "remainingAnalyses": 0},
        )


async def lookup_cache(caller: Caller, domain: str, *, store: Any, now: datetime) -> CachedFacets:
    if store is None or not caller.user_id:
        return CachedFacets()
    try:
        rows = await asyncio.to_thread(store.recent_analyses, caller.user_id, now - CACHE_WINDOW, CACHE_SCAN_LIMIT)
    except Exception as e:
        logger.warning("Cache lookup for %s failed: %s", domain, e)
        return CachedFacets()
    return find_cached_facets(rows, domain, now)


def validate_request(req: AnalyzeRequest, caller: Caller, settings: Settings) -> tuple[str, list[str], list[str], list[str]]:
    """Return (url, competitor_urls, keywords, warnings); raises ValidationError."""
    url = normalize_url(req.url)
    limit = settings.premium.competitor_limit(caller.is_premium)
    competitors, warnings = normalize_competitor_urls(req.competitor_urls, limit)
    return url, competitors, _clean_keywords(req.keywords, MAX_KEYWORDS), warnings


# Competitors


async def analyze_competitor(
    url: str,
    *,
    fetchers: Fetchers,
    visibility: AIVisibility | None = None,
) -> CompetitorEntry:
    page = await fetchers.scrape(url)
    seo, security = await asyncio.gather(
        fetchers.seo(page.html, page.url),
        fetchers.quick_security(page.url, page.headers),
    )
    content = fetchers.content(page.html)
    performance = fetchers.estimate_performance(page.html, page.load_time_ms)

    return CompetitorEntry(
        url=url,
        results=CompetitorResults(
            seo_results=seo,
            content_results=content,
            security_results=security,
            page_speed_results=performance,
            overall_score=overall_score(seo.score, content.score, security.score, performance.performance),
            ai_visibility=visibility,
        ),
    )


async def analyze_competitors(
    urls: list[str],
    *,
    fetchers: Fetchers,
    cached: CachedFacets | None = None,
) -> tuple[list[CompetitorEntry], list[str]]:
    cached = cached or CachedFacets()
    outcomes = await asyncio.gather(
        *(analyze_competitor(u, fetchers=fetchers, visibility=cached.visibility_for(u)) for u in urls),
        return_exceptions=True,
    )

    entries: list[CompetitorEntry] = []
    warnings: list[str] = []
    for url, outcome in zip(urls, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("Competitor %s failed: %s", url, outcome)
            warnings.append(f"Competitor {url} could not be analyzed: {outcome}")
        else:
            entries.append(outcome)
    return entries, warnings


# Main pipeline


@dataclass
class _MainFacets:
    page: ScrapedPage
    seo: SEOResults
    content: ContentResults
    security: SecurityResults


async def _analyze_main(
    url: str,
    *,
    fetchers: Fetchers,
    cached_security: SecurityResults | None,
    quick_security: bool,
    timings: dict[str, int],
) -> _MainFacets:
    start = time.perf_counter()
    page = await fetchers.scrape(url)
    timings["scrape"] = _ms(start)

    async def security() -> SecurityResults:
        if cached_security is not None:
            return cached_security
        scan = fetchers.quick_security if quick_security else fetchers.security
        return await scan(page.url, page.headers)

    start = time.perf_counter()
    seo, security_results = await asyncio.gather(fetchers.seo(page.html, page.url), security())
    timings["seoSecurity"] = _ms(start)

    start = time.perf_counter()
    content = fetchers.content(page.html)
    timings["content"] = _ms(start)

    return _MainFacets(page=page, seo=seo, content=content, security=security_results)


async def _timed(name: str, coro: Awaitable[Any], timings: dict[str, int]) -> Any:
    start = time.perf_counter()
    try:
        return await coro
    finally:
        timings[name] = _ms(start)


async def persist_report(
    report: CompositeReport,
    *,
    caller: Caller,
    company_id: str | None,
    store: Any,
    now: datetime,
) -> str:
    """Insert the analysis row, then bump the usage counter."""
    dumped = report.model_dump(mode="json", by_alias=True)
    row = {
        "user_id": caller.user_id,
        "company_id": company_id,
        "website_url": report.url,
        "status": "completed",
        "seo_results": dumped["seoResults"],
        "content_results": dumped["contentResults"],
        "security_results": dumped["securityResults"],
        "pagespeed_results": dumped["pageSpeedResults"],
        "competitor_results": dumped["competitors"] or None,
        "ai_summary": dumped["aiSummary"],
        "ai_visibility": dumped["aiVisibility"],
        "keyword_research": dumped["keywordResearch"],
        "overall_score": report.overall_score,
        "ai_model": report.ai_model,
        "tokens_used": report.tokens_used,
        "cost_usd": report.cost_usd,
    }
    analysis_id = await asyncio.to_thread(store.insert_analysis, row)
    await asyncio.to_thread(
        store.increment_api_usage,
        caller.user_id,
        now.date().isoformat(),
        report.tokens_used,
        report.cost_usd,
    )
    return analysis_id


async def run_analysis(
    req: AnalyzeRequest,
    *,
    caller: Caller,
    settings: Settings,
    fetchers: Fetchers,
    store: Any = None,
    now: datetime | None = None,
) -> CompositeReport:
    """Run every applicable facet for ``req`` within the request budget.

    Scrape, SEO, content and security are mandatory: if they are not done
    when the budget runs out the request fails with DEADLINE_EXCEEDED and
    nothing is persisted. All other facets degrade to null with a warning.
    """
    t0 = time.perf_counter()
    deadline = _Deadline(settings.analysis_budget_s)
    now = now or datetime.now(timezone.utc)
    url, competitor_urls, keywords, warnings = validate_request(req, caller, settings)
    domain = domain_of(url)

    await check_quota(caller, store=store, settings=settings, now=now)
    cached = await lookup_cache(caller, domain, store=store, now=now)

    timings: dict[str, int] = {}
    facets: dict[str, FacetStatus] = {}

    competitor_mode = bool(competitor_urls)
    ai_on = req.options.include_ai and fetchers.ai_summary is not None
    visibility_eligible = (
        settings.ai_visibility_enabled and caller.is_premium and req.options.include_ai and fetchers.ai_visibility is not None
    )
    logger.info(
        "Analyzing %s (competitors=%d, keywords=%d, premium=%s, ai=%s)",
        url, len(competitor_urls), len(keywords), caller.is_premium, ai_on,
    )

    main_task = _spawn(_analyze_main(
        url,
        fetchers=fetchers,
        cached_security=cached.security,
        quick_security=competitor_mode or req.options.quick_security_scan,
        timings=timings,
    ))

    pagespeed_task = None
    if not competitor_mode and not req.options.skip_page_speed:
        timeout_s = min(settings.pagespeed_timeout_s, deadline.remaining())
        pagespeed_task = _spawn(_timed("pageSpeed", fetchers.pagespeed(url, timeout_s), timings))

    competitors_task = None
    if competitor_urls:
        competitors_task = _spawn(_timed(
            "competitors",
            analyze_competitors(competitor_urls, fetchers=fetchers, cached=cached if visibility_eligible else None),
            timings,
        ))

    keywords_task = None
    if ai_on and keywords and fetchers.keyword_research is not None:
        keywords_task = _spawn(_timed(
            "keywordResearch",
            fetchers.keyword_research(keywords[:MAX_RESEARCH_KEYWORDS], industry=req.industry),
            timings,
        ))

    visibility_task = None
    cached_visibility = cached.visibility_for(url) if visibility_eligible else None
    if cached_visibility is not None:
        logger.info("Reusing cached AI visibility for %s", domain)
    elif visibility_eligible:
        visibility_task = _spawn(_timed(
            "aiVisibility",
            fetchers.ai_visibility(domain, company_name=req.company_name, keywords=keywords),
            timings,
        ))

    done, _ = await asyncio.wait({main_task}, timeout=deadline.remaining())
    if not done:
        logger.error("Mandatory facets for %s exceeded the %.0fs budget", url, deadline.budget_s)
        raise DeadlineExceededError(
            "The analysis did not finish in time. Try again with fewer competitors or keywords."
        )
    exc = main_task.exception()
    if exc is not None:
        if isinstance(exc, AnalysisError):
            raise exc
        logger.error("Mandatory facets for %s failed: %s", url, exc)
        raise AnalysisError(f"Analysis failed: {exc}") from exc

    main = main_task.result()
    facets.update(seo="success", content="success", security="success")

    await _settle([competitors_task], deadline)
    competitor_outcome = _facet("competitors", competitors_task, facets, warnings)
    competitors: list[CompetitorEntry] = []
    if competitor_outcome is not None:
        competitors, competitor_warnings = competitor_outcome
        warnings.extend(competitor_warnings)

    summary_task = None
    if ai_on:
        page_speed_so_far = None
        if pagespeed_task is not None and pagespeed_task.done() and pagespeed_task.exception() is None:
            page_speed_so_far = pagespeed_task.result()
        summary_task = _spawn(_timed(
            "aiSummary",
            fetchers.ai_summary(
                url=url,
                seo=main.seo,
                content=main.content,
                security=main.security,
                page_speed=page_speed_so_far,
                competitors=competitors,
                industry=req.industry,
                keywords=keywords,
                premium_model=caller.is_premium and req.options.use_premium_ai,
            ),
            timings,
        ))

    await _settle([pagespeed_task, keywords_task, visibility_task, summary_task], deadline)

    usage: list[AIUsage] = []
    summary_outcome = _facet("aiSummary", summary_task, facets, warnings)
    ai_summary = None
    if summary_outcome is not None:
        ai_summary, summary_usage = summary_outcome
        usage.append(summary_usage)

    # Premium users without their own keywords get research on the AI's suggestions.
    if keywords_task is None and not keywords and caller.is_premium and ai_on and fetchers.keyword_research is not None:
        suggestions = _suggested_keywords(ai_summary)
        if suggestions and deadline.remaining() > 0:
            keywords_task = _spawn(_timed(
                "keywordResearch",
                fetchers.keyword_research(suggestions, industry=req.industry),
                timings,
            ))
            await _settle([keywords_task], deadline)

    page_speed = _facet("pageSpeed", pagespeed_task, facets, warnings)

    keyword_research = None
    keyword_outcome = _facet("keywordResearch", keywords_task, facets, warnings)
    if keyword_outcome is not None:
        keyword_research, keyword_usage = keyword_outcome
        usage.append(keyword_usage)

    ai_visibility = cached_visibility
    if cached_visibility is not None:
        facets["aiVisibility"] = "success"
    else:
        visibility_outcome = _facet("aiVisibility", visibility_task, facets, warnings)
        if visibility_outcome is not None:
            ai_visibility, visibility_usage = visibility_outcome
            usage.append(visibility_usage)

    performance = page_speed.performance if page_speed is not None and page_speed.performance > 0 else None
    score = overall_score(main.seo.score, main.content.score, main.security.score, performance)
    timings["total"] = _ms(t0)

    report = CompositeReport(
        url=url,
        domain=domain,
        overall_score=score,
        seo_results=main.seo,
        content_results=main.content,
        security_results=main.security,
        page_speed_results=page_speed,
        competitors=competitors,
        ai_summary=ai_summary,
        ai_visibility=ai_visibility,
        keyword_research=keyword_research,
        tokens_used=sum(u.tokens_used for u in usage),
        cost_usd=round(sum(u.cost_usd for u in usage), 6),
        ai_model=summary_outcome[1].model if summary_outcome is not None else "none",
        facets=facets,
        warnings=warnings,
        timings_ms=timings,
        analyzed_at=now.isoformat(),
    )

    if store is not None and caller.user_id:
        report.analysis_id = await persist_report(
            report, caller=caller, company_id=req.company_id, store=store, now=now,
        )

    logger.info("Analysis of %s done: score %d in %dms", url, score, timings["total"])
    return report


# Follow-up operations


async def refresh_pagespeed(
    analysis_id: str,
    *,
    caller: Caller,
    settings: Settings,
    fetchers: Fetchers,
    store: Any,
) -> PageSpeedUpdateResponse:
    user_id = _require_user(caller, store)
    if not analysis_id:
        raise ValidationError("analysisId is required")

    row = await asyncio.to_thread(
        store.get_analysis,
        analysis_id,
        user_id,
        "id, website_url, seo_results, content_results, security_results, overall_score",
    )
    if not row or not row.get("website_url"):
        raise NotFoundError("Analysis not found or access denied")

    try:
        results = await fetchers.pagespeed(row["website_url"], settings.followup_pagespeed_timeout_s)
    except Exception as e:
        logger.warning("PageSpeed follow-up for %s failed: %s", row["website_url"], e)
        return PageSpeedUpdateResponse(page_speed_results=None, overall_score=row.get("overall_score"))

    score = overall_score(
        _stored_score(row, "seo_results"),
        _stored_score(row, "content_results"),
        _stored_score(row, "security_results"),
        results.performance,
    )
    await asyncio.to_thread(
        store.update_analysis,
        analysis_id,
        user_id,
        {"pagespeed_results": _dump(results), "overall_score": score},
    )
    return PageSpeedUpdateResponse(page_speed_results=results, overall_score=score)


async def add_competitor(
    analysis_id: str,
    competitor_url: str,
    *,
    caller: Caller,
    settings: Settings,
    fetchers: Fetchers,
    store: Any,
) -> CompetitorUpdateResponse:
    user_id = _require_user(caller, store)
    if not analysis_id or not competitor_url:
        raise ValidationError("analysisId and competitorUrl are required")
    url = normalize_url(competitor_url)

    row = await asyncio.to_thread(store.get_analysis, analysis_id, user_id, "id, competitor_results")
    if not row:
        raise NotFoundError("Analysis not found or access denied")

    try:
        entry = await asyncio.wait_for(analyze_competitor(url, fetchers=fetchers), timeout=settings.analysis_budget_s)
    except asyncio.TimeoutError:
        raise DeadlineExceededError("The competitor analysis did not finish in time.")

    existing = row.get("competitor_results") or []
    await asyncio.to_thread(
        store.update_analysis,
        analysis_id,
        user_id,
        {"competitor_results": [*existing, _dump(entry)]},
    )
    return CompetitorUpdateResponse(competitor=entry)


async def analyze_competitors_only(
    req: CompetitorsRequest,
    *,
    caller: Caller,
    settings: Settings,
    fetchers: Fetchers,
) -> CompetitorsResponse:
    raw = req.competitor_urls
    if req.main_url:
        try:
            main_domain = domain_of(req.main_url)
        except ValueError:
            main_domain = None
        raw = [u for u in raw if main_domain is None or not _same_domain(u, main_domain)]

    urls, _ = normalize_competitor_urls(raw, settings.premium.competitor_limit(caller.is_premium))
    if not urls:
        raise ValidationError("At least one valid competitor URL is required", code="NO_VALID_COMPETITORS")

    try:
        entries, _ = await asyncio.wait_for(
            analyze_competitors(urls, fetchers=fetchers),
            timeout=settings.analysis_budget_s,
        )
    except asyncio.TimeoutError:
        raise DeadlineExceededError("The competitor analysis did not finish in time. Try fewer competitors.")
    return CompetitorsResponse(competitors=entries)


def _same_domain(url: str, domain: str) -> bool | None:
    try:
        return domain_of(url) == domain
    except ValueError:
        return None


async def research_keywords(req: KeywordsRequest, *, fetchers: Fetchers) -> KeywordsResponse:
    keywords = _clean_keywords(req.keywords, MAX_ENDPOINT_KEYWORDS)
    if not keywords:
        raise ValidationError("At least one keyword is required", code="NO_KEYWORDS")
    if fetchers.keyword_research is None:
        raise AIUnavailableError("Keyword research needs OPENAI_API_KEY to be configured")

    research, usage = await fetchers.keyword_research(keywords, industry=req.industry)
    return KeywordsResponse(keyword_research=research, tokens_used=usage.tokens_used, cost_usd=usage.cost_usd)


async def probe_ai_visibility(req: AIVisibilityRequest, *, fetchers: Fetchers) -> AIVisibilityResponse:
    url = normalize_url(req.url)
    if fetchers.ai_visibility is None:
        return AIVisibilityResponse(
            score=None,
            message="AI visibility requires OPENAI_API_KEY to be configured.",
            estimated_only=True,
        )

    visibility, _ = await fetchers.ai_visibility(
        domain_of(url),
        company_name=req.company_name,
        keywords=_clean_keywords(req.keywords, MAX_ENDPOINT_KEYWORDS),
    )
    return AIVisibilityResponse(
        score=visibility.score,
        level=visibility.level,
        description=visibility.description,
        details=visibility.details,
        recommendations=visibility.recommendations,
    )
