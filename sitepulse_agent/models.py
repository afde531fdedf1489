from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

FacetStatus = Literal["success", "failed", "skipped", "timed-out"]
Priority = Literal["high", "medium", "low"]


class ApiModel(BaseModel):
    # camelCase on the wire, snake_case in Python; both accepted on input.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalysisOptions(ApiModel):
    include_ai: bool = True
    use_premium_ai: bool = False
    skip_page_speed: bool = False
    quick_security_scan: bool = False


class AnalyzeRequest(ApiModel):
    url: str = ""
    competitor_urls: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    company_id: str | None = None
    company_name: str | None = None
    industry: str | None = None
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)


class PageSpeedRequest(ApiModel):
    analysis_id: str = ""


class CompetitorRequest(ApiModel):
    analysis_id: str = ""
    competitor_url: str = ""


class CompetitorsRequest(ApiModel):
    main_url: str | None = None
    competitor_urls: list[str] = Field(default_factory=list)


class KeywordsRequest(ApiModel):
    keywords: list[str] = Field(default_factory=list)
    url: str | None = None
    industry: str | None = None


class AIVisibilityRequest(ApiModel):
    url: str = ""
    company_name: str | None = None
    keywords: list[str] = Field(default_factory=list)


# Scrape


class ScrapedPage(ApiModel):
    url: str
    html: str
    status_code: int
    headers: dict[str, str]
    load_time_ms: int


# SEO


class TextTag(ApiModel):
    content: str | None
    length: int
    is_optimal: bool


class OgTags(ApiModel):
    title: str | None = None
    description: str | None = None
    image: str | None = None
    url: str | None = None


class TwitterTags(ApiModel):
    card: str | None = None
    title: str | None = None
    description: str | None = None
    image: str | None = None


class MetaTagsAnalysis(ApiModel):
    title: TextTag
    description: TextTag
    og_tags: OgTags
    twitter_tags: TwitterTags
    canonical: str | None = None
    robots: str | None = None


class HeadingLevel(ApiModel):
    count: int
    contents: list[str]


class HeadingsAnalysis(ApiModel):
    h1: HeadingLevel
    h2: HeadingLevel
    h3: HeadingLevel
    h4: HeadingLevel
    h5: HeadingLevel
    h6: HeadingLevel
    has_proper_hierarchy: bool
    issues: list[str]


class ImagesAnalysis(ApiModel):
    total: int
    with_alt: int
    without_alt: int
    with_lazy_loading: int
    large_images: list[str]
    missing_alt_images: list[str]
    all_image_urls: list[str]
    score: int


class LinkGroup(ApiModel):
    count: int
    urls: list[str]


class LinksAnalysis(ApiModel):
    internal: LinkGroup
    external: LinkGroup
    broken: LinkGroup
    nofollow: LinkGroup


class MobileAnalysis(ApiModel):
    has_viewport_meta: bool
    viewport_content: str | None
    is_responsive: bool
    issues: list[str]


class HreflangTag(ApiModel):
    lang: str
    url: str


class TechnicalSEOAnalysis(ApiModel):
    has_robots_txt: bool
    has_sitemap: bool
    sitemap_url: str | None
    has_https: bool
    has_hreflang: bool
    hreflang_tags: list[HreflangTag]


class SEOResults(ApiModel):
    meta: MetaTagsAnalysis
    headings: HeadingsAnalysis
    images: ImagesAnalysis
    links: LinksAnalysis
    mobile: MobileAnalysis
    technical: TechnicalSEOAnalysis
    score: int


# Content


class Readability(ApiModel):
    lix_score: int
    lix_level: str
    avg_words_per_sentence: float
    avg_word_length: float


class KeywordDensity(ApiModel):
    word: str
    count: int
    density: float


class ContentResults(ApiModel):
    word_count: int
    character_count: int
    paragraph_count: int
    sentence_count: int
    readability: Readability
    keywords: list[KeywordDensity]
    has_cta: bool = Field(alias="hasCTA")
    cta_elements: list[str]
    score: int


# Security


class CertificateInfo(ApiModel):
    issuer: str | None = None
    valid_from: str | None = None
    valid_to: str | None = None
    days_until_expiry: int | None = None


class SSLAnalysis(ApiModel):
    grade: str
    certificate: CertificateInfo = Field(default_factory=CertificateInfo)
    protocols: list[str] = Field(default_factory=list)
    vulnerabilities: list[str] = Field(default_factory=list)


class SecurityHeaders(ApiModel):
    content_security_policy: bool
    strict_transport_security: bool
    x_frame_options: bool
    x_content_type_options: bool
    referrer_policy: bool
    permissions_policy: bool
    score: int


class SecurityResults(ApiModel):
    ssl: SSLAnalysis
    headers: SecurityHeaders
    score: int


# Performance


class CoreWebVitals(ApiModel):
    lcp: float = 0
    fid: float = 0
    cls: float = 0


class PageSpeedResults(ApiModel):
    performance: int
    accessibility: int = 0
    best_practices: int = 0
    seo: int = 0
    core_web_vitals: CoreWebVitals = Field(default_factory=CoreWebVitals)
    is_estimate: bool = False


# AI


class KeyFinding(ApiModel):
    text: str
    type: Literal["positive", "negative", "neutral"] = "neutral"


class KeywordAnalysis(ApiModel):
    summary: str = ""
    primary_keywords: list[str] = Field(default_factory=list)
    missing_keywords: list[str] = Field(default_factory=list)
    keyword_density_assessment: str = ""
    title_keyword_match: str = ""
    target_keyword_matches: str = ""
    recommendations: str = ""


class AIRecommendation(ApiModel):
    priority: Priority = "medium"
    category: Literal["seo", "content", "security", "performance", "accessibility"] = "seo"
    title: str
    description: str = ""
    expected_impact: str = ""


class CompetitorComparison(ApiModel):
    summary: str = ""
    score_analysis: str = ""
    your_strengths: list[str] = Field(default_factory=list)
    competitor_strengths: list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    quick_wins: list[str] = Field(default_factory=list)


class ActionPlan(ApiModel):
    immediate: list[str] = Field(default_factory=list)
    short_term: list[str] = Field(default_factory=list)
    long_term: list[str] = Field(default_factory=list)


class AISummary(ApiModel):
    overall_assessment: str
    key_findings: list[KeyFinding] = Field(default_factory=list)
    keyword_analysis: KeywordAnalysis | None = None
    recommendations: list[AIRecommendation] = Field(default_factory=list)
    competitor_comparison: CompetitorComparison | None = None
    action_plan: ActionPlan = Field(default_factory=ActionPlan)


class KeywordData(ApiModel):
    keyword: str
    search_volume: int = 0
    cpc: float = 0.0
    competition: Literal["lav", "medium", "høy"] = "medium"
    competition_score: int = 0
    intent: Literal["informational", "commercial", "transactional", "navigational"] = "informational"
    difficulty: int = 0
    trend: Literal["stigende", "stabil", "synkende"] = "stabil"


class VisibilityQuery(ApiModel):
    query: str
    cited: bool
    mentioned: bool
    ai_response: str | None = None


class VisibilityDetails(ApiModel):
    queries_tested: int
    times_cited: int
    times_mentioned: int
    queries: list[VisibilityQuery]


class AIVisibility(ApiModel):
    score: int
    level: Literal["high", "medium", "low", "none"]
    description: str
    details: VisibilityDetails
    recommendations: list[str] = Field(default_factory=list)


class AIUsage(ApiModel):
    tokens_used: int = 0
    cost_usd: float = 0.0
    model: str = "none"


# Reports


class CompetitorResults(ApiModel):
    seo_results: SEOResults
    content_results: ContentResults
    security_results: SecurityResults
    page_speed_results: PageSpeedResults | None = None
    overall_score: int
    ai_visibility: AIVisibility | None = None


class CompetitorEntry(ApiModel):
    url: str
    results: CompetitorResults


class CompositeReport(ApiModel):
    url: str
    domain: str
    overall_score: int
    seo_results: SEOResults
    content_results: ContentResults
    security_results: SecurityResults
    page_speed_results: PageSpeedResults | None = None
    competitors: list[CompetitorEntry] = Field(default_factory=list)
    ai_summary: AISummary | None = None
    ai_visibility: AIVisibility | None = None
    keyword_research: list[KeywordData] | None = None
    tokens_used: int = 0
    cost_usd: float = 0.0
    ai_model: str = "none"

    # metadata
    facets: dict[str, FacetStatus] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    timings_ms: dict[str, int] = Field(default_factory=dict)
    analysis_id: str | None = None
    analyzed_at: str
    success: bool = True


class PageSpeedUpdateResponse(ApiModel):
    success: bool = True
    page_speed_results: PageSpeedResults | None
    overall_score: int | None


class CompetitorUpdateResponse(ApiModel):
    success: bool = True
    competitor: CompetitorEntry


class CompetitorsResponse(ApiModel):
    success: bool = True
    competitors: list[CompetitorEntry]


class KeywordsResponse(ApiModel):
    success: bool = True
    keyword_research: list[KeywordData]
    tokens_used: int
    cost_usd: float


class AIVisibilityResponse(ApiModel):
    score: int | None
    level: str | None = None
    description: str | None = None
    details: VisibilityDetails | None = None
    recommendations: list[str] = Field(default_factory=list)
    message: str | None = None
    estimated_only: bool = False


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
    details: dict[str, Any] | None = None
