"""
AI-generated recommendations, keyword research and AI visibility probes.

All calls go through the OpenAI chat completions API. Model output is
normalized before validation so that partial or slightly malformed JSON
still yields a usable facet.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from openai import AsyncOpenAI

from .models import (
    AIUsage,
    AISummary,
    AIVisibility,
    CompetitorEntry,
    ContentResults,
    KeywordData,
    PageSpeedResults,
    SecurityResults,
    SEOResults,
    VisibilityDetails,
    VisibilityQuery,
)
from .scoring import round_half_up
from .security import security_recommendations

logger = logging.getLogger(__name__)

BASE_MODEL = "gpt-4o-mini"
PREMIUM_MODEL = "gpt-4o"

# USD per 1M tokens (input, output)
PRICING = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
}

_ALLOWED_PRIORITIES = {"high", "medium", "low"}
_ALLOWED_CATEGORIES = {"seo", "content", "security", "performance", "accessibility"}
_ALLOWED_FINDING_TYPES = {"positive", "negative", "neutral"}
_ALLOWED_COMPETITION = {"lav", "medium", "høy"}
_ALLOWED_INTENTS = {"informational", "commercial", "transactional", "navigational"}
_ALLOWED_TRENDS = {"stigende", "stabil", "synkende"}

_UNKNOWN_PHRASES = (
    "kjenner ikke til",
    "har ikke informasjon",
    "vet ikke",
    "ingen informasjon",
    "ikke kjent med",
    "kan ikke finne",
    "ukjent for meg",
    "har ikke hørt om",
    "ingen spesifikk",
    "ikke nok informasjon",
    "i don't know",
    "i do not know",
    "not familiar with",
    "no information",
    "don't have information",
    "not aware of",
)


def build_client(api_key: str | None) -> AsyncOpenAI | None:
    if not api_key:
        return None
    return AsyncOpenAI(api_key=api_key)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    in_price, out_price = PRICING.get(model, PRICING[BASE_MODEL])
    return input_tokens / 1_000_000 * in_price + output_tokens / 1_000_000 * out_price


def _usage(response: Any, model: str) -> AIUsage:
    usage = getattr(response, "usage", None)
    input_tokens = getattr(usage, "prompt_tokens", 0) or 0
    output_tokens = getattr(usage, "completion_tokens", 0) or 0
    return AIUsage(
        tokens_used=input_tokens + output_tokens,
        cost_usd=calculate_cost(model, input_tokens, output_tokens),
        model=model,
    )


def _message_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    return (choices[0].message.content or "").strip()


def _as_str_list(value: Any, limit: int | None = None) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    out = [str(v).strip() for v in value if v is not None and str(v).strip()]
    return out[:limit] if limit else out


def _as_int(value: Any, default: int = 0, lo: int = 0, hi: int | None = None) -> int:
    try:
        n = int(float(value))
    except (TypeError, ValueError):
        n = default
    n = max(lo, n)
    return min(hi, n) if hi is not None else n


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return default


def _pick(value: Any, allowed: set[str], default: str) -> str:
    v = str(value or "").strip().lower()
    return v if v in allowed else default


def normalize_summary(raw: Any) -> dict[str, Any] | None:
    """Clamp model output to the AISummary shape; None when unusable."""
    if not isinstance(raw, dict):
        return None

    assessment = str(raw.get("overallAssessment") or "").strip()
    if not assessment:
        return None

    findings = []
    for item in raw.get("keyFindings") or []:
        if isinstance(item, dict) and str(item.get("text") or "").strip():
            findings.append({
                "text": str(item["text"]).strip(),
                "type": _pick(item.get("type"), _ALLOWED_FINDING_TYPES, "neutral"),
            })
        elif isinstance(item, str) and item.strip():
            findings.append({"text": item.strip(), "type": "neutral"})

    recommendations = []
    for item in raw.get("recommendations") or []:
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            continue
        recommendations.append({
            "priority": _pick(item.get("priority"), _ALLOWED_PRIORITIES, "medium"),
            "category": _pick(item.get("category"), _ALLOWED_CATEGORIES, "seo"),
            "title": str(item["title"]).strip(),
            "description": str(item.get("description") or "").strip(),
            "expectedImpact": str(item.get("expectedImpact") or "").strip(),
        })

    keyword_analysis = None
    ka = raw.get("keywordAnalysis")
    if isinstance(ka, dict):
        keyword_analysis = {
            "summary": str(ka.get("summary") or ""),
            "primaryKeywords": _as_str_list(ka.get("primaryKeywords")),
            "missingKeywords": _as_str_list(ka.get("missingKeywords")),
            "keywordDensityAssessment": str(ka.get("keywordDensityAssessment") or ""),
            "titleKeywordMatch": str(ka.get("titleKeywordMatch") or ""),
            "targetKeywordMatches": str(ka.get("targetKeywordMatches") or ""),
            "recommendations": str(ka.get("recommendations") or ""),
        }

    comparison = None
    cc = raw.get("competitorComparison")
    if isinstance(cc, dict) and any(cc.values()):
        comparison = {
            "summary": str(cc.get("summary") or ""),
            "scoreAnalysis": str(cc.get("scoreAnalysis") or ""),
            "yourStrengths": _as_str_list(cc.get("yourStrengths")),
            "competitorStrengths": _as_str_list(cc.get("competitorStrengths")),
            "opportunities": _as_str_list(cc.get("opportunities")),
            "quickWins": _as_str_list(cc.get("quickWins")),
        }

    plan = raw.get("actionPlan") if isinstance(raw.get("actionPlan"), dict) else {}

    return {
        "overallAssessment": assessment,
        "keyFindings": findings,
        "keywordAnalysis": keyword_analysis,
        "recommendations": recommendations,
        "competitorComparison": comparison,
        "actionPlan": {
            "immediate": _as_str_list(plan.get("immediate")),
            "shortTerm": _as_str_list(plan.get("shortTerm")),
            "longTerm": _as_str_list(plan.get("longTerm")),
        },
    }


def normalize_keyword(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict) or not str(raw.get("keyword") or "").strip():
        return None
    return {
        "keyword": str(raw["keyword"]).strip(),
        "searchVolume": _as_int(raw.get("searchVolume")),
        "cpc": round(_as_float(raw.get("cpc")), 2),
        "competition": _pick(raw.get("competition"), _ALLOWED_COMPETITION, "medium"),
        "competitionScore": _as_int(raw.get("competitionScore"), hi=100),
        "intent": _pick(raw.get("intent"), _ALLOWED_INTENTS, "informational"),
        "difficulty": _as_int(raw.get("difficulty"), hi=100),
        "trend": _pick(raw.get("trend"), _ALLOWED_TRENDS, "stabil"),
    }


def _flag(value: bool) -> str:
    return "present" if value else "missing"


def _build_summary_prompt(
    *,
    url: str,
    seo: SEOResults,
    content: ContentResults,
    security: SecurityResults,
    page_speed: PageSpeedResults | None,
    competitors: list[CompetitorEntry],
    industry: str | None,
    keywords: list[str],
) -> str:
    lines = [
        f"Analyze the following data for {url}:",
        "",
        "## SEO",
        f"- SEO score: {seo.score}/100",
        f"- Title: {seo.meta.title.content or 'missing'} ({seo.meta.title.length} chars)",
        f"- Meta description: {seo.meta.description.content or 'missing'} ({seo.meta.description.length} chars)",
        f"- H1 tags: {seo.headings.h1.count}",
        f"- Images without alt text: {seo.images.without_alt} of {seo.images.total}",
        f"- Internal links: {seo.links.internal.count}, external links: {seo.links.external.count}",
        "",
        "## Content",
        f"- Word count: {content.word_count}",
        f"- LIX: {content.readability.lix_score} ({content.readability.lix_level})",
        f"- Has call to action: {'yes' if content.has_cta else 'no'}",
        "- Top keywords on the page:",
    ]
    if content.keywords:
        lines.extend(f'  - "{k.word}": {k.count} times ({k.density}% density)' for k in content.keywords[:10])
    else:
        lines.append("  none found")

    days = security.ssl.certificate.days_until_expiry
    lines += [
        "",
        "## Security",
        f"- SSL grade: {security.ssl.grade}",
        f"- Certificate expires in: {f'{days} days' if days is not None else 'unknown'}",
        f"- Security headers score: {security.headers.score}/100",
        f"  - Content-Security-Policy: {_flag(security.headers.content_security_policy)}",
        f"  - Strict-Transport-Security: {_flag(security.headers.strict_transport_security)}",
        f"  - X-Frame-Options: {_flag(security.headers.x_frame_options)}",
        f"  - X-Content-Type-Options: {_flag(security.headers.x_content_type_options)}",
        f"  - Referrer-Policy: {_flag(security.headers.referrer_policy)}",
        f"  - Permissions-Policy: {_flag(security.headers.permissions_policy)}",
        f"- Security score: {security.score}/100",
    ]
    recs = security_recommendations(security)
    if recs:
        lines.append("- Known security gaps: " + "; ".join(recs))

    if page_speed is not None:
        lines += [
            "",
            "## Performance",
            f"- Performance: {page_speed.performance}/100, accessibility: {page_speed.accessibility}/100",
            f"- LCP: {page_speed.core_web_vitals.lcp:.0f} ms, CLS: {page_speed.core_web_vitals.cls:.3f}",
        ]

    if competitors:
        lines += ["", "## Competitors", f"Your scores: SEO {seo.score}, content {content.score}, security {security.score}"]
        for i, comp in enumerate(competitors, start=1):
            r = comp.results
            lines.append(
                f"Competitor {i}: {comp.url} - SEO {r.seo_results.score}, content {r.content_results.score} "
                f"({r.content_results.word_count} words), security {r.security_results.score}, total {r.overall_score}"
            )

    if industry:
        lines += ["", f"Industry: {industry}"]

    if keywords:
        lines += ["", "## Target keywords from the user"]
        lines.extend(f'- "{k}"' for k in keywords)
        lines.append("Assess whether these keywords are well represented and how to use them better.")

    lines += [
        "",
        "Respond with a JSON object with these keys:",
        '"overallAssessment" (2-3 sentences), "keyFindings" (list of {"text", "type": positive|negative|neutral}), '
        '"keywordAnalysis" ({"summary", "primaryKeywords", "missingKeywords", "keywordDensityAssessment", '
        '"titleKeywordMatch", "targetKeywordMatches", "recommendations"}), '
        '"recommendations" (list of {"priority": high|medium|low, "category": seo|content|security|performance|accessibility, '
        '"title", "description", "expectedImpact"}), '
        '"competitorComparison" ({"summary", "scoreAnalysis", "yourStrengths", "competitorStrengths", "opportunities", '
        '"quickWins"}, only when competitors are given), '
        '"actionPlan" ({"immediate", "shortTerm", "longTerm"}).',
    ]
    return "\n".join(lines)


async def generate_ai_summary(
    client: AsyncOpenAI,
    *,
    url: str,
    seo: SEOResults,
    content: ContentResults,
    security: SecurityResults,
    page_speed: PageSpeedResults | None = None,
    competitors: list[CompetitorEntry] | None = None,
    industry: str | None = None,
    keywords: list[str] | None = None,
    premium_model: bool = False,
    language: str = "Norwegian",
) -> tuple[AISummary, AIUsage]:
    model = PREMIUM_MODEL if premium_model else BASE_MODEL
    system = (
        "You are an experienced SEO and digital marketing expert. Analyze the website data and give "
        f"concrete, actionable recommendations in {language}. Recommendations must be specific and measurable, "
        "prioritized by expected impact, adapted to the industry when given, and realistic to implement. "
        "Always answer with valid JSON matching the requested structure."
    )
    prompt = _build_summary_prompt(
        url=url,
        seo=seo,
        content=content,
        security=security,
        page_speed=page_speed,
        competitors=competitors or [],
        industry=industry,
        keywords=keywords or [],
    )

    response = await client.chat.completions.create(
        model=model,
        messages=[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
        response_format={"type": "json_object"},
        temperature=0.7,
        max_tokens=2000,
    )
    text = _message_text(response)
    if not text:
        raise ValueError("No response from OpenAI")

    normalized = normalize_summary(json.loads(text))
    if normalized is None:
        raise ValueError("AI summary was missing required fields")
    return AISummary.model_validate(normalized), _usage(response, model)


async def generate_keyword_research(
    client: AsyncOpenAI,
    keywords: list[str],
    *,
    industry: str | None = None,
    country: str = "Norway",
) -> tuple[list[KeywordData], AIUsage]:
    if not keywords:
        return [], AIUsage(model=BASE_MODEL)

    system = (
        f"You are an SEO expert with deep knowledge of the search market and Google Ads data in {country}. "
        "Give realistic estimates for each keyword: searchVolume (monthly searches, 10-100000), cpc (average CPC in NOK), "
        'competition ("lav", "medium" or "høy"), competitionScore (0-100), intent ("informational", "commercial", '
        '"transactional" or "navigational"), difficulty (0-100) and trend ("stigende", "stabil" or "synkende"). '
        "Always answer with valid JSON."
    )
    numbered = "\n".join(f'{i}. "{k}"' for i, k in enumerate(keywords, start=1))
    scope = f" in the {industry} industry" if industry else ""
    prompt = (
        f"Analyze these keywords for the {country} market{scope}:\n\n{numbered}\n\n"
        'Return {"keywords": [{"keyword", "searchVolume", "cpc", "competition", "competitionScore", '
        '"intent", "difficulty", "trend"}]}'
    )

    response = await client.chat.completions.create(
        model=BASE_MODEL,
        messages=[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
        response_format={"type": "json_object"},
        temperature=0.5,
        max_tokens=1500,
    )
    text = _message_text(response)
    if not text:
        return [], _usage(response, BASE_MODEL)

    parsed = json.loads(text)
    items = parsed.get("keywords") if isinstance(parsed, dict) else None
    research = [KeywordData.model_validate(k) for k in map(normalize_keyword, items or []) if k]
    return research, _usage(response, BASE_MODEL)


def visibility_queries(domain: str, company_name: str | None, keywords: list[str]) -> list[str]:
    subject = company_name or domain
    queries = [
        f"What do you know about {subject}?",
        f"Can you recommend {company_name}?" if company_name else f"What does {domain} offer?",
    ]
    queries.extend(f"Which companies in Norway are best at {k}?" for k in keywords[:2])
    return queries


def classify_visibility_answer(answer: str, domain: str, company_name: str | None) -> tuple[bool, bool]:
    """Return (cited, mentioned) for one probe answer."""
    text = answer.lower()
    mentioned = domain.lower() in text or bool(company_name and company_name.lower() in text)
    knows_about = not any(p in text for p in _UNKNOWN_PHRASES)
    return mentioned and knows_about, mentioned or knows_about


def score_visibility(valid: list[VisibilityQuery]) -> AIVisibility:
    cited = sum(1 for r in valid if r.cited)
    mentioned = sum(1 for r in valid if r.mentioned)

    score = 0
    if valid:
        score = round_half_up((cited * 2 + mentioned) / (len(valid) * 3) * 100)

    if score >= 70:
        level, description = "high", "AI models know the business well and can recommend it to users."
    elif score >= 40:
        level, description = "medium", "AI models have some knowledge of the business, but visibility can improve."
    elif score > 0:
        level, description = "low", "AI models have limited knowledge of the business."
    else:
        level, description = "none", "AI models do not appear to know the business yet."

    recommendations = []
    if score < 70:
        recommendations.append("Publish content that answers common questions in your industry")
    if score < 50:
        recommendations.append("Grow your online presence through PR, articles and industry directories")
    if cited == 0:
        recommendations.append("Create authoritative content that establishes the business as an expert")
    if mentioned == 0:
        recommendations.append("Build brand awareness through social media and reviews")

    return AIVisibility(
        score=score,
        level=level,
        description=description,
        details=VisibilityDetails(
            queries_tested=len(valid),
            times_cited=cited,
            times_mentioned=mentioned,
            queries=valid,
        ),
        recommendations=recommendations,
    )


async def check_ai_visibility(
    client: AsyncOpenAI,
    domain: str,
    *,
    company_name: str | None = None,
    keywords: list[str] | None = None,
) -> tuple[AIVisibility, AIUsage]:
    queries = visibility_queries(domain, company_name, keywords or [])

    async def probe(query: str) -> tuple[VisibilityQuery, AIUsage] | None:
        try:
            response = await client.chat.completions.create(
                model=BASE_MODEL,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You are a helpful assistant. Answer from your own knowledge. If you know the business "
                            "or website, describe what you know. If you do not, say so honestly. Keep it to 2-3 sentences."
                        ),
                    },
                    {"role": "user", "content": query},
                ],
                max_tokens=200,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning("Visibility probe failed for %s: %s", domain, e)
            return None
        answer = _message_text(response)
        cited, mentioned = classify_visibility_answer(answer, domain, company_name)
        return VisibilityQuery(query=query, cited=cited, mentioned=mentioned, ai_response=answer), _usage(response, BASE_MODEL)

    outcomes = await asyncio.gather(*(probe(q) for q in queries))
    answered = [o for o in outcomes if o is not None]
    if not answered:
        raise RuntimeError(f"All {len(queries)} visibility probes failed for {domain}")

    usage = AIUsage(model=BASE_MODEL)
    for _, u in answered:
        usage.tokens_used += u.tokens_used
        usage.cost_usd += u.cost_usd

    return score_visibility([q for q, _ in answered]), usage
