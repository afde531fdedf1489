from __future__ import annotations

import asyncio
from decimal import Decimal
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .models import (
    HeadingLevel,
    HeadingsAnalysis,
    HreflangTag,
    ImagesAnalysis,
    LinkGroup,
    LinksAnalysis,
    MetaTagsAnalysis,
    MobileAnalysis,
    OgTags,
    SEOResults,
    TechnicalSEOAnalysis,
    TextTag,
    TwitterTags,
)
from .scoring import round_half_up
from .scraper import fetch_robots_txt, fetch_sitemap


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _meta(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    return content if content else None


def _link_href(soup: BeautifulSoup, rel: str) -> str | None:
    for tag in soup.find_all("link", href=True):
        rels = tag.get("rel") or []
        if rel in [r.lower() for r in rels]:
            return tag["href"]
    return None


def analyze_meta_tags(soup: BeautifulSoup) -> MetaTagsAnalysis:
    title = soup.title.get_text(strip=True) if soup.title else ""
    description = _meta(soup, name="description")

    return MetaTagsAnalysis(
        title=TextTag(
            content=title or None,
            length=len(title),
            is_optimal=30 <= len(title) <= 60,
        ),
        description=TextTag(
            content=description,
            length=len(description or ""),
            is_optimal=bool(description) and 150 <= len(description) <= 160,
        ),
        og_tags=OgTags(
            title=_meta(soup, property="og:title"),
            description=_meta(soup, property="og:description"),
            image=_meta(soup, property="og:image"),
            url=_meta(soup, property="og:url"),
        ),
        twitter_tags=TwitterTags(
            card=_meta(soup, name="twitter:card"),
            title=_meta(soup, name="twitter:title"),
            description=_meta(soup, name="twitter:description"),
            image=_meta(soup, name="twitter:image"),
        ),
        canonical=_link_href(soup, "canonical"),
        robots=_meta(soup, name="robots"),
    )


def analyze_headings(soup: BeautifulSoup) -> HeadingsAnalysis:
    levels: dict[str, HeadingLevel] = {}
    for tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
        found = soup.find_all(tag)
        levels[tag] = HeadingLevel(
            count=len(found),
            contents=[el.get_text(strip=True) for el in found][:5],
        )

    issues: list[str] = []
    h1_count = levels["h1"].count
    if h1_count == 0:
        issues.append("Missing H1 tag")
    elif h1_count > 1:
        issues.append(f"Too many H1 tags ({h1_count}). There should be only one.")

    if levels["h2"].count == 0 and levels["h3"].count > 0:
        issues.append("H3 used without H2 (broken hierarchy)")

    return HeadingsAnalysis(
        **levels,
        has_proper_hierarchy=h1_count == 1 and not issues,
        issues=issues,
    )


def _resolve_src(src: str, page_url: str) -> str:
    if not src or src.startswith("data:"):
        return ""
    if src.startswith(("http://", "https://")):
        return src
    try:
        return urljoin(page_url, src)
    except ValueError:
        return ""


def _int_attr(value: str | None) -> int:
    try:
        return int(value or "0")
    except ValueError:
        return 0


def analyze_images(soup: BeautifulSoup, page_url: str) -> ImagesAnalysis:
    images = soup.find_all("img")
    total = len(images)

    with_alt = without_alt = with_lazy = 0
    missing_alt: list[str] = []
    large: list[str] = []
    all_urls: list[str] = []

    for img in images:
        alt = img.get("alt")
        loading = img.get("loading")
        src = _resolve_src(img.get("src") or img.get("data-src") or "", page_url)

        if src and len(all_urls) < 5:
            # Skip icons and tracking pixels.
            width = _int_attr(img.get("width"))
            height = _int_attr(img.get("height"))
            if not (0 < width < 50) and not (0 < height < 50):
                all_urls.append(src)

        if alt and alt.strip():
            with_alt += 1
        else:
            without_alt += 1
            if src and len(missing_alt) < 5:
                missing_alt.append(src)

        if loading == "lazy":
            with_lazy += 1

        if not loading and src and len(large) < 5:
            large.append(src)

    score = 100
    if total > 0:
        alt_ratio = with_alt / total
        # The first three images are expected to load eagerly.
        lazy_ratio = with_lazy / (total - 3) if total > 3 else 1
        score = round_half_up(alt_ratio * 70 + lazy_ratio * 30)

    return ImagesAnalysis(
        total=total,
        with_alt=with_alt,
        without_alt=without_alt,
        with_lazy_loading=with_lazy,
        large_images=large,
        missing_alt_images=missing_alt,
        all_image_urls=all_urls,
        score=min(100, score),
    )


def analyze_links(soup: BeautifulSoup, page_url: str) -> LinksAnalysis:
    page_host = urlparse(page_url).hostname
    internal: list[str] = []
    external: list[str] = []
    nofollow: list[str] = []

    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        try:
            absolute = urlparse(urljoin(page_url, href))
        except ValueError:
            continue

        if absolute.hostname == page_host:
            path = absolute.path or "/"
            if path not in internal and len(internal) < 50:
                internal.append(path)
        elif absolute.hostname:
            full = absolute.geturl()
            if full not in external and len(external) < 20:
                external.append(full)

        rel = [r.lower() for r in (a.get("rel") or [])]
        if "nofollow" in rel and len(nofollow) < 10:
            nofollow.append(href)

    return LinksAnalysis(
        internal=LinkGroup(count=len(internal), urls=internal[:10]),
        external=LinkGroup(count=len(external), urls=external[:10]),
        broken=LinkGroup(count=0, urls=[]),
        nofollow=LinkGroup(count=len(nofollow), urls=nofollow),
    )


def analyze_mobile(soup: BeautifulSoup) -> MobileAnalysis:
    viewport = soup.find("meta", attrs={"name": "viewport"})
    has_viewport = viewport is not None
    content = viewport.get("content") if viewport is not None else None

    issues: list[str] = []
    if not has_viewport:
        issues.append("Missing viewport meta tag")
    elif content and "width=device-width" not in content:
        issues.append("Viewport should include width=device-width")

    fixed_width = any(
        "width:" in (el.get("style") or "") and "px" in (el.get("style") or "")
        for el in soup.find_all(style=True)
    )
    if fixed_width:
        issues.append("Some elements use fixed pixel widths")

    return MobileAnalysis(
        has_viewport_meta=has_viewport,
        viewport_content=content,
        is_responsive=bool(has_viewport and content and "width=device-width" in content),
        issues=issues,
    )


def analyze_technical(
    soup: BeautifulSoup,
    url: str,
    *,
    has_robots_txt: bool,
    sitemap_url: str | None,
) -> TechnicalSEOAnalysis:
    hreflang: list[HreflangTag] = []
    for link in soup.find_all("link", hreflang=True, href=True):
        rels = [r.lower() for r in (link.get("rel") or [])]
        if "alternate" in rels:
            hreflang.append(HreflangTag(lang=link["hreflang"], url=link["href"]))

    return TechnicalSEOAnalysis(
        has_robots_txt=has_robots_txt,
        has_sitemap=sitemap_url is not None,
        sitemap_url=sitemap_url,
        has_https=url.startswith("https://"),
        has_hreflang=bool(hreflang),
        hreflang_tags=hreflang,
    )


# Scoring


def meta_score(meta: MetaTagsAnalysis) -> int:
    score = 0.0
    if meta.title.content:
        score += 25 if meta.title.is_optimal else 15
    if meta.description.content:
        score += 25 if meta.description.is_optimal else 15
    og_count = sum(1 for v in (meta.og_tags.title, meta.og_tags.description, meta.og_tags.image) if v)
    score += og_count / 3 * 25
    if meta.canonical:
        score += 15
    if meta.robots != "noindex":
        score += 10
    return round_half_up(score)


def headings_score(headings: HeadingsAnalysis) -> int:
    score = 100
    if headings.h1.count == 0:
        score -= 30
    elif headings.h1.count > 1:
        score -= 15
    if headings.h2.count == 0:
        score -= 10
    score -= len(headings.issues) * 10
    return max(0, score)


def links_score(links: LinksAnalysis) -> int:
    score = 100
    if links.internal.count == 0:
        score -= 20
    if links.internal.count < 3:
        score -= 10
    score -= links.broken.count * 10
    return max(0, score)


def mobile_score(mobile: MobileAnalysis) -> int:
    score = 100
    if not mobile.has_viewport_meta:
        score -= 40
    if not mobile.is_responsive:
        score -= 30
    score -= len(mobile.issues) * 10
    return max(0, score)


def technical_score(technical: TechnicalSEOAnalysis) -> int:
    score = 0
    if technical.has_https:
        score += 30
    if technical.has_robots_txt:
        score += 20
    if technical.has_sitemap:
        score += 25
    # Single-language sites do not need hreflang.
    score += 15 if technical.has_hreflang else 10
    return score


def build_seo_results(
    soup: BeautifulSoup,
    url: str,
    *,
    has_robots_txt: bool,
    sitemap_url: str | None,
) -> SEOResults:
    meta = analyze_meta_tags(soup)
    headings = analyze_headings(soup)
    images = analyze_images(soup, url)
    links = analyze_links(soup, url)
    mobile = analyze_mobile(soup)
    technical = analyze_technical(soup, url, has_robots_txt=has_robots_txt, sitemap_url=sitemap_url)

    scores = [
        meta_score(meta),
        headings_score(headings),
        images.score,
        links_score(links),
        mobile_score(mobile),
        technical_score(technical),
    ]
    return SEOResults(
        meta=meta,
        headings=headings,
        images=images,
        links=links,
        mobile=mobile,
        technical=technical,
        score=round_half_up(Decimal(sum(scores)) / len(scores)),
    )


async def analyze_seo(html: str, url: str) -> SEOResults:
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    robots, (_, sitemap_url) = await asyncio.gather(fetch_robots_txt(origin), fetch_sitemap(origin))
    return build_seo_results(parse_html(html), url, has_robots_txt=robots is not None, sitemap_url=sitemap_url)
