from __future__ import annotations

import asyncio
import logging
import re
import time
from urllib.parse import urljoin, urlparse

import httpx

from .config import SCRAPE_RETRY, RetryPolicy
from .errors import ScrapeError
from .models import ScrapedPage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
AUX_TIMEOUT_S = 10.0

_USER_AGENTS = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (compatible; SitePulseAgent/1.0)",
)
_AUX_USER_AGENT = "Mozilla/5.0 (compatible; SitePulseAgent/1.0)"

_SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemap/")
_SITEMAP_DIRECTIVE_RE = re.compile(r"Sitemap:\s*(\S+)", re.IGNORECASE)


def _browser_headers(user_agent: str) -> dict[str, str]:
    return {
        "user-agent": user_agent,
        "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "accept-language": "no,en;q=0.9",
    }


def _describe_failure(url: str, exc: Exception, timeout_s: float) -> str:
    hostname = urlparse(url).hostname or url
    if isinstance(exc, httpx.TimeoutException):
        return (
            f"Could not connect to {url}: the server did not respond within {timeout_s:g}s. "
            "Check that the URL is correct and the site is reachable."
        )
    if isinstance(exc, httpx.ConnectError):
        text = str(exc).lower()
        if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
            return f"The domain {hostname} does not exist. Check the spelling of the URL."
        if "certificate" in text or "ssl" in text:
            return f"The SSL certificate for {hostname} is invalid or expired."
        if "refused" in text:
            return f"The connection was refused by {hostname}."
        return f"Could not connect to {hostname}."
    if isinstance(exc, httpx.RemoteProtocolError):
        return f"The connection to {hostname} was interrupted. Please try again."
    return f"Failed to fetch {url}: {exc}"


async def scrape_url(
    url: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retry: RetryPolicy = SCRAPE_RETRY,
) -> ScrapedPage:
    """Fetch ``url`` following redirects; raises ScrapeError once ``retry`` is exhausted."""
    started = time.perf_counter()
    last_error: Exception | None = None

    for attempt in range(max(1, retry.max_attempts)):
        if attempt > 0:
            logger.info("Retry %d/%d for %s", attempt + 1, retry.max_attempts, url)
            await asyncio.sleep(retry.delay_before(attempt))

        user_agent = _USER_AGENTS[attempt % len(_USER_AGENTS)]
        try:
            async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
                res = await client.get(url, headers=_browser_headers(user_agent))
            load_time_ms = int((time.perf_counter() - started) * 1000)
            logger.info("Scraped %s -> %d in %dms", url, res.status_code, load_time_ms)
            return ScrapedPage(
                url=str(res.url),
                html=res.text,
                status_code=res.status_code,
                headers={k.lower(): v for k, v in res.headers.items()},
                load_time_ms=load_time_ms,
            )
        except httpx.HTTPError as e:
            last_error = e
            logger.warning("Scrape attempt %d for %s failed: %s", attempt + 1, url, e)

    raise ScrapeError(_describe_failure(url, last_error or RuntimeError("unknown error"), timeout_s))


async def fetch_robots_txt(base_url: str, *, timeout_s: float = AUX_TIMEOUT_S) -> str | None:
    try:
        async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
            res = await client.get(urljoin(base_url, "/robots.txt"), headers={"user-agent": _AUX_USER_AGENT})
        if 200 <= res.status_code < 400:
            return res.text
        return None
    except httpx.HTTPError:
        return None


async def fetch_sitemap(base_url: str, *, timeout_s: float = AUX_TIMEOUT_S) -> tuple[bool, str | None]:
    """Probe well-known sitemap locations, then the robots.txt Sitemap directive."""
    async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
        for path in _SITEMAP_PATHS:
            url = urljoin(base_url, path)
            try:
                res = await client.get(url, headers={"user-agent": _AUX_USER_AGENT})
            except httpx.HTTPError:
                continue
            if 200 <= res.status_code < 400:
                return True, url

    robots = await fetch_robots_txt(base_url, timeout_s=timeout_s)
    if robots:
        m = _SITEMAP_DIRECTIVE_RE.search(robots)
        if m:
            return True, m.group(1).strip()
    return False, None
