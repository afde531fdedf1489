from __future__ import annotations

import logging
import re
from urllib.parse import urlparse, urlunparse

from .errors import ValidationError

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+.-]*://")


def normalize_url(raw: str | None) -> str:
    value = (raw or "").strip()
    if not value:
        raise ValidationError("URL is required", code="URL_REQUIRED")

    if not _SCHEME_RE.match(value):
        value = "https://" + value

    try:
        parsed = urlparse(value)
        hostname = parsed.hostname
    except ValueError:
        raise ValidationError("Invalid URL format", code="INVALID_URL")

    if parsed.scheme not in ("http", "https"):
        raise ValidationError("Please use an http(s) website URL.", code="INVALID_URL")
    if not hostname or "." not in hostname:
        raise ValidationError("Invalid URL format", code="INVALID_URL")

    return urlunparse(parsed._replace(fragment=""))


def domain_of(url: str) -> str:
    """Hostname of ``url`` without a leading ``www.``; raises ValueError when unparseable."""
    value = (url or "").strip()
    if not _SCHEME_RE.match(value):
        value = "https://" + value
    hostname = urlparse(value).hostname
    if not hostname:
        raise ValueError(f"No hostname in {url!r}")
    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def normalize_competitor_urls(raw_urls: list[str], limit: int) -> tuple[list[str], list[str]]:
    """Normalize competitor URLs, dropping invalid ones and truncating to ``limit``.

    Returns (valid_urls, warnings).
    """
    valid: list[str] = []
    warnings: list[str] = []
    for raw in raw_urls:
        try:
            url = normalize_url(raw)
        except ValidationError:
            logger.warning("Skipping invalid competitor URL: %s", raw)
            warnings.append(f"Competitor skipped (invalid URL): {raw}")
            continue
        if url not in valid:
            valid.append(url)

    if len(valid) > limit:
        logger.info("Truncating competitors from %d to %d", len(valid), limit)
        valid = valid[:limit]
    return valid, warnings
