"""
Per-domain reuse of security and AI-visibility facets from the requester's
recent analyses.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from .models import AIVisibility, SecurityResults
from .urls import domain_of

logger = logging.getLogger(__name__)

CACHE_WINDOW = timedelta(hours=24)
CACHE_SCAN_LIMIT = 20


@dataclass
class CachedFacets:
    security: SecurityResults | None = None
    ai_visibility: dict[str, AIVisibility] = field(default_factory=dict)

    def visibility_for(self, url: str) -> AIVisibility | None:
        try:
            return self.ai_visibility.get(domain_of(url))
        except ValueError:
            return None


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value.strip():
        try:
            ts = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _validated(model, value: Any):
    if not value:
        return None
    try:
        return model.model_validate(value)
    except PydanticValidationError:
        return None


def find_cached_facets(
    rows: Iterable[Mapping[str, Any]],
    target_domain: str,
    now: datetime,
    *,
    window: timedelta = CACHE_WINDOW,
    limit: int = CACHE_SCAN_LIMIT,
) -> CachedFacets:
    """Pick reusable facets from stored analyses.

    ``rows`` are analysis records (``website_url``, ``created_at``,
    ``security_results``, ``ai_visibility``, ``competitor_results``). They
    are scanned most-recent-first, at most ``limit`` of them, and only those
    created within ``window`` of ``now`` (inclusive) count. The first match
    per domain wins.
    """
    cutoff = now - window
    found = CachedFacets()

    candidates = []
    for row in rows:
        observed_at = parse_timestamp(row.get("created_at"))
        if observed_at is None or observed_at < cutoff or observed_at > now:
            continue
        try:
            row_domain = domain_of(row.get("website_url") or "")
        except ValueError:
            continue
        candidates.append((observed_at, row_domain, row))

    candidates.sort(key=lambda c: c[0], reverse=True)

    for _, row_domain, row in candidates[:limit]:
        if found.security is None and row_domain == target_domain:
            found.security = _validated(SecurityResults, row.get("security_results"))

        visibility = _validated(AIVisibility, row.get("ai_visibility"))
        if visibility is not None:
            found.ai_visibility.setdefault(row_domain, visibility)

        for competitor in row.get("competitor_results") or []:
            if not isinstance(competitor, Mapping):
                continue
            try:
                comp_domain = domain_of(competitor.get("url") or "")
            except ValueError:
                continue
            nested = (competitor.get("results") or {}).get("aiVisibility")
            visibility = _validated(AIVisibility, nested)
            if visibility is not None:
                found.ai_visibility.setdefault(comp_domain, visibility)

    if found.security is not None:
        logger.info("Reusing cached security facet for %s", target_domain)
    if found.ai_visibility:
        logger.info("Cached AI visibility for %d domain(s)", len(found.ai_visibility))
    return found
