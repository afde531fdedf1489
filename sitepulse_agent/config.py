from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    return [v.strip() for v in raw.split(",") if v.strip()]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule: at most ``max_attempts`` tries, sleeping
    ``backoff_s[i]`` (last value repeated) before retry ``i + 1``."""

    max_attempts: int = 1
    backoff_s: tuple[float, ...] = ()

    def delay_before(self, attempt: int) -> float:
        if attempt <= 0 or not self.backoff_s:
            return 0.0
        return self.backoff_s[min(attempt - 1, len(self.backoff_s) - 1)]


SCRAPE_RETRY = RetryPolicy(max_attempts=2, backoff_s=(2.0,))


@dataclass(frozen=True)
class PremiumPolicy:
    premium_user_ids: frozenset[str] = frozenset()
    free_competitor_limit: int = 1
    premium_competitor_limit: int = 5
    free_monthly_limit: int = 2
    premium_monthly_limit: int = 999

    def is_premium(self, user_id: str | None, subscription: Mapping[str, Any] | None) -> bool:
        if not user_id:
            return False
        if user_id in self.premium_user_ids:
            return True
        if not subscription or not subscription.get("is_premium"):
            return False

        expires = subscription.get("premium_expires_at")
        if not expires:
            return True
        try:
            expires_at = datetime.fromisoformat(str(expires).replace("Z", "+00:00"))
        except ValueError:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > datetime.now(timezone.utc)

    def competitor_limit(self, premium: bool) -> int:
        return self.premium_competitor_limit if premium else self.free_competitor_limit

    def monthly_limit(self, premium: bool, subscription: Mapping[str, Any] | None) -> int:
        if premium:
            return self.premium_monthly_limit
        stored = (subscription or {}).get("monthly_analysis_limit")
        if isinstance(stored, int) and stored > 0:
            return stored
        return self.free_monthly_limit


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None = None
    supabase_key: str | None = None
    openai_api_key: str | None = None
    pagespeed_api_key: str | None = None

    request_deadline_s: float = 60.0
    persist_margin_s: float = 5.0
    pagespeed_timeout_s: float = 25.0
    followup_pagespeed_timeout_s: float = 55.0

    ai_visibility_enabled: bool = False
    report_language: str = "Norwegian"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    premium: PremiumPolicy = field(default_factory=PremiumPolicy)
    scrape_retry: RetryPolicy = SCRAPE_RETRY

    @property
    def analysis_budget_s(self) -> float:
        return max(1.0, self.request_deadline_s - self.persist_margin_s)

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key)


def load_settings() -> Settings:
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_key=os.getenv("SUPABASE_KEY") or None,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        pagespeed_api_key=os.getenv("GOOGLE_PAGESPEED_API_KEY") or None,
        request_deadline_s=float(os.getenv("SITEPULSE_REQUEST_DEADLINE_S", "60")),
        persist_margin_s=float(os.getenv("SITEPULSE_PERSIST_MARGIN_S", "5")),
        pagespeed_timeout_s=float(os.getenv("SITEPULSE_PAGESPEED_TIMEOUT_S", "25")),
        ai_visibility_enabled=_env_bool("SITEPULSE_AI_VISIBILITY_ENABLED", False),
        report_language=os.getenv("SITEPULSE_REPORT_LANGUAGE", "Norwegian"),
        cors_origins=_env_list("SITEPULSE_CORS_ORIGINS") or ["http://localhost:3000"],
        log_level=os.getenv("SITEPULSE_LOG_LEVEL", "INFO").upper(),
        premium=PremiumPolicy(
            premium_user_ids=frozenset(_env_list("SITEPULSE_PREMIUM_USER_IDS")),
            free_monthly_limit=max(0, int(os.getenv("SITEPULSE_FREE_MONTHLY_LIMIT", "2"))),
        ),
    )
