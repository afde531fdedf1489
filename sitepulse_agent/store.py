from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from supabase import Client, create_client

from .errors import PersistenceError

logger = logging.getLogger(__name__)

ANALYSES = "analyses"
PROFILES = "user_profiles"

CACHE_COLUMNS = "id, website_url, created_at, security_results, ai_visibility, competitor_results"


class SupabaseStore:
    """Blocking Supabase access; callers run these methods in a worker thread."""

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, url: str | None, key: str | None) -> "SupabaseStore | None":
        if not url or not key:
            logger.warning("SUPABASE_URL/SUPABASE_KEY not set; analyses will not be persisted")
            return None
        return cls(create_client(url, key))

    # Auth / subscription

    def get_user(self, jwt: str) -> dict[str, Any] | None:
        try:
            resp = self.client.auth.get_user(jwt)
        except Exception as e:
            logger.info("Rejected access token: %s", e)
            return None
        user = getattr(resp, "user", None)
        if user is None:
            return None
        return {"id": user.id, "email": getattr(user, "email", None)}

    def get_subscription(self, user_id: str) -> dict[str, Any] | None:
        try:
            resp = (
                self.client.table(PROFILES)
                .select("is_premium, premium_expires_at, monthly_analysis_limit")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning("Subscription lookup failed for %s: %s", user_id, e)
            return None
        return resp.data[0] if resp.data else None

    # Analyses

    def count_analyses_since(self, user_id: str, since: datetime) -> int:
        try:
            resp = (
                self.client.table(ANALYSES)
                .select("id")
                .eq("user_id", user_id)
                .gte("created_at", since.isoformat())
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not check monthly usage: {e}") from e
        return len(resp.data or [])

    def recent_analyses(self, user_id: str, since: datetime, limit: int) -> list[dict[str, Any]]:
        resp = (
            self.client.table(ANALYSES)
            .select(CACHE_COLUMNS)
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return list(resp.data or [])

    def insert_analysis(self, row: dict[str, Any]) -> str:
        try:
            resp = self.client.table(ANALYSES).insert(row).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save analysis: {e}") from e
        if not resp.data:
            raise PersistenceError("Failed to save analysis: no row returned")
        return str(resp.data[0]["id"])

    def increment_api_usage(self, user_id: str, date: str, tokens: int, cost: float) -> None:
        try:
            self.client.rpc(
                "increment_api_usage",
                {"p_user_id": user_id, "p_date": date, "p_tokens": tokens, "p_cost": cost},
            ).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to record API usage: {e}") from e

    def get_analysis(self, analysis_id: str, user_id: str, columns: str = "*") -> dict[str, Any] | None:
        try:
            resp = (
                self.client.table(ANALYSES)
                .select(columns)
                .eq("id", analysis_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to load analysis: {e}") from e
        return resp.data[0] if resp.data else None

    def update_analysis(self, analysis_id: str, user_id: str, fields: dict[str, Any]) -> None:
        try:
            self.client.table(ANALYSES).update(fields).eq("id", analysis_id).eq("user_id", user_id).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to update analysis: {e}") from e
