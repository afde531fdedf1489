from __future__ import annotations

from typing import Any


class AnalysisError(Exception):
    """Base error surfaced to the caller as ``{"error": ..., "code": ...}``."""

    code = "ANALYSIS_FAILED"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AnalysisError):
    code = "VALIDATION_ERROR"
    status_code = 400


class QuotaExceededError(AnalysisError):
    code = "QUOTA_EXCEEDED"
    status_code = 429


class UnauthorizedError(AnalysisError):
    code = "UNAUTHORIZED"
    status_code = 401


class NotFoundError(AnalysisError):
    code = "NOT_FOUND"
    status_code = 404


class ScrapeError(AnalysisError):
    """Raised when the target URL cannot be scraped."""

    code = "SCRAPE_FAILED"
    status_code = 502


class DeadlineExceededError(AnalysisError):
    code = "DEADLINE_EXCEEDED"
    status_code = 504


class PersistenceError(AnalysisError):
    code = "PERSISTENCE_FAILED"
    status_code = 500


class AIUnavailableError(AnalysisError):
    code = "AI_UNAVAILABLE"
    status_code = 503
