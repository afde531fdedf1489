from __future__ import annotations

from datetime import datetime, timezone

import pytest

from sitepulse_agent.analyzer import Caller
from sitepulse_agent.config import Settings

from fakes import FakeSources, FakeStore


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="sk-test", request_deadline_s=10.0, persist_margin_s=1.0)


@pytest.fixture
def sources() -> FakeSources:
    return FakeSources()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def user() -> Caller:
    return Caller(user_id="user-1")


@pytest.fixture
def premium_user() -> Caller:
    return Caller(user_id="user-1", is_premium=True)
