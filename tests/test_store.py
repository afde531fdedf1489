from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from sitepulse_agent.errors import PersistenceError
from sitepulse_agent.store import SupabaseStore


def test_not_configured_returns_none():
    assert SupabaseStore.from_settings(None, "key") is None
    assert SupabaseStore.from_settings("https://x.supabase.co", None) is None


def test_insert_and_usage():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.return_value = SimpleNamespace(data=[{"id": 7}])
    store = SupabaseStore(client)

    assert store.insert_analysis({"website_url": "https://example.no"}) == "7"
    client.table.assert_called_with("analyses")

    store.increment_api_usage("user-1", "2026-03-10", 1500, 0.00045)
    client.rpc.assert_called_once_with(
        "increment_api_usage",
        {"p_user_id": "user-1", "p_date": "2026-03-10", "p_tokens": 1500, "p_cost": 0.00045},
    )


def test_insert_without_returned_row_fails():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.return_value = SimpleNamespace(data=[])
    with pytest.raises(PersistenceError):
        SupabaseStore(client).insert_analysis({})


def test_write_failures_are_persistence_errors():
    client = MagicMock()
    client.rpc.side_effect = RuntimeError("connection reset")
    with pytest.raises(PersistenceError):
        SupabaseStore(client).increment_api_usage("user-1", "2026-03-10", 0, 0.0)


def test_get_user():
    client = MagicMock()
    client.auth.get_user.return_value = SimpleNamespace(user=SimpleNamespace(id="user-1", email="kari@example.no"))
    assert SupabaseStore(client).get_user("jwt") == {"id": "user-1", "email": "kari@example.no"}

    client.auth.get_user.side_effect = RuntimeError("invalid JWT")
    assert SupabaseStore(client).get_user("jwt") is None


def test_count_analyses_since():
    client = MagicMock()
    query = client.table.return_value.select.return_value.eq.return_value.gte.return_value
    query.execute.return_value = SimpleNamespace(data=[{"id": 1}, {"id": 2}])
    since = datetime(2026, 3, 1, tzinfo=timezone.utc)

    assert SupabaseStore(client).count_analyses_since("user-1", since) == 2
    client.table.return_value.select.return_value.eq.return_value.gte.assert_called_with(
        "created_at", since.isoformat()
    )
