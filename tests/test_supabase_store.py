from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from deep_research.exceptions import PersistenceError
from deep_research.models.research import Source, SourceType
from deep_research.services.supabase import SupabaseResearchStore


class TestSupabaseResearchStore:
    @pytest.mark.asyncio
    async def test_credit_balance(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = SimpleNamespace(data=[{"credit_balance": 42}])

        balance = await SupabaseResearchStore(client).get_credit_balance("user-1")

        assert balance == 42
        client.table.assert_called_with("users")
        client.table.return_value.select.return_value.eq.assert_called_with("user_id", "user-1")

    @pytest.mark.asyncio
    async def test_missing_user_has_no_balance(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = SimpleNamespace(data=[])

        assert await SupabaseResearchStore(client).get_credit_balance("ghost") is None

    @pytest.mark.asyncio
    async def test_create_task_returns_row_id(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value = SimpleNamespace(
            data=[{"id": "task-123"}]
        )

        task_id = await SupabaseResearchStore(client).create_task(
            user_id="user-1", query="linen", conversation_id=None, phase="planning"
        )

        assert task_id == "task-123"
        inserted = client.table.return_value.insert.call_args.args[0]
        assert inserted == {"user_id": "user-1", "conversation_id": None, "query": "linen", "phase": "planning"}

    @pytest.mark.asyncio
    async def test_insert_sources_maps_discovery_to_crawl(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.return_value = SimpleNamespace(data=[])
        sources = [
            Source(url="https://gots.org", title="GOTS", snippet="s", type=SourceType.DISCOVERY, relevance=0.85),
            Source(url="https://wwd.com", title="WWD", snippet="", type=SourceType.SCRAPE, relevance=0.9),
        ]

        await SupabaseResearchStore(client).insert_sources("task-1", sources)

        rows = client.table.return_value.insert.call_args.args[0]
        assert [r["source_type"] for r in rows] == ["crawl", "scrape"]
        assert rows[0]["relevance_score"] == 0.85
        assert rows[0]["task_id"] == "task-1"

    @pytest.mark.asyncio
    async def test_deduct_credits_calls_rpc(self):
        client = MagicMock()

        await SupabaseResearchStore(client).deduct_credits("user-1", 30, "Deep Research - supplier")

        client.rpc.assert_called_once_with(
            "deduct_credits",
            {"p_user_id": "user-1", "p_amount": 30, "p_description": "Deep Research - supplier"},
        )

    @pytest.mark.asyncio
    async def test_failures_raise_persistence_error(self):
        client = MagicMock()
        client.table.return_value.update.return_value.eq.return_value.execute.side_effect = RuntimeError("rls")

        with pytest.raises(PersistenceError) as exc_info:
            await SupabaseResearchStore(client).update_task("task-1", phase="searching")

        assert exc_info.value.table == "research_tasks"
