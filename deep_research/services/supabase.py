from __future__ import annotations

import asyncio
from typing import Any, Optional

from supabase import Client, ClientOptions, create_client

from deep_research.config import settings
from deep_research.exceptions import PersistenceError
from deep_research.models.research import Source, SourceType
from deep_research.services.logger import log_db_operation
from deep_research.tools.http import sanitize_ssl_keylogfile

# research_sources.source_type only knows search/scrape/crawl.
_DB_SOURCE_TYPES = {
    SourceType.SEARCH: "search",
    SourceType.DISCOVERY: "crawl",
    SourceType.SCRAPE: "scrape",
}


def get_client(access_token: str | None = None) -> Client:
    """Create a Supabase client, scoped to the caller's JWT when given."""
    sanitize_ssl_keylogfile()
    if access_token:
        options = ClientOptions(headers={"Authorization": f"Bearer {access_token}"})
        return create_client(settings.supabase_url, settings.supabase_anon_key, options)
    return create_client(settings.supabase_url, settings.supabase_anon_key)


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


async def get_user_id(client: Client, access_token: str) -> Optional[str]:
    """Resolve the authenticated user id for a bearer token."""
    response = await asyncio.to_thread(client.auth.get_user, access_token)
    user = getattr(response, "user", None)
    return getattr(user, "id", None) if user else None


class SupabaseResearchStore:
    """ResearchStore backed by the users / research_tasks / research_sources tables."""

    def __init__(self, client: Client):
        self._client = client

    async def get_credit_balance(self, user_id: str) -> Optional[int]:
        try:
            result = await _execute(
                self._client.table("users").select("credit_balance").eq("user_id", user_id).limit(1)
            )
        except Exception as exc:
            log_db_operation("select", "users", "failed", error=str(exc))
            raise PersistenceError("select", "users", str(exc)) from exc
        rows = result.data or []
        if not rows:
            return None
        return int(rows[0].get("credit_balance") or 0)

    async def create_task(
        self,
        *,
        user_id: str,
        query: str,
        conversation_id: Optional[str],
        phase: str,
    ) -> str:
        data = {
            "user_id": user_id,
            "conversation_id": conversation_id,
            "query": query,
            "phase": phase,
        }
        try:
            result = await _execute(self._client.table("research_tasks").insert(data))
        except Exception as exc:
            log_db_operation("insert", "research_tasks", "failed", error=str(exc))
            raise PersistenceError("insert", "research_tasks", str(exc)) from exc
        if not result.data:
            raise PersistenceError("insert", "research_tasks", "no row returned")
        task_id = str(result.data[0]["id"])
        log_db_operation("insert", "research_tasks", "success", details=task_id)
        return task_id

    async def update_task(self, task_id: str, **fields: Any) -> None:
        try:
            await _execute(self._client.table("research_tasks").update(fields).eq("id", task_id))
        except Exception as exc:
            log_db_operation("update", "research_tasks", "failed", details=task_id, error=str(exc))
            raise PersistenceError("update", "research_tasks", str(exc)) from exc
        log_db_operation("update", "research_tasks", "success", details=f"{task_id}: {sorted(fields)}")

    async def insert_sources(self, task_id: str, sources: list[Source]) -> None:
        if not sources:
            return
        rows = [
            {
                "task_id": task_id,
                "url": s.url,
                "title": s.title,
                "snippet": s.snippet,
                "source_type": _DB_SOURCE_TYPES[s.type],
                "relevance_score": s.relevance,
            }
            for s in sources
        ]
        try:
            await _execute(self._client.table("research_sources").insert(rows))
        except Exception as exc:
            log_db_operation("insert", "research_sources", "failed", details=task_id, error=str(exc))
            raise PersistenceError("insert", "research_sources", str(exc)) from exc
        log_db_operation("insert", "research_sources", "success", details=f"{task_id}: {len(rows)} rows")

    async def deduct_credits(self, user_id: str, amount: int, description: str) -> None:
        try:
            await _execute(
                self._client.rpc(
                    "deduct_credits",
                    {"p_user_id": user_id, "p_amount": amount, "p_description": description},
                )
            )
        except Exception as exc:
            log_db_operation("rpc", "deduct_credits", "failed", details=user_id, error=str(exc))
            raise PersistenceError("rpc", "deduct_credits", str(exc)) from exc
        log_db_operation("rpc", "deduct_credits", "success", details=f"{user_id}: {amount}")
