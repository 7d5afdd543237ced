from __future__ import annotations

from typing import Any, Optional

import httpx

from deep_research.exceptions import CapabilityError
from deep_research.research_core.interfaces import Recency, SearchResponse
from deep_research.services.prompt_store import render_prompt
from deep_research.tools.http import build_async_client


class PerplexitySearch:
    """Search-and-summarize capability backed by Perplexity chat completions."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.perplexity.ai",
        model: str = "sonar-pro",
        timeout: float = 120.0,
        max_tokens: int = 1500,
    ):
        self.api_key = api_key
        self.endpoint = base_url.rstrip("/") + "/chat/completions"
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def search(
        self,
        query: str,
        *,
        recency: Optional[Recency] = None,
        limit: Optional[int] = None,
    ) -> SearchResponse:
        if not self.api_key:
            raise CapabilityError("search", "PERPLEXITY_API_KEY is not configured")

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": render_prompt("search.system")},
                {"role": "user", "content": query},
            ],
            "max_tokens": self.max_tokens,
        }
        if recency:
            payload["search_recency_filter"] = recency

        try:
            async with build_async_client(self.timeout) as client:
                response = await client.post(
                    self.endpoint,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
                if response.status_code == 429:
                    raise CapabilityError("search", "Search rate limit reached")
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise CapabilityError("search", f"Search failed: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise CapabilityError("search", f"Search failed: {exc}") from exc
        except ValueError as exc:
            raise CapabilityError("search", "Malformed search response") from exc

        if not isinstance(data, dict):
            raise CapabilityError("search", "Malformed search response")

        choices = data.get("choices") or []
        content = ""
        if choices and isinstance(choices[0], dict):
            content = str((choices[0].get("message") or {}).get("content") or "")

        citations = [c for c in (data.get("citations") or []) if isinstance(c, str) and c]
        if limit is not None:
            citations = citations[:limit]
        return SearchResponse(content=content, citations=citations)
