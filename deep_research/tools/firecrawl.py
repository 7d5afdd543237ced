from __future__ import annotations

from typing import Any

import httpx

from deep_research.exceptions import CapabilityError, InvalidURLError
from deep_research.research_core.interfaces import DiscoveryResult, ScrapeResult
from deep_research.tools.http import build_async_client
from deep_research.tools.web_utils import ensure_scheme, has_valid_host


class FirecrawlClient:
    """Scrape (URL -> markdown) and discovery (query -> URLs) via Firecrawl."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.firecrawl.dev",
        scrape_timeout: float = 60.0,
        discovery_timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.scrape_timeout = scrape_timeout
        self.discovery_timeout = discovery_timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, capability: str, path: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        if not self.api_key:
            raise CapabilityError(capability, "FIRECRAWL_API_KEY is not configured")
        try:
            async with build_async_client(timeout) as client:
                response = await client.post(
                    self.base_url + path,
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise CapabilityError(
                capability, f"{capability.capitalize()} failed: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise CapabilityError(capability, f"{capability.capitalize()} failed: {exc}") from exc
        except ValueError as exc:
            raise CapabilityError(capability, "Malformed response") from exc
        if not isinstance(data, dict):
            raise CapabilityError(capability, "Malformed response")
        return data

    async def scrape(self, url: str) -> ScrapeResult:
        formatted = ensure_scheme(url)
        # Reject before spending a network call.
        if not has_valid_host(formatted):
            raise InvalidURLError(url)

        data = await self._post(
            "scrape",
            "/v1/scrape",
            {"url": formatted, "formats": ["markdown"], "onlyMainContent": True},
            self.scrape_timeout,
        )
        body = data.get("data") if isinstance(data.get("data"), dict) else data
        content = str(body.get("markdown") or "")
        metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
        title = str(metadata.get("title") or url)
        if not content.strip():
            raise CapabilityError("scrape", "Empty scrape content")
        return ScrapeResult(url=url, content=content, title=title)

    async def discover(self, query: str, limit: int) -> list[DiscoveryResult]:
        data = await self._post(
            "discovery",
            "/v1/search",
            {"query": query, "limit": limit},
            self.discovery_timeout,
        )
        raw = data.get("data") or []
        if not isinstance(raw, list):
            raise CapabilityError("discovery", "Malformed response")

        results: list[DiscoveryResult] = []
        for item in raw[:limit]:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            results.append(
                DiscoveryResult(
                    url=str(item["url"]),
                    title=str(item.get("title") or ""),
                    description=str(item.get("description") or ""),
                )
            )
        return results
