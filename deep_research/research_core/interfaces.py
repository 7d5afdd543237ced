from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Literal, Optional, Protocol

Recency = Literal["hour", "day", "week", "month", "year"]


@dataclass(slots=True)
class SearchResponse:
    content: str
    citations: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ScrapeResult:
    url: str
    content: str
    title: str


@dataclass(slots=True)
class DiscoveryResult:
    url: str
    title: str = ""
    description: str = ""


class SearchCapability(Protocol):
    async def search(
        self,
        query: str,
        *,
        recency: Optional[Recency] = None,
        limit: Optional[int] = None,
    ) -> SearchResponse: ...


class ScrapeCapability(Protocol):
    async def scrape(self, url: str) -> ScrapeResult: ...


class DiscoveryCapability(Protocol):
    async def discover(self, query: str, limit: int) -> list[DiscoveryResult]: ...


class GenerationCapability(Protocol):
    model_name: str

    async def complete(
        self, system: str, user: str, *, json_mode: bool = False, caller: str = "generation"
    ) -> str: ...

    def stream(self, system: str, user: str, *, caller: str = "synthesizer") -> AsyncIterator[str]: ...
