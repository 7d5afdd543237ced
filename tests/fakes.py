"""Scripted capability fakes shared by the research pipeline tests."""
from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Optional

from deep_research.agents.orchestrator import ResearchOrchestrator
from deep_research.config import ResearchPolicy
from deep_research.exceptions import CapabilityError
from deep_research.llm_client import ProviderConfig
from deep_research.models.events import Phase, ResearchEvent
from deep_research.research_core.interfaces import DiscoveryResult, ScrapeResult, SearchResponse
from deep_research.services.task_store import InMemoryResearchStore


def make_policy(**overrides) -> ResearchPolicy:
    values = {
        "search_timeout_s": 1.0,
        "scrape_timeout_s": 1.0,
        "discovery_timeout_s": 1.0,
        "generation_timeout_s": 1.0,
        "cancel_grace_s": 0.05,
        "fallback_chunk_delay_s": 0.0,
    }
    values.update(overrides)
    return ResearchPolicy(**values)


def make_provider(model_id: str = "grok-4-latest", api_key: str = "test-key") -> ProviderConfig:
    return ProviderConfig(
        model_id=model_id,
        name=model_id,
        description="test provider",
        provider="grok",
        model=model_id,
        base_url="https://api.example.test/v1",
        api_key=api_key,
    )


class _Tracked:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.delay:
            await asyncio.sleep(self.delay)

    def _exit(self) -> None:
        self.in_flight -= 1


class FakeSearch(_Tracked):
    def __init__(
        self,
        respond: Optional[Callable[[str], SearchResponse]] = None,
        *,
        fail: bool = False,
        delay: float = 0.0,
    ):
        super().__init__(delay)
        self.respond = respond or (lambda q: SearchResponse(content=f"Findings about {q}. " * 20))
        self.fail = fail
        self.calls: list[str] = []

    async def search(self, query, *, recency=None, limit=None) -> SearchResponse:
        self.calls.append(query)
        try:
            await self._enter()
            if self.fail:
                raise CapabilityError("search", "Search failed: 503")
            return self.respond(query)
        finally:
            self._exit()


class FakeScrape(_Tracked):
    def __init__(
        self,
        respond: Optional[Callable[[str], ScrapeResult]] = None,
        *,
        fail: bool = False,
        fail_urls: Iterable[str] = (),
        delay: float = 0.0,
    ):
        super().__init__(delay)
        self.respond = respond or (
            lambda url: ScrapeResult(url=url, content="Scraped page body. " * 120, title=f"Page {url}")
        )
        self.fail = fail
        self.fail_urls = set(fail_urls)
        self.calls: list[str] = []

    async def scrape(self, url: str) -> ScrapeResult:
        self.calls.append(url)
        try:
            await self._enter()
            if self.fail or url in self.fail_urls:
                raise CapabilityError("scrape", "Scrape failed: 500")
            return self.respond(url)
        finally:
            self._exit()


class FakeDiscovery:
    def __init__(self, results: Optional[list[DiscoveryResult]] = None):
        self.results = results or []
        self.calls: list[str] = []

    async def discover(self, query: str, limit: int) -> list[DiscoveryResult]:
        self.calls.append(query)
        return self.results[:limit]


class FakeGenerator:
    """Scripted generation capability keyed by caller name."""

    model_name = "grok-4-latest"

    def __init__(
        self,
        *,
        plan: Optional[str] = None,
        validation: Optional[str] = None,
        answer_chunks: Iterable[str] = ("Portugal has ", "several GOTS-certified ", "organic cotton mills."),
        stream_error: Optional[Exception] = None,
        fallback_text: str = "Fallback answer text",
        complete_error: Optional[Exception] = None,
        stream_stall: float = 0.0,
        complete_delay: float = 0.0,
    ):
        self.plan = plan
        self.validation = validation
        self.answer_chunks = list(answer_chunks)
        self.stream_error = stream_error
        self.fallback_text = fallback_text
        self.complete_error = complete_error
        self.stream_stall = stream_stall
        self.complete_delay = complete_delay
        self.calls: list[str] = []
        self.prompts: list[tuple[str, str]] = []

    async def complete(self, system, user, *, json_mode=False, caller="generation") -> str:
        self.calls.append(caller)
        self.prompts.append((system, user))
        if caller == "planner":
            if self.plan is None:
                raise CapabilityError("generation", "planner unavailable")
            return self.plan
        if caller == "validator":
            if self.validation is None:
                raise CapabilityError("generation", "validator unavailable")
            return self.validation
        if self.complete_delay:
            await asyncio.sleep(self.complete_delay)
        if self.complete_error is not None:
            raise self.complete_error
        return self.fallback_text

    async def stream(self, system, user, *, caller="synthesizer"):
        self.calls.append(caller)
        self.prompts.append((system, user))
        for chunk in self.answer_chunks:
            yield chunk
        if self.stream_stall:
            await asyncio.sleep(self.stream_stall)
        if self.stream_error is not None:
            raise self.stream_error


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


async def _no_sleep(_: float) -> None:
    return None


def build_orchestrator(
    *,
    policy: Optional[ResearchPolicy] = None,
    search=None,
    scrape=None,
    discovery=None,
    store: Optional[InMemoryResearchStore] = None,
    generator: Optional[FakeGenerator] = None,
    providers: Optional[list[ProviderConfig]] = None,
    clock=None,
) -> ResearchOrchestrator:
    generator = generator or FakeGenerator()
    chain = providers if providers is not None else [make_provider()]
    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    return ResearchOrchestrator(
        policy=policy or make_policy(),
        search=search or FakeSearch(),
        scrape=scrape or FakeScrape(),
        discovery=discovery,
        store=store or InMemoryResearchStore(),
        provider_chain=lambda model: list(chain),
        generator_factory=lambda provider: generator,
        sleep=_no_sleep,
        **kwargs,
    )


def phase_sequence(events: list[ResearchEvent]) -> list[str]:
    """Collapse an event log to its phase transitions (content excluded)."""
    phases: list[str] = []
    for event in events:
        if event.is_content:
            continue
        if not phases or phases[-1] != event.phase.value:
            phases.append(event.phase.value)
    return phases


def terminal(events: list[ResearchEvent]) -> ResearchEvent:
    finals = [e for e in events if e.phase in (Phase.COMPLETED, Phase.FAILED)]
    assert len(finals) == 1, f"expected exactly one terminal event, got {len(finals)}"
    assert events[-1] is finals[0]
    return finals[0]
