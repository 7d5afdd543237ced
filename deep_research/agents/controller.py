"""Search -> discover -> scrape -> score loop for one research task."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from deep_research.config import ResearchPolicy
from deep_research.exceptions import ResearchCancelled
from deep_research.models.events import ResearchEvent
from deep_research.models.research import ResearchPlan, SearchQuery, SourceType, ValidationResult
from deep_research.research_core.confidence import ConfidenceScorer, ResearchMetrics
from deep_research.research_core.interfaces import (
    DiscoveryCapability,
    DiscoveryResult,
    ScrapeCapability,
    ScrapeResult,
    SearchCapability,
    SearchResponse,
)
from deep_research.research_core.registry import SourceRegistry
from deep_research.services import streaming
from deep_research.services.logger import log_capability_drop, log_research_step

T = TypeVar("T")
R = TypeVar("R")

_ROUND_MODIFIERS: dict[int, list[str]] = {
    2: ["detailed analysis", "case studies", "expert insights"],
    3: ["latest news", "regional market", "emerging players"],
}
_ROTATING_MODIFIERS = [
    "statistics",
    "challenges",
    "outlook",
    "market data",
    "industry report",
    "best practices",
]
# appended once the rotating list has been used up
_CYCLE_QUALIFIERS = ["worldwide", "comparison", "forecast", "key suppliers"]


class StopReason(str, Enum):
    CONFIDENT = "confidence_reached"
    MAX_ITERATIONS = "max_iterations"
    BUDGET = "budget_exhausted"
    TIME_LIMIT = "time_limit"


def supplemental_queries(query: str, round_number: int, issued: set[str]) -> list[SearchQuery]:
    """Gap-filling queries for the given upcoming round, skipping issued text."""
    modifiers = _ROUND_MODIFIERS.get(round_number)
    if modifiers is None:
        size = len(_ROTATING_MODIFIERS)
        offset = max(round_number - 4, 0) * 3
        cycle, start = divmod(offset, size)
        modifiers = [_ROTATING_MODIFIERS[(start + i) % size] for i in range(3)]
        if cycle:
            qualifier = _CYCLE_QUALIFIERS[(cycle - 1) % len(_CYCLE_QUALIFIERS)]
            modifiers = [f"{m} {qualifier}" for m in modifiers]

    extra: list[SearchQuery] = []
    for modifier in modifiers:
        text = f"{query} {modifier}"
        if text.lower() in issued:
            continue
        extra.append(SearchQuery(text=text, purpose=f"Supplemental: {modifier}", priority=3))
    return extra


class BudgetTracker:
    """Running credit estimate; issuance is capped so spent never exceeds max."""

    def __init__(self, policy: ResearchPolicy):
        self.base = policy.base_cost
        self.per_search = policy.cost_per_search
        self.per_scrape = policy.cost_per_scrape
        self.max_credits = policy.max_credits
        self.searches = 0
        self.scrapes = 0

    @property
    def spent(self) -> int:
        return self.base + self.per_search * self.searches + self.per_scrape * self.scrapes

    @property
    def reported(self) -> int:
        return min(self.spent, self.max_credits)

    @property
    def remaining(self) -> int:
        return max(self.max_credits - self.spent, 0)

    def affordable(self, requested: int, unit_cost: int) -> int:
        if unit_cost <= 0:
            return requested
        return max(min(requested, self.remaining // unit_cost), 0)

    @property
    def exhausted(self) -> bool:
        if self.spent >= self.max_credits:
            return True
        costs = [c for c in (self.per_search, self.per_scrape) if c > 0]
        return bool(costs) and self.remaining < min(costs)

    def charge_search(self) -> None:
        self.searches += 1

    def charge_scrape(self) -> None:
        self.scrapes += 1


@dataclass
class LoopOutcome:
    registry: SourceRegistry
    findings: list[str]
    search_count: int
    scrape_count: int
    iterations: int
    credits_spent: int
    confidence: float
    validation: ValidationResult
    stop_reason: StopReason
    issued_queries: list[str] = field(default_factory=list)

    @property
    def findings_text(self) -> str:
        return "\n\n".join(self.findings)

    @property
    def content_length(self) -> int:
        return len(self.findings_text)


class IterationController:
    """Drives bounded research rounds until the stopping rule fires.

    The controller is the only writer of its registry and ledger; rounds run
    strictly one after another and all suspension happens inside capability
    calls.
    """

    def __init__(
        self,
        policy: ResearchPolicy,
        search: SearchCapability,
        scrape: ScrapeCapability,
        discovery: Optional[DiscoveryCapability] = None,
        *,
        emit: Callable[[ResearchEvent], None] = lambda event: None,
        cancel_event: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        task_id: str = "",
    ):
        self.policy = policy
        self.search = search
        self.scrape = scrape
        self.discovery = discovery
        self.emit = emit
        self.cancel_event = cancel_event or asyncio.Event()
        self.clock = clock
        self.task_id = task_id
        self.scorer = ConfidenceScorer(policy)
        self.registry = SourceRegistry()
        self.budget = BudgetTracker(policy)
        self.findings: list[str] = []
        self._pending: list[SearchQuery] = []
        self._issued: list[str] = []
        self._issued_keys: set[str] = set()
        self._candidate_urls: list[str] = []

    # --- helpers ---

    @property
    def content_length(self) -> int:
        return len("\n\n".join(self.findings))

    def metrics(self) -> ResearchMetrics:
        return ResearchMetrics(
            content_length=self.content_length,
            source_count=len(self.registry),
            scrape_count=self.registry.scrape_count,
            unique_domains=self.registry.unique_domains(),
        )

    def _counters(self, iteration: int, confidence: float) -> dict[str, Any]:
        return {
            "iteration": iteration,
            "search_count": self.budget.searches,
            "scrape_count": self.budget.scrapes,
            "source_count": len(self.registry),
            "confidence": confidence,
        }

    def _enqueue(self, queries: Sequence[SearchQuery]) -> None:
        queued = {q.text.lower() for q in self._pending}
        for q in queries:
            key = q.text.lower()
            if not q.text.strip() or key in self._issued_keys or key in queued:
                continue
            queued.add(key)
            self._pending.append(q)
        # stable: equal priorities keep planner order
        self._pending.sort(key=lambda q: q.priority)

    def _pop_queries(self, limit: int) -> list[SearchQuery]:
        batch, self._pending = self._pending[:limit], self._pending[limit:]
        for q in batch:
            self._issued.append(q.text)
            self._issued_keys.add(q.text.lower())
        return batch

    def _relevance(self, start: float, rank: int) -> float:
        return max(self.policy.relevance_floor, start - self.policy.relevance_decay * rank)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ResearchCancelled()

    async def _run_batch(
        self,
        kind: str,
        items: Sequence[T],
        call: Callable[[T], Awaitable[R]],
        timeout: float,
        label: Callable[[T], str],
    ) -> list[tuple[T, R]]:
        """Run calls in sub-batches of ``batch_concurrency``; drop failures.

        Each sub-batch settles completely before the next starts. A set
        cancel event stops scheduling, gives in-flight calls the grace
        period, then abandons them and raises ResearchCancelled.
        """
        successes: list[tuple[T, R]] = []
        size = self.policy.batch_concurrency
        for offset in range(0, len(items), size):
            self._check_cancelled()
            chunk = list(items[offset: offset + size])
            tasks = [
                asyncio.ensure_future(asyncio.wait_for(call(item), timeout=timeout))
                for item in chunk
            ]
            gathered = asyncio.gather(*tasks, return_exceptions=True)
            cancel_waiter = asyncio.ensure_future(self.cancel_event.wait())
            try:
                await asyncio.wait({gathered, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if not gathered.done():
                    await asyncio.wait({gathered}, timeout=self.policy.cancel_grace_s)
                    if not gathered.done():
                        log_research_step(self.task_id, kind, "abandoned", {"in_flight": len(chunk)})
                    raise ResearchCancelled()
            finally:
                cancel_waiter.cancel()
                for task in tasks:
                    if not task.done():
                        task.cancel()
                if not gathered.done():
                    await asyncio.wait(tasks)

            for item, result in zip(chunk, gathered.result()):
                if isinstance(result, BaseException):
                    reason = "timeout" if isinstance(result, asyncio.TimeoutError) else str(result) or type(result).__name__
                    log_capability_drop(kind, label(item), reason)
                    continue
                successes.append((item, result))
        return successes

    # --- round phases ---

    async def _search_phase(self, iteration: int, confidence: float) -> None:
        limit = self.budget.affordable(self.policy.searches_per_iteration, self.budget.per_search)
        batch = self._pop_queries(limit)
        self.emit(
            streaming.searching(
                f"Round {iteration}: searching {len(batch)} queries",
                **self._counters(iteration, confidence),
            )
        )
        if not batch:
            return

        async def _call(q: SearchQuery) -> SearchResponse:
            return await self.search.search(q.text)

        results = await self._run_batch(
            "search", batch, _call, self.policy.search_timeout_s, lambda q: q.text
        )
        for q, response in results:
            self.budget.charge_search()
            if response.content:
                self.findings.append(f"### Search: {q.text}\n{response.content}")
            for rank, url in enumerate(response.citations):
                self.registry.merge(
                    url,
                    snippet="",
                    source_type=SourceType.SEARCH,
                    relevance=self._relevance(self.policy.citation_relevance_start, rank),
                )

    async def _discovery_phase(self, iteration: int, query: str) -> None:
        if self.discovery is None or iteration > self.policy.discovery_rounds:
            return

        async def _call(q: str) -> list[DiscoveryResult]:
            return await self.discovery.discover(q, self.policy.discovery_limit)

        target = query if iteration == 1 or not self._issued else self._issued[-1]
        results = await self._run_batch(
            "discovery", [target], _call, self.policy.discovery_timeout_s, lambda q: q
        )
        for _, found in results:
            for rank, item in enumerate(found):
                self.registry.merge(
                    item.url,
                    title=item.title,
                    snippet=item.description[: self.policy.snippet_chars],
                    source_type=SourceType.DISCOVERY,
                    relevance=self._relevance(self.policy.discovery_relevance_start, rank),
                )

    def _select_scrape_targets(self) -> list[str]:
        limit = min(
            self.policy.max_scrape_per_round,
            self.budget.affordable(self.policy.max_scrape_per_round, self.budget.per_scrape),
        )
        targets: list[str] = []
        for source in self.registry.scrape_candidates(self.policy.scrape_eligibility):
            if len(targets) >= limit:
                return targets
            targets.append(source.url)
        for url in self._candidate_urls:
            if len(targets) >= limit:
                break
            if url not in targets and not self.registry.was_attempted(url):
                targets.append(url)
        return targets

    async def _scrape_phase(self, iteration: int, confidence: float) -> None:
        targets = self._select_scrape_targets()
        self.emit(
            streaming.browsing(
                f"Round {iteration}: browsing {len(targets)} sources",
                **self._counters(iteration, confidence),
            )
        )
        if not targets:
            return
        for url in targets:
            self.registry.mark_attempted(url)

        async def _call(url: str) -> ScrapeResult:
            return await self.scrape.scrape(url)

        results = await self._run_batch(
            "scrape", targets, _call, self.policy.scrape_timeout_s, lambda u: u
        )
        for url, page in results:
            if not page.content:
                log_capability_drop("scrape", url, "empty content")
                continue
            self.budget.charge_scrape()
            excerpt = page.content[: self.policy.scrape_excerpt_chars]
            title = page.title or url
            self.findings.append(f"### Scraped: {title}\n{excerpt}")
            self.registry.record_scrape(
                url,
                title=title,
                excerpt=excerpt[: self.policy.snippet_chars],
                relevance_floor=self.policy.scrape_relevance,
            )

    # --- loop ---

    def _stop_reason(self, iteration: int, sufficient: bool, started_at: float) -> Optional[StopReason]:
        if sufficient:
            return StopReason.CONFIDENT
        if iteration >= self.policy.max_search_iterations:
            return StopReason.MAX_ITERATIONS
        if self.budget.exhausted:
            return StopReason.BUDGET
        if self.clock() - started_at >= self.policy.max_execution_time_s:
            return StopReason.TIME_LIMIT
        return None

    async def run(
        self,
        query: str,
        plan: ResearchPlan,
        *,
        started_at: Optional[float] = None,
    ) -> LoopOutcome:
        started_at = self.clock() if started_at is None else started_at
        self._enqueue(plan.queries)
        self._candidate_urls = list(plan.candidate_urls)

        iteration = 0
        confidence = 0.0
        validation = self.scorer.assess(self.metrics())
        stop_reason: Optional[StopReason] = None

        while stop_reason is None:
            if self.clock() - started_at >= self.policy.max_execution_time_s:
                stop_reason = StopReason.TIME_LIMIT
                break
            if self.budget.exhausted:
                stop_reason = StopReason.BUDGET
                break
            self._check_cancelled()

            iteration += 1
            await self._search_phase(iteration, confidence)
            self._check_cancelled()
            await self._discovery_phase(iteration, query)
            await self._scrape_phase(iteration, confidence)

            metrics = self.metrics()
            validation = self.scorer.assess(metrics)
            confidence = validation.confidence
            log_research_step(
                self.task_id,
                "round",
                "completed",
                {
                    "iteration": iteration,
                    "confidence": round(confidence, 4),
                    "sources": metrics.source_count,
                    "scrapes": metrics.scrape_count,
                    "content_length": metrics.content_length,
                    "credits": self.budget.spent,
                },
            )

            stop_reason = self._stop_reason(iteration, not validation.needs_more_research, started_at)
            if stop_reason is None and len(self._pending) < self.policy.supplemental_queue_floor:
                self._enqueue(supplemental_queries(query, iteration + 1, self._issued_keys))

        log_research_step(
            self.task_id,
            "loop",
            "stopped",
            {"reason": stop_reason.value, "iterations": iteration},
        )
        return LoopOutcome(
            registry=self.registry,
            findings=list(self.findings),
            search_count=self.budget.searches,
            scrape_count=self.budget.scrapes,
            iterations=iteration,
            credits_spent=self.budget.reported,
            confidence=confidence,
            validation=validation,
            stop_reason=stop_reason,
            issued_queries=list(self._issued),
        )
