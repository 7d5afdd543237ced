"""Research session lifecycle: pre-flight, plan, loop, validate, synthesize."""
from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from deep_research.agents.controller import IterationController, LoopOutcome
from deep_research.agents.planner import QueryPlanner, classify_query
from deep_research.agents.synthesizer import Synthesizer, build_synthesis_prompts
from deep_research.agents.validator import FindingsValidator, merge_validation, validation_notes
from deep_research.config import ResearchPolicy
from deep_research.exceptions import (
    InputValidationError,
    InsufficientCreditsError,
    PersistenceError,
    ProviderConfigurationError,
    ResearchCancelled,
    ResearchError,
    SynthesisError,
)
from deep_research.llm_client import GenerationClient, ProviderConfig, select_provider
from deep_research.models.events import Phase, ResearchEvent
from deep_research.models.research import ResearchInput, ResearchTask, utc_now_iso
from deep_research.research_core.interfaces import (
    DiscoveryCapability,
    GenerationCapability,
    ScrapeCapability,
    SearchCapability,
)
from deep_research.services import streaming
from deep_research.services.logger import log_event, log_research_step
from deep_research.services.progress import EventChannel
from deep_research.services.prompt_store import render_prompt
from deep_research.services.task_store import ResearchStore
from deep_research.services.validation import validate_research_input

T = TypeVar("T")

LIMITED_FINDINGS_CHARS = 100
ACCOUNT_UNVERIFIED = "Unable to verify account. Please try again."


class ResearchSession:
    """Handle for one running research task.

    ``events()`` drains the ordered event stream; ``cancel()`` signals the
    task and is a no-op once a terminal event has been emitted.
    """

    def __init__(self, request: ResearchInput, *, grace_s: float):
        self.request = request
        self.channel = EventChannel()
        self.cancel_event = asyncio.Event()
        self.task: Optional[ResearchTask] = None
        self._grace_s = grace_s
        self._runner: Optional[asyncio.Task] = None

    @property
    def task_id(self) -> Optional[str]:
        return self.task.id if self.task else None

    @property
    def done(self) -> bool:
        return self.channel.closed

    def cancel(self) -> bool:
        if self.channel.closed or self.cancel_event.is_set():
            return False
        self.cancel_event.set()
        log_event("research_cancel_requested", "Cancellation requested", task_id=self.task_id)
        return True

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ResearchCancelled()

    async def until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation wins (after the grace period)."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not work.done():
                await asyncio.wait({work}, timeout=self._grace_s)
                if not work.done():
                    raise ResearchCancelled()
            return work.result()
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()

    async def events(self) -> AsyncIterator[ResearchEvent]:
        try:
            async for event in self.channel:
                yield event
        finally:
            # consumer went away before the terminal event
            if not self.channel.closed:
                self.cancel()

    async def wait(self) -> None:
        if self._runner is not None:
            await self._runner


class ResearchOrchestrator:
    """Wires planner, iteration controller, validator and synthesizer."""

    def __init__(
        self,
        *,
        policy: ResearchPolicy,
        search: SearchCapability,
        scrape: ScrapeCapability,
        discovery: Optional[DiscoveryCapability],
        store: ResearchStore,
        provider_chain: Callable[[Optional[str]], list[ProviderConfig]],
        generator_factory: Callable[[ProviderConfig], GenerationCapability] = GenerationClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy
        self.search = search
        self.scrape = scrape
        self.discovery = discovery
        self.store = store
        self.provider_chain = provider_chain
        self.generator_factory = generator_factory
        self.clock = clock
        self.sleep = sleep

    def start(self, request: ResearchInput) -> ResearchSession:
        """Begin a session in the background and return its handle."""
        session = ResearchSession(request, grace_s=self.policy.cancel_grace_s)
        session._runner = asyncio.create_task(self._run(session))
        return session

    async def research(self, request: ResearchInput) -> AsyncIterator[ResearchEvent]:
        session = self.start(request)
        async for event in session.events():
            yield event
        await session.wait()

    # --- helpers ---

    async def _persist(self, session: ResearchSession, **fields: Any) -> None:
        if session.task is None:
            return
        try:
            await self.store.update_task(session.task.id, **fields)
        except PersistenceError as exc:
            logger.warning(f"Task audit update skipped for {session.task.id}: {exc}")

    def _transition(self, session: ResearchSession, phase: Phase) -> None:
        if session.task is not None:
            session.task.phase = phase
            log_research_step(session.task.id, phase.value, "entered")

    async def _fail(self, session: ResearchSession, error: str, **extra: Any) -> None:
        if session.channel.closed:
            return
        session.channel.emit(streaming.failed(error, **extra))
        if session.task is not None:
            session.task.phase = Phase.FAILED
            session.task.error_message = error
            session.task.completed_at = utc_now_iso()
            await self._persist(
                session,
                phase=Phase.FAILED.value,
                error_message=error,
                completed_at=session.task.completed_at,
            )
        log_event("research_failed", error, task_id=session.task_id, **extra)

    # --- pipeline ---

    async def _run(self, session: ResearchSession) -> None:
        try:
            await self._pipeline(session)
        except InputValidationError as exc:
            await self._fail(session, exc.message)
        except InsufficientCreditsError as exc:
            await self._fail(
                session,
                str(exc),
                insufficientCredits=True,
                currentBalance=exc.current_balance,
                requiredCredits=exc.required,
            )
        except ResearchCancelled as exc:
            await self._fail(session, str(exc), cancelled=True)
        except (ProviderConfigurationError, SynthesisError) as exc:
            await self._fail(session, str(exc))
        except PersistenceError as exc:
            logger.error(f"Research task persistence failed: {exc}")
            await self._fail(session, "Failed to create research task")
        except ResearchError as exc:
            await self._fail(session, str(exc))
        except Exception:
            logger.exception("Research pipeline crashed")
            await self._fail(session, "An unexpected error occurred")

    async def _pipeline(self, session: ResearchSession) -> None:
        started_at = self.clock()
        request = session.request
        channel = session.channel

        query = validate_research_input(
            request.query, request.conversation_id, user_id=request.user_id
        )

        # Selected once; fixed for the rest of the session.
        provider = select_provider(self.provider_chain(request.model))
        generator = self.generator_factory(provider)

        try:
            balance = await self.store.get_credit_balance(request.user_id)
        except PersistenceError as exc:
            logger.error(f"Credit balance lookup failed: {exc}")
            raise ResearchError(ACCOUNT_UNVERIFIED) from exc
        if balance is None:
            raise ResearchError(ACCOUNT_UNVERIFIED)
        if balance < self.policy.base_cost:
            raise InsufficientCreditsError(balance, self.policy.base_cost)

        query_type = classify_query(query)
        task_id = await self.store.create_task(
            user_id=request.user_id,
            query=query,
            conversation_id=request.conversation_id,
            phase=Phase.PLANNING.value,
        )
        session.task = ResearchTask(
            id=task_id,
            user_id=request.user_id,
            query=query,
            query_type=query_type,
            model_used=provider.model_id,
            conversation_id=request.conversation_id,
        )
        log_event(
            "research_started",
            "Research started",
            task_id=task_id,
            model=provider.model_id,
            query_type=query_type.value,
            query=query[:100],
        )

        # planning
        self._transition(session, Phase.PLANNING)
        channel.emit(streaming.planning("Analyzing your research request...", query_type.value))
        planner = QueryPlanner(generator, timeout=self.policy.generation_timeout_s)
        plan = await session.until_cancelled(planner.plan(query, query_type))
        session.task.plan = plan
        await self._persist(session, plan=plan.to_dict(), phase=Phase.SEARCHING.value)

        # search / browse rounds
        self._transition(session, Phase.SEARCHING)
        controller = IterationController(
            self.policy,
            self.search,
            self.scrape,
            self.discovery,
            emit=channel.emit,
            cancel_event=session.cancel_event,
            clock=self.clock,
            task_id=task_id,
        )
        outcome = await controller.run(query, plan, started_at=started_at)
        session.raise_if_cancelled()
        await self._validate_and_generate(session, query, outcome, generator, provider)

    async def _validate_and_generate(
        self,
        session: ResearchSession,
        query: str,
        outcome: LoopOutcome,
        generator: GenerationCapability,
        provider: ProviderConfig,
    ) -> None:
        task = session.task
        channel = session.channel
        sources = outcome.registry.snapshot()
        task.sources = sources
        source_dicts = [s.to_dict() for s in sources]

        try:
            await self.store.insert_sources(task.id, sources)
        except PersistenceError as exc:
            logger.warning(f"Source audit insert skipped for {task.id}: {exc}")
        await self._persist(session, sources=source_dicts, phase=Phase.VALIDATING.value)

        # validating
        self._transition(session, Phase.VALIDATING)
        channel.emit(
            streaming.validating(
                "Cross-referencing and verifying findings...",
                search_count=outcome.search_count,
                scrape_count=outcome.scrape_count,
                source_count=len(sources),
                confidence=outcome.confidence,
                iteration=outcome.iterations,
            )
        )
        findings = outcome.findings_text
        if len(findings) < LIMITED_FINDINGS_CHARS:
            findings = render_prompt("findings.limited_data", query=query)

        validator = FindingsValidator(
            generator,
            max_chars=self.policy.validator_findings_chars,
            timeout=self.policy.generation_timeout_s,
        )
        checked = await session.until_cancelled(validator.validate(query, findings, len(sources)))
        notes = validation_notes(checked, len(sources))
        assessment = merge_validation(outcome.validation, checked)
        log_research_step(
            task.id,
            "validation",
            "completed",
            {
                "confidence": round(assessment.confidence, 4),
                "gaps": assessment.gaps,
                "contradictions": assessment.contradictions,
                "llm_checked": checked is not None,
            },
        )

        # generating
        self._transition(session, Phase.GENERATING)
        channel.emit(streaming.generating("Synthesizing research findings..."))
        await self._persist(session, phase=Phase.GENERATING.value)

        system, user = build_synthesis_prompts(
            query=query,
            query_type=task.query_type.value,
            expected_format=task.plan.expected_output_format if task.plan else "report",
            findings=findings,
            sources=sources,
            notes=notes,
            domain=session.request.domain,
        )
        synthesizer = Synthesizer(
            generator,
            chunk_size=self.policy.fallback_chunk_size,
            chunk_delay=self.policy.fallback_chunk_delay_s,
            timeout=self.policy.generation_timeout_s,
            guard=session.until_cancelled,
            sleep=self.sleep,
        )
        async for delta in synthesizer.stream(system, user):
            session.raise_if_cancelled()
            channel.emit(streaming.content(delta))
        session.raise_if_cancelled()

        task.final_answer = synthesizer.final_text
        task.credits_used = min(outcome.credits_spent, self.policy.max_credits)
        task.completed_at = utc_now_iso()

        # the only write to the external credit ledger
        try:
            await self.store.deduct_credits(
                task.user_id,
                task.credits_used,
                f"Deep Research - {task.query_type.value} "
                f"({outcome.search_count} searches, {outcome.scrape_count} scrapes)",
            )
        except PersistenceError as exc:
            logger.error(f"Credit deduction failed for task {task.id}: {exc}")

        task.phase = Phase.COMPLETED
        await self._persist(
            session,
            phase=Phase.COMPLETED.value,
            final_answer=task.final_answer,
            credits_used=task.credits_used,
            completed_at=task.completed_at,
        )
        channel.emit(
            streaming.completed(
                task_id=task.id,
                sources=source_dicts,
                credits_used=task.credits_used,
                query_type=task.query_type.value,
                model_used=provider.model_id,
                search_count=outcome.search_count,
                scrape_count=outcome.scrape_count,
                final_answer=task.final_answer,
                confidence=assessment.confidence,
                iterations=outcome.iterations,
                stop_reason=outcome.stop_reason.value,
            )
        )
        log_event(
            "research_completed",
            "Research completed",
            task_id=task.id,
            sources=len(sources),
            credits=task.credits_used,
            iterations=outcome.iterations,
            stop_reason=outcome.stop_reason.value,
        )
