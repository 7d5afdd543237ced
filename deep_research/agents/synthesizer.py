from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from loguru import logger

from deep_research.exceptions import CapabilityError, SynthesisError
from deep_research.models.research import Source
from deep_research.research_core.interfaces import GenerationCapability
from deep_research.services.prompt_store import domain_prompt, render_prompt


def format_source_list(sources: list[Source]) -> str:
    return "\n".join(f"[{i}] {s.title}: {s.url}" for i, s in enumerate(sources, start=1))


def build_synthesis_prompts(
    *,
    query: str,
    query_type: str,
    expected_format: str,
    findings: str,
    sources: list[Source],
    notes: list[str],
    domain: str = "all",
) -> tuple[str, str]:
    system = render_prompt("synthesizer.system") + domain_prompt(domain)
    user = render_prompt(
        "synthesizer.user",
        query=query,
        query_type=query_type,
        expected_format=expected_format or "report",
        findings=findings,
        sources=format_source_list(sources) or render_prompt("synthesizer.no_sources"),
        validation_notes="\n".join(notes) or render_prompt("synthesizer.no_notes"),
    )
    return system, user


class Synthesizer:
    """Streams the final answer, falling back to one non-streaming call.

    Each delta must arrive within ``timeout`` seconds; a stalled or failed
    stream triggers the fallback. The fallback result is re-chunked into
    fixed-size slices with a short delay so consumers always see
    incremental delivery. Every generation await goes through ``guard``,
    which lets the session abandon it on cancellation.
    """

    def __init__(
        self,
        generator: GenerationCapability,
        *,
        chunk_size: int = 50,
        chunk_delay: float = 0.015,
        timeout: float = 60.0,
        guard: Optional[Callable[[Awaitable[Any]], Awaitable[Any]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.generator = generator
        self.chunk_size = max(chunk_size, 1)
        self.chunk_delay = chunk_delay
        self.timeout = timeout
        self._guard = guard or _passthrough
        self._sleep = sleep
        self._final_text = ""
        self.used_fallback = False

    @property
    def final_text(self) -> str:
        return self._final_text

    async def stream(self, system: str, user: str) -> AsyncIterator[str]:
        produced: list[str] = []
        stream_error: Optional[Exception] = None
        deltas = self.generator.stream(system, user, caller="synthesizer").__aiter__()
        try:
            while True:
                delta = await self._guard(
                    asyncio.wait_for(_next_delta(deltas), timeout=self.timeout)
                )
                if delta is _END:
                    break
                if not delta:
                    continue
                produced.append(delta)
                yield delta
        except asyncio.TimeoutError:
            stream_error = CapabilityError("generation", f"stream stalled for {self.timeout}s")
        except CapabilityError as exc:
            stream_error = exc

        if produced and stream_error is None:
            self._final_text = "".join(produced)
            return

        reason = f"stream failed: {stream_error}" if stream_error else "stream returned no content"
        logger.warning(f"Synthesizer falling back to non-streaming generation ({reason})")
        self.used_fallback = True
        try:
            text = await self._guard(
                asyncio.wait_for(
                    self.generator.complete(system, user, caller="synthesizer_fallback"),
                    timeout=self.timeout,
                )
            )
        except asyncio.TimeoutError as exc:
            raise SynthesisError(f"Generation failed: timed out after {self.timeout}s") from exc
        except CapabilityError as exc:
            raise SynthesisError(f"Generation failed: {exc}") from exc
        if not text:
            raise SynthesisError("Generation returned no content")

        self._final_text = text
        for offset in range(0, len(text), self.chunk_size):
            yield text[offset: offset + self.chunk_size]
            await self._sleep(self.chunk_delay)


_END = object()


async def _next_delta(deltas: AsyncIterator[str]) -> Any:
    try:
        return await deltas.__anext__()
    except StopAsyncIteration:
        return _END


async def _passthrough(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
