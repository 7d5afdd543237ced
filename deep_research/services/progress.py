"""Ordered, append-only event channel between a research task and its consumer."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from deep_research.exceptions import EventOrderError
from deep_research.models.events import Phase, ResearchEvent

_ALLOWED_NEXT: dict[Optional[Phase], frozenset[Phase]] = {
    None: frozenset({Phase.PLANNING}),
    Phase.PLANNING: frozenset({Phase.PLANNING, Phase.SEARCHING, Phase.BROWSING, Phase.VALIDATING}),
    Phase.SEARCHING: frozenset({Phase.SEARCHING, Phase.BROWSING, Phase.VALIDATING}),
    Phase.BROWSING: frozenset({Phase.SEARCHING, Phase.BROWSING, Phase.VALIDATING}),
    Phase.VALIDATING: frozenset({Phase.VALIDATING, Phase.GENERATING}),
    Phase.GENERATING: frozenset({Phase.GENERATING, Phase.COMPLETED}),
}


class EventChannel:
    """Single-producer event stream that enforces the phase sequence.

    planning, (searching|browsing)*, validating, generating, then exactly one
    of completed/failed. ``failed`` is accepted from any open state; content
    deltas only while ``generating`` is the current phase.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[ResearchEvent]] = asyncio.Queue()
        self._phase: Optional[Phase] = None
        self._closed = False

    @property
    def phase(self) -> Optional[Phase]:
        return self._phase

    @property
    def closed(self) -> bool:
        return self._closed

    def _check(self, event: ResearchEvent) -> None:
        if self._closed:
            raise EventOrderError(f"Channel closed; cannot emit '{event.phase.value}'")
        if event.phase is Phase.FAILED:
            return
        if event.is_content:
            if self._phase is not Phase.GENERATING:
                raise EventOrderError("Content events are only valid during 'generating'")
            return
        allowed = _ALLOWED_NEXT.get(self._phase, frozenset())
        if event.phase not in allowed:
            current = self._phase.value if self._phase else "start"
            raise EventOrderError(f"Invalid transition {current} -> {event.phase.value}")

    def emit(self, event: ResearchEvent) -> None:
        self._check(event)
        self._phase = event.phase
        self._queue.put_nowait(event)
        if event.is_terminal:
            self._closed = True
            self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[ResearchEvent]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    def __aiter__(self) -> AsyncIterator[ResearchEvent]:
        return self.stream()
