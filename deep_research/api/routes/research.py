from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from deep_research.agents.orchestrator import ResearchOrchestrator
from deep_research.api.deps import AuthenticatedUser, get_current_user, get_orchestrator
from deep_research.models.events import DONE_MARKER
from deep_research.models.research import ResearchInput
from deep_research.models.schemas import ResearchRequest
from deep_research.services import logger as log_service

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("")
async def run_research(
    request: ResearchRequest,
    http_request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Run one research session and stream its events as SSE."""
    session = orchestrator.start(
        ResearchInput(
            user_id=user.user_id,
            query=request.query,
            conversation_id=request.conversation_id,
            model=request.model,
            domain=request.domain or "all",
        )
    )

    async def event_generator():
        try:
            async for event in session.events():
                if await http_request.is_disconnected():
                    log_service.log_event(
                        event_type="client_disconnected",
                        message="Client disconnected, cancelling research",
                        task_id=session.task_id,
                    )
                    session.cancel()
                yield {"data": event.to_json()}
            yield {"data": DONE_MARKER}
        finally:
            # no-op once the session reached its terminal event
            session.cancel()

    return EventSourceResponse(event_generator(), sep="\n")
