from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from deep_research.agents.orchestrator import ResearchOrchestrator
from deep_research.config import ResearchPolicy, settings
from deep_research.llm_client import provider_chain, supported_models
from deep_research.services import supabase as db
from deep_research.services.logger import log_security_event
from deep_research.services.task_store import ResearchStore
from deep_research.tools.firecrawl import FirecrawlClient
from deep_research.tools.perplexity_search import PerplexitySearch


@dataclass(slots=True)
class AuthenticatedUser:
    user_id: str
    access_token: str


def get_available_models() -> list[dict[str, str]]:
    """Return the generation models a research request may select."""
    return [
        {
            "id": m.model_id,
            "name": m.name,
            "description": m.description,
            "provider": m.provider,
        }
        for m in supported_models(settings)
    ]


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="No authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token.strip()


async def get_current_user(authorization: Optional[str] = Header(default=None)) -> AuthenticatedUser:
    token = _bearer_token(authorization)
    try:
        user_id = await db.get_user_id(db.get_client(token), token)
    except Exception as exc:
        log_security_event("auth_failed", reason=type(exc).__name__)
        raise HTTPException(status_code=401, detail="Unauthorized") from exc
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return AuthenticatedUser(user_id=user_id, access_token=token)


def get_research_store(user: AuthenticatedUser = Depends(get_current_user)) -> ResearchStore:
    return db.SupabaseResearchStore(db.get_client(user.access_token))


def build_orchestrator(store: ResearchStore, policy: Optional[ResearchPolicy] = None) -> ResearchOrchestrator:
    """Assemble an orchestrator from settings; capability clients are stateless."""
    policy = policy or ResearchPolicy.from_settings(settings)
    firecrawl = FirecrawlClient(
        settings.firecrawl_api_key,
        base_url=settings.firecrawl_base_url,
        scrape_timeout=policy.scrape_timeout_s,
        discovery_timeout=policy.discovery_timeout_s,
    )
    return ResearchOrchestrator(
        policy=policy,
        search=PerplexitySearch(
            settings.perplexity_api_key,
            base_url=settings.perplexity_base_url,
            model=settings.perplexity_model,
            timeout=policy.search_timeout_s,
        ),
        scrape=firecrawl,
        discovery=firecrawl,
        store=store,
        provider_chain=lambda model: provider_chain(settings, model),
    )


def get_orchestrator(store: ResearchStore = Depends(get_research_store)) -> ResearchOrchestrator:
    return build_orchestrator(store)
