from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from deep_research.models.events import Phase


class QueryType(str, Enum):
    SUPPLIER = "supplier"
    TREND = "trend"
    MARKET = "market"
    SUSTAINABILITY = "sustainability"
    GENERAL = "general"


class SourceType(str, Enum):
    SEARCH = "search"
    DISCOVERY = "discovery"
    SCRAPE = "scrape"

    @property
    def rank(self) -> int:
        return _SOURCE_TYPE_RANK[self]


_SOURCE_TYPE_RANK = {
    SourceType.SEARCH: 0,
    SourceType.DISCOVERY: 1,
    SourceType.SCRAPE: 2,
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class SearchQuery:
    text: str
    purpose: str
    priority: int = 2


@dataclass(slots=True)
class Source:
    url: str
    title: str
    snippet: str
    type: SourceType
    relevance: float
    first_seen_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "snippet": self.snippet,
            "type": self.type.value,
            "relevance": round(self.relevance, 4),
            "firstSeenAt": self.first_seen_at,
        }


@dataclass(slots=True)
class ResearchPlan:
    query_type: QueryType
    queries: list[SearchQuery]
    candidate_urls: list[str] = field(default_factory=list)
    reasoning: str = ""
    expected_output_format: str = "report"
    from_template: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_type": self.query_type.value,
            "reasoning": self.reasoning,
            "expected_output_format": self.expected_output_format,
            "from_template": self.from_template,
            "queries": [
                {"text": q.text, "purpose": q.purpose, "priority": q.priority}
                for q in self.queries
            ],
            "candidate_urls": list(self.candidate_urls),
        }


@dataclass(slots=True)
class ValidationResult:
    confidence: float
    gaps: list[str] = field(default_factory=list)
    contradictions: list[str] = field(default_factory=list)
    needs_more_research: bool = True


@dataclass(slots=True)
class ResearchTask:
    """Audit record owned by the orchestrator for one session."""

    id: str
    user_id: str
    query: str
    query_type: QueryType = QueryType.GENERAL
    phase: Phase = Phase.PLANNING
    plan: Optional[ResearchPlan] = None
    sources: list[Source] = field(default_factory=list)
    final_answer: str = ""
    credits_used: int = 0
    model_used: str = ""
    conversation_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(slots=True)
class ResearchInput:
    """Pre-flight checked input for one research session."""

    user_id: str
    query: str
    conversation_id: Optional[str] = None
    model: Optional[str] = None
    domain: str = "all"


# --- LLM response contracts (strict decode, fail closed) ---


class PlannedQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = Field(min_length=2)
    purpose: str = "Research"
    priority: int = Field(default=2, ge=1, le=4)


class PlannerOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query_type: QueryType = QueryType.GENERAL
    reasoning: str = ""
    search_queries: list[PlannedQuery] = Field(min_length=1)
    scrape_targets: list[str] = []
    expected_output_format: Literal["table", "report", "list", "comparison"] = "report"


class ValidatorOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    verified: bool = False
    issues: list[str] = []
    gaps: list[str] = []
    contradictions: list[str] = []
    confidence_score: float = Field(ge=0.0, le=1.0)
    notes: str = ""
