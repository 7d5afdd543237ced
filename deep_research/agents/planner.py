from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from deep_research.exceptions import CapabilityError, PlanningError
from deep_research.models.research import PlannerOutput, QueryType, ResearchPlan, SearchQuery
from deep_research.research_core.interfaces import GenerationCapability
from deep_research.services.prompt_store import render_prompt
from deep_research.tools.web_utils import ensure_scheme, has_valid_host

MIN_PLANNED_QUERIES = 8
MAX_PLANNED_QUERIES = 12

_QUERY_TYPE_PATTERNS: list[tuple[QueryType, re.Pattern[str]]] = [
    (QueryType.SUPPLIER, re.compile(r"supplier|manufacturer|vendor|factory|sourcing|moq|producer|wholesale", re.I)),
    (QueryType.TREND, re.compile(r"trend|fashion week|runway|seasonal|forecast|style|color palette", re.I)),
    (QueryType.MARKET, re.compile(r"market|competition|pricing|revenue|growth|industry analysis|market size", re.I)),
    (
        QueryType.SUSTAINABILITY,
        re.compile(r"sustainable|eco|organic|recycled|certification|gots|oeko-tex|ethical|carbon", re.I),
    ),
]


def classify_query(query: str) -> QueryType:
    """Coarse keyword classification; first matching family wins."""
    for query_type, pattern in _QUERY_TYPE_PATTERNS:
        if pattern.search(query):
            return query_type
    return QueryType.GENERAL


def _template_rows(query_type: QueryType) -> list[tuple[str, str, int]]:
    year = datetime.now(timezone.utc).year
    if query_type is QueryType.SUPPLIER:
        return [
            ("{q} manufacturers suppliers", "Find relevant suppliers", 1),
            ("{q} MOQ pricing wholesale", "Get pricing and MOQ details", 1),
            ("{q} top factories list", "Identify leading producers", 2),
            ("{q} certifications compliance", "Check supplier certifications", 2),
            ("{q} sourcing directory", "Find supplier directories", 2),
            ("{q} lead times production capacity", "Assess production capacity", 3),
            ("{q} supplier reviews reliability", "Evaluate supplier reliability", 3),
            ("{q} industry news", "Recent supplier developments", 4),
        ]
    if query_type is QueryType.TREND:
        return [
            (f"{{q}} fashion trends {year} {year + 1}", "Current trend analysis", 1),
            ("{q} fashion week runway", "Runway validation", 1),
            ("{q} seasonal forecast", "Forward-looking forecasts", 2),
            ("{q} color palette materials", "Colors and materials", 2),
            ("{q} designer collections", "Designer adoption", 2),
            ("{q} consumer adoption retail", "Retail uptake", 3),
            ("{q} street style influence", "Street-level signals", 3),
            ("{q} trend longevity analysis", "Trend durability", 4),
        ]
    if query_type is QueryType.MARKET:
        return [
            ("{q} market analysis size growth", "Market overview", 1),
            ("{q} competition brands pricing", "Competitive landscape", 1),
            ("{q} market share leaders", "Leading players", 2),
            ("{q} revenue statistics", "Financial data", 2),
            ("{q} consumer demand drivers", "Demand drivers", 2),
            ("{q} regional markets", "Regional breakdown", 3),
            ("{q} industry report forecast", "Forecasts", 3),
            ("{q} risks challenges", "Market risks", 4),
        ]
    if query_type is QueryType.SUSTAINABILITY:
        return [
            ("{q} sustainable certifications GOTS OEKO-TEX", "Certification research", 1),
            ("{q} eco-friendly materials suppliers", "Sustainable options", 1),
            ("{q} carbon footprint lifecycle", "Environmental impact", 2),
            ("{q} recycled materials innovation", "Material innovation", 2),
            ("{q} supply chain transparency", "Traceability", 2),
            ("{q} regulations compliance EU", "Regulatory context", 3),
            ("{q} brand sustainability commitments", "Brand commitments", 3),
            ("{q} greenwashing criticism", "Counter-evidence", 4),
        ]
    return [
        ("{q}", "General research", 1),
        ("{q} overview", "Background and context", 1),
        ("{q} key players", "Main actors", 2),
        ("{q} latest news", "Recent developments", 2),
        ("{q} statistics data", "Quantitative evidence", 2),
        ("{q} expert analysis", "Expert perspectives", 3),
        ("{q} challenges", "Open problems", 3),
        ("{q} future outlook", "Outlook", 4),
    ]


_TEMPLATE_CANDIDATES: dict[QueryType, list[str]] = {
    QueryType.SUPPLIER: ["https://www.fibre2fashion.com", "https://www.textileexchange.org"],
    QueryType.TREND: ["https://www.voguebusiness.com", "https://wwd.com"],
    QueryType.MARKET: ["https://www.businessoffashion.com", "https://www.voguebusiness.com"],
    QueryType.SUSTAINABILITY: ["https://global-standard.org", "https://www.oeko-tex.com"],
    QueryType.GENERAL: ["https://www.businessoffashion.com"],
}

_TEMPLATE_FORMATS = {QueryType.SUPPLIER: "table"}


def fallback_plan(query_type: QueryType, query: str) -> ResearchPlan:
    """Deterministic plan used whenever the LLM plan is unusable."""
    queries = [
        SearchQuery(text=text.format(q=query).strip(), purpose=purpose, priority=priority)
        for text, purpose, priority in _template_rows(query_type)
    ]
    return ResearchPlan(
        query_type=query_type,
        queries=queries,
        candidate_urls=list(_TEMPLATE_CANDIDATES.get(query_type, [])),
        reasoning=f"Built-in {query_type.value} research template",
        expected_output_format=_TEMPLATE_FORMATS.get(query_type, "report"),
        from_template=True,
    )


class QueryPlanner:
    """Turns a query into 8-12 prioritized parallel sub-queries."""

    def __init__(
        self,
        generator: Optional[GenerationCapability],
        *,
        timeout: float = 60.0,
        min_queries: int = MIN_PLANNED_QUERIES,
        max_queries: int = MAX_PLANNED_QUERIES,
    ):
        self.generator = generator
        self.timeout = timeout
        self.min_queries = min_queries
        self.max_queries = max_queries

    async def plan(self, query: str, query_type: QueryType) -> ResearchPlan:
        if self.generator is None:
            return fallback_plan(query_type, query)

        system = render_prompt(
            "planner.system", min_queries=self.min_queries, max_queries=self.max_queries
        )
        user = render_prompt("planner.user", query=query, query_type=query_type.value)
        try:
            raw = await asyncio.wait_for(
                self.generator.complete(system, user, json_mode=True, caller="planner"),
                timeout=self.timeout,
            )
            return self.decode(raw, query, query_type)
        except (CapabilityError, PlanningError, asyncio.TimeoutError) as exc:
            logger.warning(f"Planner fell back to {query_type.value} template: {exc}")
            return fallback_plan(query_type, query)

    def decode(self, raw: str, query: str, query_type: QueryType) -> ResearchPlan:
        """Strictly decode the planner JSON or raise PlanningError."""
        try:
            output = PlannerOutput.model_validate_json(raw or "")
        except ValidationError as exc:
            raise PlanningError(f"Malformed plan: {exc.error_count()} errors") from exc

        template = fallback_plan(query_type, query)
        queries: list[SearchQuery] = []
        seen: set[str] = set()
        planned = sorted(output.search_queries, key=lambda q: q.priority)
        for item in planned:
            text = item.query.strip()
            if text.lower() in seen:
                continue
            seen.add(text.lower())
            queries.append(SearchQuery(text=text, purpose=item.purpose, priority=item.priority))

        for extra in template.queries:
            if len(queries) >= self.min_queries:
                break
            if extra.text.lower() not in seen:
                seen.add(extra.text.lower())
                queries.append(extra)

        candidates = [
            ensure_scheme(url) for url in output.scrape_targets if has_valid_host(ensure_scheme(url))
        ]
        return ResearchPlan(
            query_type=query_type,
            queries=queries[: self.max_queries],
            candidate_urls=candidates or template.candidate_urls,
            reasoning=output.reasoning,
            expected_output_format=output.expected_output_format,
        )
