from __future__ import annotations

import asyncio
import json

import pytest

from deep_research.agents.planner import QueryPlanner, classify_query, fallback_plan
from deep_research.exceptions import PlanningError
from deep_research.models.research import QueryType

from fakes import FakeGenerator


def _plan_json(count: int, **extra) -> str:
    payload = {
        "query_type": "general",
        "reasoning": "Cover suppliers then certifications",
        "search_queries": [
            {"query": f"organic cotton query {i}", "purpose": f"angle {i}", "priority": 4 - (i % 4)}
            for i in range(count)
        ],
        "scrape_targets": ["https://www.textileexchange.org/report", "not a url", "gots.org"],
        "expected_output_format": "table",
    }
    payload.update(extra)
    return json.dumps(payload)


class TestClassifyQuery:
    @pytest.mark.parametrize(
        "query, expected",
        [
            ("organic cotton suppliers in Portugal", QueryType.SUPPLIER),
            ("SS25 runway trends", QueryType.TREND),
            ("denim market size in Europe", QueryType.MARKET),
            ("GOTS certified fabrics", QueryType.SUSTAINABILITY),
            ("history of the little black dress", QueryType.GENERAL),
        ],
    )
    def test_keyword_families(self, query, expected):
        assert classify_query(query) is expected

    def test_first_family_wins(self):
        # "manufacturer" (supplier) beats "sustainable" (sustainability)
        assert classify_query("sustainable denim manufacturer") is QueryType.SUPPLIER


class TestFallbackPlan:
    @pytest.mark.parametrize("query_type", list(QueryType))
    def test_template_has_eight_prioritized_queries(self, query_type):
        plan = fallback_plan(query_type, "linen shirts")

        assert plan.from_template is True
        assert len(plan.queries) == 8
        assert all(1 <= q.priority <= 4 for q in plan.queries)
        assert all("linen shirts" in q.text for q in plan.queries)
        assert plan.candidate_urls

    def test_supplier_template_prefers_table(self):
        assert fallback_plan(QueryType.SUPPLIER, "x").expected_output_format == "table"
        assert fallback_plan(QueryType.MARKET, "x").expected_output_format == "report"


class TestDecode:
    def test_sorts_by_priority_and_keeps_valid_candidates(self):
        planner = QueryPlanner(None)
        plan = planner.decode(_plan_json(10), "organic cotton", QueryType.SUSTAINABILITY)

        priorities = [q.priority for q in plan.queries]
        assert priorities == sorted(priorities)
        assert len(plan.queries) == 10
        assert plan.candidate_urls == ["https://www.textileexchange.org/report", "https://gots.org"]
        assert plan.expected_output_format == "table"
        assert plan.from_template is False

    def test_short_plan_is_topped_up_to_eight(self):
        planner = QueryPlanner(None)
        plan = planner.decode(_plan_json(3), "organic cotton", QueryType.SUPPLIER)

        assert len(plan.queries) == 8
        assert sum("organic cotton query" in q.text for q in plan.queries) == 3

    def test_long_plan_is_capped_at_twelve(self):
        planner = QueryPlanner(None)
        plan = planner.decode(_plan_json(20), "organic cotton", QueryType.SUPPLIER)

        assert len(plan.queries) == 12

    def test_classifier_type_is_authoritative(self):
        planner = QueryPlanner(None)
        plan = planner.decode(_plan_json(8, query_type="trend"), "organic cotton", QueryType.SUPPLIER)

        assert plan.query_type is QueryType.SUPPLIER

    def test_duplicate_queries_are_dropped(self):
        raw = json.dumps(
            {
                "search_queries": [
                    {"query": "Cotton mills", "purpose": "a", "priority": 1},
                    {"query": "cotton mills", "purpose": "b", "priority": 2},
                ]
            }
        )
        plan = QueryPlanner(None).decode(raw, "cotton", QueryType.GENERAL)

        assert [q.text.lower() for q in plan.queries].count("cotton mills") == 1

    @pytest.mark.parametrize(
        "raw",
        [
            "not json at all",
            json.dumps({"reasoning": "missing queries"}),
            json.dumps({"search_queries": []}),
            json.dumps({"search_queries": [{"query": "x", "priority": 9}]}),
        ],
    )
    def test_malformed_output_raises(self, raw):
        with pytest.raises(PlanningError):
            QueryPlanner(None).decode(raw, "cotton", QueryType.GENERAL)


class TestPlan:
    @pytest.mark.asyncio
    async def test_uses_llm_plan(self):
        generator = FakeGenerator(plan=_plan_json(9))
        plan = await QueryPlanner(generator).plan("organic cotton", QueryType.SUSTAINABILITY)

        assert plan.from_template is False
        assert len(plan.queries) == 9
        assert generator.calls == ["planner"]

    @pytest.mark.asyncio
    async def test_malformed_llm_output_falls_back_to_template(self):
        generator = FakeGenerator(plan="{ nope")
        plan = await QueryPlanner(generator).plan("organic cotton", QueryType.SUPPLIER)

        assert plan.from_template is True
        assert plan == fallback_plan(QueryType.SUPPLIER, "organic cotton")

    @pytest.mark.asyncio
    async def test_generation_failure_falls_back(self):
        plan = await QueryPlanner(FakeGenerator(plan=None)).plan("cotton", QueryType.MARKET)
        assert plan.from_template is True

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        class SlowGenerator(FakeGenerator):
            async def complete(self, system, user, **kwargs):
                await asyncio.sleep(1)
                return _plan_json(8)

        plan = await QueryPlanner(SlowGenerator(), timeout=0.01).plan("cotton", QueryType.TREND)
        assert plan.from_template is True

    @pytest.mark.asyncio
    async def test_no_generator_uses_template(self):
        plan = await QueryPlanner(None).plan("cotton", QueryType.GENERAL)
        assert plan.from_template is True
