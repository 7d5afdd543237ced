from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Generation providers (selected once per session, see llm_client)
    grok_api_key: str = Field(default="", validation_alias=AliasChoices("grok_api_key", "grok_api"))
    grok_base_url: str = "https://api.x.ai/v1"
    lovable_api_key: str = ""
    lovable_base_url: str = "https://ai.gateway.lovable.dev/v1"
    default_model: str = "grok-4-latest"
    generation_temperature: float = 0.2

    # Search capability (Perplexity)
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar-pro"

    # Scrape / discovery capability (Firecrawl)
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"

    # Research loop policy
    research_max_search_iterations: int = 8
    research_searches_per_iteration: int = 6
    research_max_scrape_per_round: int = 15
    research_batch_concurrency: int = 4
    research_discovery_rounds: int = 2
    research_discovery_limit: int = 10
    research_supplemental_queue_floor: int = 4
    research_search_timeout_s: float = 120.0
    research_scrape_timeout_s: float = 60.0
    research_discovery_timeout_s: float = 60.0
    research_generation_timeout_s: float = 60.0
    research_cancel_grace_s: float = 2.0
    research_max_execution_time_s: float = 300.0
    research_confidence_threshold: float = 0.75
    research_min_sources: int = 10
    research_min_content_length: int = 5000
    research_target_sources: int = 12

    # Budget
    research_base_cost: int = 8
    research_cost_per_search: int = 1
    research_cost_per_scrape: int = 2
    research_max_credits: int = 50

    # Persistence
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # App
    cors_origins: str = "http://localhost:5173,http://localhost:8080"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@dataclass(frozen=True, slots=True)
class ConfidenceWeights:
    """Blend weights and saturation targets for the completeness heuristic."""

    content: float = 0.3
    sources: float = 0.3
    scrapes: float = 0.2
    domains: float = 0.2
    content_target: int = 15000
    scrape_target: int = 15
    domain_target: int = 20


@dataclass(frozen=True, slots=True)
class ResearchPolicy:
    """Immutable tuning for one research session.

    Built once from settings and passed down explicitly, so concurrent
    sessions never observe each other's configuration.
    """

    max_search_iterations: int = 8
    searches_per_iteration: int = 6
    max_scrape_per_round: int = 15
    batch_concurrency: int = 4
    discovery_rounds: int = 2
    discovery_limit: int = 10
    supplemental_queue_floor: int = 4

    search_timeout_s: float = 120.0
    scrape_timeout_s: float = 60.0
    discovery_timeout_s: float = 60.0
    generation_timeout_s: float = 60.0
    cancel_grace_s: float = 2.0
    max_execution_time_s: float = 300.0

    confidence_threshold: float = 0.75
    min_sources: int = 10
    min_content_length: int = 5000
    target_sources: int = 12
    weights: ConfidenceWeights = ConfidenceWeights()

    citation_relevance_start: float = 1.0
    discovery_relevance_start: float = 0.85
    relevance_decay: float = 0.05
    relevance_floor: float = 0.3
    scrape_relevance: float = 0.9
    scrape_eligibility: float = 0.6

    base_cost: int = 8
    cost_per_search: int = 1
    cost_per_scrape: int = 2
    max_credits: int = 50

    scrape_excerpt_chars: int = 4000
    snippet_chars: int = 300
    validator_findings_chars: int = 4000
    fallback_chunk_size: int = 50
    fallback_chunk_delay_s: float = 0.015

    @classmethod
    def from_settings(cls, source: Settings) -> "ResearchPolicy":
        return cls(
            max_search_iterations=max(int(source.research_max_search_iterations), 1),
            searches_per_iteration=max(int(source.research_searches_per_iteration), 1),
            max_scrape_per_round=max(int(source.research_max_scrape_per_round), 0),
            batch_concurrency=max(int(source.research_batch_concurrency), 1),
            discovery_rounds=max(int(source.research_discovery_rounds), 0),
            discovery_limit=max(int(source.research_discovery_limit), 1),
            supplemental_queue_floor=max(int(source.research_supplemental_queue_floor), 0),
            search_timeout_s=float(source.research_search_timeout_s),
            scrape_timeout_s=float(source.research_scrape_timeout_s),
            discovery_timeout_s=float(source.research_discovery_timeout_s),
            generation_timeout_s=float(source.research_generation_timeout_s),
            cancel_grace_s=float(source.research_cancel_grace_s),
            max_execution_time_s=float(source.research_max_execution_time_s),
            confidence_threshold=float(source.research_confidence_threshold),
            min_sources=max(int(source.research_min_sources), 0),
            min_content_length=max(int(source.research_min_content_length), 0),
            target_sources=max(int(source.research_target_sources), 1),
            base_cost=max(int(source.research_base_cost), 0),
            cost_per_search=max(int(source.research_cost_per_search), 0),
            cost_per_scrape=max(int(source.research_cost_per_scrape), 0),
            max_credits=max(int(source.research_max_credits), 0),
        )


settings = Settings()
