from __future__ import annotations

from dataclasses import dataclass

from deep_research.config import ResearchPolicy
from deep_research.models.research import ValidationResult


@dataclass(slots=True)
class ResearchMetrics:
    content_length: int
    source_count: int
    scrape_count: int
    unique_domains: int


def _ratio(value: float, target: float) -> float:
    if target <= 0:
        return 1.0
    return min(max(value, 0) / target, 1.0)


class ConfidenceScorer:
    """Deterministic completeness heuristic, evaluated after every round."""

    def __init__(self, policy: ResearchPolicy):
        self.policy = policy

    def score(self, metrics: ResearchMetrics) -> float:
        w = self.policy.weights
        value = (
            w.content * _ratio(metrics.content_length, w.content_target)
            + w.sources * _ratio(metrics.source_count, self.policy.target_sources)
            + w.scrapes * _ratio(metrics.scrape_count, w.scrape_target)
            + w.domains * _ratio(metrics.unique_domains, w.domain_target)
        )
        return min(max(value, 0.0), 1.0)

    def is_sufficient(self, metrics: ResearchMetrics, confidence: float) -> bool:
        return (
            confidence >= self.policy.confidence_threshold
            and metrics.source_count >= self.policy.min_sources
            and metrics.content_length >= self.policy.min_content_length
        )

    def assess(self, metrics: ResearchMetrics) -> ValidationResult:
        confidence = self.score(metrics)
        gaps: list[str] = []
        if metrics.source_count < self.policy.min_sources:
            gaps.append(
                f"Only {metrics.source_count} sources collected (target {self.policy.min_sources})"
            )
        if metrics.content_length < self.policy.min_content_length:
            gaps.append("Not enough gathered content to support the answer")
        if metrics.scrape_count == 0:
            gaps.append("No primary pages scraped yet")
        if metrics.unique_domains < 3:
            gaps.append("Low domain diversity")
        return ValidationResult(
            confidence=confidence,
            gaps=gaps,
            contradictions=[],
            needs_more_research=not self.is_sufficient(metrics, confidence),
        )
