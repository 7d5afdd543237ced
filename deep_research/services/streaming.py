from __future__ import annotations

from typing import Any, Optional

from deep_research.models.events import Phase, ResearchEvent


def _progress(
    message: str,
    search_count: Optional[int],
    scrape_count: Optional[int],
    source_count: Optional[int],
    confidence: Optional[float],
    iteration: Optional[int],
) -> dict[str, Any]:
    data: dict[str, Any] = {"message": message}
    if search_count is not None:
        data["searchCount"] = search_count
    if scrape_count is not None:
        data["scrapeCount"] = scrape_count
    if source_count is not None:
        data["sourceCount"] = source_count
    if confidence is not None:
        data["confidence"] = round(confidence, 4)
    if iteration is not None:
        data["iteration"] = iteration
    return data


def planning(message: str, query_type: str) -> ResearchEvent:
    return ResearchEvent(phase=Phase.PLANNING, data={"message": message, "queryType": query_type})


def searching(
    message: str,
    *,
    iteration: int,
    search_count: int,
    scrape_count: int,
    source_count: int,
    confidence: float,
) -> ResearchEvent:
    return ResearchEvent(
        phase=Phase.SEARCHING,
        data=_progress(message, search_count, scrape_count, source_count, confidence, iteration),
    )


def browsing(
    message: str,
    *,
    iteration: int,
    search_count: int,
    scrape_count: int,
    source_count: int,
    confidence: float,
) -> ResearchEvent:
    return ResearchEvent(
        phase=Phase.BROWSING,
        data=_progress(message, search_count, scrape_count, source_count, confidence, iteration),
    )


def validating(
    message: str,
    *,
    search_count: int,
    scrape_count: int,
    source_count: int,
    confidence: float,
    iteration: int,
) -> ResearchEvent:
    return ResearchEvent(
        phase=Phase.VALIDATING,
        data=_progress(message, search_count, scrape_count, source_count, confidence, iteration),
    )


def generating(message: str) -> ResearchEvent:
    return ResearchEvent(phase=Phase.GENERATING, data={"message": message})


def content(delta: str) -> ResearchEvent:
    """Emit one streamed text delta of the final answer."""
    return ResearchEvent(phase=Phase.GENERATING, data={"content": delta})


def completed(
    *,
    task_id: str,
    sources: list[dict[str, Any]],
    credits_used: int,
    query_type: str,
    model_used: str,
    search_count: int,
    scrape_count: int,
    final_answer: str,
    confidence: float,
    iterations: int,
    stop_reason: str,
) -> ResearchEvent:
    return ResearchEvent(
        phase=Phase.COMPLETED,
        data={
            "sources": sources,
            "creditsUsed": credits_used,
            "taskId": task_id,
            "queryType": query_type,
            "modelUsed": model_used,
            "searchCount": search_count,
            "scrapeCount": scrape_count,
            "finalAnswer": final_answer,
            "confidence": round(confidence, 4),
            "iterations": iterations,
            "stopReason": stop_reason,
        },
    )


def failed(error: str, **kwargs: Any) -> ResearchEvent:
    return ResearchEvent(phase=Phase.FAILED, data={"error": error, **kwargs})
