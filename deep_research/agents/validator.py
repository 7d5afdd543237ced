from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from deep_research.exceptions import CapabilityError
from deep_research.models.research import ValidationResult, ValidatorOutput
from deep_research.research_core.interfaces import GenerationCapability
from deep_research.services.prompt_store import render_prompt

LOW_CONFIDENCE_NOTE = "Confidence level moderate - recommend verification"
LIMITED_SOURCES_NOTE = "Limited sources available - findings should be verified independently"


class FindingsValidator:
    """Optional single-shot LLM cross-check of the accumulated findings.

    Advisory only: any failure returns None and synthesis proceeds without
    the notes.
    """

    def __init__(
        self,
        generator: Optional[GenerationCapability],
        *,
        max_chars: int = 4000,
        timeout: float = 60.0,
    ):
        self.generator = generator
        self.max_chars = max_chars
        self.timeout = timeout

    async def validate(self, query: str, findings: str, source_count: int) -> Optional[ValidatorOutput]:
        if self.generator is None:
            return None
        user = render_prompt(
            "validator.user",
            query=query,
            findings=findings[: self.max_chars],
            source_count=source_count,
        )
        try:
            raw = await asyncio.wait_for(
                self.generator.complete(
                    render_prompt("validator.system"), user, json_mode=True, caller="validator"
                ),
                timeout=self.timeout,
            )
            return ValidatorOutput.model_validate_json(raw or "")
        except (CapabilityError, ValidationError, asyncio.TimeoutError) as exc:
            logger.warning(f"Validator skipped: {type(exc).__name__}: {exc}")
            return None


def validation_notes(output: Optional[ValidatorOutput], source_count: int) -> list[str]:
    notes: list[str] = []
    if output is not None:
        notes.extend(output.issues)
        if output.confidence_score < 0.7:
            notes.append(LOW_CONFIDENCE_NOTE)
    if source_count < 2:
        notes.append(LIMITED_SOURCES_NOTE)
    return notes


def merge_validation(heuristic: ValidationResult, output: Optional[ValidatorOutput]) -> ValidationResult:
    """Fold advisory LLM gaps/contradictions into the loop's final assessment."""
    if output is None:
        return heuristic
    gaps = list(dict.fromkeys([*heuristic.gaps, *output.gaps]))
    contradictions = list(dict.fromkeys([*heuristic.contradictions, *output.contradictions]))
    return ValidationResult(
        confidence=heuristic.confidence,
        gaps=gaps,
        contradictions=contradictions,
        needs_more_research=heuristic.needs_more_research,
    )
