from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Requests ---


class ResearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Any = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    model: Optional[str] = None
    domain: str = "all"


# --- Responses ---


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str
    provider: str


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
