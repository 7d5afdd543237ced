from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DONE_MARKER = "[DONE]"


class Phase(str, Enum):
    PLANNING = "planning"
    SEARCHING = "searching"
    BROWSING = "browsing"
    VALIDATING = "validating"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.FAILED)


@dataclass(slots=True)
class ResearchEvent:
    """One entry of a task's ordered event stream.

    Kinds are distinguished by payload fields, matching the wire format:
    phase events carry ``message`` and counters, content events carry
    ``content``, terminal events carry the result or ``error``.
    """

    phase: Phase
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_content(self) -> bool:
        return self.phase is Phase.GENERATING and "content" in self.data

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase.value, **self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def format(self) -> str:
        return f"data: {self.to_json()}\n\n"
