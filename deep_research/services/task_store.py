from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from deep_research.models.research import Source


class ResearchStore(Protocol):
    """Audit persistence for research tasks plus the single credit debit."""

    async def get_credit_balance(self, user_id: str) -> Optional[int]: ...

    async def create_task(
        self,
        *,
        user_id: str,
        query: str,
        conversation_id: Optional[str],
        phase: str,
    ) -> str: ...

    async def update_task(self, task_id: str, **fields: Any) -> None: ...

    async def insert_sources(self, task_id: str, sources: list[Source]) -> None: ...

    async def deduct_credits(self, user_id: str, amount: int, description: str) -> None: ...


@dataclass(slots=True)
class CreditDebit:
    user_id: str
    amount: int
    description: str


@dataclass
class InMemoryResearchStore:
    """Process-local store for the CLI and tests."""

    default_balance: int = 100
    balances: dict[str, int] = field(default_factory=dict)
    tasks: dict[str, dict[str, Any]] = field(default_factory=dict)
    sources: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    debits: list[CreditDebit] = field(default_factory=list)
    phase_history: dict[str, list[str]] = field(default_factory=dict)

    async def get_credit_balance(self, user_id: str) -> Optional[int]:
        return self.balances.get(user_id, self.default_balance)

    async def create_task(
        self,
        *,
        user_id: str,
        query: str,
        conversation_id: Optional[str],
        phase: str,
    ) -> str:
        task_id = str(uuid.uuid4())
        self.tasks[task_id] = {
            "id": task_id,
            "user_id": user_id,
            "query": query,
            "conversation_id": conversation_id,
            "phase": phase,
        }
        self.phase_history[task_id] = [phase]
        return task_id

    async def update_task(self, task_id: str, **fields: Any) -> None:
        task = self.tasks.setdefault(task_id, {"id": task_id})
        task.update(fields)
        if "phase" in fields:
            self.phase_history.setdefault(task_id, []).append(fields["phase"])

    async def insert_sources(self, task_id: str, sources: list[Source]) -> None:
        self.sources.setdefault(task_id, []).extend(s.to_dict() for s in sources)

    async def deduct_credits(self, user_id: str, amount: int, description: str) -> None:
        self.debits.append(CreditDebit(user_id=user_id, amount=amount, description=description))
        balance = self.balances.get(user_id, self.default_balance)
        self.balances[user_id] = balance - amount
