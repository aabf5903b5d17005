"""
Budget tracking for model calls.

Each agent has a configured allowance of model calls and tokens. Counters
accumulate over the whole session, so a re-run phase draws on what is left
of its agent's allowance. Token usage is also priced per model to give a
session-level cost estimate, and an optional session cost ceiling supports
reserve/commit/refund accounting for paid operations outside the model loop.

Persistence is best-effort: a failing backend never blocks the hot path.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from ..core.config import AgentLimit
from ..core.exceptions import AgentBudgetExceededError, BudgetExceededError
from ..core.logging import get_logger
from ..core.types import TokenUsage
from ..storage import StorageBackend

logger = get_logger(__name__)

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4-1": (15.0, 75.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-haiku-4-5": (1.0, 5.0),
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4.1": (2.0, 8.0),
}
DEFAULT_PRICING = (3.0, 15.0)


def estimate_cost(model: str, usage: TokenUsage) -> float:
    """Estimated USD cost of ``usage`` on ``model``."""
    input_price, output_price = MODEL_PRICING.get(model, DEFAULT_PRICING)
    return (usage.input_tokens * input_price + usage.output_tokens * output_price) / 1_000_000


@dataclass
class AgentUsage:
    """Accumulated usage of one agent."""

    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class BudgetTracker:
    """Per-session accounting of agent calls, tokens and cost."""

    def __init__(
        self,
        session_id: str,
        limits: Mapping[str, AgentLimit] | None = None,
        *,
        default_limit: AgentLimit | None = None,
        default_model: str = "claude-sonnet-4-5",
        max_cost_usd: float | None = None,
        storage: StorageBackend | None = None,
    ) -> None:
        self.session_id = session_id
        self.limits = dict(limits or {})
        self.default_limit = default_limit or AgentLimit()
        self.default_model = default_model
        self.max_cost_usd = max_cost_usd
        self.storage = storage
        self._usage: dict[str, AgentUsage] = {}
        self._reserved_usd = 0.0
        self._charged_usd = 0.0

    def limit_for(self, agent: str) -> AgentLimit:
        return self.limits.get(agent, self.default_limit)

    def model_for(self, agent: str) -> str:
        return self.limit_for(agent).model or self.default_model

    def usage(self, agent: str) -> AgentUsage:
        return self._usage.setdefault(agent, AgentUsage())

    def check(self, agent: str) -> None:
        """Fail fast if ``agent`` may not make another model call.

        Raises:
            AgentBudgetExceededError: Call or token allowance exhausted.
            BudgetExceededError: Session cost ceiling reached.
        """
        limit = self.limit_for(agent)
        usage = self.usage(agent)
        if usage.calls >= limit.max_calls:
            raise AgentBudgetExceededError(
                message="call budget exhausted",
                agent_name=agent,
                resource="calls",
                limit=limit.max_calls,
                used=usage.calls,
            )
        if usage.total_tokens >= limit.max_tokens:
            raise AgentBudgetExceededError(
                message="token budget exhausted",
                agent_name=agent,
                resource="tokens",
                limit=limit.max_tokens,
                used=usage.total_tokens,
            )
        if self.max_cost_usd is not None and self.spent_usd >= self.max_cost_usd:
            raise BudgetExceededError(
                message="session cost ceiling reached",
                limit=self.max_cost_usd,
                used=self.spent_usd,
            )

    def record(self, agent: str, usage: TokenUsage, model: str | None = None) -> AgentUsage:
        """Count one model call and its tokens against ``agent``."""
        totals = self.usage(agent)
        totals.calls += 1
        totals.input_tokens += usage.input_tokens
        totals.output_tokens += usage.output_tokens
        totals.cost_usd += estimate_cost(model or self.model_for(agent), usage)
        limit = self.limit_for(agent)
        if self.nearing_limit(agent):
            logger.warning(
                "Agent nearing call budget",
                session_id=self.session_id,
                agent=agent,
                calls=totals.calls,
                max_calls=limit.max_calls,
            )
        return totals

    def nearing_limit(self, agent: str) -> bool:
        """True exactly when the call that crossed 80% of the allowance was recorded."""
        limit = self.limit_for(agent)
        return self.usage(agent).calls == max(1, int(limit.max_calls * 0.8))

    # -- session cost ----------------------------------------------------------

    @property
    def spent_usd(self) -> float:
        return sum(u.cost_usd for u in self._usage.values()) + self._charged_usd

    @property
    def available_usd(self) -> float | None:
        if self.max_cost_usd is None:
            return None
        return max(0.0, self.max_cost_usd - self.spent_usd - self._reserved_usd)

    def reserve(self, amount: float) -> None:
        """Hold ``amount`` USD for an operation about to start.

        Raises:
            BudgetExceededError: If the reservation would exceed the ceiling.
        """
        available = self.available_usd
        if available is not None and amount > available:
            raise BudgetExceededError(
                message="insufficient budget for reservation",
                limit=self.max_cost_usd or 0.0,
                used=self.spent_usd + self._reserved_usd,
            )
        self._reserved_usd += amount

    def commit(self, reserved: float, actual: float) -> None:
        """Convert a reservation into an actual charge."""
        self._reserved_usd = max(0.0, self._reserved_usd - reserved)
        self._charged_usd += actual

    def refund(self, amount: float) -> None:
        """Release a reservation whose operation failed."""
        self._reserved_usd = max(0.0, self._reserved_usd - amount)

    def charge(self, amount: float) -> None:
        """Record a cost incurred outside the model loop."""
        self._charged_usd += amount

    # -- reporting and persistence ------------------------------------------

    def summary(self) -> dict[str, Any]:
        agents = {name: asdict(u) for name, u in self._usage.items()}
        return {
            "calls": sum(u.calls for u in self._usage.values()),
            "input_tokens": sum(u.input_tokens for u in self._usage.values()),
            "output_tokens": sum(u.output_tokens for u in self._usage.values()),
            "estimated_cost_usd": round(self.spent_usd, 6),
            "reserved_usd": round(self._reserved_usd, 6),
            "agents": agents,
        }

    def restore(self, summary: Mapping[str, Any]) -> None:
        """Reload counters from a ``summary()`` (checkpoint resume)."""
        self._usage = {name: AgentUsage(**values) for name, values in summary.get("agents", {}).items()}
        model_cost = sum(u.cost_usd for u in self._usage.values())
        self._charged_usd = max(0.0, float(summary.get("estimated_cost_usd", 0.0)) - model_cost)
        self._reserved_usd = float(summary.get("reserved_usd", 0.0))

    async def persist(self) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.store_text(f"budgets/{self.session_id}.json", json.dumps(self.summary()))
        except Exception as e:
            logger.debug("Budget persistence unavailable", session_id=self.session_id, error=str(e))
