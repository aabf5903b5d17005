"""
Services available to an agent while it runs inside a session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..core.cancellation import AbortSignal
from ..events import Event, EventStream, EventType
from ..knowledge import KnowledgeStore
from ..models.session import AgentState, GenerationSession
from ..resilience import BudgetTracker, CircuitBreakerRegistry, RetryPolicy

if TYPE_CHECKING:
    from ..orchestration.responses import ResponseHandler
    from ..services.deployment import DeployCapability
    from ..services.research import SearchCapability


@dataclass
class AgentContext:
    """Everything a phase agent needs: the session, its stores and its capabilities."""

    session: GenerationSession
    knowledge: KnowledgeStore
    events: EventStream
    budget: BudgetTracker
    responses: ResponseHandler
    breakers: CircuitBreakerRegistry
    abort: AbortSignal
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    search: SearchCapability | None = None
    deployer: DeployCapability | None = None
    max_iterations: int = 50
    ask_user_timeout: float = 120.0
    confidence_threshold: float = 0.7

    # Configuration overrides
    temperature_override: float | None = None
    max_tokens_override: int | None = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def phase(self) -> str:
        return self.session.current_phase.value

    def agent_state(self, agent: str) -> AgentState:
        return self.session.agent(agent)

    def emit(self, event_type: EventType, payload: dict[str, Any] | None = None, *, agent: str | None = None) -> Event:
        return self.events.emit(event_type, self.session_id, payload, agent=agent, phase=self.phase)
