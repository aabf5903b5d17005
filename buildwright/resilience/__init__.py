"""Resource accounting and resilience primitives for outbound calls."""

from .budget import MODEL_PRICING, AgentUsage, BudgetTracker, estimate_cost
from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState, CircuitStatus
from .rate_limit import RateLimitDecision, SlidingWindowRateLimiter
from .retry import RetryPolicy, guarded_call, is_transient, retry_with_backoff

__all__ = [
    "MODEL_PRICING",
    "AgentUsage",
    "BudgetTracker",
    "estimate_cost",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStatus",
    "RateLimitDecision",
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "guarded_call",
    "is_transient",
    "retry_with_backoff",
]
