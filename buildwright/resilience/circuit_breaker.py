"""
Circuit breaker for calls to external paid providers.

Closed -> Open after ``threshold`` consecutive failures. While Open, calls are
rejected without invoking the wrapped function until ``reset_timeout`` has
elapsed; the next call then runs as a single HalfOpen probe. A successful
probe closes the circuit and clears the failure count, a failed probe opens
it again.

State is persisted through a storage backend when one is configured so that
breakers survive restarts. Persistence is best-effort: any backend failure
leaves the breaker working purely in memory.
"""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import TypeVar

from pydantic import BaseModel

from ..core.exceptions import CircuitOpenError, SessionAbortedError
from ..core.logging import get_logger
from ..storage import StorageBackend

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitStatus(BaseModel):
    """Point-in-time view of a breaker."""

    name: str
    state: CircuitState
    failures: int
    last_failure: datetime | None = None


class CircuitBreaker:
    """Three-state circuit breaker guarding one named resource."""

    def __init__(
        self,
        name: str,
        storage: StorageBackend | None = None,
        *,
        threshold: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.storage = storage
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self.clock = clock
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.last_failure: float | None = None
        self._probe_in_flight = False

    @property
    def _key(self) -> str:
        safe = self.name.replace(":", "_").replace("/", "_")
        return f"circuits/{safe}.json"

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the breaker.

        Raises:
            CircuitOpenError: The circuit is open (or a probe is already running).
            Exception: Whatever ``fn`` raised, after it has been counted.
        """
        await self._load()

        if self.state == CircuitState.OPEN:
            elapsed = self.clock() - (self.last_failure or 0.0)
            if elapsed >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info("Circuit half-open", breaker=self.name)
            else:
                raise CircuitOpenError(
                    message=f"Circuit breaker {self.name} is OPEN",
                    breaker_name=self.name,
                    retry_after_seconds=max(0.0, self.reset_timeout - elapsed),
                )

        probing = False
        if self.state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitOpenError(
                    message=f"Circuit breaker {self.name} is probing",
                    breaker_name=self.name,
                )
            self._probe_in_flight = True
            probing = True

        try:
            result = await fn()
        except SessionAbortedError:
            raise
        except Exception:
            self.failures += 1
            self.last_failure = self.clock()
            if self.state == CircuitState.HALF_OPEN or self.failures >= self.threshold:
                if self.state != CircuitState.OPEN:
                    logger.warning("Circuit opened", breaker=self.name, failures=self.failures)
                self.state = CircuitState.OPEN
            await self._persist()
            raise
        finally:
            if probing:
                self._probe_in_flight = False

        if self.state != CircuitState.CLOSED:
            logger.info("Circuit closed", breaker=self.name)
        self.failures = 0
        self.last_failure = None
        self.state = CircuitState.CLOSED
        await self._persist()
        return result

    async def get_status(self) -> CircuitStatus:
        await self._load()
        return CircuitStatus(
            name=self.name,
            state=self.state,
            failures=self.failures,
            last_failure=(
                datetime.fromtimestamp(self.last_failure, tz=timezone.utc)
                if self.last_failure is not None
                else None
            ),
        )

    async def reset(self) -> None:
        self.failures = 0
        self.last_failure = None
        self.state = CircuitState.CLOSED
        await self._persist()

    async def _persist(self) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.store_text(
                self._key,
                json.dumps(
                    {
                        "state": self.state.value,
                        "failures": self.failures,
                        "last_failure": self.last_failure,
                    }
                ),
            )
        except Exception as e:
            logger.debug("Circuit state persistence unavailable", breaker=self.name, error=str(e))

    async def _load(self) -> None:
        if self.storage is None:
            return
        try:
            if not await self.storage.exists(self._key):
                return
            data = json.loads(await self.storage.load_text(self._key))
            self.state = CircuitState(data.get("state", self.state.value))
            self.failures = int(data.get("failures", self.failures))
            self.last_failure = data.get("last_failure", self.last_failure)
        except Exception as e:
            logger.debug("Circuit state load unavailable", breaker=self.name, error=str(e))


class CircuitBreakerRegistry:
    """One breaker per named resource, shared by every session."""

    def __init__(
        self,
        storage: StorageBackend | None = None,
        *,
        threshold: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self.clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name,
                self.storage,
                threshold=self.threshold,
                reset_timeout=self.reset_timeout,
                clock=self.clock,
            )
            self._breakers[name] = breaker
        return breaker

    async def statuses(self) -> list[CircuitStatus]:
        return [await b.get_status() for b in self._breakers.values()]
