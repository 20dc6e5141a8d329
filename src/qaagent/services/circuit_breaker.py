"""
Per-action circuit breaker for tool execution.

Each action type gets its own breaker so that a collaborator which keeps
failing (issue tracker down, VCS unreachable) is failed fast instead of being
hammered by every running execution. The breaker never retries; retry budgets
belong to the strategy's recovery policy.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

import structlog

from ..models.actions import AgentActionType
from ..models.tool_integration import CircuitBreakerConfig

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(str, Enum):
    """States of a circuit breaker."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls rejected until the open timeout elapses
    HALF_OPEN = "half_open"  # Probing whether the collaborator recovered


class CircuitOpenError(Exception):
    """Raised instead of calling a tool whose circuit is open."""

    def __init__(self, action_type: AgentActionType, retry_after: float) -> None:
        super().__init__(
            f"Circuit open for action {action_type.value}, retry in {retry_after:.0f}s"
        )
        self.action_type = action_type
        self.retry_after = retry_after


class ToolCircuitBreaker:
    """Closed / open / half-open breaker guarding one action type."""

    def __init__(
        self,
        action_type: AgentActionType,
        config: CircuitBreakerConfig | None = None,
    ) -> None:
        self.action_type = action_type
        self.config = config or CircuitBreakerConfig()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._probe_failures = 0
        self._opened_at: float | None = None
        self._total_calls = 0
        self._total_failures = 0
        self._lock = asyncio.Lock()
        self._log = logger.bind(action_type=action_type.value)

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run ``func`` unless the circuit is open.

        Raises:
            CircuitOpenError: If the circuit is open
            Exception: Whatever ``func`` raised, after it is counted
        """
        async with self._lock:
            self._admit()
            self._total_calls += 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            async with self._lock:
                self._on_failure(e)
            raise

        async with self._lock:
            self._on_success()
        return result

    def _admit(self) -> None:
        if self._state != CircuitState.OPEN:
            return

        elapsed = time.monotonic() - (self._opened_at or 0.0)
        if elapsed < self.config.timeout_seconds:
            raise CircuitOpenError(self.action_type, self.config.timeout_seconds - elapsed)

        self._state = CircuitState.HALF_OPEN
        self._probe_successes = 0
        self._probe_failures = 0
        self._log.info("tool_circuit_half_open", open_seconds=round(elapsed, 3))

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._probe_successes += 1
            if self._probe_successes >= self.config.success_threshold:
                self._close()
        else:
            self._consecutive_failures = 0

    def _on_failure(self, error: Exception) -> None:
        self._total_failures += 1

        if self._state == CircuitState.HALF_OPEN:
            self._probe_failures += 1
            if self._probe_failures >= self.config.half_open_max_attempts:
                self._open(reason="probe_failed", error=str(error))
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= self.config.failure_threshold:
            self._open(reason="threshold_reached", error=str(error))

    def _open(self, reason: str, error: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._probe_successes = 0
        self._probe_failures = 0
        self._log.error(
            "tool_circuit_opened",
            reason=reason,
            consecutive_failures=self._consecutive_failures,
            error=error,
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._log.info("tool_circuit_closed")

    async def reset(self) -> None:
        async with self._lock:
            self._close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
        }
