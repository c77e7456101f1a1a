"""
Circuit breaker per LLM provider.

States:
- CLOSED: provider admitted
- OPEN: provider failing, skipped by failover selection
- HALF_OPEN: recovery window, a limited number of trial turns admitted

Example:
    breaker = registry.get_breaker(provider.id)
    if breaker.can_execute():
        ...
        breaker.record_success()   # or record_failure(error), or release()
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive failures before opening the circuit
    failure_threshold: int = 5

    # Consecutive successes needed to close from half-open
    success_threshold: int = 1

    # Seconds to wait before admitting trial calls
    recovery_timeout: float = 60.0

    # Trial calls admitted while half-open
    half_open_max_requests: int = 1


class CircuitBreaker:
    """Tracks the health of one provider."""

    def __init__(
        self,
        provider_id: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider_id = provider_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_requests = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        self._check_recovery()
        return self._state

    def can_execute(self) -> bool:
        """True if a call to this provider should be attempted."""
        self._check_recovery()
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_requests < self.config.half_open_max_requests:
                self._half_open_requests += 1
                return True
        return False

    def is_available(self) -> bool:
        """Like can_execute, without consuming a half-open trial slot."""
        self._check_recovery()
        if self._state == CircuitState.HALF_OPEN:
            return self._half_open_requests < self.config.half_open_max_requests
        return self._state == CircuitState.CLOSED

    def release(self) -> None:
        """Return a trial slot whose call ended without an outcome."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_requests > 0:
            self._half_open_requests -= 1

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        else:
            self._failure_count = 0

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
            return
        self._failure_count += 1
        if self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)
            logger.warning(
                f"Circuit breaker OPENED for provider '{self.provider_id}' "
                f"after {self._failure_count} consecutive failures: {error}"
            )

    def _check_recovery(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        elapsed = self._clock() - self._opened_at
        if elapsed >= self.config.recovery_timeout:
            self._transition_to(CircuitState.HALF_OPEN)
            logger.info(
                f"Circuit breaker HALF-OPEN for provider '{self.provider_id}' "
                f"(testing recovery after {elapsed:.1f}s)"
            )

    def _transition_to(self, new_state: CircuitState) -> None:
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        self._success_count = 0
        self._half_open_requests = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        logger.debug(
            f"Circuit breaker state changed for '{self.provider_id}': "
            f"{old_state.value} -> {new_state.value}"
        )

    def get_status(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
        }


class CircuitBreakerRegistry:
    """Creates and holds one circuit breaker per provider id."""

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get_breaker(self, provider_id: str) -> CircuitBreaker:
        if provider_id not in self._breakers:
            self._breakers[provider_id] = CircuitBreaker(
                provider_id=provider_id,
                config=self._default_config,
                clock=self._clock,
            )
        return self._breakers[provider_id]

    def get_all_statuses(self) -> Dict[str, dict]:
        return {pid: breaker.get_status() for pid, breaker in self._breakers.items()}
