"""
Circuit breaker pattern implementation for resilient service calls.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, TYPE_CHECKING

from gcloud_core.errors import CircuitOpenError, MaxRetriesExceededError, OperationTimeoutError, RequestTimeoutError
from gcloud_core.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from gcloud_core.http.client import GoogleCloudHTTPClient
    from gcloud_core.metrics import MetricsCollector
    from gcloud_core.models import APIResponse


def _is_timeout(error: Exception) -> bool:
    if isinstance(error, MaxRetriesExceededError):
        error = error.last_error
    return isinstance(error, (OperationTimeoutError, RequestTimeoutError))


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds and timers for one circuit breaker."""

    failure_threshold: int = 5
    success_threshold: int = 3
    open_duration: float = 30.0
    half_open_max_requests: int = 3
    failure_window: float = 60.0
    operation_timeout: Optional[float] = None
    count_timeouts_as_failures: bool = True

    DEFAULT: ClassVar["CircuitBreakerConfig"]
    AGGRESSIVE: ClassVar["CircuitBreakerConfig"]
    CONSERVATIVE: ClassVar["CircuitBreakerConfig"]
    CRITICAL: ClassVar["CircuitBreakerConfig"]

    def __post_init__(self):
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValueError("failure_threshold and success_threshold must be >= 1")
        if self.half_open_max_requests < 1:
            raise ValueError("half_open_max_requests must be >= 1")


CircuitBreakerConfig.DEFAULT = CircuitBreakerConfig()
CircuitBreakerConfig.AGGRESSIVE = CircuitBreakerConfig(
    failure_threshold=3, success_threshold=2, open_duration=15.0,
    half_open_max_requests=2, failure_window=30.0,
)
CircuitBreakerConfig.CONSERVATIVE = CircuitBreakerConfig(
    failure_threshold=10, success_threshold=5, open_duration=60.0,
    half_open_max_requests=5, failure_window=120.0,
)
CircuitBreakerConfig.CRITICAL = CircuitBreakerConfig(
    failure_threshold=20, success_threshold=10, open_duration=120.0,
    half_open_max_requests=5, failure_window=300.0, count_timeouts_as_failures=False,
)


@dataclass(frozen=True)
class CircuitBreakerStatistics:
    """Point-in-time snapshot of a breaker's counters."""

    name: str
    state: CircuitBreakerState
    total_requests: int
    successful_requests: int
    failed_requests: int
    rejected_requests: int
    recent_failures: int
    half_open_successes: int
    opened_at: Optional[float]

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class CircuitBreaker:
    """Circuit breaker implementation.

    - CLOSED: calls pass through; failures are kept in a sliding window and
      the circuit opens once ``failure_threshold`` of them fall inside it.
    - OPEN: calls are rejected with ``CircuitOpenError`` until
      ``open_duration`` has elapsed, then the next call moves to HALF_OPEN.
    - HALF_OPEN: up to ``half_open_max_requests`` probes run concurrently.
      ``success_threshold`` successes close the circuit; any failure reopens it.

    State lives behind a ``threading.Lock`` that is never held across an
    ``await``.
    """

    def __init__(self,
                 name: str = "default",
                 config: CircuitBreakerConfig = CircuitBreakerConfig.DEFAULT,
                 *,
                 metrics: Optional["MetricsCollector"] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.config = config
        self.metrics = metrics
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitBreakerState.CLOSED
        self._failures: List[float] = []
        self._opened_at: Optional[float] = None
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self._half_open_epoch = 0

        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._rejected_requests = 0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def is_open(self) -> bool:
        """Check if circuit breaker is in OPEN state."""
        return self._state == CircuitBreakerState.OPEN

    @property
    def remaining_open_time(self) -> Optional[float]:
        """Seconds until an open circuit admits a probe, or None if not open."""
        with self._lock:
            if self._state != CircuitBreakerState.OPEN or self._opened_at is None:
                return None
            remaining = self._remaining_locked()
            return remaining if remaining > 0 else None

    async def execute(self,
                      operation: Callable[..., Awaitable[Any]],
                      *args,
                      is_failure: Optional[Callable[[Any], bool]] = None,
                      **kwargs) -> Any:
        """Execute ``operation(*args, **kwargs)`` with circuit breaker protection.

        ``is_failure`` lets a successful result count as a failure (for
        example an API response carrying an error payload); the result is
        still returned to the caller.
        """
        epoch = self._admit()

        try:
            if self.config.operation_timeout is not None:
                try:
                    result = await asyncio.wait_for(operation(*args, **kwargs), self.config.operation_timeout)
                except asyncio.TimeoutError as e:
                    raise OperationTimeoutError(self.name, self.config.operation_timeout) from e
            else:
                result = await operation(*args, **kwargs)
        except Exception as e:
            if not _is_timeout(e) or self.config.count_timeouts_as_failures:
                self._record_failure(epoch, e)
            else:
                self._release(epoch)
            raise
        except BaseException:
            self._release(epoch)
            raise

        try:
            failed = is_failure is not None and is_failure(result)
        except BaseException:
            self._release(epoch)
            raise

        if failed:
            self._record_failure(epoch, None)
        else:
            self._record_success(epoch)
        return result

    call = execute

    @property
    def statistics(self) -> CircuitBreakerStatistics:
        with self._lock:
            self._prune_failures_locked()
            return CircuitBreakerStatistics(
                name=self.name,
                state=self._state,
                total_requests=self._total_requests,
                successful_requests=self._successful_requests,
                failed_requests=self._failed_requests,
                rejected_requests=self._rejected_requests,
                recent_failures=len(self._failures),
                half_open_successes=self._half_open_successes,
                opened_at=self._opened_at,
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        stats = self.statistics
        return {
            "name": self.name,
            "state": stats.state.value,
            "total_requests": stats.total_requests,
            "successful_requests": stats.successful_requests,
            "failed_requests": stats.failed_requests,
            "rejected_requests": stats.rejected_requests,
            "recent_failures": stats.recent_failures,
            "failure_threshold": self.config.failure_threshold,
            "open_duration": self.config.open_duration,
        }

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        with self._lock:
            self._close_locked()
        self.logger.info("Circuit breaker manually reset")

    def trip(self) -> None:
        """Manually trip the circuit breaker to open state."""
        with self._lock:
            self._open_locked()
        self.logger.warning("Circuit breaker manually tripped")

    # -- state machine --------------------------------------------------

    def _admit(self) -> Optional[int]:
        """Apply the state check for a new call.

        Returns the half-open epoch when the call was admitted as a probe,
        None when admitted while closed.
        """
        with self._lock:
            self._total_requests += 1
            self._prune_failures_locked()

            if self._state == CircuitBreakerState.OPEN:
                if self._remaining_locked() > 0:
                    self._rejected_requests += 1
                    remaining = self._remaining_locked()
                    self._on_rejected()
                    raise CircuitOpenError(self.name, remaining)
                self._half_open_locked()

            if self._state == CircuitBreakerState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_max_requests:
                    self._rejected_requests += 1
                    self._on_rejected()
                    raise CircuitOpenError(self.name, 0.0)
                self._half_open_in_flight += 1
                return self._half_open_epoch

            return None

    def _record_success(self, epoch: Optional[int]) -> None:
        with self._lock:
            self._successful_requests += 1
            self._release_locked(epoch)

            if self._state == CircuitBreakerState.CLOSED:
                self._failures.clear()
            elif self._state == CircuitBreakerState.HALF_OPEN and epoch == self._half_open_epoch:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._close_locked()

    def _record_failure(self, epoch: Optional[int], error: Optional[Exception]) -> None:
        with self._lock:
            self._failed_requests += 1
            self._release_locked(epoch)
            self._failures.append(self._clock())
            self._prune_failures_locked()

            if self._state == CircuitBreakerState.CLOSED:
                if len(self._failures) >= self.config.failure_threshold:
                    self._open_locked(error)
            elif self._state == CircuitBreakerState.HALF_OPEN and epoch == self._half_open_epoch:
                self._open_locked(error)

    def _release(self, epoch: Optional[int]) -> None:
        with self._lock:
            self._release_locked(epoch)

    def _release_locked(self, epoch: Optional[int]) -> None:
        if epoch is not None and epoch == self._half_open_epoch and self._half_open_in_flight > 0:
            self._half_open_in_flight -= 1

    def _open_locked(self, error: Optional[Exception] = None) -> None:
        previous = self._state
        self._state = CircuitBreakerState.OPEN
        self._opened_at = self._clock()
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self.logger.warning(
            "Circuit breaker opened",
            previous_state=previous.value,
            recent_failures=len(self._failures),
            threshold=self.config.failure_threshold,
            error=str(error) if error is not None else None,
        )
        self._on_state_change()

    def _close_locked(self) -> None:
        previous = self._state
        self._state = CircuitBreakerState.CLOSED
        self._failures.clear()
        self._opened_at = None
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        if previous != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker closed", previous_state=previous.value)
        self._on_state_change()

    def _half_open_locked(self) -> None:
        self._state = CircuitBreakerState.HALF_OPEN
        self._half_open_successes = 0
        self._half_open_in_flight = 0
        self._half_open_epoch += 1
        self.logger.info("Circuit breaker transitioning to half-open")
        self._on_state_change()

    def _remaining_locked(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.open_duration - (self._clock() - self._opened_at))

    def _prune_failures_locked(self) -> None:
        cutoff = self._clock() - self.config.failure_window
        self._failures = [ts for ts in self._failures if ts >= cutoff]

    def _on_state_change(self) -> None:
        if self.metrics is not None:
            self.metrics.record_circuit_state(self.name, self._state.value)

    def _on_rejected(self) -> None:
        if self.metrics is not None:
            self.metrics.record_circuit_rejection(self.name)


class CircuitBreakerRegistry:
    """Registry of named circuit breakers shared across clients."""

    def __init__(self, default_config: CircuitBreakerConfig = CircuitBreakerConfig.DEFAULT):
        self.default_config = default_config
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.logger = get_logger("circuit_breaker_registry")
        self._lock = threading.Lock()

    def get_circuit_breaker(self,
                            name: str,
                            config: Optional[CircuitBreakerConfig] = None,
                            metrics: Optional["MetricsCollector"] = None) -> CircuitBreaker:
        """Get or create a circuit breaker."""
        with self._lock:
            breaker = self.circuit_breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config or self.default_config, metrics=metrics)
                self.circuit_breakers[name] = breaker
                self.logger.info("Created circuit breaker", name=name)
            return breaker

    def remove(self, name: str) -> None:
        with self._lock:
            self.circuit_breakers.pop(name, None)

    def all_statistics(self) -> Dict[str, CircuitBreakerStatistics]:
        """Get statistics of all circuit breakers."""
        with self._lock:
            breakers = dict(self.circuit_breakers)
        return {name: cb.statistics for name, cb in breakers.items()}

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        """Get states of all circuit breakers."""
        with self._lock:
            breakers = dict(self.circuit_breakers)
        return {name: cb.get_state() for name, cb in breakers.items()}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self.circuit_breakers.values())
        for breaker in breakers:
            breaker.reset()

    def open_circuits(self) -> List[str]:
        with self._lock:
            return [name for name, cb in self.circuit_breakers.items() if cb.is_open()]

    def is_healthy(self, name: str) -> bool:
        """A service is healthy unless its circuit is open; unknown services are healthy."""
        with self._lock:
            breaker = self.circuit_breakers.get(name)
        return breaker is None or not breaker.is_open()


# Global circuit breaker registry instance
circuit_breaker_registry = CircuitBreakerRegistry()


def get_circuit_breaker(name: str, **kwargs) -> CircuitBreaker:
    """Get a circuit breaker from the global registry."""
    return circuit_breaker_registry.get_circuit_breaker(name, **kwargs)


class CircuitBreakerHTTPClient:
    """``GoogleCloudHTTPClient`` wrapper that routes every call through a breaker."""

    def __init__(self,
                 client: "GoogleCloudHTTPClient",
                 service_name: str = "http",
                 config: CircuitBreakerConfig = CircuitBreakerConfig.DEFAULT,
                 *,
                 breaker: Optional[CircuitBreaker] = None):
        self.client = client
        self.breaker = breaker or CircuitBreaker(service_name, config, metrics=client.metrics)

    async def get(self, path: str, **kwargs) -> "APIResponse[Any]":
        return await self.breaker.execute(self.client.get, path, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs) -> "APIResponse[Any]":
        return await self.breaker.execute(self.client.post, path, body, **kwargs)

    async def put(self, path: str, body: Any, **kwargs) -> "APIResponse[Any]":
        return await self.breaker.execute(self.client.put, path, body, **kwargs)

    async def patch(self, path: str, body: Any, **kwargs) -> "APIResponse[Any]":
        return await self.breaker.execute(self.client.patch, path, body, **kwargs)

    async def delete(self, path: str, **kwargs) -> "APIResponse[Any]":
        return await self.breaker.execute(self.client.delete, path, **kwargs)

    async def delete_no_content(self, path: str, **kwargs) -> None:
        await self.breaker.execute(self.client.delete_no_content, path, **kwargs)

    @property
    def statistics(self) -> CircuitBreakerStatistics:
        return self.breaker.statistics

    @property
    def state(self) -> CircuitBreakerState:
        return self.breaker.state

    def reset(self) -> None:
        self.breaker.reset()
