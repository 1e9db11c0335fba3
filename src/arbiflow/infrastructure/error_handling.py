"""Error taxonomy and solve-failure containment for arbiflow."""
from typing import Callable, Any, Optional, Tuple, Type
from datetime import datetime
from enum import Enum
from loguru import logger


class ArbiflowError(Exception):
    """Base error carrying the pinned pair and snapshot version involved."""

    def __init__(
        self,
        message: str,
        pair: Optional[Tuple[str, str]] = None,
        snapshot_version: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.pair = pair
        self.snapshot_version = snapshot_version

    def __str__(self) -> str:
        context = []
        if self.pair is not None:
            context.append(f"pair={self.pair[0]}->{self.pair[1]}")
        if self.snapshot_version is not None:
            context.append(f"version={self.snapshot_version}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    def with_context(
        self,
        pair: Optional[Tuple[str, str]] = None,
        snapshot_version: Optional[int] = None,
    ) -> "ArbiflowError":
        """Fill in missing context and return self for re-raising."""
        if self.pair is None:
            self.pair = pair
        if self.snapshot_version is None:
            self.snapshot_version = snapshot_version
        return self


class InvalidRate(ArbiflowError, ValueError):
    """A non-positive or non-finite exchange rate was supplied."""


class DimensionMismatch(ArbiflowError, ValueError):
    """The rate matrix or currency labels do not describe a valid graph."""


class Infeasible(ArbiflowError):
    """No completing route exists, so the threshold is undefined."""


class SolverTimeout(ArbiflowError):
    """The LP solver hit its time limit before proving optimality."""


class Unbounded(ArbiflowError):
    """The LP reported an unbounded objective; the constraints are broken."""


class SolverError(ArbiflowError):
    """Any other failure reported by the LP solver."""


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # solving normally
    OPEN = "open"  # skipping solves
    HALF_OPEN = "half_open"  # one trial solve allowed


class CircuitBreakerError(ArbiflowError):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """Stops re-solving a pair after repeated solver failures."""

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: int = 30,
        expected_exceptions: Tuple[Type[Exception], ...] = (SolverTimeout, SolverError, Unbounded),
        name: str = "default",
    ):
        """
        Initialise circuit breaker.

        Args:
            failure_threshold: Consecutive failures before the circuit opens
            recovery_timeout: Seconds to wait before a trial call
            expected_exceptions: Exceptions that count as failures
            name: Breaker name used in log messages
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self.name = name

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run func unless the circuit is open."""
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker '{self.name}' entering HALF_OPEN state")
            else:
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.name}' is OPEN, "
                    f"next attempt in {self.recovery_timeout}s"
                )

        try:
            result = func(*args, **kwargs)
        except self.expected_exceptions:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if not self.last_failure_time:
            return True
        elapsed = (datetime.now() - self.last_failure_time).total_seconds()
        return elapsed >= self.recovery_timeout

    def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}' recovered, closing circuit")
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = datetime.now()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.error(
                    f"Circuit breaker '{self.name}' opened after "
                    f"{self.failure_count} failures"
                )
            self.state = CircuitState.OPEN

    def reset(self):
        """Manually close the circuit."""
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_state(self) -> dict:
        """Get current circuit breaker state."""
        return {
            'name': self.name,
            'state': self.state.value,
            'failure_count': self.failure_count,
            'last_failure': self.last_failure_time.isoformat() if self.last_failure_time else None,
        }


class ErrorHandler:
    """Tracks circuit breakers and error counts for one monitoring session."""

    def __init__(self, failure_threshold: int = 3, recovery_timeout: int = 30):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.circuit_breakers: dict[str, CircuitBreaker] = {}
        self.error_counts: dict[str, int] = {}

    def get_circuit_breaker(self, name: str) -> CircuitBreaker:
        """Get or create the breaker registered under name."""
        if name not in self.circuit_breakers:
            self.circuit_breakers[name] = CircuitBreaker(
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                name=name,
            )
        return self.circuit_breakers[name]

    def drop_circuit_breaker(self, name: str):
        """Forget the breaker registered under name."""
        self.circuit_breakers.pop(name, None)

    def record_error(self, error: Exception):
        """Count an error by its class name."""
        error_type = type(error).__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

    def get_error_stats(self) -> dict:
        """Get error statistics."""
        return {
            'total_errors': sum(self.error_counts.values()),
            'error_types': self.error_counts.copy(),
            'circuit_breakers': {
                name: cb.get_state()
                for name, cb in self.circuit_breakers.items()
            },
        }

    def reset_all_circuits(self):
        """Reset all circuit breakers."""
        for cb in self.circuit_breakers.values():
            cb.reset()
        logger.info("All circuit breakers reset")
