"""Error handling and performance monitoring."""

from .error_handling import (
    ArbiflowError,
    InvalidRate,
    DimensionMismatch,
    Infeasible,
    SolverTimeout,
    Unbounded,
    SolverError,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    ErrorHandler,
)
from .performance import PerformanceMonitor, PerformanceMetrics, OperationTimer

__all__ = [
    "ArbiflowError",
    "InvalidRate",
    "DimensionMismatch",
    "Infeasible",
    "SolverTimeout",
    "Unbounded",
    "SolverError",
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitState",
    "ErrorHandler",
    "PerformanceMonitor",
    "PerformanceMetrics",
    "OperationTimer",
]
