"""Solve timing and skip counting for arbiflow."""
import time
import psutil
from typing import Dict, Any, Optional
from dataclasses import dataclass
from collections import defaultdict
from threading import Lock
from loguru import logger


@dataclass
class PerformanceMetrics:
    """Running statistics for one kind of operation."""

    total_operations: int = 0
    total_duration: float = 0.0
    min_duration: float = float('inf')
    max_duration: float = 0.0

    successful_operations: int = 0
    failed_operations: int = 0

    # operations answered without doing the work (e.g. threshold comparisons)
    skipped_operations: int = 0

    def update(self, duration: float, success: bool = True):
        """Update metrics with new operation."""
        self.total_operations += 1
        self.total_duration += duration
        self.min_duration = min(self.min_duration, duration)
        self.max_duration = max(self.max_duration, duration)

        if success:
            self.successful_operations += 1
        else:
            self.failed_operations += 1

    @property
    def average_duration(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.total_duration / self.total_operations

    @property
    def success_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.successful_operations / self.total_operations

    @property
    def skip_rate(self) -> float:
        """Fraction of requests that did not need the operation at all."""
        requests = self.total_operations + self.skipped_operations
        if requests == 0:
            return 0.0
        return self.skipped_operations / requests


class PerformanceMonitor:
    """Collects solve durations and skipped-solve counts."""

    def __init__(self):
        self.metrics: Dict[str, PerformanceMetrics] = defaultdict(PerformanceMetrics)
        self.lock = Lock()
        self.start_time = time.time()
        self.process = psutil.Process()

    def measure(self, operation_name: str) -> "OperationTimer":
        """Context manager for measuring operation time."""
        return OperationTimer(self, operation_name)

    def record_operation(self, operation_name: str, duration: float, success: bool = True):
        with self.lock:
            self.metrics[operation_name].update(duration, success)

    def record_skip(self, operation_name: str):
        """Count an operation that was avoided."""
        with self.lock:
            self.metrics[operation_name].skipped_operations += 1

    def get_metrics(self, operation_name: Optional[str] = None) -> Dict[str, Any]:
        """Get metrics for one operation, or for all of them."""
        with self.lock:
            if operation_name:
                if operation_name not in self.metrics:
                    return {}
                return self._describe(operation_name, self.metrics[operation_name])

            return {
                name: self._describe(name, m)
                for name, m in self.metrics.items()
            }

    @staticmethod
    def _describe(name: str, metrics: PerformanceMetrics) -> Dict[str, Any]:
        return {
            'operation': name,
            'total_operations': metrics.total_operations,
            'skipped': metrics.skipped_operations,
            'skip_rate': metrics.skip_rate,
            'average_duration': metrics.average_duration,
            'min_duration': metrics.min_duration if metrics.min_duration != float('inf') else 0,
            'max_duration': metrics.max_duration,
            'success_rate': metrics.success_rate,
            'successful': metrics.successful_operations,
            'failed': metrics.failed_operations,
        }

    def get_system_metrics(self) -> Dict[str, Any]:
        """Get process resource usage."""
        return {
            'cpu_percent': self.process.cpu_percent(interval=None),
            'memory_mb': self.process.memory_info().rss / 1024 / 1024,
            'num_threads': self.process.num_threads(),
            'uptime_seconds': time.time() - self.start_time,
        }

    def get_summary(self) -> Dict[str, Any]:
        operations = self.get_metrics()
        total = sum(m['total_operations'] for m in operations.values())
        skipped = sum(m['skipped'] for m in operations.values())
        return {
            'uptime_seconds': time.time() - self.start_time,
            'total_operations': total,
            'total_skipped': skipped,
            'operations': operations,
            'system': self.get_system_metrics(),
        }

    def log_summary(self):
        """Log performance summary."""
        summary = self.get_summary()

        logger.info("=" * 60)
        logger.info("Solver Performance Summary")
        logger.info("=" * 60)
        logger.info(f"Uptime: {summary['uptime_seconds']:.2f}s")
        logger.info(f"Solves: {summary['total_operations']} | Skipped: {summary['total_skipped']}")
        logger.info(f"Memory: {summary['system']['memory_mb']:.1f} MB")

        for op_name, metrics in summary['operations'].items():
            logger.info(
                f"  {op_name}: "
                f"{metrics['total_operations']} solves, "
                f"{metrics['skipped']} skipped, "
                f"avg {metrics['average_duration'] * 1000:.2f}ms, "
                f"success {metrics['success_rate']:.2%}"
            )

        logger.info("=" * 60)


class OperationTimer:
    """Context manager for timing operations."""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self.start_time = None
        self.success = True

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        self.success = exc_type is None
        self.monitor.record_operation(self.operation_name, duration, self.success)
        return False  # never suppress exceptions
