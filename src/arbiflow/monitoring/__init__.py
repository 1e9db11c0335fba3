"""Streaming monitor and console dashboard."""

from .monitor import StreamingMonitor
from .dashboard import ThresholdDashboard

__all__ = [
    "StreamingMonitor",
    "ThresholdDashboard",
]
