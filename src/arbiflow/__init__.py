"""
arbiflow - Linear-programming arbitrage detection for currency exchange graphs.
"""

from .config import config
from .models import (
    ArbitrageSignal,
    CycleProfitResult,
    FlowAssignment,
    PairStatus,
    PinnedPairThreshold,
    RateUpdate,
)
from .core import (
    CycleProfitSolver,
    MarketState,
    RateGraph,
    ThresholdSolver,
)
from .infrastructure import (
    ArbiflowError,
    DimensionMismatch,
    Infeasible,
    InvalidRate,
    SolverError,
    SolverTimeout,
    Unbounded,
)
from .monitoring import StreamingMonitor

__version__ = "1.0.0"
__all__ = [
    "config",
    "ArbitrageSignal",
    "CycleProfitResult",
    "FlowAssignment",
    "PairStatus",
    "PinnedPairThreshold",
    "RateUpdate",
    "CycleProfitSolver",
    "MarketState",
    "RateGraph",
    "ThresholdSolver",
    "ArbiflowError",
    "DimensionMismatch",
    "Infeasible",
    "InvalidRate",
    "SolverError",
    "SolverTimeout",
    "Unbounded",
    "StreamingMonitor",
]
