"""Graph model and linear programs."""

from .graph import RateGraph, decompose_cycles, route_through
from .market import MarketState, RateSnapshot
from .lp import LPSolution, solve_lp
from .cycle_solver import CycleProfitSolver
from .threshold_solver import ThresholdSolver

__all__ = [
    "RateGraph",
    "decompose_cycles",
    "route_through",
    "MarketState",
    "RateSnapshot",
    "LPSolution",
    "solve_lp",
    "CycleProfitSolver",
    "ThresholdSolver",
]
