"""Maximum log-return circulation (cycle-profit LP)."""
import math
from contextlib import nullcontext
from typing import Optional, Sequence
import numpy as np
from loguru import logger
from ..config import SolverConfig, config as default_config
from ..models import CycleProfitResult, FlowAssignment
from ..infrastructure.performance import PerformanceMonitor
from .graph import RateGraph, Node, decompose_cycles
from .lp import solve_lp


class CycleProfitSolver:
    """Detects arbitrage by maximising total log-return over circulations.

    The LP is

        maximize    sum c(i,j) w(i,j)
        subject to  A w = 0,  0 <= w <= 1

    where ``c`` are log-rates and ``A`` is the conservation matrix. ``A`` is
    totally unimodular, so simplex vertices are 0/1 circulations, i.e. unions
    of simple cycles, and the relaxation is exact.
    """

    def __init__(
        self,
        config: Optional[SolverConfig] = None,
        metrics: Optional[PerformanceMonitor] = None,
    ):
        self.config = config or default_config.solver
        self.metrics = metrics

    def solve(self, graph: RateGraph, snapshot_version: Optional[int] = None) -> CycleProfitResult:
        """Find the best circulation for the current rates."""
        edges = graph.edges(prune_zero=self.config.prune_zero_edges)
        names = list(graph.currencies)

        if not edges:
            return self._no_arbitrage(edges, names, snapshot_version)

        c = graph.log_rates(edges)
        A = graph.incidence(edges)
        # among near-equal circulations prefer the one using fewer edges
        objective = c - self.config.edge_penalty(len(edges))

        timer = self.metrics.measure("cycle_solve") if self.metrics else nullcontext()
        with timer:
            solution = solve_lp(
                objective,
                A_eq=A,
                b_eq=np.zeros(graph.n),
                bounds=(0, 1),
                maximize=True,
                time_limit=self.config.time_limit,
                method=self.config.method,
                tolerance=self.config.lp_tolerance,
            )

        weights = np.clip(solution.x, 0.0, 1.0)
        value = float(c @ weights)

        if value <= self.config.tolerance:
            logger.debug(f"No arbitrage across {len(edges)} edges (objective {value:.3e})")
            return self._no_arbitrage(edges, names, snapshot_version)

        flow = FlowAssignment(edges=edges, weights=weights, currencies=names)
        cycles = decompose_cycles(flow.active_edges(self.config.active_weight))
        cycle_returns = [float(sum(graph.log_rate(i, j) for i, j in cycle)) for cycle in cycles]

        logger.debug(
            f"Arbitrage objective {value:.6f} over {len(cycles)} cycle(s) "
            f"({solution.iterations} iterations)"
        )

        return CycleProfitResult(
            objective=value,
            flow=flow,
            cycles=cycles,
            cycle_returns=cycle_returns,
            tolerance=self.config.tolerance,
            snapshot_version=snapshot_version,
        )

    def evaluate_cycle(self, graph: RateGraph, path: Sequence[Node]) -> float:
        """Multiplicative return of trading along a closed currency path."""
        if len(path) < 3 or graph.index(path[0]) != graph.index(path[-1]):
            raise ValueError("cycle must start and end at the same currency")
        return math.expm1(graph.path_log_return(path))

    def _no_arbitrage(self, edges, names, snapshot_version) -> CycleProfitResult:
        flow = FlowAssignment(edges=edges, weights=np.zeros(len(edges)), currencies=names)
        return CycleProfitResult(
            objective=0.0,
            flow=flow,
            cycles=[],
            cycle_returns=[],
            tolerance=self.config.tolerance,
            snapshot_version=snapshot_version,
        )
