"""Break-even rate for a pinned edge (threshold LP)."""
from contextlib import nullcontext
from typing import Dict, Iterable, Optional, Tuple, Union
import numpy as np
from loguru import logger
from ..config import SolverConfig, config as default_config
from ..models import FlowAssignment, PinnedPairThreshold
from ..infrastructure.error_handling import (
    ArbiflowError, DimensionMismatch, Infeasible, SolverError
)
from ..infrastructure.performance import PerformanceMonitor
from .graph import RateGraph, Node, has_route, route_through
from .lp import solve_lp


class ThresholdSolver:
    """Computes the minimum rate on a pinned edge that completes a break-even cycle.

    With the pinned edge ``(s, t)`` forced to carry one unit, the LP is

        minimize    x
        subject to  x + sum c(i,j) w(i,j) = 0           (other edges only)
                    A w = b,  b[s] = +1, b[t] = -1       (route t back to s)
                    0 <= w <= 1,  x free

    ``x*`` is the break-even log-rate, so any quote above ``exp(x*)`` closes
    a strictly profitable cycle through the pinned edge.
    """

    def __init__(
        self,
        config: Optional[SolverConfig] = None,
        metrics: Optional[PerformanceMonitor] = None,
    ):
        self.config = config or default_config.solver
        self.metrics = metrics

    def solve(
        self,
        graph: RateGraph,
        source: Node,
        target: Node,
        snapshot_version: Optional[int] = None,
    ) -> PinnedPairThreshold:
        """Threshold for the pinned edge source -> target.

        Raises:
            DimensionMismatch: unknown currency or source == target
            Infeasible: no route from target back to source
            SolverTimeout: the solver hit its deadline
            Unbounded: the constraints are malformed
        """
        s, t = graph.index(source), graph.index(target)
        pair = (graph.name(s), graph.name(t))
        if s == t:
            raise DimensionMismatch("pinned edge must join two distinct currencies", pair=pair)

        # zero log-rate edges stay in: they may be the only way back
        edges = graph.edges(exclude=(s, t))
        if not edges:
            raise Infeasible(
                "no edges besides the pinned one", pair=pair, snapshot_version=snapshot_version
            )

        if not has_route(edges, t, s):
            raise Infeasible(
                f"no route from {pair[1]} back to {pair[0]}",
                pair=pair,
                snapshot_version=snapshot_version,
            )

        c = graph.log_rates(edges)
        m = len(edges)

        # variables: [x, w_1 .. w_m]
        objective = np.zeros(m + 1)
        objective[0] = 1.0
        objective[1:] = self.config.edge_penalty(m)

        A_eq = np.zeros((graph.n + 1, m + 1))
        A_eq[0, 0] = 1.0
        A_eq[0, 1:] = c
        A_eq[1:, 1:] = graph.incidence(edges)

        b_eq = np.zeros(graph.n + 1)
        b_eq[1 + s] = 1.0
        b_eq[1 + t] = -1.0

        bounds = [(None, None)] + [(0.0, 1.0)] * m

        timer = self.metrics.measure("threshold_solve") if self.metrics else nullcontext()
        try:
            with timer:
                solution = solve_lp(
                    objective,
                    A_eq=A_eq,
                    b_eq=b_eq,
                    bounds=bounds,
                    time_limit=self.config.time_limit,
                    method=self.config.method,
                    tolerance=self.config.lp_tolerance,
                )
        except ArbiflowError as e:
            raise e.with_context(pair=pair, snapshot_version=snapshot_version)

        weights = np.clip(solution.x[1:], 0.0, 1.0)
        log_rate = float(-(c @ weights))

        flow = FlowAssignment(edges=edges, weights=weights, currencies=list(graph.currencies))
        route, extra_cycles = route_through(flow.active_edges(self.config.active_weight), (s, t))
        if not route:
            raise SolverError(
                "routing flow does not connect the pinned edge",
                pair=pair,
                snapshot_version=snapshot_version,
            )
        if extra_cycles:
            logger.info(
                f"Threshold for {pair[0]}->{pair[1]} relies on {len(extra_cycles)} "
                f"profitable cycle(s) avoiding the pinned edge"
            )

        logger.debug(
            f"Threshold {pair[0]}->{pair[1]} = {np.exp(log_rate):.6g} "
            f"via {len(route)} hop(s)"
        )

        return PinnedPairThreshold(
            source=s,
            target=t,
            log_rate=log_rate,
            route=route,
            flow=flow,
            snapshot_version=snapshot_version,
            fee_rate=graph.fee_rate,
            route_log_return=float(sum(graph.log_rate(i, j) for i, j in route)),
            extra_cycles=extra_cycles,
        )

    def solve_many(
        self,
        graph: RateGraph,
        pairs: Iterable[Tuple[Node, Node]],
        snapshot_version: Optional[int] = None,
    ) -> Dict[Tuple[str, str], Union[PinnedPairThreshold, ArbiflowError]]:
        """Solve several pinned pairs; failures are returned, not raised."""
        results = {}
        for source, target in pairs:
            key = (str(source), str(target))
            try:
                key = (graph.name(graph.index(source)), graph.name(graph.index(target)))
                results[key] = self.solve(graph, source, target, snapshot_version)
            except ArbiflowError as e:
                logger.warning(f"Threshold for {key[0]}->{key[1]} unavailable: {e}")
                results[key] = e
        return results
