"""Data models for LP-based arbitrage detection."""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from enum import Enum
import numpy as np
from .utils import edges_to_path

# (source index, target index)
Edge = Tuple[int, int]


class PairStatus(Enum):
    """Lifecycle of a monitored pair's threshold."""
    FRESH = "fresh"
    STALE = "stale"
    UNKNOWN = "unknown"  # last solve failed, signalling suppressed
    INFEASIBLE = "infeasible"  # no completing route, threshold undefined


@dataclass
class FlowAssignment:
    """Fractional edge usage returned by an LP solve."""
    edges: List[Edge]
    weights: np.ndarray
    currencies: List[str]

    def weight(self, source: int, target: int) -> float:
        """Weight on an edge, 0.0 when the edge was not in the LP."""
        for k, edge in enumerate(self.edges):
            if edge == (source, target):
                return float(self.weights[k])
        return 0.0

    def active_edges(self, tolerance: float = 1e-6) -> List[Edge]:
        """Edges carrying flow."""
        return [
            edge for edge, w in zip(self.edges, self.weights)
            if w > tolerance
        ]

    def net_flow(self, node: int) -> float:
        """Inflow minus outflow at node."""
        total = 0.0
        for (source, target), w in zip(self.edges, self.weights):
            if target == node:
                total += w
            if source == node:
                total -= w
        return float(total)

    def as_dict(self) -> Dict[Tuple[str, str], float]:
        """Weights keyed by currency names."""
        return {
            (self.currencies[i], self.currencies[j]): float(w)
            for (i, j), w in zip(self.edges, self.weights)
        }


@dataclass
class CycleProfitResult:
    """Outcome of the cycle-profit LP."""
    objective: float
    flow: FlowAssignment
    cycles: List[List[Edge]]
    cycle_returns: List[float]  # log-return of each cycle
    tolerance: float = 1e-9
    snapshot_version: Optional[int] = None

    @property
    def is_arbitrage(self) -> bool:
        return self.objective > self.tolerance

    @property
    def expected_return(self) -> float:
        """Multiplicative return exp(v) - 1 of the whole circulation."""
        return math.expm1(self.objective)

    @property
    def best_cycle(self) -> List[Edge]:
        """Most profitable cycle, empty when there is no arbitrage."""
        if not self.cycles:
            return []
        best = max(range(len(self.cycles)), key=lambda k: self.cycle_returns[k])
        return self.cycles[best]

    def cycle_paths(self) -> List[List[str]]:
        """Each cycle as a closed list of currency names."""
        names = self.flow.currencies
        return [
            [names[edge[0]] for edge in cycle] + [names[cycle[0][0]]]
            for cycle in self.cycles
        ]


@dataclass
class PinnedPairThreshold:
    """Break-even rate for one pinned edge, given a snapshot of the other rates.

    ``log_rate`` is the break-even log of the effective (after-fee) rate.
    Rates passed in and reported by :attr:`rate` are quoted rates, so the fee
    on the pinned edge is applied here.

    The routing flow may also carry profitable cycles that avoid the pinned
    edge (``extra_cycles``); their profit is already part of ``log_rate``.
    """
    source: int
    target: int
    log_rate: float
    route: List[Edge]  # ordered edges from target back to source
    flow: FlowAssignment
    snapshot_version: Optional[int] = None
    computed_at: datetime = field(default_factory=datetime.now)
    fee_rate: float = 0.0
    route_log_return: float = 0.0
    extra_cycles: List[List[Edge]] = field(default_factory=list)

    @property
    def rate(self) -> float:
        """Quoted break-even rate."""
        return math.exp(self.log_rate) / (1.0 - self.fee_rate)

    def effective_log(self, rate: float) -> float:
        return math.log(rate) + math.log1p(-self.fee_rate)

    @property
    def pair(self) -> Tuple[str, str]:
        names = self.flow.currencies
        return names[self.source], names[self.target]

    def is_triggered(self, rate: float, tolerance: float = 0.0) -> bool:
        """True when the quoted rate lies strictly above the threshold."""
        return self.effective_log(rate) > self.log_rate + tolerance

    def profit_at(self, rate: float) -> float:
        """Return of the whole routing flow, extra cycles included, at a quoted rate."""
        return math.expm1(self.effective_log(rate) - self.log_rate)

    def cycle_profit_at(self, rate: float) -> float:
        """Return of the pinned cycle alone at a quoted rate."""
        return math.expm1(self.effective_log(rate) + self.route_log_return)

    def cycle_edges(self) -> List[Tuple[str, str]]:
        """Pinned edge followed by the completing route, by currency name."""
        names = self.flow.currencies
        edges = [(self.source, self.target)] + list(self.route)
        return [(names[i], names[j]) for i, j in edges]

    def extra_cycle_edges(self) -> List[List[Tuple[str, str]]]:
        names = self.flow.currencies
        return [[(names[i], names[j]) for i, j in cycle] for cycle in self.extra_cycles]


@dataclass
class RateUpdate:
    """A single tick from the rate feed."""
    source: str
    target: str
    rate: float
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def pair(self) -> Tuple[str, str]:
        return self.source, self.target


@dataclass
class ArbitrageSignal:
    """ArbitrageDetected event for a pinned pair."""
    source: str
    target: str
    rate: float
    threshold: float
    expected_return: float
    cycle: List[Tuple[str, str]]
    snapshot_version: Optional[int]
    timestamp: datetime = field(default_factory=datetime.now)
    # objective of the confirming cycle-profit solve, when one was run
    confirmed_objective: Optional[float] = None
    # profitable cycles avoiding the pinned edge that the threshold relied on
    extra_cycles: List[List[Tuple[str, str]]] = field(default_factory=list)
    # return of the pinned cycle on its own; expected_return covers all cycles
    cycle_return: Optional[float] = None

    @property
    def return_pct(self) -> float:
        return self.expected_return * 100

    @property
    def path(self) -> List[str]:
        return edges_to_path(self.cycle)

    def __str__(self) -> str:
        path_str = " → ".join(self.path)
        text = (
            f"{path_str} | rate {self.rate:.6g} > threshold {self.threshold:.6g} "
            f"| Return: {self.return_pct:.4f}%"
        )
        if self.extra_cycles:
            text += f" (with {len(self.extra_cycles)} extra cycle(s))"
        return text


@dataclass
class PairMonitorState:
    """Per-pair threshold cache held by the streaming monitor."""
    source: str
    target: str
    status: PairStatus = PairStatus.STALE
    threshold: Optional[PinnedPairThreshold] = None
    last_error: Optional[str] = None
    last_rate: Optional[float] = None
    solves: int = 0
    skipped_solves: int = 0
    signals: int = 0

    @property
    def pair(self) -> Tuple[str, str]:
        return self.source, self.target

    @property
    def threshold_rate(self) -> Optional[float]:
        if self.status != PairStatus.FRESH or self.threshold is None:
            return None
        return self.threshold.rate
