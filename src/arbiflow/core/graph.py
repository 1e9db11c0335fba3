"""Currency exchange graph and flow-conservation structure."""
import math
from typing import Iterable, List, Optional, Sequence, Tuple, Union
import numpy as np
import networkx as nx
from ..models import Edge
from ..infrastructure.error_handling import DimensionMismatch, InvalidRate

Node = Union[int, str]


class RateGraph:
    """Immutable directed graph of exchange rates between currencies.

    ``matrix[i][j]`` is the number of units of currency ``j`` bought with one
    unit of currency ``i``. Missing quotes are ``None`` or ``NaN`` and leave
    the edge out of the graph. The diagonal is ignored.
    """

    def __init__(
        self,
        currencies: Sequence[str],
        matrix: Union[np.ndarray, Sequence[Sequence[Optional[float]]]],
        fee_rate: float = 0.0,
    ):
        names = [str(c) for c in currencies]
        raw = _as_square_matrix(matrix)
        n = raw.shape[0]

        if len(names) != n:
            raise DimensionMismatch(
                f"{len(names)} currency labels for a {n}x{n} rate matrix"
            )
        if len(set(names)) != n:
            raise DimensionMismatch("currency labels must be unique")
        if not 0.0 <= fee_rate < 1.0:
            raise InvalidRate(f"fee rate must lie in [0, 1), got {fee_rate}")

        _check_rates(names, raw)

        effective = raw * (1.0 - fee_rate)
        np.fill_diagonal(effective, 1.0)
        raw.setflags(write=False)
        effective.setflags(write=False)

        self.currencies: Tuple[str, ...] = tuple(names)
        self.fee_rate = fee_rate
        self._raw = raw
        self._rates = effective
        self._index = {name: k for k, name in enumerate(names)}

    @classmethod
    def from_quotes(
        cls,
        quotes: Iterable[Tuple[str, str, float]],
        currencies: Optional[Sequence[str]] = None,
        fee_rate: float = 0.0,
    ) -> "RateGraph":
        """Build a graph from ``(source, target, rate)`` quotes."""
        quotes = list(quotes)
        if currencies is None:
            seen = {}
            for source, target, _ in quotes:
                seen.setdefault(str(source), None)
                seen.setdefault(str(target), None)
            currencies = list(seen)

        index = {str(name): k for k, name in enumerate(currencies)}
        matrix = np.full((len(currencies), len(currencies)), np.nan)
        for source, target, rate in quotes:
            if str(source) not in index or str(target) not in index:
                raise DimensionMismatch(f"quote {source}->{target} uses an unknown currency")
            if str(source) == str(target):
                raise DimensionMismatch(f"self-loop quote on {source}")
            matrix[index[str(source)], index[str(target)]] = np.nan if rate is None else rate
        return cls(currencies, matrix, fee_rate=fee_rate)

    @property
    def n(self) -> int:
        return len(self.currencies)

    @property
    def matrix(self) -> np.ndarray:
        """Rates after fees, with NaN for missing quotes."""
        return self._rates.copy()

    @property
    def raw_matrix(self) -> np.ndarray:
        """Quoted rates before fees."""
        return self._raw.copy()

    def index(self, node: Node) -> int:
        """Resolve a currency name (or index) to its index."""
        if isinstance(node, (int, np.integer)) and not isinstance(node, bool):
            if not 0 <= node < self.n:
                raise DimensionMismatch(f"currency index {node} out of range for N={self.n}")
            return int(node)
        try:
            return self._index[str(node)]
        except KeyError:
            raise DimensionMismatch(f"unknown currency {node!r}") from None

    def name(self, index: int) -> str:
        return self.currencies[index]

    def has_edge(self, source: Node, target: Node) -> bool:
        i, j = self.index(source), self.index(target)
        return i != j and not math.isnan(self._rates[i, j])

    def rate(self, source: Node, target: Node) -> float:
        """Effective rate on an edge, NaN when there is no quote."""
        return float(self._rates[self.index(source), self.index(target)])

    def quote(self, source: Node, target: Node) -> float:
        """Quoted rate before fees, NaN when there is no quote."""
        return float(self._raw[self.index(source), self.index(target)])

    def log_rate(self, source: Node, target: Node) -> float:
        return math.log(self.rate(source, target))

    def edges(self, prune_zero: bool = False, exclude: Optional[Edge] = None) -> List[Edge]:
        """Present edges in row-major order.

        Args:
            prune_zero: Drop edges whose log-rate is exactly zero
            exclude: An edge to leave out (the pinned edge)
        """
        result = []
        for i in range(self.n):
            for j in range(self.n):
                if i == j or math.isnan(self._rates[i, j]):
                    continue
                if exclude is not None and (i, j) == exclude:
                    continue
                if prune_zero and math.log(self._rates[i, j]) == 0.0:
                    continue
                result.append((i, j))
        return result

    def log_rates(self, edges: Sequence[Edge]) -> np.ndarray:
        """Objective coefficients c(i, j) = log r(i, j)."""
        return np.array([math.log(self._rates[i, j]) for i, j in edges], dtype=float)

    def incidence(self, edges: Sequence[Edge]) -> np.ndarray:
        """Conservation matrix: row k of ``A @ w`` is inflow(k) - outflow(k)."""
        A = np.zeros((self.n, len(edges)), dtype=float)
        for col, (i, j) in enumerate(edges):
            A[i, col] = -1.0
            A[j, col] = 1.0
        return A

    def with_rate(self, source: Node, target: Node, rate: Optional[float]) -> "RateGraph":
        """New graph with one quote replaced (``None`` removes the quote)."""
        i, j = self.index(source), self.index(target)
        if i == j:
            raise DimensionMismatch(f"self-loop quote on {self.currencies[i]}")
        raw = self._raw.copy()
        raw[i, j] = np.nan if rate is None else rate
        return RateGraph(self.currencies, raw, fee_rate=self.fee_rate)

    def path_log_return(self, path: Sequence[Node]) -> float:
        """Sum of log-rates along consecutive currencies of path."""
        total = 0.0
        for source, target in zip(path, path[1:]):
            if not self.has_edge(source, target):
                raise DimensionMismatch(f"no quote for {source}->{target}")
            total += self.log_rate(source, target)
        return total

    def __repr__(self) -> str:
        return f"RateGraph(currencies={list(self.currencies)}, edges={len(self.edges())})"


def _as_square_matrix(matrix) -> np.ndarray:
    try:
        raw = np.array(matrix, dtype=float)
    except (TypeError, ValueError) as e:
        raise DimensionMismatch(f"rate matrix is not a numeric square matrix: {e}") from None

    if raw.ndim != 2 or raw.shape[0] != raw.shape[1]:
        raise DimensionMismatch(f"rate matrix must be square, got shape {raw.shape}")
    if raw.shape[0] < 2:
        raise DimensionMismatch(f"need at least 2 currencies, got {raw.shape[0]}")
    return raw


def _check_rates(names: Sequence[str], raw: np.ndarray):
    n = raw.shape[0]
    for i in range(n):
        for j in range(n):
            if i == j:
                continue
            value = raw[i, j]
            if math.isnan(value):
                continue
            if value <= 0 or math.isinf(value):
                raise InvalidRate(
                    f"rate must be positive and finite, got {value}",
                    pair=(names[i], names[j]),
                )


def decompose_cycles(edges: Iterable[Edge]) -> List[List[Edge]]:
    """Split a balanced edge set into simple cycles.

    Each cycle is rotated to start at its smallest node and cycles are
    ordered by that node. Edges that are not part of any cycle are ignored.
    """
    graph = nx.DiGraph()
    graph.add_edges_from(edges)

    cycles = []
    while graph.number_of_edges():
        try:
            found = nx.find_cycle(graph)
        except nx.NetworkXNoCycle:
            break
        cycle = [(u, v) for u, v in found]
        graph.remove_edges_from(cycle)
        start = min(range(len(cycle)), key=lambda k: cycle[k][0])
        cycles.append(cycle[start:] + cycle[:start])

    cycles.sort(key=lambda cycle: (cycle[0][0], len(cycle)))
    return cycles


def has_route(edges: Iterable[Edge], start: int, end: int) -> bool:
    """True when end is reachable from start along edges."""
    graph = nx.DiGraph()
    graph.add_edges_from(edges)
    if start not in graph or end not in graph:
        return False
    return nx.has_path(graph, start, end)


def route_through(edges: Iterable[Edge], pinned: Edge) -> Tuple[List[Edge], List[List[Edge]]]:
    """Find the route closing the cycle started by the pinned edge.

    Returns the ordered edges from ``pinned[1]`` back to ``pinned[0]`` and
    any remaining cycles carried by the flow.
    """
    cycles = decompose_cycles(list(edges) + [pinned])
    for k, cycle in enumerate(cycles):
        if pinned in cycle:
            start = cycle.index(pinned)
            ordered = cycle[start:] + cycle[:start]
            return ordered[1:], cycles[:k] + cycles[k + 1:]
    return [], cycles
