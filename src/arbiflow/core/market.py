"""Versioned, lock-protected market rate state."""
import math
from dataclasses import dataclass
from threading import RLock
from typing import Dict, Optional, Sequence, Tuple
import numpy as np
from loguru import logger
from ..models import RateUpdate
from ..infrastructure.error_handling import DimensionMismatch, InvalidRate
from .graph import RateGraph


@dataclass(frozen=True)
class RateSnapshot:
    """A consistent graph copy taken at one version of the market."""
    graph: RateGraph
    version: int


class MarketState:
    """Owns the live rate matrix for one monitoring session.

    Writers go through :meth:`apply`; readers take an immutable
    :class:`RateSnapshot`, so an LP never sees rates from two different
    versions.
    """

    def __init__(
        self,
        currencies: Sequence[str],
        matrix,
        fee_rate: float = 0.0,
    ):
        self._lock = RLock()
        self._graph = RateGraph(currencies, matrix, fee_rate=fee_rate)
        self._version = 0
        # version at which each edge last changed
        self._edge_versions: Dict[Tuple[int, int], int] = {}

    @classmethod
    def from_graph(cls, graph: RateGraph) -> "MarketState":
        return cls(graph.currencies, graph.raw_matrix, fee_rate=graph.fee_rate)

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    @property
    def currencies(self) -> Tuple[str, ...]:
        return self._graph.currencies

    def snapshot(self) -> RateSnapshot:
        with self._lock:
            return RateSnapshot(graph=self._graph, version=self._version)

    def rate(self, source: str, target: str) -> float:
        with self._lock:
            return self._graph.rate(source, target)

    def apply(self, update: RateUpdate) -> int:
        """Apply one tick and return the new version.

        The update is validated before anything changes, so a bad tick
        leaves the state untouched.
        """
        rate = update.rate
        if rate is not None and (math.isnan(rate) or rate <= 0 or math.isinf(rate)):
            raise InvalidRate(
                f"rate must be positive and finite, got {rate}",
                pair=update.pair,
                snapshot_version=self.version,
            )

        with self._lock:
            try:
                graph = self._graph.with_rate(update.source, update.target, rate)
            except DimensionMismatch as e:
                raise e.with_context(pair=update.pair, snapshot_version=self._version)

            self._graph = graph
            self._version += 1
            edge = (graph.index(update.source), graph.index(update.target))
            self._edge_versions[edge] = self._version
            logger.debug(
                f"Rate {update.source}->{update.target} = {rate} (version {self._version})"
            )
            return self._version

    def changed_since(self, version: int, ignore: Optional[Tuple[str, str]] = None) -> bool:
        """True when any edge other than ``ignore`` changed after version."""
        with self._lock:
            skip = None
            if ignore is not None:
                skip = (self._graph.index(ignore[0]), self._graph.index(ignore[1]))
            return any(
                changed > version
                for edge, changed in self._edge_versions.items()
                if edge != skip
            )

    def to_matrix(self) -> np.ndarray:
        with self._lock:
            return self._graph.raw_matrix
