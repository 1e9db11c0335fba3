"""Streaming threshold monitor for pinned currency pairs."""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from threading import RLock
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple
from loguru import logger
from ..config import MonitorConfig, SolverConfig, config as default_config
from ..models import ArbitrageSignal, PairMonitorState, PairStatus, RateUpdate
from ..core.market import MarketState, RateSnapshot
from ..core.cycle_solver import CycleProfitSolver
from ..core.threshold_solver import ThresholdSolver
from ..infrastructure.error_handling import (
    ArbiflowError,
    CircuitBreakerError,
    ErrorHandler,
    Infeasible,
    Unbounded,
)
from ..infrastructure.performance import PerformanceMonitor

ArbitrageCallback = Callable[[ArbitrageSignal], None]

EAGER = "eager"
LAZY = "lazy"


class StreamingMonitor:
    """Answers rate ticks with cached per-pair thresholds.

    A tick on a pinned edge is a single comparison against that pair's
    threshold. A tick on any other edge invalidates the thresholds of every
    pair it does not pin; they are re-solved at once (eager policy) or on
    the next read (lazy policy). A threshold is only ever compared against
    while no other edge has changed since it was solved.
    """

    def __init__(
        self,
        market: MarketState,
        config: Optional[MonitorConfig] = None,
        solver_config: Optional[SolverConfig] = None,
        threshold_solver: Optional[ThresholdSolver] = None,
        metrics: Optional[PerformanceMonitor] = None,
    ):
        self.market = market
        self.config = config or default_config.monitor
        if self.config.policy not in (EAGER, LAZY):
            raise ValueError(f"unknown monitor policy {self.config.policy!r}")

        solver_config = solver_config or default_config.solver
        self.metrics = metrics or PerformanceMonitor()
        self.solver = threshold_solver or ThresholdSolver(solver_config, self.metrics)
        self.cycle_solver = CycleProfitSolver(solver_config, self.metrics)
        self.error_handler = ErrorHandler(
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout,
        )

        self.pairs: Dict[Tuple[str, str], PairMonitorState] = {}
        self._callbacks: List[ArbitrageCallback] = []
        self._lock = RLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.config.max_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="threshold-solve",
            )

        self.ticks_processed = 0
        self.signals_emitted = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        """Release worker threads."""
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None

    def watch(self, source: str, target: str) -> PairMonitorState:
        """Start monitoring a pinned pair and solve its threshold."""
        graph = self.market.snapshot().graph
        key = self._key(source, target)
        if key[0] == key[1]:
            raise ValueError("cannot pin a self-loop")

        with self._lock:
            if key in self.pairs:
                return self.pairs[key]
            state = PairMonitorState(source=key[0], target=key[1])
            if graph.has_edge(*key):
                state.last_rate = graph.quote(*key)
            self.pairs[key] = state

        logger.info(f"Watching {key[0]}->{key[1]}")
        self._solve_pair(state, self.market.snapshot())
        return state

    def unwatch(self, source: str, target: str):
        key = self._key(source, target)
        with self._lock:
            self.pairs.pop(key, None)
        self.error_handler.drop_circuit_breaker(f"{key[0]}->{key[1]}")

    def subscribe(self, callback: ArbitrageCallback):
        """Register an ArbitrageDetected handler."""
        self._callbacks.append(callback)

    def unsubscribe(self, callback: ArbitrageCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def get_state(self, source: str, target: str) -> PairMonitorState:
        return self.pairs[self._key(source, target)]

    def threshold(self, source: str, target: str) -> Optional[float]:
        """Current threshold rate, re-solving first if it is stale.

        Returns ``None`` when the threshold is undefined (no completing
        route) or unknown (last solve failed).
        """
        state = self.get_state(source, target)
        self._ensure_fresh(state)
        return state.threshold_rate

    def process(self, update: RateUpdate) -> List[ArbitrageSignal]:
        """Apply one tick and return the signals it triggered.

        Raises:
            InvalidRate: the tick carries a non-positive rate
            DimensionMismatch: the tick names an unknown currency
        """
        version = self.market.apply(update)
        self.ticks_processed += 1

        key = self._key(update.source, update.target)
        stale = self._invalidate(key)
        if stale and self.config.policy == EAGER:
            self._refresh(stale)

        state = self.pairs.get(key)
        if state is None:
            return []

        state.last_rate = update.rate
        signal = self._check(state, update, version)
        if signal is None:
            return []

        self._dispatch(signal)
        return [signal]

    async def run(self, updates: AsyncIterator[RateUpdate]):
        """Consume a feed until it ends; bad ticks are logged and skipped."""
        logger.info(f"Monitor running ({self.config.policy} policy, {len(self.pairs)} pair(s))")
        async for update in updates:
            try:
                self.process(update)
            except ArbiflowError as e:
                self.error_handler.record_error(e)
                logger.warning(f"Rejected tick {update.source}->{update.target}: {e}")
            await asyncio.sleep(0)
        logger.info(f"Feed finished after {self.ticks_processed} tick(s)")

    def replay(self, updates: Iterable[RateUpdate]) -> List[ArbitrageSignal]:
        """Process ticks synchronously and collect every signal."""
        signals = []
        for update in updates:
            signals.extend(self.process(update))
        return signals

    def get_statistics(self) -> dict:
        solve_metrics = self.metrics.get_metrics("threshold_solve")
        return {
            'ticks_processed': self.ticks_processed,
            'signals_emitted': self.signals_emitted,
            'threshold_solves': solve_metrics.get('total_operations', 0),
            'solves_skipped': solve_metrics.get('skipped', 0),
            'market_version': self.market.version,
            'pairs': {
                f"{s}->{t}": {
                    'status': state.status.value,
                    'threshold': state.threshold_rate,
                    'last_rate': state.last_rate,
                    'solves': state.solves,
                    'skipped_solves': state.skipped_solves,
                    'signals': state.signals,
                    'last_error': state.last_error,
                }
                for (s, t), state in self.pairs.items()
            },
            'errors': self.error_handler.get_error_stats(),
        }

    def _key(self, source, target) -> Tuple[str, str]:
        """Canonical currency names for a pair given by name or index."""
        graph = self.market.snapshot().graph
        return graph.name(graph.index(source)), graph.name(graph.index(target))

    def _invalidate(self, changed: Tuple[str, str]) -> List[PairMonitorState]:
        """Mark every pair not pinned on the changed edge as stale."""
        stale = []
        with self._lock:
            for key, state in self.pairs.items():
                if key == changed:
                    continue
                if state.status in (PairStatus.FRESH, PairStatus.INFEASIBLE):
                    state.status = PairStatus.STALE
                stale.append(state)
        return stale

    def _refresh(self, states: List[PairMonitorState]):
        """Re-solve states against one shared snapshot."""
        snapshot = self.market.snapshot()
        if self._executor and len(states) > 1:
            futures = [self._executor.submit(self._solve_pair, state, snapshot) for state in states]
            for future in futures:
                future.result()
        else:
            for state in states:
                self._solve_pair(state, snapshot)

    def _ensure_fresh(self, state: PairMonitorState) -> bool:
        """Re-solve a stale or unknown pair; True when a solve was attempted."""
        if state.status in (PairStatus.STALE, PairStatus.UNKNOWN):
            self._solve_pair(state, self.market.snapshot())
            return True
        return False

    def _solve_pair(self, state: PairMonitorState, snapshot: RateSnapshot):
        name = f"{state.source}->{state.target}"
        breaker = self.error_handler.get_circuit_breaker(name)
        try:
            threshold = breaker.call(
                self.solver.solve, snapshot.graph, state.source, state.target, snapshot.version
            )
        except Infeasible as e:
            self.error_handler.record_error(e)
            with self._lock:
                state.status = PairStatus.INFEASIBLE
                state.threshold = None
                state.last_error = str(e)
            logger.warning(f"Threshold undefined for {name}: {e}")
            return
        except CircuitBreakerError as e:
            with self._lock:
                state.status = PairStatus.UNKNOWN
                state.threshold = None
                state.last_error = str(e)
            logger.debug(f"Skipping solve for {name}: {e}")
            return
        except ArbiflowError as e:
            self.error_handler.record_error(e)
            with self._lock:
                state.status = PairStatus.UNKNOWN
                state.threshold = None
                state.last_error = str(e)
            if isinstance(e, Unbounded):
                logger.error(f"Threshold LP for {name} is unbounded: {e}")
            else:
                logger.warning(f"Threshold for {name} unknown: {e}")
            return

        with self._lock:
            state.solves += 1
            if self.market.changed_since(snapshot.version, ignore=state.pair):
                # rates moved while solving; the result is already stale
                state.status = PairStatus.STALE
                state.threshold = None
                return
            state.threshold = threshold
            state.status = PairStatus.FRESH
            state.last_error = None

    def _check(
        self, state: PairMonitorState, update: RateUpdate, version: int
    ) -> Optional[ArbitrageSignal]:
        solved = self._ensure_fresh(state)
        if not solved:
            state.skipped_solves += 1
            self.metrics.record_skip("threshold_solve")

        if state.status != PairStatus.FRESH or update.rate is None:
            return None

        threshold = state.threshold
        if not threshold.is_triggered(update.rate):
            return None

        expected_return = threshold.profit_at(update.rate)
        if expected_return * 100 < self.config.min_profit_pct:
            logger.debug(
                f"{state.source}->{state.target} above threshold but return "
                f"{expected_return * 100:.4f}% below minimum"
            )
            return None

        signal = ArbitrageSignal(
            source=state.source,
            target=state.target,
            rate=update.rate,
            threshold=threshold.rate,
            expected_return=expected_return,
            cycle=threshold.cycle_edges(),
            snapshot_version=version,
            extra_cycles=threshold.extra_cycle_edges(),
            cycle_return=threshold.cycle_profit_at(update.rate),
        )

        if self.config.confirm_signals:
            snapshot = self.market.snapshot()
            try:
                result = self.cycle_solver.solve(snapshot.graph, snapshot.version)
            except ArbiflowError as e:
                self.error_handler.record_error(e)
                logger.warning(f"Could not confirm {state.source}->{state.target}: {e}")
                return None
            if not result.is_arbitrage:
                logger.warning(
                    f"Cycle-profit solve found no arbitrage for triggered pair "
                    f"{state.source}->{state.target}"
                )
                return None
            signal.confirmed_objective = result.objective

        state.signals += 1
        self.signals_emitted += 1
        logger.success(f"Arbitrage detected: {signal}")
        return signal

    def _dispatch(self, signal: ArbitrageSignal):
        for callback in list(self._callbacks):
            try:
                callback(signal)
            except Exception as e:
                logger.error(f"Arbitrage callback {callback!r} failed: {e}")
