"""Tests for the streaming threshold monitor."""
import math
from unittest.mock import Mock
import pytest
from arbiflow.core.market import MarketState
from arbiflow.infrastructure.error_handling import InvalidRate, SolverTimeout
from arbiflow.models import PairStatus, RateUpdate
from arbiflow.monitoring.monitor import StreamingMonitor
from conftest import CURRENCIES, SCENARIO_B

nan = float("nan")

SPARSE = [
    [1.0, 2.0, 3.0],
    [nan, 1.0, nan],
    [0.3, 0.5, 1.0],
]


@pytest.fixture
def market():
    return MarketState(CURRENCIES, SCENARIO_B)


@pytest.fixture
def monitor(market, monitor_config, solver_config):
    monitor = StreamingMonitor(market, config=monitor_config, solver_config=solver_config)
    monitor.watch("USD", "EUR")
    yield monitor
    monitor.close()


class TestWatching:
    """Test registering pinned pairs."""

    def test_watch_solves_threshold(self, monitor):
        """Test watching a pair computes its threshold at once."""
        state = monitor.get_state("USD", "EUR")

        assert state.status == PairStatus.FRESH
        assert state.threshold_rate == pytest.approx(2.0, rel=1e-6)
        assert state.last_rate == 1.9
        assert state.solves == 1

    def test_watch_twice_returns_same_state(self, monitor):
        """Test watching a pair again does not re-solve."""
        state = monitor.watch("USD", "EUR")
        assert state.solves == 1

    def test_watch_self_loop(self, monitor):
        """Test a pair must join two currencies."""
        with pytest.raises(ValueError):
            monitor.watch("USD", "USD")

    def test_unwatch(self, monitor):
        """Test unwatched pairs no longer signal."""
        monitor.unwatch("USD", "EUR")

        assert monitor.process(RateUpdate("USD", "EUR", 2.5)) == []
        assert monitor.pairs == {}

    def test_pairs_by_index(self, monitor):
        """Test pairs given by currency index resolve to the same state."""
        state = monitor.get_state("USD", "EUR")

        assert monitor.get_state(0, 1) is state
        assert monitor.watch(0, 1) is state

        monitor.unwatch(0, 1)
        assert monitor.pairs == {}

    def test_unknown_policy(self, market, monitor_config):
        """Test the policy name is validated."""
        config = monitor_config.model_copy(update={"policy": "sometimes"})
        with pytest.raises(ValueError):
            StreamingMonitor(market, config=config)


class TestPinnedTicks:
    """Test ticks on a watched edge."""

    def test_signal_above_threshold(self, monitor):
        """Test a quote above the threshold emits ArbitrageDetected."""
        received = []
        monitor.subscribe(received.append)

        signals = monitor.process(RateUpdate("USD", "EUR", 2.1))

        assert len(signals) == 1
        signal = signals[0]
        assert received == [signal]
        assert signal.source == "USD"
        assert signal.target == "EUR"
        assert signal.threshold == pytest.approx(2.0, rel=1e-6)
        assert signal.expected_return == pytest.approx(0.05, rel=1e-5)
        assert signal.cycle == [("USD", "EUR"), ("EUR", "GBP"), ("GBP", "USD")]
        assert signal.path == ["USD", "EUR", "GBP", "USD"]
        assert signal.snapshot_version == 1

    def test_no_signal_below_threshold(self, monitor):
        """Test a quote below the threshold is silent."""
        assert monitor.process(RateUpdate("USD", "EUR", 1.95)) == []
        assert monitor.get_state("USD", "EUR").last_rate == 1.95

    def test_pinned_tick_skips_solve(self, monitor):
        """Test ticks on the pinned edge reuse the cached threshold."""
        for rate in (1.91, 1.92, 2.05, 1.93):
            monitor.process(RateUpdate("USD", "EUR", rate))

        state = monitor.get_state("USD", "EUR")
        assert state.solves == 1
        assert state.skipped_solves == 4
        assert state.signals == 1

        stats = monitor.get_statistics()
        assert stats['threshold_solves'] == 1
        assert stats['solves_skipped'] == 4
        assert stats['ticks_processed'] == 4
        assert stats['signals_emitted'] == 1

    def test_min_profit_filter(self, market, monitor_config, solver_config):
        """Test signals below the minimum return are dropped."""
        config = monitor_config.model_copy(update={"min_profit_pct": 10.0})
        with StreamingMonitor(market, config=config, solver_config=solver_config) as monitor:
            monitor.watch("USD", "EUR")

            assert monitor.process(RateUpdate("USD", "EUR", 2.1)) == []
            signals = monitor.process(RateUpdate("USD", "EUR", 2.4))

        assert len(signals) == 1
        assert signals[0].return_pct == pytest.approx(20.0, rel=1e-5)

    def test_confirmed_signal(self, market, monitor_config, solver_config):
        """Test confirmation attaches the cycle-profit objective."""
        config = monitor_config.model_copy(update={"confirm_signals": True})
        with StreamingMonitor(market, config=config, solver_config=solver_config) as monitor:
            monitor.watch("USD", "EUR")
            signals = monitor.process(RateUpdate("USD", "EUR", 2.1))

        assert len(signals) == 1
        assert signals[0].confirmed_objective == pytest.approx(math.log(1.05), rel=1e-6)

    def test_failing_callback_does_not_block(self, monitor):
        """Test a raising subscriber does not stop the others."""
        received = []

        def broken(signal):
            raise RuntimeError("subscriber down")

        monitor.subscribe(broken)
        monitor.subscribe(received.append)

        signals = monitor.process(RateUpdate("USD", "EUR", 2.1))
        assert received == signals

    def test_unsubscribe(self, monitor):
        """Test removed callbacks are not called."""
        received = []
        monitor.subscribe(received.append)
        monitor.unsubscribe(received.append)

        monitor.process(RateUpdate("USD", "EUR", 2.1))
        assert received == []


class TestOtherTicks:
    """Test ticks on edges the pair does not pin."""

    def test_lazy_invalidation(self, monitor):
        """Test a route change marks the pair stale until it is read."""
        monitor.process(RateUpdate("GBP", "USD", 0.126))
        state = monitor.get_state("USD", "EUR")

        assert state.status == PairStatus.STALE
        assert state.threshold_rate is None
        assert monitor.threshold("USD", "EUR") == pytest.approx(1 / 0.504, rel=1e-6)
        assert state.status == PairStatus.FRESH
        assert state.solves == 2

    def test_eager_invalidation(self, market, monitor_config, solver_config):
        """Test the eager policy re-solves on every other-edge tick."""
        config = monitor_config.model_copy(update={"policy": "eager"})
        with StreamingMonitor(market, config=config, solver_config=solver_config) as monitor:
            monitor.watch("USD", "EUR")
            monitor.process(RateUpdate("GBP", "USD", 0.126))
            state = monitor.get_state("USD", "EUR")

            assert state.status == PairStatus.FRESH
            assert state.threshold_rate == pytest.approx(1 / 0.504, rel=1e-6)

    def test_threshold_moves_with_route(self, monitor):
        """Test worse routes raise the threshold and better ones lower it."""
        monitor.process(RateUpdate("EUR", "GBP", 3.0))
        assert monitor.threshold("USD", "EUR") == pytest.approx(2.5, rel=1e-6)

        monitor.process(RateUpdate("EUR", "GBP", 4.0))
        assert monitor.threshold("USD", "EUR") == pytest.approx(2.0, rel=1e-6)

    def test_never_compares_against_stale_threshold(self, monitor):
        """Test the threshold is re-solved before the next pinned comparison."""
        # old threshold 2.0, new threshold 1/0.504 ~ 1.984
        monitor.process(RateUpdate("GBP", "USD", 0.126))
        signals = monitor.process(RateUpdate("USD", "EUR", 1.99))

        assert len(signals) == 1
        assert signals[0].threshold == pytest.approx(1 / 0.504, rel=1e-6)

    def test_parallel_refresh(self, market, monitor_config, solver_config):
        """Test several stale pairs are re-solved on worker threads."""
        config = monitor_config.model_copy(update={"policy": "eager", "max_workers": 2})
        with StreamingMonitor(market, config=config, solver_config=solver_config) as monitor:
            monitor.watch("USD", "EUR")
            monitor.watch("EUR", "GBP")
            monitor.process(RateUpdate("GBP", "USD", 0.126))

            assert monitor.get_state("USD", "EUR").threshold_rate == pytest.approx(1 / 0.504, rel=1e-6)
            assert monitor.get_state("EUR", "GBP").threshold_rate == pytest.approx(
                1 / (0.126 * 1.9), rel=1e-6
            )

        assert monitor._executor is None


class TestFailures:
    """Test undefined thresholds, bad ticks and solver failures."""

    def test_infeasible_pair(self, monitor_config, solver_config):
        """Test a pair with no way back reports no threshold until one appears."""
        market = MarketState(["A", "B", "C"], SPARSE)
        with StreamingMonitor(market, config=monitor_config, solver_config=solver_config) as monitor:
            state = monitor.watch("A", "B")
            other = monitor.watch("A", "C")

            assert state.status == PairStatus.INFEASIBLE
            assert other.threshold_rate == pytest.approx(1 / 0.3, rel=1e-6)
            assert monitor.threshold("A", "B") is None
            assert monitor.process(RateUpdate("A", "B", 100.0)) == []

            monitor.process(RateUpdate("B", "A", 0.4))
            assert monitor.threshold("A", "B") == pytest.approx(2.5, rel=1e-6)
            assert state.status == PairStatus.FRESH

    def test_invalid_tick(self, monitor, market):
        """Test bad ticks raise and leave the market untouched."""
        with pytest.raises(InvalidRate):
            monitor.process(RateUpdate("USD", "EUR", 0.0))

        assert market.version == 0
        assert monitor.get_state("USD", "EUR").status == PairStatus.FRESH

    def test_circuit_breaker_stops_solving(self, market, monitor_config):
        """Test repeated solver failures open the pair's circuit."""
        solver = Mock()
        solver.solve.side_effect = SolverTimeout("deadline exceeded")
        config = monitor_config.model_copy(
            update={"failure_threshold": 2, "recovery_timeout": 3600}
        )
        monitor = StreamingMonitor(market, config=config, threshold_solver=solver)

        state = monitor.watch("USD", "EUR")
        assert state.status == PairStatus.UNKNOWN
        assert monitor.threshold("USD", "EUR") is None
        assert solver.solve.call_count == 2

        # circuit is open now
        assert monitor.threshold("USD", "EUR") is None
        assert solver.solve.call_count == 2
        assert monitor.process(RateUpdate("USD", "EUR", 5.0)) == []

        stats = monitor.get_statistics()
        assert stats['errors']['error_types'] == {'SolverTimeout': 2}
        assert stats['pairs']['USD->EUR']['status'] == "unknown"


class TestFeeds:
    """Test replaying and streaming ticks."""

    def test_replay(self, monitor):
        """Test replay collects signals in order."""
        signals = monitor.replay([
            RateUpdate("USD", "EUR", 2.1),
            RateUpdate("EUR", "GBP", 3.0),
            RateUpdate("USD", "EUR", 2.2),
            RateUpdate("USD", "EUR", 2.6),
        ])

        assert [s.rate for s in signals] == [2.1, 2.6]
        assert signals[1].threshold == pytest.approx(2.5, rel=1e-6)

    @pytest.mark.asyncio
    async def test_run_consumes_feed(self, monitor):
        """Test the async loop processes ticks and skips bad ones."""
        received = []
        monitor.subscribe(received.append)

        async def feed():
            yield RateUpdate("USD", "EUR", 1.95)
            yield RateUpdate("USD", "EUR", -3.0)
            yield RateUpdate("USD", "EUR", 2.1)

        await monitor.run(feed())

        assert len(received) == 1
        assert monitor.ticks_processed == 2
        assert monitor.get_statistics()['errors']['error_types'] == {'InvalidRate': 1}

    def test_statistics_shape(self, monitor):
        """Test the statistics report every watched pair."""
        stats = monitor.get_statistics()

        assert stats['market_version'] == 0
        assert stats['pairs']['USD->EUR']['threshold'] == pytest.approx(2.0, rel=1e-6)
        assert stats['errors']['total_errors'] == 0


class TestFees:
    """Test monitoring when every trade pays a fee."""

    @pytest.fixture
    def fee_monitor(self, monitor_config, solver_config):
        config = monitor_config.model_copy(update={"confirm_signals": True})
        market = MarketState(CURRENCIES, SCENARIO_B, fee_rate=0.01)
        monitor = StreamingMonitor(market, config=config, solver_config=solver_config)
        monitor.watch("USD", "EUR")
        yield monitor
        monitor.close()

    def test_threshold_is_quoted(self, fee_monitor):
        """Test the reported threshold is in quoted rates."""
        route = 4.0 * 0.99 * 0.125 * 0.99
        assert fee_monitor.threshold("USD", "EUR") == pytest.approx(1 / (route * 0.99), rel=1e-6)

    def test_last_rate_is_quoted(self, fee_monitor):
        """Test the watched pair starts from the quoted rate, not the after-fee one."""
        assert fee_monitor.get_state("USD", "EUR").last_rate == 1.9

    def test_no_signal_below_quoted_threshold(self, fee_monitor):
        """Test a quote above the after-fee break-even but below the quoted one is silent."""
        after_fee = 1 / (4.0 * 0.99 * 0.125 * 0.99)

        assert fee_monitor.process(RateUpdate("USD", "EUR", after_fee * 1.005)) == []

    def test_signal_above_quoted_threshold(self, fee_monitor):
        """Test a quote above the quoted threshold signals and is confirmed."""
        threshold = fee_monitor.threshold("USD", "EUR")
        signals = fee_monitor.process(RateUpdate("USD", "EUR", threshold * 1.005))

        assert len(signals) == 1
        assert signals[0].threshold == pytest.approx(threshold, rel=1e-9)
        assert signals[0].expected_return == pytest.approx(0.005, rel=1e-4)
        assert signals[0].confirmed_objective == pytest.approx(math.log(1.005), rel=1e-4)


class TestExtraCycles:
    """Test signals for thresholds that lean on a separate profitable cycle."""

    def test_signal_carries_extra_cycle(self, monitor_config, solver_config):
        """Test the signal reports the extra cycle and the pinned cycle's own return."""
        market = MarketState(["A", "B", "C", "D"], [
            [1.0, 1.5, nan, nan],
            [0.5, 1.0, nan, nan],
            [nan, nan, 1.0, 2.0],
            [nan, nan, 0.6, 1.0],
        ])
        with StreamingMonitor(market, config=monitor_config, solver_config=solver_config) as monitor:
            monitor.watch("A", "B")
            signals = monitor.process(RateUpdate("A", "B", 1.8))

        assert len(signals) == 1
        signal = signals[0]
        assert signal.threshold == pytest.approx(1 / 0.6, rel=1e-6)
        assert signal.cycle == [("A", "B"), ("B", "A")]
        assert signal.extra_cycles == [[("C", "D"), ("D", "C")]]
        assert signal.expected_return == pytest.approx(0.08, rel=1e-5)
        assert signal.cycle_return == pytest.approx(-0.1, rel=1e-5)
        assert "1 extra cycle" in str(signal)


class TestSmallMispricing:
    """Test signals just above the threshold."""

    def test_confirmed_just_above_threshold(self, market, monitor_config, solver_config):
        """Test a quote 1e-6 above break-even is signalled and confirmed."""
        config = monitor_config.model_copy(update={"confirm_signals": True})
        with StreamingMonitor(market, config=config, solver_config=solver_config) as monitor:
            monitor.watch("USD", "EUR")
            threshold = monitor.threshold("USD", "EUR")
            signals = monitor.process(RateUpdate("USD", "EUR", threshold * (1 + 1e-6)))

        assert len(signals) == 1
        assert signals[0].confirmed_objective == pytest.approx(1e-6, rel=1e-3)
