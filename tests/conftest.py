"""Shared fixtures for arbiflow tests."""
import pytest
from arbiflow.config import SolverConfig, MonitorConfig
from arbiflow.core.graph import RateGraph

CURRENCIES = ["USD", "EUR", "GBP"]

# 1 USD -> 2.5 EUR -> 10 GBP -> 1.25 USD
SCENARIO_A = [
    [1.0, 2.5, 8.0],
    [0.4, 1.0, 4.0],
    [0.125, 0.25, 1.0],
]

# pinned USD->EUR breaks even at 2.0 via EUR -> GBP -> USD
SCENARIO_B = [
    [1.0, 1.9, 7.9],
    [0.4, 1.0, 4.0],
    [0.125, 0.21, 1.0],
]


def consistent_matrix(prices, spread=0.001):
    """Rates implied by USD prices, minus a spread: never any arbitrage."""
    n = len(prices)
    return [
        [1.0 if i == j else prices[i] / prices[j] * (1 - spread) for j in range(n)]
        for i in range(n)
    ]


@pytest.fixture
def solver_config():
    """Solver configuration independent of the environment."""
    return SolverConfig(
        tolerance=1e-9,
        time_limit=10.0,
        method="highs",
        prune_zero_edges=True,
        prefer_fewest_trades=True,
        tie_break_penalty=1e-10,
        lp_tolerance=1e-10,
    )


@pytest.fixture
def monitor_config():
    """Lazy, single-threaded monitor configuration."""
    return MonitorConfig(
        policy="lazy",
        max_workers=1,
        failure_threshold=5,
        recovery_timeout=0,
        min_profit_pct=0.0,
        confirm_signals=False,
    )


@pytest.fixture
def scenario_a():
    return RateGraph(CURRENCIES, SCENARIO_A)


@pytest.fixture
def scenario_b():
    return RateGraph(CURRENCIES, SCENARIO_B)

