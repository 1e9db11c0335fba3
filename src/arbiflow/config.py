"""Configuration management for arbiflow."""
import os
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()


class SolverConfig(BaseModel):
    """Linear program solver configuration."""
    tolerance: float = Field(
        default_factory=lambda: float(os.getenv("ARBIFLOW_SOLVER_TOLERANCE", "1e-9"))
    )
    time_limit: float = Field(
        default_factory=lambda: float(os.getenv("ARBIFLOW_SOLVER_TIME_LIMIT", "5.0"))
    )
    method: str = Field(
        default_factory=lambda: os.getenv("ARBIFLOW_SOLVER_METHOD", "highs")
    )
    # drops zero log-return edges from the cycle-profit LP only
    prune_zero_edges: bool = Field(
        default_factory=lambda: os.getenv("ARBIFLOW_PRUNE_ZERO_EDGES", "true").lower() == "true"
    )
    prefer_fewest_trades: bool = Field(
        default_factory=lambda: os.getenv("ARBIFLOW_FEWEST_TRADES", "true").lower() == "true"
    )
    # upper bound on the log-return charged per used edge to break ties
    tie_break_penalty: float = Field(
        default_factory=lambda: float(os.getenv("ARBIFLOW_TIE_BREAK_PENALTY", "1e-10"))
    )
    # HiGHS primal and dual feasibility tolerance
    lp_tolerance: float = Field(
        default_factory=lambda: float(os.getenv("ARBIFLOW_LP_TOLERANCE", "1e-10"))
    )
    # weights above this count as traded edges
    active_weight: float = Field(default=0.5)

    def edge_penalty(self, n_edges: int) -> float:
        """Per-edge tie-break charge.

        Kept below ``tolerance / (2 * n_edges)`` so the total charge on any
        flow stays under half the tolerance and never hides a real cycle.
        """
        if not self.prefer_fewest_trades or n_edges == 0:
            return 0.0
        return min(self.tie_break_penalty, self.tolerance / (2 * n_edges))


class MonitorConfig(BaseModel):
    """Streaming monitor configuration."""
    policy: str = Field(
        default_factory=lambda: os.getenv("ARBIFLOW_MONITOR_POLICY", "lazy")
    )
    max_workers: int = Field(
        default_factory=lambda: int(os.getenv("ARBIFLOW_MAX_WORKERS", "1"))
    )
    failure_threshold: int = Field(
        default_factory=lambda: int(os.getenv("ARBIFLOW_FAILURE_THRESHOLD", "3"))
    )
    recovery_timeout: int = Field(
        default_factory=lambda: int(os.getenv("ARBIFLOW_RECOVERY_TIMEOUT", "30"))
    )
    min_profit_pct: float = Field(
        default_factory=lambda: float(os.getenv("ARBIFLOW_MIN_PROFIT_PCT", "0.0"))
    )
    # re-check triggered signals with a full cycle-profit solve
    confirm_signals: bool = Field(
        default_factory=lambda: os.getenv("ARBIFLOW_CONFIRM_SIGNALS", "false").lower() == "true"
    )


class MarketConfig(BaseModel):
    """Market data configuration."""
    fee_rate: float = Field(
        default_factory=lambda: float(os.getenv("ARBIFLOW_FEE_RATE", "0.0"))
    )


class Config(BaseModel):
    """Main application configuration."""
    solver: SolverConfig = Field(default_factory=SolverConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_dir: str = Field(default_factory=lambda: os.getenv("ARBIFLOW_LOG_DIR", "logs"))


# single global config instance used as the default everywhere
config = Config()
