#!/usr/bin/env python3
"""Replay recorded rate ticks through a streaming monitor."""
import csv
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple
from loguru import logger
from rich.console import Console
from ..config import config
from ..models import ArbitrageSignal, RateUpdate
from ..core.market import MarketState
from ..infrastructure.error_handling import ArbiflowError, DimensionMismatch
from ..monitoring.dashboard import ThresholdDashboard
from ..monitoring.monitor import StreamingMonitor
from ..utils import setup_logging


def load_market(path: str, fee_rate: float = 0.0) -> MarketState:
    """Load ``{"currencies": [...], "rates": [[...]]}``; ``null`` marks a missing quote."""
    with open(path) as f:
        data = json.load(f)
    try:
        return MarketState(data["currencies"], data["rates"], fee_rate=fee_rate)
    except KeyError as e:
        raise DimensionMismatch(f"{path} is missing the {e.args[0]!r} field") from None


def load_ticks(path: str) -> List[RateUpdate]:
    """Load a CSV with ``source,target,rate`` columns; an empty rate removes the quote."""
    ticks = []
    with open(path, newline='') as f:
        for line, row in enumerate(csv.DictReader(f), start=2):
            text = (row["rate"] or "").strip()
            try:
                rate = float(text) if text else None
            except ValueError:
                raise ValueError(f"{path}:{line}: bad rate {text!r}") from None
            ticks.append(RateUpdate(
                source=row["source"].strip(),
                target=row["target"].strip(),
                rate=rate,
            ))
    return ticks


def parse_pair(text: str) -> Tuple[str, str]:
    """Parse ``SOURCE/TARGET``."""
    parts = text.split('/')
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"pair must look like SOURCE/TARGET, got {text!r}")
    return parts[0], parts[1]


class TickReplay:
    """Runs a tick file against a rate matrix and collects signals."""

    def __init__(self, market: MarketState, pairs: List[Tuple[str, str]], console: Optional[Console] = None):
        self.monitor = StreamingMonitor(market)
        self.dashboard = ThresholdDashboard(self.monitor, console=console)
        self.signals: List[ArbitrageSignal] = []
        self.rejected = 0

        self.monitor.subscribe(self.signals.append)
        self.monitor.subscribe(self.dashboard.record_signal)
        for source, target in pairs:
            self.monitor.watch(source, target)

    def run(self, ticks: List[RateUpdate]) -> List[ArbitrageSignal]:
        for tick in ticks:
            try:
                self.monitor.process(tick)
            except ArbiflowError as e:
                self.rejected += 1
                logger.warning(f"Rejected tick {tick.source}->{tick.target}: {e}")
        self.monitor.close()
        return self.signals


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for ``arbiflow-replay``."""
    argv = sys.argv[1:] if argv is None else argv
    console = Console()

    if len(argv) < 3:
        console.print("[yellow]Usage:[/]")
        console.print("  arbiflow-replay <rates.json> <ticks.csv> SOURCE/TARGET [SOURCE/TARGET ...]")
        return 1

    setup_logging(config.log_level, config.log_dir, to_file=False)

    rates_path, ticks_path = argv[0], argv[1]
    for path in (rates_path, ticks_path):
        if not Path(path).exists():
            console.print(f"[red]File not found: {path}[/]")
            return 1

    try:
        pairs = [parse_pair(arg) for arg in argv[2:]]
        market = load_market(rates_path, fee_rate=config.market.fee_rate)
        ticks = load_ticks(ticks_path)
        replay = TickReplay(market, pairs, console=console)
    except (ValueError, ArbiflowError) as e:
        console.print(f"[red]{e}[/]")
        return 1

    signals = replay.run(ticks)

    for signal in signals:
        console.print(f"[green]{signal}[/]")
    replay.dashboard.print_summary()
    replay.monitor.metrics.log_summary()
    console.print(
        f"\n[bold cyan]{len(signals)} signal(s), {replay.rejected} rejected tick(s)[/]"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
