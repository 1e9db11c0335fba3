"""Console rendering of monitored pairs and solver statistics."""
from datetime import datetime
from typing import List, Optional
from rich.console import Console
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from ..models import ArbitrageSignal, PairStatus
from ..utils import edges_to_path, format_path, format_percentage, format_rate
from .monitor import StreamingMonitor

_STATUS_STYLE = {
    PairStatus.FRESH: "green",
    PairStatus.STALE: "yellow",
    PairStatus.UNKNOWN: "red",
    PairStatus.INFEASIBLE: "magenta",
}


class ThresholdDashboard:
    """Renders a streaming monitor's state with rich."""

    def __init__(self, monitor: StreamingMonitor, console: Optional[Console] = None):
        self.monitor = monitor
        self.console = console or Console()
        self.start_time = datetime.now()
        self.recent_signals: List[ArbitrageSignal] = []

    def record_signal(self, signal: ArbitrageSignal):
        """Keep the latest signals for display; usable as a monitor callback."""
        self.recent_signals.insert(0, signal)
        del self.recent_signals[10:]

    def create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="pairs", ratio=2),
            Layout(name="signals", ratio=1),
            Layout(name="stats", size=8),
        )

        stats = self.monitor.get_statistics()
        runtime = datetime.now() - self.start_time
        layout["header"].update(Panel(
            f"ARBIFLOW - Threshold Monitor\n"
            f"Runtime: {runtime} | Ticks: {stats['ticks_processed']} | "
            f"Signals: {stats['signals_emitted']}",
            style="bold cyan",
        ))
        layout["pairs"].update(Panel(self.create_pairs_table(), title="Pinned Pairs"))

        if self.recent_signals:
            layout["signals"].update(Panel(self.create_signals_table(), title="Recent Signals"))
        else:
            layout["signals"].update(Panel("No arbitrage detected...", title="Recent Signals"))

        layout["stats"].update(Panel(self.create_stats_table(), title="Solver Statistics"))
        return layout

    def create_pairs_table(self) -> Table:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Pair", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Threshold", justify="right")
        table.add_column("Last Rate", justify="right")
        table.add_column("Headroom %", justify="right")
        table.add_column("Route")

        for state in self.monitor.pairs.values():
            style = _STATUS_STYLE[state.status]
            threshold = state.threshold_rate
            headroom = "-"
            if threshold is not None and state.last_rate is not None:
                gap = (state.last_rate / threshold - 1) * 100
                colour = "green" if gap > 0 else "yellow"
                headroom = f"[{colour}]{format_percentage(gap, 4)}[/]"

            route = "-"
            if state.threshold is not None and state.status == PairStatus.FRESH:
                route = format_path(edges_to_path(state.threshold.cycle_edges()))

            table.add_row(
                f"{state.source} → {state.target}",
                f"[{style}]{state.status.value.upper()}[/]",
                format_rate(threshold) if threshold is not None else "-",
                format_rate(state.last_rate) if state.last_rate is not None else "-",
                headroom,
                route,
            )
        return table

    def create_signals_table(self) -> Table:
        table = Table(show_header=True, header_style="bold green")
        table.add_column("Time")
        table.add_column("Cycle", style="cyan")
        table.add_column("Rate", justify="right")
        table.add_column("Threshold", justify="right")
        table.add_column("Return %", justify="right", style="green")

        for signal in self.recent_signals:
            table.add_row(
                signal.timestamp.strftime("%H:%M:%S"),
                format_path(signal.path),
                format_rate(signal.rate),
                format_rate(signal.threshold),
                format_percentage(signal.return_pct, 4),
            )
        return table

    def create_stats_table(self) -> Table:
        stats = self.monitor.get_statistics()
        solve = self.monitor.metrics.get_metrics("threshold_solve")

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="yellow")

        table.add_row("Threshold Solves", str(stats['threshold_solves']))
        table.add_row("Solves Skipped", str(stats['solves_skipped']))
        table.add_row("Skip Rate", f"{solve.get('skip_rate', 0.0) * 100:.1f}%")
        table.add_row("Avg Solve", f"{solve.get('average_duration', 0.0) * 1000:.2f}ms")
        table.add_row("Errors", str(stats['errors']['total_errors']))
        return table

    def print_summary(self):
        """Print the pair table and statistics once."""
        self.console.print(self.create_pairs_table())
        if self.recent_signals:
            self.console.print(self.create_signals_table())
        self.console.print(self.create_stats_table())
