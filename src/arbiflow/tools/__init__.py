"""Tools for replaying recorded rate feeds."""

from .replay import TickReplay, load_market, load_ticks

__all__ = [
    "TickReplay",
    "load_market",
    "load_ticks",
]
