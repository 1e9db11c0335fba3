#!/usr/bin/env python3
"""Utility functions for arbiflow."""
import sys
from pathlib import Path
from typing import List, Sequence, Tuple
from loguru import logger


def format_percentage(value: float, decimals: int = 2) -> str:
    """Format percentage value."""
    return f"{value:.{decimals}f}%"


def format_rate(rate: float, digits: int = 6) -> str:
    """Format an exchange rate with significant digits."""
    return f"{rate:.{digits}g}"


def format_path(path: Sequence[str]) -> str:
    """Format trading path for display."""
    return " → ".join(path)


def edges_to_path(edges: List[Tuple[str, str]]) -> List[str]:
    """Turn consecutive edges into a closed list of currencies."""
    if not edges:
        return []
    return [source for source, _ in edges] + [edges[-1][1]]


def setup_logging(level: str = "INFO", log_dir: str = "logs", to_file: bool = True):
    """Configure loguru with a console sink and an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level)

    if to_file:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        logger.add(
            str(Path(log_dir) / "arbiflow_{time}.log"),
            rotation="1 day",
            retention="7 days",
            level=level,
        )
