"""Pure statistics behind the detector: volume z-scores, levels and imbalance."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import pandas as pd

LEVEL_DEDUP_TOLERANCE = 0.005
LEVEL_PROXIMITY = 0.01
MAX_LEVELS = 3
IMBALANCE_HIGH = 3.0
IMBALANCE_LOW = 1.0 / 3.0


def compute_volume_zscore(current_volume: float, volumes: Sequence[float]) -> tuple[float, float]:
    """Return (z_score, mean) of current_volume against all but the newest sample.

    The standard deviation is the population one and is floored at 1 so a flat
    history cannot divide by zero.
    """
    if len(volumes) < 2:
        raise ValueError("at least two volume samples are required")
    history = pd.Series(list(volumes)[:-1], dtype="float64")
    mean = float(history.mean())
    std = float(history.std(ddof=0))
    z_score = (float(current_volume) - mean) / max(std, 1.0)
    return z_score, mean


def _cluster_levels(values: Iterable[float], descending: bool) -> list[float]:
    """Walk prices away from the extreme, folding each one into the last level when close.

    A folded price becomes the level, so every reported pair stays at least
    LEVEL_DEDUP_TOLERANCE apart relative to the larger price.
    """
    levels: list[float] = []
    for value in sorted((float(v) for v in values), reverse=descending):
        if value <= 0:
            continue
        if levels and abs(levels[-1] - value) / max(levels[-1], value) < LEVEL_DEDUP_TOLERANCE:
            levels[-1] = value
            continue
        if len(levels) == MAX_LEVELS:
            break
        levels.append(value)
    return levels


def find_resistance_levels(highs: Iterable[float]) -> list[float]:
    """Up to three highest price clusters, highest first."""
    return _cluster_levels(highs, descending=True)


def find_support_levels(lows: Iterable[float]) -> list[float]:
    """Up to three lowest price clusters, lowest first."""
    return _cluster_levels(lows, descending=False)


def near_level(price: float, levels: Iterable[float], proximity: float = LEVEL_PROXIMITY) -> bool:
    return any(level > 0 and abs(price - level) / level < proximity for level in levels)


def order_book_imbalance(bid_size: float, ask_size: float) -> float:
    return float(bid_size) / max(float(ask_size), 1.0)


def is_imbalanced(imbalance: float) -> bool:
    return imbalance > IMBALANCE_HIGH or imbalance < IMBALANCE_LOW
