"""Volume anomaly detection and auto trading."""

from .engine import AnomalyDetector, DetectorConfig
from .signals import (
    compute_volume_zscore,
    find_resistance_levels,
    find_support_levels,
    near_level,
    order_book_imbalance,
)
from .sizing import position_qty
from .window import RollingWindow, WindowState

__all__ = [
    "AnomalyDetector",
    "DetectorConfig",
    "RollingWindow",
    "WindowState",
    "compute_volume_zscore",
    "find_resistance_levels",
    "find_support_levels",
    "near_level",
    "order_book_imbalance",
    "position_qty",
]
