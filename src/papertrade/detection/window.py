"""Per-symbol rolling volume and price windows."""

from __future__ import annotations

import threading
from collections import deque
from enum import StrEnum

from papertrade.domain.market import PriceBar


class WindowState(StrEnum):
    """Readiness of a symbol's window."""

    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    READY = "ready"


class RollingWindow:
    """Fixed-capacity FIFO windows of volumes and price bars for one symbol.

    Callers hold `lock` while reading or appending.
    """

    def __init__(self, symbol: str, volume_capacity: int, bar_capacity: int | None = None) -> None:
        if volume_capacity <= 0:
            raise ValueError("volume_capacity must be positive")
        self.symbol = symbol
        self.volumes: deque[float] = deque(maxlen=volume_capacity)
        self.bars: deque[PriceBar] = deque(maxlen=max(bar_capacity or 0, volume_capacity))
        self.lock = threading.Lock()

    def append(self, volume: float, bar: PriceBar) -> None:
        self.volumes.append(float(volume))
        self.bars.append(bar)

    def clear(self) -> None:
        self.volumes.clear()
        self.bars.clear()

    def recent_bars(self, count: int) -> list[PriceBar]:
        if count <= 0:
            return []
        return list(self.bars)[-count:]

    def state(self, min_volume_samples: int, support_resistance_window: int) -> WindowState:
        if not self.volumes:
            return WindowState.EMPTY
        if len(self.volumes) >= min_volume_samples or len(self.bars) >= support_resistance_window:
            return WindowState.READY
        return WindowState.ACCUMULATING
