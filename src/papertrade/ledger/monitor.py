"""Periodic pending-order sweep."""

from __future__ import annotations

import logging
import threading

from papertrade.ledger.service import VirtualLedger

logger = logging.getLogger("papertrade.ledger.monitor")


class PendingOrderMonitor:
    """Runs `VirtualLedger.check_pending_orders` on a fixed interval in a daemon thread."""

    def __init__(self, ledger: VirtualLedger, interval_seconds: float = 10.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.ledger = ledger
        self.interval_seconds = float(interval_seconds)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="pending-order-monitor", daemon=True
        )
        self._thread.start()
        logger.info("started virtual order monitoring every %.1fs", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("stopped virtual order monitoring")

    def run_once(self) -> int:
        """Run a single sweep and return the number of orders it settled."""
        settled = self.ledger.check_pending_orders()
        return len(settled)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("pending order sweep failed")
