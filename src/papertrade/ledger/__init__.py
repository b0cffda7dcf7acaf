"""Virtual ledger and its pending-order sweep."""

from .monitor import PendingOrderMonitor
from .service import VirtualLedger, is_marketable

__all__ = ["PendingOrderMonitor", "VirtualLedger", "is_marketable"]
