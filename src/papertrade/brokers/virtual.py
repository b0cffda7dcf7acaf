"""Trading client backed by the in-memory ledger."""

from __future__ import annotations

from dataclasses import replace

from papertrade.domain.models import AccountSummary, Order, OrderRequest, Position
from papertrade.ledger.service import VirtualLedger


class VirtualTradingClient:
    """Binds one ledger user to the TradingClient interface."""

    def __init__(self, ledger: VirtualLedger, user_id: str) -> None:
        self.ledger = ledger
        self.user_id = user_id

    def get_account(self) -> AccountSummary:
        return self.ledger.get_account(self.user_id)

    def get_position(self, symbol: str) -> Position | None:
        portfolio = self.ledger.get_portfolio(self.user_id)
        with portfolio.lock:
            position = portfolio.positions.get(symbol.strip().upper())
            return replace(position) if position is not None else None

    def submit_order(self, request: OrderRequest) -> Order:
        return self.ledger.place_order(self.user_id, request)
