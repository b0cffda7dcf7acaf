"""Exceptions raised by the ledger, detector and their collaborators."""

from __future__ import annotations


class PaperTradeError(Exception):
    """Base exception for all papertrade errors."""


class PriceUnavailable(PaperTradeError):
    """Raised when a reference price cannot be fetched for a symbol."""

    def __init__(self, symbol: str, reason: str = "") -> None:
        self.symbol = symbol
        self.reason = reason
        message = f"Price unavailable for {symbol}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class OrderNotFound(PaperTradeError, KeyError):
    """Raised when an order id is not among a portfolio's open orders."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")

    def __str__(self) -> str:
        return f"Order not found: {self.order_id}"


class InvalidOrder(PaperTradeError, ValueError):
    """Raised when an order request fails basic validation."""


class DataProviderError(PaperTradeError):
    """Raised when bar or stream retrieval fails."""


class BrokerError(PaperTradeError):
    """Raised when a live trading API call fails."""
