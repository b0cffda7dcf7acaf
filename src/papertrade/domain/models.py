"""Core ledger domain models."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Literal, Self

from papertrade.errors import InvalidOrder

Mode = Literal["virtual", "live"]

DEFAULT_STARTING_CASH = Decimal("100000")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_decimal(value: Any) -> Decimal:
    """Convert prices and amounts to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric amount: {value!r}")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a numeric amount: {value!r}") from exc


class OrderSide(StrEnum):
    """Supported order directions."""

    BUY = "buy"
    SELL = "sell"


class OrderType(StrEnum):
    """Supported order types."""

    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(StrEnum):
    """Order lifecycle states."""

    PENDING = "pending"
    OPEN = "open"
    FILLED = "filled"
    REJECTED = "rejected"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({OrderStatus.FILLED, OrderStatus.REJECTED, OrderStatus.CANCELED})

REJECT_INSUFFICIENT_FUNDS = "Insufficient funds"
REJECT_NO_POSITION = "No position to sell"
REJECT_INSUFFICIENT_SHARES = "Insufficient shares"


@dataclass(frozen=True)
class OrderRequest:
    """Order intent submitted by a user or by the detector."""

    symbol: str
    qty: int
    side: OrderSide
    order_type: OrderType = OrderType.MARKET
    limit_price: Decimal | None = None
    time_in_force: str = "day"

    def normalized(self) -> Self:
        """Return a validated copy with canonical symbol, enums and Decimal limit."""
        symbol = str(self.symbol).strip().upper()
        if not symbol:
            raise InvalidOrder("symbol is required")
        if isinstance(self.qty, bool) or not isinstance(self.qty, int) or self.qty <= 0:
            raise InvalidOrder("qty must be a positive integer")
        try:
            side = OrderSide(str(self.side).strip().lower())
        except ValueError as exc:
            raise InvalidOrder(f"Unknown side: {self.side}") from exc
        try:
            order_type = OrderType(str(self.order_type).strip().lower())
        except ValueError as exc:
            raise InvalidOrder(f"Unknown order type: {self.order_type}") from exc

        limit_price: Decimal | None = None
        if order_type is OrderType.LIMIT:
            if self.limit_price is None:
                raise InvalidOrder("limit orders require limit_price")
            try:
                limit_price = to_decimal(self.limit_price)
            except ValueError as exc:
                raise InvalidOrder(str(exc)) from exc
            if not limit_price.is_finite() or limit_price <= 0:
                raise InvalidOrder("limit_price must be positive")

        return replace(
            self,
            symbol=symbol,
            side=side,
            order_type=order_type,
            limit_price=limit_price,
            time_in_force=(self.time_in_force or "day").strip().lower(),
        )


@dataclass
class Order:
    """Virtual order; `id` and request fields never change after creation."""

    id: str
    user_id: str
    symbol: str
    qty: int
    side: OrderSide
    order_type: OrderType
    limit_price: Decimal | None
    time_in_force: str
    status: OrderStatus = OrderStatus.PENDING
    submitted_at: datetime = field(default_factory=utc_now)
    filled_qty: int = 0
    filled_avg_price: Decimal | None = None
    filled_at: datetime | None = None
    canceled_at: datetime | None = None
    reject_reason: str | None = None
    price: Decimal | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> Order:
        """Detached copy used for trade history and event payloads."""
        return replace(self)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "qty": self.qty,
            "side": self.side.value,
            "type": self.order_type.value,
            "limit_price": _money_text(self.limit_price),
            "time_in_force": self.time_in_force,
            "status": self.status.value,
            "submitted_at": _iso(self.submitted_at),
            "filled_qty": self.filled_qty,
            "filled_avg_price": _money_text(self.filled_avg_price),
            "filled_at": _iso(self.filled_at),
            "canceled_at": _iso(self.canceled_at),
            "reject_reason": self.reject_reason,
            "price": _money_text(self.price),
        }


@dataclass
class Position:
    """Long position; live fields hold the most recent mark, if any."""

    symbol: str
    qty: int
    avg_entry_price: Decimal
    current_price: Decimal | None = None
    market_value: Decimal | None = None
    unrealized_pl: Decimal | None = None
    unrealized_plpc: Decimal | None = None

    @property
    def cost_basis(self) -> Decimal:
        return self.avg_entry_price * self.qty

    def mark(self, price: Decimal) -> None:
        """Recompute live fields from a current price."""
        self.current_price = price
        self.market_value = price * self.qty
        self.unrealized_pl = self.market_value - self.cost_basis
        basis = self.cost_basis
        self.unrealized_plpc = self.unrealized_pl / basis if basis else Decimal("0")

    def valuation(self) -> Decimal:
        """Last marked value, falling back to cost basis when never priced."""
        if self.market_value is not None:
            return self.market_value
        return self.cost_basis

    def to_record(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "qty": self.qty,
            "avg_entry_price": _money_text(self.avg_entry_price),
            "current_price": _money_text(self.current_price),
            "market_value": _money_text(self.market_value),
            "unrealized_pl": _money_text(self.unrealized_pl),
            "unrealized_plpc": None if self.unrealized_plpc is None else str(self.unrealized_plpc),
        }


@dataclass
class Portfolio:
    """Per-user virtual account. All mutation happens under `lock`."""

    user_id: str
    cash: Decimal = DEFAULT_STARTING_CASH
    positions: dict[str, Position] = field(default_factory=dict)
    orders: list[Order] = field(default_factory=list)
    trades: list[Order] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def find_open_order(self, order_id: str) -> Order | None:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None

    def remove_open_order(self, order_id: str) -> bool:
        """Drop an order from the open set; returns False when it was not there."""
        for index, order in enumerate(self.orders):
            if order.id == order_id:
                del self.orders[index]
                return True
        return False


@dataclass(frozen=True)
class AccountSummary:
    """Brokerage-style account view."""

    account_number: str
    cash: Decimal
    portfolio_value: Decimal
    equity: Decimal
    last_equity: Decimal
    buying_power: Decimal
    created_at: datetime | None = None
    status: str = "ACTIVE"
    currency: str = "USD"
    pattern_day_trader: bool = False
    trading_blocked: bool = False
    transfers_blocked: bool = False
    account_blocked: bool = False

    def to_record(self) -> dict[str, Any]:
        return {
            "account_number": self.account_number,
            "status": self.status,
            "currency": self.currency,
            "cash": _money_text(self.cash),
            "portfolio_value": _money_text(self.portfolio_value),
            "equity": _money_text(self.equity),
            "last_equity": _money_text(self.last_equity),
            "buying_power": _money_text(self.buying_power),
            "pattern_day_trader": self.pattern_day_trader,
            "trading_blocked": self.trading_blocked,
            "transfers_blocked": self.transfers_blocked,
            "account_blocked": self.account_blocked,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class LeaderboardEntry:
    """One ranked row of `get_all_portfolios`."""

    user_id: str
    equity: Decimal
    cash: Decimal
    portfolio_value: Decimal
    return_pct: Decimal


def _money_text(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return f"{value:.2f}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
