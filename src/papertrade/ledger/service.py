"""Virtual order matching and portfolio accounting."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import replace
from decimal import Decimal

from papertrade.bus import EventBus
from papertrade.data.base import PriceProvider
from papertrade.domain.events import (
    ORDER_CANCELED,
    ORDER_FILLED,
    ORDER_OPEN,
    ORDER_REJECTED,
    PRICE_ERROR,
)
from papertrade.domain.models import (
    DEFAULT_STARTING_CASH,
    REJECT_INSUFFICIENT_FUNDS,
    REJECT_INSUFFICIENT_SHARES,
    REJECT_NO_POSITION,
    AccountSummary,
    LeaderboardEntry,
    Order,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Portfolio,
    Position,
    to_decimal,
    utc_now,
)
from papertrade.errors import OrderNotFound, PriceUnavailable

logger = logging.getLogger("papertrade.ledger")

ZERO = Decimal("0")


def is_marketable(side: OrderSide, current_price: Decimal, limit_price: Decimal) -> bool:
    """True when a limit would already be satisfied at current_price."""
    if side is OrderSide.BUY:
        return current_price <= limit_price
    return current_price >= limit_price


class VirtualLedger:
    """In-memory paper-trading ledger keyed by user id.

    Prices are fetched before a portfolio lock is taken; every mutation of a
    portfolio then happens under that portfolio's lock. An order leaves the
    open set only through a status transition out of ``open``, so a sweep
    fill and a concurrent cancel cannot both succeed.
    """

    def __init__(
        self,
        price_provider: PriceProvider,
        bus: EventBus | None = None,
        starting_cash: Decimal | float | str = DEFAULT_STARTING_CASH,
        margin_multiplier: Decimal | float | str = Decimal("2"),
    ) -> None:
        self.price_provider = price_provider
        self.bus = bus or EventBus()
        self.starting_cash = to_decimal(starting_cash)
        self.margin_multiplier = to_decimal(margin_multiplier)
        self._portfolios: dict[str, Portfolio] = {}
        self._registry_lock = threading.Lock()
        self._order_ids = itertools.count(1)
        self._order_id_lock = threading.Lock()

    def get_portfolio(self, user_id: str) -> Portfolio:
        """Return the user's portfolio, creating it with starting cash on first access."""
        with self._registry_lock:
            portfolio = self._portfolios.get(user_id)
            if portfolio is None:
                portfolio = Portfolio(user_id=user_id, cash=self.starting_cash)
                self._portfolios[user_id] = portfolio
                logger.info("created virtual portfolio for %s", user_id)
            return portfolio

    def user_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._portfolios)

    def get_current_price(self, symbol: str) -> Decimal:
        try:
            raw_price = self.price_provider.get_current_price(symbol)
        except PriceUnavailable:
            raise
        except Exception as exc:
            raise PriceUnavailable(symbol, str(exc)) from exc
        try:
            price = to_decimal(raw_price)
        except ValueError as exc:
            raise PriceUnavailable(symbol, f"non-numeric price {raw_price!r}") from exc
        if not price.is_finite() or price <= 0:
            raise PriceUnavailable(symbol, f"invalid price {raw_price!r}")
        return price

    def place_order(self, user_id: str, request: OrderRequest) -> Order:
        """Validate, price and either fill or rest a new order.

        Marketable orders fill at the reference (mid) price, including limit
        orders whose limit is already satisfied.
        """
        request = request.normalized()
        current_price = self.get_current_price(request.symbol)
        portfolio = self.get_portfolio(user_id)
        with portfolio.lock:
            order = Order(
                id=self._next_order_id(),
                user_id=user_id,
                symbol=request.symbol,
                qty=request.qty,
                side=request.side,
                order_type=request.order_type,
                limit_price=request.limit_price,
                time_in_force=request.time_in_force,
            )
            immediate = request.order_type is OrderType.MARKET or is_marketable(
                request.side, current_price, request.limit_price
            )
            if immediate:
                self._apply_execution(portfolio, order, current_price)
            else:
                order.status = OrderStatus.OPEN
                portfolio.orders.append(order)
        if immediate:
            self._publish_outcome(user_id, order)
        else:
            logger.info(
                "resting %s %s %d %s @ limit %s",
                order.id,
                order.side.value,
                order.qty,
                order.symbol,
                order.limit_price,
            )
            self.bus.publish(ORDER_OPEN, {"user_id": user_id, "order": order.snapshot()})
        return order

    def execute_order(
        self, user_id: str, order: Order, price: Decimal | float | str
    ) -> Order:
        """Fill or reject an order at price; a no-op once the order is terminal."""
        fill_price = to_decimal(price)
        portfolio = self.get_portfolio(user_id)
        with portfolio.lock:
            if order.is_terminal:
                return order
            self._apply_execution(portfolio, order, fill_price)
        self._publish_outcome(user_id, order)
        return order

    def cancel_order(self, user_id: str, order_id: str) -> Order:
        portfolio = self.get_portfolio(user_id)
        with portfolio.lock:
            order = portfolio.find_open_order(order_id)
            if order is None or order.status is not OrderStatus.OPEN:
                raise OrderNotFound(order_id)
            order.status = OrderStatus.CANCELED
            order.canceled_at = utc_now()
            portfolio.remove_open_order(order_id)
        logger.info("canceled %s for %s", order_id, user_id)
        self.bus.publish(ORDER_CANCELED, {"user_id": user_id, "order": order.snapshot()})
        return order

    def check_pending_orders(self) -> list[Order]:
        """Sweep every open limit order and fill those now marketable at their limit.

        Safe to call while a previous sweep is still running: an order is only
        filled if it is still open once the portfolio lock is held.
        """
        with self._registry_lock:
            portfolios = list(self._portfolios.values())

        settled: list[Order] = []
        for portfolio in portfolios:
            with portfolio.lock:
                candidates = [
                    order
                    for order in portfolio.orders
                    if order.status is OrderStatus.OPEN and order.order_type is OrderType.LIMIT
                ]
            for order in candidates:
                try:
                    current_price = self.get_current_price(order.symbol)
                except PriceUnavailable as exc:
                    self._record_price_error(portfolio.user_id, order.symbol, exc, order.id)
                    continue
                if not is_marketable(order.side, current_price, order.limit_price):
                    continue
                with portfolio.lock:
                    if order.status is not OrderStatus.OPEN:
                        continue
                    self._apply_execution(portfolio, order, order.limit_price)
                self._publish_outcome(portfolio.user_id, order)
                settled.append(order)
        return settled

    def get_positions(self, user_id: str) -> list[Position]:
        """Snapshot positions with live fields refreshed where a price was available."""
        portfolio = self.get_portfolio(user_id)
        self._mark_positions(portfolio)
        with portfolio.lock:
            return [replace(position) for position in portfolio.positions.values()]

    def get_orders(self, user_id: str, status: str = "all") -> list[Order]:
        portfolio = self.get_portfolio(user_id)
        with portfolio.lock:
            if status == "all":
                selected = [*portfolio.orders, *portfolio.trades]
            elif status == "open":
                selected = [o for o in portfolio.orders if o.status is OrderStatus.OPEN]
            elif status == "closed":
                selected = list(portfolio.trades)
            else:
                selected = [o for o in portfolio.orders if o.status == status]
            return [order.snapshot() for order in selected]

    def get_account(self, user_id: str) -> AccountSummary:
        portfolio = self.get_portfolio(user_id)
        self._mark_positions(portfolio)
        with portfolio.lock:
            cash = portfolio.cash
            portfolio_value = sum(
                (position.valuation() for position in portfolio.positions.values()), ZERO
            )
            created_at = portfolio.created_at
        return AccountSummary(
            account_number=f"VIRT-{user_id}",
            cash=cash,
            portfolio_value=portfolio_value,
            equity=cash + portfolio_value,
            last_equity=self.starting_cash,
            buying_power=cash * self.margin_multiplier,
            created_at=created_at,
        )

    def get_all_portfolios(self) -> list[LeaderboardEntry]:
        """Rank every portfolio by percentage return on starting cash, best first."""
        entries: list[LeaderboardEntry] = []
        for user_id in self.user_ids():
            account = self.get_account(user_id)
            return_pct = (account.equity - self.starting_cash) / self.starting_cash * 100
            entries.append(
                LeaderboardEntry(
                    user_id=user_id,
                    equity=account.equity,
                    cash=account.cash,
                    portfolio_value=account.portfolio_value,
                    return_pct=return_pct,
                )
            )
        entries.sort(key=lambda entry: entry.return_pct, reverse=True)
        return entries

    def _next_order_id(self) -> str:
        with self._order_id_lock:
            return f"VIRT-{next(self._order_ids)}"

    def _apply_execution(self, portfolio: Portfolio, order: Order, price: Decimal) -> None:
        """Apply a fill or a business rejection; caller holds portfolio.lock."""
        positions = portfolio.positions
        if order.side is OrderSide.BUY:
            cost = price * order.qty
            if portfolio.cash < cost:
                self._reject(portfolio, order, REJECT_INSUFFICIENT_FUNDS)
                return
            portfolio.cash -= cost
            position = positions.get(order.symbol)
            if position is None:
                positions[order.symbol] = Position(
                    symbol=order.symbol, qty=order.qty, avg_entry_price=price
                )
            else:
                total_qty = position.qty + order.qty
                total_cost = position.avg_entry_price * position.qty + price * order.qty
                position.avg_entry_price = total_cost / total_qty
                position.qty = total_qty
                if position.current_price is not None:
                    position.mark(position.current_price)
        else:
            position = positions.get(order.symbol)
            if position is None:
                self._reject(portfolio, order, REJECT_NO_POSITION)
                return
            if position.qty < order.qty:
                self._reject(portfolio, order, REJECT_INSUFFICIENT_SHARES)
                return
            portfolio.cash += price * order.qty
            position.qty -= order.qty
            if position.qty == 0:
                del positions[order.symbol]
            elif position.current_price is not None:
                position.mark(position.current_price)

        order.status = OrderStatus.FILLED
        order.filled_qty = order.qty
        order.filled_avg_price = price
        order.filled_at = utc_now()
        order.price = price
        portfolio.trades.append(order.snapshot())
        portfolio.remove_open_order(order.id)

    @staticmethod
    def _reject(portfolio: Portfolio, order: Order, reason: str) -> None:
        order.status = OrderStatus.REJECTED
        order.reject_reason = reason
        portfolio.remove_open_order(order.id)

    def _publish_outcome(self, user_id: str, order: Order) -> None:
        if order.status is OrderStatus.FILLED:
            logger.info(
                "filled %s for %s | %s %d %s @ %s",
                order.id,
                user_id,
                order.side.value,
                order.qty,
                order.symbol,
                order.filled_avg_price,
            )
            self.bus.publish(ORDER_FILLED, {"user_id": user_id, "order": order.snapshot()})
        elif order.status is OrderStatus.REJECTED:
            logger.info("rejected %s for %s | %s", order.id, user_id, order.reject_reason)
            self.bus.publish(ORDER_REJECTED, {"user_id": user_id, "order": order.snapshot()})

    def _mark_positions(self, portfolio: Portfolio) -> None:
        with portfolio.lock:
            symbols = list(portfolio.positions)
        prices: dict[str, Decimal] = {}
        for symbol in symbols:
            try:
                prices[symbol] = self.get_current_price(symbol)
            except PriceUnavailable as exc:
                self._record_price_error(portfolio.user_id, symbol, exc)
        with portfolio.lock:
            for symbol, price in prices.items():
                position = portfolio.positions.get(symbol)
                if position is not None:
                    position.mark(price)

    def _record_price_error(
        self,
        user_id: str,
        symbol: str,
        exc: PriceUnavailable,
        order_id: str | None = None,
    ) -> None:
        logger.warning("price refresh failed for %s (%s): %s", symbol, user_id, exc)
        payload: dict[str, object] = {"user_id": user_id, "symbol": symbol, "error": str(exc)}
        if order_id is not None:
            payload["order_id"] = order_id
        self.bus.publish(PRICE_ERROR, payload)
