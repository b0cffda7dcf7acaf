"""Abnormal-volume detector with support/resistance-gated auto trading."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Self

from papertrade.brokers.base import TradingClient
from papertrade.bus import EventBus
from papertrade.data.base import MarketDataProvider, MarketStream
from papertrade.detection.signals import (
    compute_volume_zscore,
    find_resistance_levels,
    find_support_levels,
    is_imbalanced,
    near_level,
    order_book_imbalance,
)
from papertrade.detection.sizing import position_qty
from papertrade.detection.window import RollingWindow, WindowState
from papertrade.domain.events import (
    ORDER_BOOK_IMBALANCE,
    SUPPORT_RESISTANCE,
    TRADE_ERROR,
    TRADE_EXECUTED,
    VOLUME_ALERT,
    WATCHLIST_CHANGED,
)
from papertrade.domain.market import (
    AlertType,
    BarEvent,
    ImbalanceSignal,
    MarketEvent,
    PriceBar,
    QuoteEvent,
    SupportResistance,
    TradeExecution,
    TradeTick,
    VolumeAlert,
)
from papertrade.domain.models import OrderRequest, OrderSide, OrderStatus, OrderType
from papertrade.errors import PaperTradeError

logger = logging.getLogger("papertrade.detector")

DEFAULT_WATCHLIST = ("AAPL", "TSLA", "MSFT", "GOOGL", "AMZN", "META", "NVDA", "SPY")


@dataclass(frozen=True)
class DetectorConfig:
    """Detection thresholds and auto-trade sizing."""

    volume_threshold: float = 2.5
    lookback_period: int = 20
    min_volume: float = 100_000
    min_volume_samples: int = 10
    support_resistance_window: int = 50
    max_position_size: float = 10_000
    position_fraction: float = 0.10
    warmup_timeframe: str = "1Min"

    @classmethod
    def from_settings(cls, settings: Any) -> Self:
        return cls(
            volume_threshold=settings.volume_threshold,
            lookback_period=settings.lookback_period,
            min_volume=settings.min_volume,
            min_volume_samples=settings.min_volume_samples,
            support_resistance_window=settings.support_resistance_window,
            max_position_size=settings.max_position_size,
            position_fraction=settings.position_fraction,
            warmup_timeframe=settings.warmup_timeframe,
        )

    @property
    def warmup_limit(self) -> int:
        return max(self.lookback_period * 2, self.support_resistance_window)


class AnomalyDetector:
    """Keeps rolling windows per watched symbol and reacts to abnormal volume.

    Window mutation is serialized by the window's lock. Alerts, trade
    evaluation and order submission run after the lock is released.
    """

    def __init__(
        self,
        config: DetectorConfig | None = None,
        trading_client: TradingClient | None = None,
        market_data: MarketDataProvider | None = None,
        stream: MarketStream | None = None,
        bus: EventBus | None = None,
        watchlist: Iterable[str] = DEFAULT_WATCHLIST,
    ) -> None:
        self.config = config or DetectorConfig()
        self.trading_client = trading_client
        self.market_data = market_data
        self.stream = stream
        self.bus = bus or EventBus()
        self._registry_lock = threading.RLock()
        self._windows: dict[str, RollingWindow] = {}
        self._levels: dict[str, SupportResistance] = {}
        self._running = False
        for symbol in watchlist:
            self._register(symbol)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._registry_lock:
            if self._running:
                logger.info("volume detection engine already running")
                return
            self._running = True
        logger.info("starting volume detection engine")
        self.warm_up()
        if self.stream is not None:
            self.stream.set_handler(self.ingest)
            self.stream.subscribe(self.get_watchlist())

    def stop(self) -> None:
        with self._registry_lock:
            if not self._running:
                return
            self._running = False
        if self.stream is not None:
            self.stream.unsubscribe(self.get_watchlist())
        logger.info("volume detection engine stopped")

    def warm_up(self, symbols: Iterable[str] | None = None) -> dict[str, int]:
        """Reseed windows from historical bars; returns bars loaded per symbol.

        A window is replaced, not extended, so a restart never duplicates samples.
        """
        if self.market_data is None:
            return {}
        loaded: dict[str, int] = {}
        for symbol in list(symbols) if symbols is not None else self.get_watchlist():
            window = self._window(symbol)
            if window is None:
                continue
            try:
                bars = self.market_data.get_bars(
                    symbol,
                    timeframe=self.config.warmup_timeframe,
                    limit=self.config.warmup_limit,
                )
            except PaperTradeError as exc:
                logger.warning("failed to initialize data for %s: %s", symbol, exc)
                continue
            with window.lock:
                window.clear()
                for timestamp, row in bars.iterrows():
                    window.append(
                        float(row["volume"]),
                        PriceBar(
                            high=float(row["high"]),
                            low=float(row["low"]),
                            close=float(row["close"]),
                            timestamp=timestamp,
                        ),
                    )
            loaded[symbol] = len(bars)
            self.calculate_support_resistance(symbol)
            logger.info("initialized %d bars for %s", len(bars), symbol)
        return loaded

    def ingest(self, event: MarketEvent | Mapping[str, Any]) -> Any:
        """Dispatch a bar, trade or quote; mappings use a `type` key."""
        if isinstance(event, Mapping):
            event = self._coerce_event(event)
        if isinstance(event, BarEvent):
            return self._on_bar(event)
        if isinstance(event, QuoteEvent):
            return self._on_quote(event)
        if isinstance(event, TradeTick):
            logger.debug("trade %s %s @ %s", event.symbol, event.size, event.price)
            return None
        raise TypeError(f"Unsupported market event: {event!r}")

    def detect_abnormal_volume(
        self,
        symbol: str,
        current_volume: float,
        volumes: list[float],
    ) -> VolumeAlert | None:
        z_score, avg_volume = compute_volume_zscore(current_volume, volumes)
        if abs(z_score) <= self.config.volume_threshold:
            return None
        if current_volume <= self.config.min_volume:
            return None
        alert = VolumeAlert(
            symbol=symbol,
            current_volume=float(current_volume),
            avg_volume=avg_volume,
            z_score=z_score,
            type=AlertType.SPIKE if z_score > 0 else AlertType.DROP,
        )
        logger.info(
            "abnormal volume | %s | %s | vol %.0f | avg %.0f | z %+.2f",
            symbol,
            alert.type.value,
            alert.current_volume,
            alert.avg_volume,
            alert.z_score,
        )
        self.bus.publish(VOLUME_ALERT, alert.to_record())
        self.evaluate_trade_opportunity(symbol, alert)
        return alert

    def calculate_support_resistance(self, symbol: str) -> SupportResistance | None:
        window = self._window(symbol)
        if window is None:
            return None
        with window.lock:
            levels = self._levels_from_window(window)
        if levels is not None:
            self._store_levels(symbol, window, levels)
        return levels

    def evaluate_trade_opportunity(self, symbol: str, alert: VolumeAlert) -> TradeExecution | None:
        """Buy spikes near support; sell spikes near resistance while long."""
        if alert.type is not AlertType.SPIKE:
            return None
        levels = self.get_support_resistance(symbol)
        if levels is None:
            return None
        if self.trading_client is None:
            logger.debug("no trading client configured; skipping %s", symbol)
            return None

        price = levels.current_price
        side: OrderSide | None = None
        reason = ""
        held_qty = 0
        if near_level(price, levels.support):
            side = OrderSide.BUY
            reason = "Volume spike near support level"
        if near_level(price, levels.resistance):
            try:
                position = self.trading_client.get_position(symbol)
            except PaperTradeError as exc:
                self._trade_error(symbol, exc)
                return None
            if position is not None and position.qty > 0:
                side = OrderSide.SELL
                reason = "Volume spike near resistance level"
                held_qty = position.qty

        if side is None:
            return None
        return self.execute_trade(symbol, side, price, reason, held_qty=held_qty)

    def execute_trade(
        self,
        symbol: str,
        side: OrderSide,
        price: float,
        reason: str,
        held_qty: int = 0,
    ) -> TradeExecution | None:
        if self.trading_client is None:
            return None
        try:
            account = self.trading_client.get_account()
            qty = position_qty(
                account.buying_power,
                price,
                fraction=self.config.position_fraction,
                max_position_size=self.config.max_position_size,
            )
            if side is OrderSide.SELL:
                qty = min(qty, held_qty)
            if qty <= 0:
                logger.info("insufficient buying power for %s %s", side.value, symbol)
                return None
            order = self.trading_client.submit_order(
                OrderRequest(
                    symbol=symbol,
                    qty=qty,
                    side=side,
                    order_type=OrderType.MARKET,
                    time_in_force="day",
                )
            )
        except PaperTradeError as exc:
            self._trade_error(symbol, exc)
            return None

        if order.status is OrderStatus.REJECTED:
            self._trade_error(symbol, order.reject_reason or "order rejected")
            return None
        execution = TradeExecution(
            order_id=order.id,
            symbol=symbol,
            side=side.value,
            qty=qty,
            price=price,
            reason=reason,
        )
        logger.info("trade executed | %s %d %s @ %.2f | %s", side.value, qty, symbol, price, reason)
        self.bus.publish(TRADE_EXECUTED, execution.to_record())
        return execution

    def get_watchlist(self) -> list[str]:
        with self._registry_lock:
            return list(self._windows)

    def get_support_resistance(self, symbol: str) -> SupportResistance | None:
        with self._registry_lock:
            return self._levels.get(symbol.strip().upper())

    def window_state(self, symbol: str) -> WindowState | None:
        window = self._window(symbol)
        if window is None:
            return None
        with window.lock:
            return window.state(
                self.config.min_volume_samples, self.config.support_resistance_window
            )

    def add_symbol(self, symbol: str) -> bool:
        normalized = symbol.strip().upper()
        with self._registry_lock:
            if not self._register(normalized):
                return False
            running = self._running
        if running and self.stream is not None:
            self.stream.subscribe([normalized])
        self.bus.publish(WATCHLIST_CHANGED, {"action": "add", "symbol": normalized})
        return True

    def remove_symbol(self, symbol: str) -> bool:
        """Unwatch a symbol and discard its accumulated state in one step."""
        normalized = symbol.strip().upper()
        with self._registry_lock:
            if self._windows.pop(normalized, None) is None:
                return False
            self._levels.pop(normalized, None)
            running = self._running
        if running and self.stream is not None:
            self.stream.unsubscribe([normalized])
        self.bus.publish(WATCHLIST_CHANGED, {"action": "remove", "symbol": normalized})
        return True

    def _register(self, symbol: str) -> bool:
        normalized = symbol.strip().upper()
        if not normalized:
            raise ValueError("symbol is required")
        with self._registry_lock:
            if normalized in self._windows:
                return False
            self._windows[normalized] = RollingWindow(
                normalized,
                volume_capacity=self.config.lookback_period,
                bar_capacity=self.config.support_resistance_window,
            )
            return True

    def _window(self, symbol: str) -> RollingWindow | None:
        with self._registry_lock:
            return self._windows.get(symbol.strip().upper())

    def _on_bar(self, bar: BarEvent) -> VolumeAlert | None:
        symbol = bar.symbol.strip().upper()
        window = self._window(symbol)
        if window is None:
            logger.debug("ignoring bar for unwatched %s", symbol)
            return None
        with window.lock:
            window.append(
                bar.volume,
                PriceBar(high=bar.high, low=bar.low, close=bar.close, timestamp=bar.timestamp),
            )
            volumes = list(window.volumes)
            levels = self._levels_from_window(window)
        alert = None
        try:
            # Trades are judged against the levels in place before this bar.
            if len(volumes) >= self.config.min_volume_samples:
                alert = self.detect_abnormal_volume(symbol, bar.volume, volumes)
        finally:
            if levels is not None:
                self._store_levels(symbol, window, levels)
        return alert

    def _on_quote(self, quote: QuoteEvent) -> ImbalanceSignal | None:
        symbol = quote.symbol.strip().upper()
        if self._window(symbol) is None:
            return None
        imbalance = order_book_imbalance(quote.bid_size, quote.ask_size)
        if not is_imbalanced(imbalance):
            return None
        signal = ImbalanceSignal(
            symbol=symbol,
            bid_price=quote.bid_price,
            ask_price=quote.ask_price,
            bid_size=quote.bid_size,
            ask_size=quote.ask_size,
            imbalance=imbalance,
        )
        self.bus.publish(ORDER_BOOK_IMBALANCE, signal.to_record())
        return signal

    def _levels_from_window(self, window: RollingWindow) -> SupportResistance | None:
        """Full recompute over the most recent bars; caller holds window.lock."""
        size = self.config.support_resistance_window
        if len(window.bars) < size:
            return None
        recent = window.recent_bars(size)
        return SupportResistance(
            resistance=tuple(find_resistance_levels(bar.high for bar in recent)),
            support=tuple(find_support_levels(bar.low for bar in recent)),
            current_price=recent[-1].close,
        )

    def _store_levels(self, symbol: str, window: RollingWindow, levels: SupportResistance) -> None:
        with self._registry_lock:
            # A window removed mid-update must not resurrect its symbol.
            if self._windows.get(symbol) is not window:
                return
            previous = self._levels.get(symbol)
            self._levels[symbol] = levels
        changed = previous is None or (
            previous.resistance != levels.resistance or previous.support != levels.support
        )
        if changed:
            self.bus.publish(SUPPORT_RESISTANCE, {"symbol": symbol, **levels.to_record()})

    def _trade_error(self, symbol: str, error: Exception | str) -> None:
        logger.error("failed to execute trade for %s: %s", symbol, error)
        self.bus.publish(TRADE_ERROR, {"symbol": symbol, "error": str(error)})

    @staticmethod
    def _coerce_event(data: Mapping[str, Any]) -> MarketEvent:
        kind = str(data.get("type", "")).strip().lower()
        symbol = str(data.get("symbol", "")).strip().upper()
        if kind == "bar":
            return BarEvent(
                symbol=symbol,
                open=None if data.get("open") is None else float(data["open"]),
                high=float(data["high"]),
                low=float(data["low"]),
                close=float(data["close"]),
                volume=float(data["volume"]),
                timestamp=data.get("timestamp"),
            )
        if kind == "trade":
            return TradeTick(
                symbol=symbol,
                price=float(data["price"]),
                size=float(data.get("size") or 0),
                timestamp=data.get("timestamp"),
            )
        if kind == "quote":
            return QuoteEvent(
                symbol=symbol,
                bid_price=float(data.get("bid_price") or 0),
                ask_price=float(data.get("ask_price") or 0),
                bid_size=float(data.get("bid_size") or 0),
                ask_size=float(data.get("ask_size") or 0),
                timestamp=data.get("timestamp"),
            )
        raise ValueError(f"Unknown market data type: {kind!r}")
