"""Alpaca market-data websocket feed delivering bars, trades and quotes."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

from papertrade.data.base import MarketEventHandler
from papertrade.domain.market import BarEvent, MarketEvent, QuoteEvent, TradeTick
from papertrade.errors import DataProviderError

logger = logging.getLogger("papertrade.data.stream")

ALPACA_STREAM_URL = "wss://stream.data.alpaca.markets/v2/iex"


def parse_stream_message(raw: str | bytes | list | dict) -> list[MarketEvent]:
    """Translate one websocket frame into market events, skipping control messages."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("dropping non-JSON stream frame")
            return []
    frames = raw if isinstance(raw, list) else [raw]
    events: list[MarketEvent] = []
    for message in frames:
        if not isinstance(message, dict):
            continue
        event = _parse_frame(message)
        if event is not None:
            events.append(event)
    return events


def _parse_frame(message: dict[str, Any]) -> MarketEvent | None:
    kind = message.get("T")
    symbol = str(message.get("S") or "").strip().upper()
    if not symbol or kind not in {"b", "t", "q"}:
        return None
    timestamp = _parse_timestamp(message.get("t"))
    try:
        if kind == "b":
            return BarEvent(
                symbol=symbol,
                open=float(message["o"]),
                high=float(message["h"]),
                low=float(message["l"]),
                close=float(message["c"]),
                volume=float(message["v"]),
                timestamp=timestamp,
            )
        if kind == "t":
            return TradeTick(
                symbol=symbol,
                price=float(message["p"]),
                size=float(message.get("s") or 0),
                timestamp=timestamp,
            )
        return QuoteEvent(
            symbol=symbol,
            bid_price=float(message.get("bp") or 0),
            ask_price=float(message.get("ap") or 0),
            bid_size=float(message.get("bs") or 0),
            ask_size=float(message.get("as") or 0),
            timestamp=timestamp,
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("dropping malformed %s frame for %s", kind, symbol)
        return None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Alpaca sends nanosecond precision; fromisoformat accepts at most microseconds.
    if "." in text:
        head, _, rest = text.partition(".")
        digits = "".join(ch for ch in rest if ch.isdigit())
        suffix = rest[len(digits):]
        text = f"{head}.{digits[:6].ljust(6, '0')}{suffix}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class AlpacaStream:
    """Background-thread websocket client with reconnect and live resubscription."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        url: str = ALPACA_STREAM_URL,
        reconnect_delay: float = 5.0,
    ) -> None:
        self.api_key = api_key
        self.secret_key = secret_key
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._lock = threading.Lock()
        self._desired: set[str] = set()
        self._handler: MarketEventHandler | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws: Any = None
        self._stopping = threading.Event()
        self._events: asyncio.Queue[MarketEvent] = asyncio.Queue()

    def set_handler(self, handler: MarketEventHandler) -> None:
        self._handler = handler

    @property
    def symbols(self) -> set[str]:
        with self._lock:
            return set(self._desired)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._thread_main, name="alpaca-stream", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        with self._lock:
            loop, ws = self._loop, self._ws
        if loop is not None and ws is not None:
            asyncio.run_coroutine_threadsafe(ws.close(), loop)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def subscribe(self, symbols: Iterable[str]) -> None:
        added = self._normalize(symbols)
        if not added:
            return
        with self._lock:
            self._desired.update(added)
        self._send_threadsafe(self._subscription_message("subscribe", added))

    def unsubscribe(self, symbols: Iterable[str]) -> None:
        removed = self._normalize(symbols)
        if not removed:
            return
        with self._lock:
            self._desired.difference_update(removed)
        self._send_threadsafe(self._subscription_message("unsubscribe", removed))

    def _thread_main(self) -> None:
        asyncio.run(self._run_loop())

    async def _run_loop(self) -> None:
        with self._lock:
            self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        consumer = asyncio.create_task(self._drain_events())
        try:
            while not self._stopping.is_set():
                try:
                    await self._connect_once()
                except (OSError, asyncio.TimeoutError, WebSocketException, DataProviderError) as exc:
                    logger.warning("stream disconnected: %s", exc)
                except Exception:
                    logger.exception("stream connection failed")
                if self._stopping.is_set():
                    break
                await asyncio.sleep(self.reconnect_delay)
        finally:
            consumer.cancel()
            with suppress(asyncio.CancelledError):
                await consumer
            with self._lock:
                self._loop = None

    async def _drain_events(self) -> None:
        """Hand events to the handler one at a time on a worker thread."""
        while True:
            event = await self._events.get()
            try:
                await asyncio.to_thread(self._dispatch, event)
            finally:
                self._events.task_done()

    async def _connect_once(self) -> None:
        async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
            await ws.send(
                json.dumps({"action": "auth", "key": self.api_key, "secret": self.secret_key})
            )
            await self._await_authenticated(ws)
            with self._lock:
                self._ws = ws
                desired = sorted(self._desired)
            logger.info("stream connected | %d symbols", len(desired))
            try:
                if desired:
                    await ws.send(json.dumps(self._subscription_message("subscribe", desired)))
                async for raw in ws:
                    for event in parse_stream_message(raw):
                        self._events.put_nowait(event)
            finally:
                with self._lock:
                    self._ws = None

    @staticmethod
    async def _await_authenticated(ws: Any) -> None:
        for _ in range(3):
            payload = json.loads(await ws.recv())
            frames = payload if isinstance(payload, list) else [payload]
            for frame in frames:
                if not isinstance(frame, dict):
                    continue
                if frame.get("T") == "error":
                    raise DataProviderError(
                        f"Alpaca stream error {frame.get('code')}: {frame.get('msg')}"
                    )
                if frame.get("msg") == "authenticated":
                    return
        raise DataProviderError("Alpaca stream did not confirm authentication")

    def _dispatch(self, event: MarketEvent) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            handler(event)
        except Exception:
            logger.exception("stream handler failed for %s %s", event.kind, event.symbol)

    def _send_threadsafe(self, message: dict[str, Any]) -> None:
        with self._lock:
            loop, ws = self._loop, self._ws
        if loop is None or ws is None:
            # Picked up from the desired set on the next (re)connect.
            return
        future = asyncio.run_coroutine_threadsafe(ws.send(json.dumps(message)), loop)
        future.add_done_callback(self._log_send_failure)

    @staticmethod
    def _log_send_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("stream subscription update failed: %s", exc)

    @staticmethod
    def _subscription_message(action: str, symbols: Iterable[str]) -> dict[str, Any]:
        ordered = sorted(symbols)
        return {"action": action, "bars": ordered, "trades": ordered, "quotes": ordered}

    @staticmethod
    def _normalize(symbols: Iterable[str]) -> set[str]:
        return {str(symbol).strip().upper() for symbol in symbols if str(symbol).strip()}
