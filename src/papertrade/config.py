"""Environment and CLI runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Self

from dotenv import load_dotenv

from papertrade.data.alpaca_stream import ALPACA_STREAM_URL
from papertrade.domain.models import Mode

DEFAULT_SYMBOLS = ["AAPL", "TSLA", "MSFT", "GOOGL", "AMZN", "META", "NVDA", "SPY"]


def parse_optional_positive_int(value: str | None, *, field_name: str) -> int | None:
    """Parse optional positive integer values from env strings."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    parsed = int(text)
    if parsed <= 0:
        raise ValueError(f"{field_name} must be positive")
    return parsed


def parse_symbols(value: str | None, default: list[str] | None = None) -> list[str]:
    """Parse comma-separated symbols."""
    fallback = default or DEFAULT_SYMBOLS
    if not value:
        return list(fallback)
    symbols = [item.strip().upper() for item in value.split(",") if item.strip()]
    return dedupe_symbols(symbols) or list(fallback)


def dedupe_symbols(symbols: list[str]) -> list[str]:
    """Remove duplicate symbols while preserving order."""
    deduped: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        if symbol in seen:
            continue
        seen.add(symbol)
        deduped.append(symbol)
    return deduped


def normalize_mode(value: str | None, default: Mode = "virtual") -> Mode:
    """Normalize the trading mode; `paper` is the in-memory ledger."""
    candidate = (value or default).strip().lower()
    if candidate == "paper":
        return "virtual"
    if candidate in {"virtual", "live"}:
        return candidate
    return default


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    mode: Mode = "virtual"
    symbols: list[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    user_id: str = "auto-trader"
    starting_cash: float = 100000.0
    margin_multiplier: float = 2.0
    order_check_interval_seconds: int = 10
    interval_seconds: int = 30
    max_passes: int | None = None
    volume_threshold: float = 2.5
    lookback_period: int = 20
    min_volume: float = 100000.0
    min_volume_samples: int = 10
    support_resistance_window: int = 50
    max_position_size: float = 10000.0
    position_fraction: float = 0.10
    warmup_timeframe: str = "1Min"
    events_dir: str = "runs"
    log_level: str = "INFO"
    alpaca_api_key: str = ""
    alpaca_secret_key: str = ""
    alpaca_base_url: str = "https://paper-api.alpaca.markets"
    alpaca_data_url: str = "https://data.alpaca.markets"
    alpaca_stream_url: str = ALPACA_STREAM_URL
    alpaca_feed: str = "iex"

    @classmethod
    def from_env(cls) -> Self:
        """Create settings from environment variables."""
        load_dotenv()
        raw = cls(
            mode=normalize_mode(os.getenv("MODE"), default="virtual"),
            symbols=parse_symbols(os.getenv("SYMBOLS")),
            user_id=str(os.getenv("AUTO_TRADER_USER_ID", "auto-trader")).strip(),
            starting_cash=float(os.getenv("STARTING_CASH", "100000")),
            margin_multiplier=float(os.getenv("MARGIN_MULTIPLIER", "2")),
            order_check_interval_seconds=int(os.getenv("ORDER_CHECK_INTERVAL_SECONDS", "10")),
            interval_seconds=int(os.getenv("INTERVAL_SECONDS", "30")),
            max_passes=parse_optional_positive_int(
                os.getenv("MAX_PASSES"),
                field_name="max_passes",
            ),
            volume_threshold=float(os.getenv("DEFAULT_VOLUME_THRESHOLD", "2.5")),
            lookback_period=int(os.getenv("LOOKBACK_PERIOD", "20")),
            min_volume=float(os.getenv("MIN_VOLUME", "100000")),
            min_volume_samples=int(os.getenv("MIN_VOLUME_SAMPLES", "10")),
            support_resistance_window=int(os.getenv("SUPPORT_RESISTANCE_WINDOW", "50")),
            max_position_size=float(os.getenv("MAX_POSITION_SIZE", "10000")),
            position_fraction=float(os.getenv("POSITION_FRACTION", "0.10")),
            warmup_timeframe=str(os.getenv("TIMEFRAME", "1Min")).strip(),
            events_dir=str(os.getenv("EVENTS_DIR", "runs")).strip(),
            log_level=str(os.getenv("LOG_LEVEL", "INFO")).strip().upper(),
            alpaca_api_key=str(os.getenv("ALPACA_API_KEY", "")).strip(),
            alpaca_secret_key=str(os.getenv("ALPACA_SECRET_KEY", "")).strip(),
            alpaca_base_url=str(
                os.getenv("ALPACA_BASE_URL", "https://paper-api.alpaca.markets")
            ).strip(),
            alpaca_data_url=str(
                os.getenv("ALPACA_DATA_URL", "https://data.alpaca.markets")
            ).strip(),
            alpaca_stream_url=str(os.getenv("ALPACA_STREAM_URL", ALPACA_STREAM_URL)).strip(),
            alpaca_feed=str(os.getenv("ALPACA_FEED", "iex")).strip().lower(),
        )
        return raw.validate()

    def with_overrides(self, **kwargs: object) -> Self:
        """Return a new settings object with updated values."""
        overrides = dict(kwargs)
        mode_override = overrides.get("mode")
        if isinstance(mode_override, str):
            overrides["mode"] = normalize_mode(mode_override, default=self.mode)
        updated = replace(self, **overrides)
        return updated.validate()

    def live_pass_limit(self) -> int | None:
        """Return finite status-pass count, or None for continuous execution."""
        return self.max_passes

    def has_alpaca_credentials(self) -> bool:
        return bool(self.alpaca_api_key and self.alpaca_secret_key)

    def validate(self) -> Self:
        """Validate settings fields."""
        if self.mode not in {"virtual", "live"}:
            raise ValueError("mode must be one of virtual, live")
        if not self.symbols:
            raise ValueError("symbols must not be empty")
        if not self.user_id:
            raise ValueError("user_id must not be empty")
        if self.starting_cash <= 0:
            raise ValueError("starting_cash must be positive")
        if self.margin_multiplier <= 0:
            raise ValueError("margin_multiplier must be positive")
        if self.order_check_interval_seconds <= 0:
            raise ValueError("order_check_interval_seconds must be positive")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.max_passes is not None and self.max_passes <= 0:
            raise ValueError("max_passes must be positive")
        if self.volume_threshold <= 0:
            raise ValueError("volume_threshold must be positive")
        if self.lookback_period < 2:
            raise ValueError("lookback_period must be at least 2")
        if self.min_volume <= 0:
            raise ValueError("min_volume must be positive")
        if self.min_volume_samples < 2 or self.min_volume_samples > self.lookback_period:
            raise ValueError("min_volume_samples must be between 2 and lookback_period")
        if self.support_resistance_window <= 0:
            raise ValueError("support_resistance_window must be positive")
        if self.max_position_size <= 0:
            raise ValueError("max_position_size must be positive")
        if not 0 < self.position_fraction <= 1:
            raise ValueError("position_fraction must be in (0, 1]")
        if self.alpaca_feed not in {"iex", "sip"}:
            raise ValueError("alpaca_feed must be one of iex, sip")
        return self
