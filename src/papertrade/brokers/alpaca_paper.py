"""Alpaca trading adapter for live mode (paper or live endpoint)."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from email.utils import parsedate_to_datetime
from time import sleep
from typing import Any

import requests

from papertrade.domain.models import (
    AccountSummary,
    Order,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    to_decimal,
)
from papertrade.errors import BrokerError

_STATUS_MAP = {
    "new": OrderStatus.OPEN,
    "accepted": OrderStatus.OPEN,
    "pending_new": OrderStatus.PENDING,
    "partially_filled": OrderStatus.OPEN,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELED,
    "expired": OrderStatus.CANCELED,
    "rejected": OrderStatus.REJECTED,
}


class AlpacaPaperBroker:
    """REST broker wrapper with retry and rate-limit handling."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str,
        timeout: int = 20,
        max_retries: int = 4,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update(
            {
                "APCA-API-KEY-ID": api_key,
                "APCA-API-SECRET-KEY": secret_key,
                "Content-Type": "application/json",
            }
        )

    def get_account(self) -> AccountSummary:
        payload = self._request("GET", "/v2/account")
        cash = self._money(payload.get("cash"))
        equity = self._money(payload.get("equity", payload.get("portfolio_value", cash)))
        return AccountSummary(
            account_number=str(payload.get("account_number", "")),
            status=str(payload.get("status", "")),
            currency=str(payload.get("currency", "USD")),
            cash=cash,
            portfolio_value=self._money(payload.get("portfolio_value", equity)),
            equity=equity,
            last_equity=self._money(payload.get("last_equity", equity)),
            buying_power=self._money(payload.get("buying_power", cash)),
            pattern_day_trader=bool(payload.get("pattern_day_trader", False)),
            trading_blocked=bool(payload.get("trading_blocked", False)),
            transfers_blocked=bool(payload.get("transfers_blocked", False)),
            account_blocked=bool(payload.get("account_blocked", False)),
        )

    def get_position(self, symbol: str) -> Position | None:
        payload = self._request(
            "GET", f"/v2/positions/{self.normalize_symbol(symbol)}", missing_ok=True
        )
        if not isinstance(payload, dict):
            return None
        position = self._position_from_payload(payload)
        if position.qty <= 0:
            return None
        return position

    def get_positions(self) -> dict[str, Position]:
        payload = self._request("GET", "/v2/positions")
        positions: dict[str, Position] = {}
        for item in payload if isinstance(payload, list) else []:
            position = self._position_from_payload(item)
            positions[position.symbol] = position
        return positions

    def submit_order(self, request: OrderRequest) -> Order:
        request = request.normalized()
        body: dict[str, Any] = {
            "symbol": self.normalize_symbol(request.symbol),
            "qty": str(request.qty),
            "side": request.side.value,
            "type": request.order_type.value,
            "time_in_force": request.time_in_force or "day",
        }
        if request.order_type is OrderType.LIMIT and request.limit_price is not None:
            body["limit_price"] = str(request.limit_price)
        payload = self._request("POST", "/v2/orders", json=body)
        if not isinstance(payload, dict):
            raise BrokerError("Alpaca order response was not an object")
        return self._order_from_payload(payload, request)

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        missing_ok: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=json,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self.max_retries:
                    break
                sleep(float(attempt))
                continue

            if response.status_code == 429:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Rate limit"
                    raise BrokerError(f"Alpaca API error 429 for {path}: {detail}")
                sleep(self._retry_after_seconds(response.headers, attempt))
                continue

            if response.status_code >= 500:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Server error"
                    raise BrokerError(
                        f"Alpaca API error {response.status_code} for {path}: {detail}"
                    )
                sleep(float(attempt))
                continue

            if response.status_code == 404 and missing_ok:
                return None

            if response.status_code >= 400:
                detail = response.text.strip() or "Request rejected"
                raise BrokerError(f"Alpaca API error {response.status_code} for {path}: {detail}")

            try:
                return response.json()
            except ValueError as exc:
                raise BrokerError(f"Alpaca response for {path} was not valid JSON") from exc

        if last_error is not None:
            raise BrokerError(f"Alpaca request failed for {path}: {last_error}") from last_error
        raise BrokerError(f"Alpaca request failed for {path}")

    @staticmethod
    def normalize_symbol(symbol: str) -> str:
        return symbol.strip().upper().replace("/", "").replace("-", "")

    @classmethod
    def _position_from_payload(cls, item: dict[str, Any]) -> Position:
        qty = cls._parse_optional_decimal(item.get("qty")) or Decimal("0")
        position = Position(
            symbol=str(item.get("symbol", "")).upper(),
            qty=int(qty),
            avg_entry_price=cls._money(item.get("avg_entry_price")),
            current_price=cls._parse_optional_decimal(item.get("current_price")),
            market_value=cls._parse_optional_decimal(item.get("market_value")),
            unrealized_pl=cls._parse_optional_decimal(item.get("unrealized_pl")),
            unrealized_plpc=cls._parse_optional_decimal(item.get("unrealized_plpc")),
        )
        return position

    @classmethod
    def _order_from_payload(cls, payload: dict[str, Any], request: OrderRequest) -> Order:
        raw_status = str(payload.get("status", "")).strip().lower()
        filled_qty = cls._parse_optional_decimal(payload.get("filled_qty")) or Decimal("0")
        return Order(
            id=str(payload.get("id", "")),
            user_id=str(payload.get("client_order_id") or ""),
            symbol=str(payload.get("symbol", request.symbol)).upper(),
            qty=request.qty,
            side=cls._to_order_side(str(payload.get("side", request.side.value))),
            order_type=request.order_type,
            limit_price=request.limit_price,
            time_in_force=str(payload.get("time_in_force", request.time_in_force)),
            status=_STATUS_MAP.get(raw_status, OrderStatus.PENDING),
            submitted_at=cls._parse_timestamp(payload.get("submitted_at")) or datetime.now(tz=UTC),
            filled_qty=int(filled_qty),
            filled_avg_price=cls._parse_optional_decimal(payload.get("filled_avg_price")),
            filled_at=cls._parse_timestamp(payload.get("filled_at")),
            canceled_at=cls._parse_timestamp(payload.get("canceled_at")),
        )

    @staticmethod
    def _to_order_side(value: str) -> OrderSide:
        normalized = value.strip().lower()
        if normalized == "sell":
            return OrderSide.SELL
        return OrderSide.BUY

    @staticmethod
    def _retry_after_seconds(
        headers: requests.structures.CaseInsensitiveDict,
        attempt: int,
    ) -> float:
        retry_after = headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 1.0)
            except ValueError:
                try:
                    dt = parsedate_to_datetime(retry_after)
                except (TypeError, ValueError):
                    dt = None
                if dt is not None:
                    if dt.tzinfo is None:
                        dt = dt.replace(tzinfo=UTC)
                    delta = (dt - datetime.now(tz=UTC)).total_seconds()
                    return max(delta, 1.0)

        rate_reset = headers.get("X-RateLimit-Reset") or headers.get("x-ratelimit-reset")
        if rate_reset:
            try:
                reset_seconds = float(rate_reset)
                now_seconds = datetime.now(tz=UTC).timestamp()
                delta = reset_seconds - now_seconds
                return max(delta, 1.0)
            except ValueError:
                pass

        return max(float(attempt), 1.0)

    @classmethod
    def _money(cls, value: Any) -> Decimal:
        return cls._parse_optional_decimal(value) or Decimal("0")

    @staticmethod
    def _parse_optional_decimal(value: Any) -> Decimal | None:
        if value is None:
            return None
        text = str(value).strip()
        if not text or text.lower() in {"none", "null"}:
            return None
        try:
            return to_decimal(text)
        except ValueError:
            return None

    @staticmethod
    def _parse_timestamp(value: Any) -> datetime | None:
        if not isinstance(value, str) or not value.strip():
            return None
        text = value.strip().replace("Z", "+00:00")
        if "." in text:
            head, _, rest = text.partition(".")
            digits = "".join(ch for ch in rest if ch.isdigit())
            text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
