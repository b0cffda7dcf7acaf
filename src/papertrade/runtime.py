"""Runtime wiring and the monitoring loop."""

from __future__ import annotations

from pathlib import Path
from time import sleep
from uuid import uuid4

from papertrade.brokers.alpaca_paper import AlpacaPaperBroker
from papertrade.brokers.base import TradingClient
from papertrade.brokers.virtual import VirtualTradingClient
from papertrade.bus import EventBus
from papertrade.config import Settings
from papertrade.data.alpaca_market_data import AlpacaMarketDataProvider
from papertrade.data.alpaca_stream import AlpacaStream
from papertrade.data.base import MarketDataProvider
from papertrade.detection.engine import AnomalyDetector, DetectorConfig
from papertrade.domain.events import RUN_ERROR, RUN_STARTED, CoreEvent
from papertrade.ledger.monitor import PendingOrderMonitor
from papertrade.ledger.service import VirtualLedger
from papertrade.logging.event_sink import JsonlEventSink, generate_plotly_report
from papertrade.logging.logger import HumanLogger


def run(settings: Settings) -> int:
    """Start the ledger monitor and detector, then report status until stopped."""
    bus = EventBus()
    market_data = build_market_data(settings)
    ledger = VirtualLedger(
        market_data,
        bus=bus,
        starting_cash=settings.starting_cash,
        margin_multiplier=settings.margin_multiplier,
    )
    trading_client = build_trading_client(settings, ledger)
    stream = build_stream(settings)
    detector = AnomalyDetector(
        config=DetectorConfig.from_settings(settings),
        trading_client=trading_client,
        market_data=market_data,
        stream=stream,
        bus=bus,
        watchlist=settings.symbols,
    )
    monitor = PendingOrderMonitor(ledger, interval_seconds=settings.order_check_interval_seconds)

    run_id = uuid4().hex
    run_directory = Path(settings.events_dir) / run_id
    run_directory.mkdir(parents=True, exist_ok=True)
    events_path = run_directory / "events.jsonl"
    report_path = run_directory / "report.html"

    event_sink = JsonlEventSink(str(events_path), run_id=run_id, mode=settings.mode)
    human_logger = HumanLogger(level=settings.log_level)
    bus.subscribe_all(event_sink)
    bus.subscribe_all(human_logger.handle_event)
    event_sink.emit(
        CoreEvent(
            event_type=RUN_STARTED,
            payload={"symbols": settings.symbols, "user_id": settings.user_id},
        )
    )

    exit_code = 0
    try:
        monitor.start()
        detector.start()
        stream.start()
        pass_limit = settings.live_pass_limit()
        completed = 0
        while True:
            report_status(settings, ledger, trading_client, human_logger)
            completed += 1
            if pass_limit is not None and completed >= pass_limit:
                break
            sleep(float(settings.interval_seconds))
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as exc:
        human_logger.error(str(exc))
        event_sink.emit(CoreEvent(event_type=RUN_ERROR, payload={"message": str(exc)}))
        exit_code = 1
    finally:
        detector.stop()
        stream.stop()
        monitor.stop()
        generate_plotly_report(str(events_path), str(report_path))

    return exit_code


def report_status(
    settings: Settings,
    ledger: VirtualLedger,
    trading_client: TradingClient,
    human_logger: HumanLogger,
) -> None:
    """Log one account/positions pass, plus the leaderboard in virtual mode."""
    human_logger.account(trading_client.get_account())
    if settings.mode != "virtual":
        return
    for position in ledger.get_positions(settings.user_id):
        human_logger.position_exposure(
            position.symbol,
            position.qty,
            market_value=position.market_value,
            cost_basis=position.cost_basis,
            unrealized_pl=position.unrealized_pl,
        )
    human_logger.leaderboard(ledger.get_all_portfolios())


def show_portfolio(settings: Settings) -> int:
    """Print the live Alpaca account and its positions, then exit."""
    if settings.mode != "live":
        raise ValueError("--portfolio requires --mode live")
    broker = build_broker(settings)
    human_logger = HumanLogger(level=settings.log_level)
    human_logger.account(broker.get_account())
    positions = broker.get_positions()
    for symbol in sorted(positions):
        position = positions[symbol]
        human_logger.position_exposure(
            symbol,
            position.qty,
            market_value=position.market_value,
            cost_basis=position.cost_basis,
            unrealized_pl=position.unrealized_pl,
        )
    return 0


def build_trading_client(settings: Settings, ledger: VirtualLedger) -> TradingClient:
    """Route auto-trades to the virtual ledger or the Alpaca account."""
    if settings.mode == "live":
        return build_broker(settings)
    return VirtualTradingClient(ledger, settings.user_id)


def build_broker(settings: Settings) -> AlpacaPaperBroker:
    if not settings.has_alpaca_credentials():
        raise ValueError("ALPACA_API_KEY and ALPACA_SECRET_KEY are required for live mode")
    return AlpacaPaperBroker(
        api_key=settings.alpaca_api_key,
        secret_key=settings.alpaca_secret_key,
        base_url=settings.alpaca_base_url,
    )


def build_market_data(settings: Settings) -> MarketDataProvider:
    if not settings.has_alpaca_credentials():
        raise ValueError("ALPACA_API_KEY and ALPACA_SECRET_KEY are required for Alpaca data")
    return AlpacaMarketDataProvider(
        api_key=settings.alpaca_api_key,
        secret_key=settings.alpaca_secret_key,
        data_base_url=settings.alpaca_data_url,
        feed=settings.alpaca_feed,
    )


def build_stream(settings: Settings) -> AlpacaStream:
    if not settings.has_alpaca_credentials():
        raise ValueError("ALPACA_API_KEY and ALPACA_SECRET_KEY are required for streaming")
    return AlpacaStream(
        api_key=settings.alpaca_api_key,
        secret_key=settings.alpaca_secret_key,
        url=settings.alpaca_stream_url,
    )
