from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path

import pytest

from papertrade.bus import EventBus
from papertrade.domain.events import ORDER_FILLED, VOLUME_ALERT, CoreEvent
from papertrade.domain.models import Order, OrderSide, OrderStatus, OrderType
from papertrade.logging.event_sink import JsonlEventSink, generate_plotly_report, load_events
from papertrade.logging.logger import HumanLogger


def _filled_order() -> Order:
    return Order(
        id="VIRT-1",
        user_id="alice",
        symbol="AAPL",
        qty=2,
        side=OrderSide.BUY,
        order_type=OrderType.MARKET,
        limit_price=None,
        time_in_force="day",
        status=OrderStatus.FILLED,
        filled_qty=2,
        filled_avg_price=Decimal("100.5"),
        price=Decimal("100.5"),
    )


def test_bus_delivers_in_subscription_order() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(VOLUME_ALERT, lambda event: seen.append("first"))
    bus.subscribe(VOLUME_ALERT, lambda event: seen.append("second"))
    bus.subscribe_all(lambda event: seen.append(f"all:{event.event_type}"))

    event = bus.publish(VOLUME_ALERT, {"symbol": "AAPL"})

    assert seen == ["first", "second", f"all:{VOLUME_ALERT}"]
    assert event.payload == {"symbol": "AAPL"}


def test_bus_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[CoreEvent] = []
    unsubscribe = bus.subscribe(ORDER_FILLED, seen.append)
    unsubscribe_all = bus.subscribe_all(seen.append)

    unsubscribe()
    unsubscribe_all()
    bus.publish(ORDER_FILLED, {})

    assert seen == []


def test_bus_refuses_unknown_event_types() -> None:
    bus = EventBus()
    seen: list[CoreEvent] = []
    bus.subscribe_all(seen.append)

    with pytest.raises(ValueError, match="Unknown event type: volume_spike"):
        bus.publish("volume_spike", {"symbol": "AAPL"})

    assert seen == []


def test_bus_isolates_failing_handlers(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(logging.getLogger("papertrade"), "propagate", True)
    bus = EventBus()
    seen: list[CoreEvent] = []

    def broken(event: CoreEvent) -> None:
        raise RuntimeError("consumer down")

    bus.subscribe(ORDER_FILLED, broken)
    bus.subscribe(ORDER_FILLED, seen.append)
    with caplog.at_level(logging.ERROR, logger="papertrade.bus"):
        bus.publish(ORDER_FILLED, {"user_id": "alice"})

    assert len(seen) == 1
    assert "event handler failed" in caplog.text


def test_sink_serialises_domain_objects(tmp_path: Path) -> None:
    path = tmp_path / "run" / "events.jsonl"
    sink = JsonlEventSink(str(path), run_id="run-1", mode="virtual")
    bus = EventBus()
    bus.subscribe_all(sink)

    bus.publish(ORDER_FILLED, {"user_id": "alice", "order": _filled_order()})
    bus.publish(VOLUME_ALERT, {"symbol": "AAPL", "z_score": 3.2, "avg": Decimal("1.25")})

    records = load_events(path)
    assert [record["event_type"] for record in records] == [ORDER_FILLED, VOLUME_ALERT]
    assert records[0]["run_id"] == "run-1"
    assert records[0]["mode"] == "virtual"
    order = records[0]["payload"]["order"]
    assert order["id"] == "VIRT-1"
    assert order["status"] == "filled"
    assert order["price"] == "100.50"
    assert records[1]["payload"]["avg"] == "1.25"


def test_load_events_missing_file_is_empty(tmp_path: Path) -> None:
    assert load_events(tmp_path / "absent.jsonl") == []


def test_report_renders_timeline_and_counts(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    sink = JsonlEventSink(str(events_path))
    sink.emit(CoreEvent(event_type=VOLUME_ALERT, payload={"symbol": "AAPL", "z_score": 4.0}))
    sink.emit(CoreEvent(event_type=ORDER_FILLED, payload={"order": _filled_order()}))
    report_path = tmp_path / "report.html"

    generate_plotly_report(str(events_path), str(report_path))

    html = report_path.read_text(encoding="utf-8")
    assert "Run Events Timeline" in html
    assert "Run Event Counts" in html


def test_report_without_events_still_writes_html(tmp_path: Path) -> None:
    report_path = tmp_path / "out" / "report.html"

    generate_plotly_report(str(tmp_path / "none.jsonl"), str(report_path))

    assert report_path.exists()


def test_human_logger_renders_core_events(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    human = HumanLogger(level="INFO")
    monkeypatch.setattr(logging.getLogger("papertrade"), "propagate", True)
    with caplog.at_level(logging.INFO, logger="papertrade"):
        human.handle_event(
            CoreEvent(event_type=ORDER_FILLED, payload={"order": _filled_order()})
        )
        human.handle_event(
            CoreEvent(
                event_type=VOLUME_ALERT,
                payload={
                    "symbol": "AAPL",
                    "type": "spike",
                    "current_volume": 5000,
                    "avg_volume": 100,
                    "z_score": 4900,
                },
            )
        )

    assert "update | VIRT-1 | filled | fill $100.500" in caplog.text
    assert "volume | AAPL | spike | vol 5,000 | avg 100 | z +4900.00" in caplog.text
