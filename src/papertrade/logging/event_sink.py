"""JSONL event sink and per-run Plotly report generator."""

from __future__ import annotations

import json
import threading
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

import pandas as pd
import plotly.express as px

from papertrade.domain.events import CoreEvent


def _json_default(value: Any) -> Any:
    to_record = getattr(value, "to_record", None)
    if callable(to_record):
        return to_record()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JsonlEventSink:
    """Append-only JSONL writer; usable directly as a bus subscriber."""

    def __init__(self, path: str, run_id: str = "", mode: str = "") -> None:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.path = output_path
        self.run_id = run_id
        self.mode = mode
        self._lock = threading.Lock()

    def __call__(self, event: CoreEvent) -> None:
        self.emit(event)

    def emit(self, event: CoreEvent) -> None:
        record = event.to_record(run_id=self.run_id, mode=self.mode)
        line = json.dumps(record, sort_keys=True, default=_json_default)
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.write("\n")


def load_events(path: str | Path) -> list[dict[str, Any]]:
    """Load JSONL records from disk."""
    records: list[dict[str, Any]] = []
    input_path = Path(path)
    if not input_path.exists():
        return records
    with input_path.open("r", encoding="utf-8") as handle:
        for line in handle:
            text = line.strip()
            if not text:
                continue
            records.append(json.loads(text))
    return records


def _event_symbol(payload: dict[str, Any]) -> str:
    symbol = payload.get("symbol")
    if symbol:
        return str(symbol)
    order = payload.get("order")
    if isinstance(order, dict):
        return str(order.get("symbol", ""))
    return ""


def generate_plotly_report(events_jsonl_path: str, output_html_path: str) -> None:
    """Render an interactive event timeline plus per-type counts."""
    events = load_events(events_jsonl_path)
    output = Path(output_html_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    if not events:
        empty_df = pd.DataFrame(
            {
                "ts": ["no-events"],
                "event_type": ["none"],
                "count": [0],
            }
        )
        figure = px.bar(empty_df, x="event_type", y="count", title="Run Event Summary")
        figure.write_html(str(output), include_plotlyjs="cdn")
        return

    rows: list[dict[str, Any]] = []
    for event in events:
        payload = event.get("payload") or {}
        rows.append(
            {
                "ts": event.get("ts"),
                "event_type": event.get("event_type"),
                "symbol": _event_symbol(payload),
                "z_score": payload.get("z_score"),
            }
        )

    frame = pd.DataFrame(rows)
    frame["ts"] = pd.to_datetime(frame["ts"], utc=True, errors="coerce")
    summary = frame.groupby("event_type", dropna=False).size().reset_index(name="count")
    timeline = px.scatter(
        frame,
        x="ts",
        y="event_type",
        color="symbol",
        title="Run Events Timeline",
        hover_data=["z_score"],
    )
    bars = px.bar(summary, x="event_type", y="count", title="Run Event Counts")
    html_parts = [
        "<html><head><meta charset='utf-8'><title>papertrade run report</title></head><body>",
        timeline.to_html(full_html=False, include_plotlyjs="cdn"),
        bars.to_html(full_html=False, include_plotlyjs=False),
        "</body></html>",
    ]
    output.write_text("".join(html_parts), encoding="utf-8")
