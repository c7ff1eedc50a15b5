"""Typed shapes for the backend script payloads plus the formatting helpers
shared by the dashboard and settings views.

Every ``from_wire`` constructor validates the decoded JSON and raises
``ValueError`` when a payload does not have the expected shape, so a bad
response is reported instead of leaking ``None`` fields into the views.
"""
from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

RELAY_KEYS = ("relay1", "relay2")
TIMER_KEYS = ("timer1On", "timer1Off", "timer2On", "timer2Off")
RELAY_TIMERS = {"relay1": ("timer1On", "timer1Off"), "relay2": ("timer2On", "timer2Off")}

HISTORY_PERIODS = ("1hour", "1day", "1week")
HISTORY_ACTIONS = {
    "1hour": "history1hour",
    "1day": "history1day",
    "1week": "history1week",
}
PERIOD_LABELS = {"1hour": "Last Hour", "1day": "Last 24h", "1week": "Last Week"}

CSV_HEADERS = ["Timestamp", "Date", "Time", "Temperature (C)", "pH", "TDS (ppm)"]
CALIBRATION_HEADER = ["key", "value", "description"]

_FALLBACK_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a backend timestamp into an aware datetime (naive values are local time)."""
    if isinstance(value, datetime):
        parsed: datetime | None = value
    else:
        text = str(value or "").strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in _FALLBACK_TIMESTAMP_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def compact_number(value: float | None) -> int | float | None:
    """Return ``320`` for ``320.0`` so exports and payloads keep the shortest form."""
    if value is None:
        return None
    if float(value).is_integer():
        return int(value)
    return value


def _relay_status(value: Any, key: str) -> str:
    if isinstance(value, bool):
        return "on" if value else "off"
    text = str(value or "").strip().lower()
    if text not in {"on", "off"}:
        raise ValueError(f"{key} must be 'on' or 'off', got {value!r}")
    return text


def _timer_value(value: Any, key: str) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    if parse_timestamp(text) is None:
        raise ValueError(f"{key} is not a datetime: {value!r}")
    return text


def _reading(value: Any, key: str) -> float | str:
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"{key} must be a number or text, got {value!r}")
    return value


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class RealtimeSnapshot:
    relay1: str
    relay2: str
    temperature: float | str
    ph: float | str
    tds: float | str
    temperature_status: str
    ph_status: str
    tds_status: str
    recommendation: str
    timestamp: str
    timer1_on: str
    timer1_off: str
    timer2_on: str
    timer2_off: str

    @classmethod
    def from_wire(cls, payload: Any) -> "RealtimeSnapshot":
        if not isinstance(payload, dict):
            raise ValueError("realtime payload must be an object")
        return cls(
            relay1=_relay_status(payload.get("relay1"), "relay1"),
            relay2=_relay_status(payload.get("relay2"), "relay2"),
            temperature=_reading(payload.get("suhu"), "suhu"),
            ph=_reading(payload.get("ph"), "ph"),
            tds=_reading(payload.get("tds"), "tds"),
            temperature_status=_text(payload.get("suhu_status")),
            ph_status=_text(payload.get("ph_status")),
            tds_status=_text(payload.get("tds_status")),
            recommendation=_text(payload.get("fuzzy_rekomendasi")),
            timestamp=_text(payload.get("Timestamp")),
            timer1_on=_timer_value(payload.get("timer1On"), "timer1On"),
            timer1_off=_timer_value(payload.get("timer1Off"), "timer1Off"),
            timer2_on=_timer_value(payload.get("timer2On"), "timer2On"),
            timer2_off=_timer_value(payload.get("timer2Off"), "timer2Off"),
        )

    def relay(self, key: str) -> str:
        return {"relay1": self.relay1, "relay2": self.relay2}[key]

    def timer(self, key: str) -> str:
        return {
            "timer1On": self.timer1_on,
            "timer1Off": self.timer1_off,
            "timer2On": self.timer2_on,
            "timer2Off": self.timer2_off,
        }[key]


@dataclass(frozen=True)
class HistoryItem:
    timestamp: str
    when: datetime
    temperature: float | None
    ph: float | None
    tds: float | None
    relay1: str
    relay2: str
    recommendation: str
    display_time: str
    full_date: str


def display_time_for(moment: datetime, period: str) -> str:
    local = moment.astimezone()
    if period == "1week":
        return f"{local.day} {local.strftime('%b')} {local.strftime('%H:%M')}"
    return local.strftime("%H:%M")


def format_history(rows: Any, period: str) -> List[HistoryItem]:
    """Normalize raw history rows and sort them oldest first."""
    if not isinstance(rows, list):
        raise ValueError("history payload must be a list")

    items: List[HistoryItem] = []
    skipped = 0
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError("history rows must be objects")
        when = parse_timestamp(row.get("timestamp"))
        if when is None:
            skipped += 1
            continue
        items.append(
            HistoryItem(
                timestamp=_text(row.get("timestamp")),
                when=when,
                temperature=to_number(row.get("suhu")),
                ph=to_number(row.get("ph")),
                tds=to_number(row.get("tds")),
                relay1=_text(row.get("relay1")),
                relay2=_text(row.get("relay2")),
                recommendation=_text(row.get("fuzzy_rekomendasi")),
                display_time=display_time_for(when, period),
                full_date=when.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            )
        )
    if skipped:
        logger.warning("Dropped %d history rows without a readable timestamp", skipped)

    items.sort(key=lambda item: item.when)
    return items


def history_csv(items: List[HistoryItem]) -> str | None:
    if not items:
        return None

    buffer = io.StringIO()
    buffer.write(",".join(CSV_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for item in items:
        local = item.when.astimezone()
        writer.writerow(
            [
                item.timestamp,
                local.strftime("%Y-%m-%d"),
                local.strftime("%H:%M:%S"),
                *[
                    "" if value is None else compact_number(value)
                    for value in (item.temperature, item.ph, item.tds)
                ],
            ]
        )
    return buffer.getvalue()


def csv_filename(period: str, today: date | None = None) -> str:
    today = today or date.today()
    return f"aquasmart_history_{period}_{today.isoformat()}.csv"


@dataclass
class RangeDefinition:
    variable: str
    category: str
    minimum: float
    maximum: float

    @classmethod
    def from_wire(cls, row: Any) -> "RangeDefinition":
        if not isinstance(row, dict):
            raise ValueError("range definitions must be objects")
        minimum = to_number(row.get("Min"))
        maximum = to_number(row.get("Max"))
        if minimum is None or maximum is None:
            raise ValueError(f"range {row.get('Variabel')!r} has non-numeric bounds")
        return cls(
            variable=_text(row.get("Variabel")),
            category=_text(row.get("Kategori")),
            minimum=minimum,
            maximum=maximum,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "Variabel": self.variable,
            "Kategori": self.category,
            "Min": compact_number(self.minimum),
            "Max": compact_number(self.maximum),
        }


@dataclass
class FuzzyRule:
    rule_id: int | str
    temperature: str
    ph: str
    tds: str
    action: str

    @classmethod
    def from_wire(cls, row: Any) -> "FuzzyRule":
        if not isinstance(row, dict) or "RuleID" not in row:
            raise ValueError("fuzzy rules must be objects with a RuleID")
        return cls(
            rule_id=row["RuleID"],
            temperature=_text(row.get("Suhu")),
            ph=_text(row.get("pH")),
            tds=_text(row.get("TDS")),
            action=_text(row.get("Aksi Direkomendasikan")),
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "RuleID": self.rule_id,
            "Suhu": self.temperature,
            "pH": self.ph,
            "TDS": self.tds,
            "Aksi Direkomendasikan": self.action,
        }


@dataclass
class CalibrationItem:
    key: str
    value: str
    description: str = ""

    def to_wire(self) -> List[str]:
        return [self.key, self.value, self.description]


def decode_calibrations(rows: Any) -> List[CalibrationItem]:
    """Read ``[[key, value, description], ...]`` (or older ``{key, value, description}`` rows)."""
    if not isinstance(rows, list):
        raise ValueError("calibration payload must be a list")

    items: List[CalibrationItem] = []
    for index, row in enumerate(rows):
        if isinstance(row, dict):
            cells = [row.get("key"), row.get("value"), row.get("description")]
        elif isinstance(row, (list, tuple)):
            cells = list(row[:3]) + [""] * (3 - len(row[:3]))
        else:
            raise ValueError(f"calibration row {index} is neither a list nor an object")
        key, value, description = (_text(cell) for cell in cells)
        if index == 0 and [key.strip().lower(), value.strip().lower(), description.strip().lower()] == CALIBRATION_HEADER:
            continue
        if not key.strip():
            continue
        items.append(CalibrationItem(key=key, value=value, description=description))
    return items


def encode_calibrations(items: List[CalibrationItem]) -> List[List[str]]:
    return [item.to_wire() for item in items]


def _split_clock(text: str) -> Tuple[int, int]:
    parts = text.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"expected HH:MM, got {text!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"time out of range: {text!r}")
    return hours, minutes


def timer_iso(time_text: str, now: datetime | None = None) -> str:
    """Combine ``HH:MM`` with today's date; the backend only reads the time of day."""
    hours, minutes = _split_clock(time_text)
    moment = (now or datetime.now()).astimezone()
    moment = moment.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    return moment.isoformat(timespec="seconds")


def timer_display(value: str) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return ""
    return parsed.astimezone().strftime("%H:%M")
