from datetime import date, datetime, timezone

import pytest

from aquascape_models import (
    CSV_HEADERS,
    CalibrationItem,
    FuzzyRule,
    RangeDefinition,
    RealtimeSnapshot,
    csv_filename,
    decode_calibrations,
    encode_calibrations,
    format_history,
    history_csv,
    parse_timestamp,
    timer_display,
    timer_iso,
    to_number,
)

from conftest import REALTIME


def test_realtime_snapshot_from_wire():
    snapshot = RealtimeSnapshot.from_wire(REALTIME)
    assert snapshot.relay("relay1") == "off"
    assert snapshot.relay("relay2") == "on"
    assert snapshot.temperature == 26.5
    assert snapshot.recommendation == "Kondisi normal"
    assert snapshot.timer("timer1On") == ""


def test_realtime_snapshot_rejects_bad_payloads():
    with pytest.raises(ValueError):
        RealtimeSnapshot.from_wire(["not", "an", "object"])
    with pytest.raises(ValueError):
        RealtimeSnapshot.from_wire({**REALTIME, "relay1": "maybe"})
    with pytest.raises(ValueError):
        RealtimeSnapshot.from_wire({**REALTIME, "timer1On": "tomorrow-ish"})


def test_parse_timestamp_handles_zulu_suffix():
    parsed = parse_timestamp("2024-05-01T10:00:00Z")
    assert parsed == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_timestamp("") is None
    assert parse_timestamp("garbage") is None


def test_to_number():
    assert to_number("7.25") == 7.25
    assert to_number(320) == 320.0
    assert to_number("n/a") is None
    assert to_number(True) is None
    assert to_number(float("nan")) is None


def test_format_history_sorts_and_drops_unreadable_rows():
    rows = [
        {"timestamp": "2024-05-01T10:05:00Z", "suhu": "26.7", "ph": 7.0, "tds": 318},
        {"timestamp": "not a date", "suhu": 99},
        {"timestamp": "2024-05-01T10:00:00Z", "suhu": 26.5, "ph": 7.1, "tds": 320},
    ]
    items = format_history(rows, "1hour")
    assert [item.timestamp for item in items] == ["2024-05-01T10:00:00Z", "2024-05-01T10:05:00Z"]
    assert items[1].temperature == 26.7
    assert items[0].display_time == items[0].when.astimezone().strftime("%H:%M")


def test_format_history_week_labels_include_day():
    items = format_history([{"timestamp": "2024-05-01T10:00:00Z"}], "1week")
    local = items[0].when.astimezone()
    assert items[0].display_time == f"{local.day} {local.strftime('%b')} {local.strftime('%H:%M')}"
    assert items[0].temperature is None


def test_format_history_rejects_non_list():
    with pytest.raises(ValueError):
        format_history({"rows": []}, "1hour")


def test_history_csv_layout():
    items = format_history([{"timestamp": "2024-05-01T10:00:00Z", "suhu": 26.5, "ph": 7.1, "tds": 320}], "1hour")
    lines = history_csv(items).splitlines()
    assert lines[0] == ",".join(CSV_HEADERS)
    assert lines[1].startswith('"2024-05-01T10:00:00Z",')
    assert lines[1].endswith(",26.5,7.1,320")
    assert len(lines) == 2


def test_history_csv_empty_is_none():
    assert history_csv([]) is None


def test_csv_filename():
    assert csv_filename("1day", date(2024, 5, 1)) == "aquasmart_history_1day_2024-05-01.csv"


def test_range_definition_wire_shape():
    item = RangeDefinition.from_wire({"Variabel": "tds", "Kategori": "Tinggi", "Min": "300", "Max": 500.5})
    assert item.minimum == 300.0
    assert item.to_wire() == {"Variabel": "tds", "Kategori": "Tinggi", "Min": 300, "Max": 500.5}
    with pytest.raises(ValueError):
        RangeDefinition.from_wire({"Variabel": "tds", "Min": "low", "Max": 1})


def test_fuzzy_rule_requires_rule_id():
    rule = FuzzyRule.from_wire({"RuleID": 3, "Suhu": "Panas", "pH": "Asam", "TDS": "Tinggi", "Aksi Direkomendasikan": "Ganti air"})
    assert rule.to_wire()["Aksi Direkomendasikan"] == "Ganti air"
    with pytest.raises(ValueError):
        FuzzyRule.from_wire({"Suhu": "Panas"})


def test_decode_calibrations_skips_header_and_blank_keys():
    rows = [
        ["key", "value", "description"],
        ["ph_offset", 0.2, "pH sensor offset"],
        ["tds_factor", "0.5"],
        ["", "orphan", ""],
    ]
    items = decode_calibrations(rows)
    assert items == [
        CalibrationItem("ph_offset", "0.2", "pH sensor offset"),
        CalibrationItem("tds_factor", "0.5", ""),
    ]
    assert encode_calibrations(items)[0] == ["ph_offset", "0.2", "pH sensor offset"]


def test_calibration_named_key_survives_round_trip():
    items = [CalibrationItem("key", "v", "d"), CalibrationItem("Value", "description", "")]
    assert decode_calibrations(encode_calibrations(items)) == items
    assert decode_calibrations([["KEY", "Value", "Description"], ["key", "v", "d"]]) == [CalibrationItem("key", "v", "d")]


def test_decode_calibrations_accepts_objects():
    items = decode_calibrations([{"key": "temp_offset", "value": "-0.3", "description": None}])
    assert items == [CalibrationItem("temp_offset", "-0.3", "")]


def test_timer_iso_keeps_local_clock_time():
    value = timer_iso("14:30", now=datetime(2024, 5, 1, 9, 0))
    parsed = datetime.fromisoformat(value)
    assert (parsed.year, parsed.month, parsed.day) == (2024, 5, 1)
    assert (parsed.hour, parsed.minute, parsed.second) == (14, 30, 0)
    assert parsed.tzinfo is not None
    assert timer_display(value) == "14:30"


def test_timer_iso_rejects_bad_times():
    with pytest.raises(ValueError):
        timer_iso("25:00")
    with pytest.raises(ValueError):
        timer_iso("noon")


def test_timer_display_of_empty_value():
    assert timer_display("") == ""
