import asyncio
from datetime import date

import pytest

from aquascape_dashboard import (
    RELAY_ALERT,
    TIMER_ALERT,
    DashboardSession,
    chart_points,
    render_chart,
    status_pill_class,
)
from aquascape_models import RealtimeSnapshot, format_history

from conftest import REALTIME, no_sleep


def make_session(client, auth, **kwargs):
    changes = []
    session = DashboardSession(
        client,
        auth,
        on_change=lambda: changes.append(1),
        settle_attempts=3,
        settle_interval=0,
        sleep=no_sleep,
        **kwargs,
    )
    return session, changes


def test_toggle_without_login_opens_modal_and_sends_nothing(fake_client, guest):
    session, _ = make_session(fake_client, guest)
    session.apply_snapshot(RealtimeSnapshot.from_wire(REALTIME))

    assert asyncio.run(session.toggle_relay("relay1")) is False
    assert guest.is_login_modal_open
    assert fake_client.calls == []


def test_toggle_sends_inverse_and_confirms(fake_client, admin):
    session, changes = make_session(fake_client, admin)
    session.apply_snapshot(RealtimeSnapshot.from_wire(REALTIME))

    assert asyncio.run(session.toggle_relay("relay1")) is True
    assert fake_client.calls == ["set_relay_status", "get_realtime_data"]
    assert session.relays["relay1"] == "on"
    assert not session.processing("relay1")
    assert changes


def test_toggle_failure_sets_alert(fake_client, admin):
    fake_client.fail.add("set_relay_status")
    session, _ = make_session(fake_client, admin)
    session.apply_snapshot(RealtimeSnapshot.from_wire(REALTIME))

    asyncio.run(session.toggle_relay("relay2"))
    assert session.alert == RELAY_ALERT
    assert session.relays["relay2"] == "on"
    session.dismiss_alert()
    assert session.alert == ""


def test_toggle_is_ignored_while_a_write_is_pending(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    session.apply_snapshot(RealtimeSnapshot.from_wire(REALTIME))

    async def scenario():
        session.writes._pending.add("relay1")
        return await session.toggle_relay("relay1")

    assert asyncio.run(scenario()) is False
    assert fake_client.calls == []


def test_snapshot_does_not_clobber_pending_relay(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    session.relays["relay1"] = "on"
    session.writes._pending.add("relay1")
    session.apply_snapshot(RealtimeSnapshot.from_wire(REALTIME))
    assert session.relays["relay1"] == "on"
    assert session.relays["relay2"] == "on"


def test_focused_timer_is_not_overwritten(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    session.focus_timer("timer1On")
    session.edit_timer("timer1On", "07:1")
    session.apply_snapshot(RealtimeSnapshot.from_wire({**REALTIME, "timer1On": "2024-05-01T06:00:00", "timer1Off": "2024-05-01T18:00:00"}))
    assert session.timers["timer1On"] == "07:1"
    assert session.timers["timer1Off"] == "18:00"
    assert session.timer_revision["timer1Off"] == 1


def test_focus_without_login_opens_modal(fake_client, guest):
    session, _ = make_session(fake_client, guest)
    session.focus_timer("timer2On")
    assert guest.is_login_modal_open
    assert "timer2On" not in session.focused


def test_blur_saves_and_confirms_timer(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    session.focus_timer("timer1On")

    assert asyncio.run(session.blur_timer("timer1On", "07:30")) is True
    assert fake_client.calls == ["set_timer", "get_realtime_data"]
    assert session.timers["timer1On"] == "07:30"
    assert "timer1On" not in session.focused


def test_blur_without_value_or_login_sends_nothing(fake_client, admin, guest):
    session, _ = make_session(fake_client, admin)
    assert asyncio.run(session.blur_timer("timer1Off", "")) is False
    guest_session, _ = make_session(fake_client, guest)
    assert asyncio.run(guest_session.blur_timer("timer1Off", "08:00")) is False
    assert fake_client.calls == []


def test_blur_during_pending_save_is_coalesced(fake_client, admin):
    session, _ = make_session(fake_client, admin)

    async def scenario():
        session.writes._pending.add("timer2Off")
        queued = await session.blur_timer("timer2Off", "21:00")
        session.writes._pending.discard("timer2Off")
        return queued

    assert asyncio.run(scenario()) is False
    assert session._queued_timers == {"timer2Off": "21:00"}
    assert fake_client.calls == []


def test_timer_failure_sets_alert(fake_client, admin):
    fake_client.fail.add("set_timer")
    session, _ = make_session(fake_client, admin)
    asyncio.run(session.blur_timer("timer1On", "07:30"))
    assert session.alert == TIMER_ALERT


def test_select_period_fetches_once(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    fake_client.history = format_history([{"timestamp": "2024-05-01T10:00:00Z", "suhu": 26}], "1day")

    asyncio.run(session.select_period("1day"))
    assert fake_client.calls == ["get_history_data:1day"]
    assert session.period == "1day"
    assert len(session.history) == 1
    assert session.loading is False

    with pytest.raises(ValueError):
        asyncio.run(session.select_period("1year"))


def test_reselecting_the_current_period_does_not_refetch(fake_client, admin):
    session, _ = make_session(fake_client, admin)

    async def scenario():
        await session.select_period("1hour")
        await session.select_period("1hour")
        await session.select_period("1week")
        await session.select_period("1week")

    asyncio.run(scenario())
    assert fake_client.calls == ["get_history_data:1hour", "get_history_data:1week"]


def test_failed_history_load_shows_empty_history(fake_client, admin):
    fake_client.fail.add("get_history_data:1hour")
    session, _ = make_session(fake_client, admin)
    session.history = format_history([{"timestamp": "2024-05-01T10:00:00Z"}], "1hour")
    asyncio.run(session.load_history())
    assert session.history == []
    assert session.loading is False


def test_refresh_keeps_last_snapshot_on_error(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    asyncio.run(session.refresh())
    first = session.realtime
    fake_client.fail.add("get_realtime_data")
    asyncio.run(session.refresh())
    assert session.realtime is first
    assert session.refreshing is False


def test_mount_loads_data_and_unmount_stops_polling(fake_client, admin):
    session, _ = make_session(fake_client, admin)

    async def scenario():
        session.mount()
        await session._history_task
        while session.realtime is None:
            await asyncio.sleep(0.01)
        session.unmount()
        return session.poller.running

    assert asyncio.run(scenario()) is False
    assert session.closed
    assert "get_history_data:1hour" in fake_client.calls
    assert session.realtime.relay("relay2") == "on"


def test_export_csv(fake_client, admin):
    session, _ = make_session(fake_client, admin)
    assert session.export_csv() is None
    session.history = format_history([{"timestamp": "2024-05-01T10:00:00Z", "suhu": 26.5, "ph": 7.1, "tds": 320}], "1hour")
    filename, text = session.export_csv(date(2024, 5, 1))
    assert filename == "aquasmart_history_1hour_2024-05-01.csv"
    assert text.splitlines()[1].endswith(",26.5,7.1,320")


def test_chart_helpers():
    history = format_history(
        [
            {"timestamp": "2024-05-01T10:00:00Z", "suhu": 26, "ph": 7.0},
            {"timestamp": "2024-05-01T10:05:00Z", "suhu": 28, "ph": None},
        ],
        "1hour",
    )
    assert chart_points(history, "temperature") == "16.0,304.0 944.0,16.0"
    assert chart_points(history, "tds") == ""
    svg = render_chart(history, is_dark=True)
    assert svg["tagName"] == "svg"
    assert sum(1 for child in svg["children"] if child["tagName"] == "polyline") == 2
    assert status_pill_class("Ideal") == "pill-success"
    assert status_pill_class("Tinggi") == "pill-warning"
