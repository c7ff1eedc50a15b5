from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Set, Tuple
from urllib.parse import quote

from reactpy import component, hooks, html

from aquascape_api import ApiError, ProxyClient
from aquascape_auth import AuthContext
from aquascape_config import POLL_INTERVAL_SECONDS, SETTLE_ATTEMPTS, SETTLE_INTERVAL_SECONDS
from aquascape_models import (
    HISTORY_PERIODS,
    PERIOD_LABELS,
    RELAY_KEYS,
    RELAY_TIMERS,
    TIMER_KEYS,
    HistoryItem,
    RealtimeSnapshot,
    csv_filename,
    history_csv,
    timer_display,
)
from aquascape_sync import RealtimePoller, SingleFlight, Sleep, in_thread, settle

logger = logging.getLogger(__name__)

RELAY_LABELS = {"relay1": ("Device Control 1", "Main Relay 1"), "relay2": ("Device Control 2", "Aux Relay 2")}
RELAY_ALERT = "Failed to update relay status. Please check connection."
TIMER_ALERT = "Failed to save the schedule. Please check connection."

CHART_SERIES = (
    ("temperature", "Suhu (°C)", "#f43f5e"),
    ("ph", "pH", "#06b6d4"),
    ("tds", "TDS (ppm)", "#10b981"),
)
CHART_WIDTH = 960
CHART_HEIGHT = 320
CHART_PADDING = 16


class DashboardSession:
    """Realtime polling, history and relay/timer commands for one mounted dashboard."""

    def __init__(
        self,
        client: ProxyClient,
        auth: AuthContext,
        on_change: Callable[[], None] = lambda: None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        settle_attempts: int = SETTLE_ATTEMPTS,
        settle_interval: float = SETTLE_INTERVAL_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.auth = auth
        self.on_change = on_change
        self.settle_attempts = settle_attempts
        self.settle_interval = settle_interval
        self.sleep = sleep

        self.realtime: RealtimeSnapshot | None = None
        self.relays: Dict[str, str] = {key: "off" for key in RELAY_KEYS}
        self.timers: Dict[str, str] = {key: "" for key in TIMER_KEYS}
        self.timer_revision: Dict[str, int] = {key: 0 for key in TIMER_KEYS}
        self.focused: Set[str] = set()
        self.last_updated: datetime | None = None

        self.period = "1hour"
        self.history: List[HistoryItem] = []
        self.loading = True
        self.refreshing = False
        self.alert = ""

        self.writes = SingleFlight()
        self.poller = RealtimePoller(self.refresh, poll_interval, sleep)
        self.closed = False
        self._queued_timers: Dict[str, str] = {}
        self._history_request = 0
        self._history_task: asyncio.Task | None = None

    def _changed(self) -> None:
        if not self.closed:
            self.on_change()

    def processing(self, key: str) -> bool:
        return self.writes.is_pending(key)

    def mount(self) -> None:
        self.closed = False
        self.poller.start()
        self._history_task = asyncio.get_running_loop().create_task(self.load_history())

    def unmount(self) -> None:
        self.closed = True
        self.poller.stop()
        if self._history_task is not None:
            self._history_task.cancel()
            self._history_task = None

    async def _fetch_realtime(self) -> RealtimeSnapshot | None:
        try:
            return await in_thread(self.client.get_realtime_data)
        except ApiError as exc:
            logger.warning("Failed to fetch realtime data: %s", exc)
            return None

    def apply_snapshot(self, snapshot: RealtimeSnapshot, force: Tuple[str, ...] = ()) -> None:
        self.realtime = snapshot
        self.last_updated = datetime.now()
        for key in RELAY_KEYS:
            if key in force or not self.writes.is_pending(key):
                self.relays[key] = snapshot.relay(key)
        for key in TIMER_KEYS:
            if key in self.focused:
                continue
            if self.writes.is_pending(key) and key not in force:
                continue
            value = timer_display(snapshot.timer(key))
            if value != self.timers[key]:
                self.timers[key] = value
                self.timer_revision[key] += 1

    async def refresh(self, background: bool = True) -> RealtimeSnapshot | None:
        if background:
            self.refreshing = True
            self._changed()
        try:
            snapshot = await self._fetch_realtime()
        finally:
            if background:
                self.refreshing = False
        if self.closed:
            return snapshot
        if snapshot is not None:
            self.apply_snapshot(snapshot)
        self._changed()
        return snapshot

    async def load_history(self) -> None:
        period = self.period
        self._history_request += 1
        request_id = self._history_request
        self.loading = True
        self._changed()
        try:
            items = await in_thread(self.client.get_history_data, period)
        except ApiError as exc:
            logger.warning("Failed to fetch %s history: %s", period, exc)
            items = []
        if self.closed or request_id != self._history_request:
            return
        self.history = items
        self.loading = False
        self._changed()

    async def select_period(self, period: str) -> None:
        if period not in HISTORY_PERIODS:
            raise ValueError(f"Unknown history period {period!r}")
        if period == self.period and self._history_request:
            return
        self.period = period
        await self.load_history()

    def dismiss_alert(self) -> None:
        self.alert = ""
        self._changed()

    async def toggle_relay(self, relay: str) -> bool:
        if not self.auth.is_authenticated:
            self.auth.open_login_modal()
            return False
        if self.realtime is None:
            return False

        target_on = self.relays[relay] != "on"
        target = "on" if target_on else "off"

        async def write() -> None:
            self._changed()
            try:
                await in_thread(self.client.set_relay_status, relay, target_on)
                snapshot = await settle(
                    self._fetch_realtime,
                    lambda snap: snap is not None and snap.relay(relay) == target,
                    self.settle_attempts,
                    self.settle_interval,
                    self.sleep,
                )
            except ApiError as exc:
                logger.error("Failed to toggle %s: %s", relay, exc)
                self.alert = RELAY_ALERT
                return
            if snapshot is not None and not self.closed:
                self.apply_snapshot(snapshot, force=(relay,))

        ran = await self.writes.run(relay, write)
        self._changed()
        return ran

    def focus_timer(self, key: str) -> None:
        if not self.auth.is_authenticated:
            self.auth.open_login_modal()
            return
        self.focused.add(key)

    def edit_timer(self, key: str, value: str) -> None:
        self.timers[key] = value

    async def _save_timer(self, key: str, value: str) -> None:
        self._changed()
        try:
            await in_thread(self.client.set_timer, key, value)
            wanted = value[:5]
            snapshot = await settle(
                self._fetch_realtime,
                lambda snap: snap is not None and timer_display(snap.timer(key)) == wanted,
                self.settle_attempts,
                self.settle_interval,
                self.sleep,
            )
        except ApiError as exc:
            logger.error("Failed to set %s: %s", key, exc)
            self.alert = TIMER_ALERT
            return
        except ValueError as exc:
            logger.warning("Rejected %s value %r: %s", key, value, exc)
            self.alert = f"Invalid time {value!r}."
            return
        if snapshot is not None and not self.closed:
            self.apply_snapshot(snapshot, force=(key,))

    async def blur_timer(self, key: str, value: str) -> bool:
        self.focused.discard(key)
        self.timers[key] = value
        if not self.auth.is_authenticated or not value:
            return False
        if self.writes.is_pending(key):
            self._queued_timers[key] = value
            return False

        pending: str | None = value
        while pending is not None and not self.closed:
            await self.writes.run(key, lambda wanted=pending: self._save_timer(key, wanted))
            pending = self._queued_timers.pop(key, None)
        self._changed()
        return True

    def export_csv(self, today: date | None = None) -> Tuple[str, str] | None:
        text = history_csv(self.history)
        if text is None:
            return None
        return csv_filename(self.period, today), text


def chart_points(history: List[HistoryItem], metric: str) -> str:
    """Polyline points for one metric, scaled to its own min/max."""
    values = [getattr(item, metric) for item in history]
    present = [value for value in values if value is not None]
    if not present:
        return ""
    low, high = min(present), max(present)
    span = (high - low) or 1.0
    step = (CHART_WIDTH - 2 * CHART_PADDING) / max(1, len(values) - 1)
    usable = CHART_HEIGHT - 2 * CHART_PADDING
    points = []
    for index, value in enumerate(values):
        if value is None:
            continue
        x = CHART_PADDING + index * step
        y = CHART_PADDING + usable - ((value - low) / span) * usable
        points.append(f"{x:.1f},{y:.1f}")
    return " ".join(points)


def status_pill_class(status: str) -> str:
    return "pill-success" if status in {"Ideal", "Optimal"} else "pill-warning"


def render_chart(history: List[HistoryItem], is_dark: bool) -> Dict[str, Any]:
    grid = "#334155" if is_dark else "#e2e8f0"
    lines: List[Dict[str, Any]] = [
        {
            "tagName": "line",
            "attributes": {
                "x1": CHART_PADDING,
                "x2": CHART_WIDTH - CHART_PADDING,
                "y1": y,
                "y2": y,
                "stroke": grid,
                "strokeDasharray": "3 3",
            },
        }
        for y in range(CHART_PADDING, CHART_HEIGHT, (CHART_HEIGHT - 2 * CHART_PADDING) // 4)
    ]
    for metric, label, color in CHART_SERIES:
        points = chart_points(history, metric)
        if not points:
            continue
        lines.append(
            {
                "tagName": "polyline",
                "attributes": {"points": points, "fill": "none", "stroke": color, "strokeWidth": 2},
                "children": [{"tagName": "title", "children": [label]}],
            }
        )
    return {
        "tagName": "svg",
        "attributes": {
            "viewBox": f"0 0 {CHART_WIDTH} {CHART_HEIGHT}",
            "preserveAspectRatio": "none",
            "style": {"width": "100%", "height": "320px"},
            "role": "img",
        },
        "children": lines,
    }


@component
def Dashboard(auth: AuthContext, client: ProxyClient, is_dark: bool = True):
    _, set_version = hooks.use_state(0)
    session_ref = hooks.use_ref(None)
    if session_ref.current is None:
        session_ref.current = DashboardSession(client, auth, on_change=lambda: set_version(lambda v: v + 1))
    session: DashboardSession = session_ref.current

    @hooks.use_effect(dependencies=[])
    def manage_session():
        session.mount()
        return session.unmount

    async def handle_refresh(event: Dict[str, Any]) -> None:
        await session.refresh(background=True)

    def relay_handler(relay: str):
        async def handle(event: Dict[str, Any]) -> None:
            await session.toggle_relay(relay)

        return handle

    def timer_blur_handler(key: str):
        async def handle(event: Dict[str, Any]) -> None:
            await session.blur_timer(key, str(event.get("target", {}).get("value", "")))

        return handle

    def period_handler(period: str):
        async def handle(event: Dict[str, Any]) -> None:
            await session.select_period(period)

        return handle

    def open_login(event: Dict[str, Any] | None = None) -> None:
        auth.open_login_modal()

    realtime = session.realtime
    if realtime is None:
        return html.section(
            {"class": "card glass-surface glass-card loading-card"},
            html.div({"class": "spinner"}),
            html.div({"class": "meta"}, "Connecting to Aquascape..."),
        )

    def sensor_card(label: str, value: Any, unit: str, status: str):
        return html.div(
            {"class": "sensor glass-surface glass-panel", "key": label},
            html.div({"class": "label"}, label),
            html.div({"class": "sensor-value"}, f"{value}", html.span({"class": "meta"}, f" {unit}")),
            html.span({"class": f"pill {status_pill_class(status)}"}, status or "Unknown"),
        )

    def timer_input(key: str, label: str):
        return html.div(
            {"class": "field"},
            html.span({"class": "label"}, label),
            html.input(
                {
                    "key": f"{key}-{session.timer_revision[key]}",
                    "type": "time",
                    "class": "input glass-input",
                    "default_value": session.timers[key],
                    "read_only": not auth.is_authenticated,
                    "on_click": lambda event: None if auth.is_authenticated else open_login(),
                    "on_focus": lambda event, key=key: session.focus_timer(key),
                    "on_change": lambda event, key=key: session.edit_timer(key, str(event.get("target", {}).get("value", ""))),
                    "on_blur": timer_blur_handler(key),
                }
            ),
        )

    def relay_card(relay: str):
        title, name = RELAY_LABELS[relay]
        status = session.relays[relay]
        on_key, off_key = RELAY_TIMERS[relay]
        busy = session.processing(relay)
        timer_busy = session.processing(on_key) or session.processing(off_key)
        return html.section(
            {"class": "card glass-surface glass-card", "key": relay},
            html.div(
                {"class": "section-head"},
                html.div(
                    html.h2(title),
                    html.div({"class": "meta"}, f"{name} · Status: {status.upper()}"),
                ),
                html.button(
                    {
                        "type": "button",
                        "class": f"switch {'switch-on' if status == 'on' else ''}",
                        "disabled": busy,
                        "aria-label": f"Toggle {name}",
                        "on_click": relay_handler(relay),
                    },
                    "…" if busy else ("ON" if status == "on" else "OFF"),
                ),
            ),
            html.div(
                {"class": "schedule glass-surface glass-panel"},
                *(
                    [
                        html.div(
                            {"class": "lock-overlay", "on_click": open_login},
                            "🔒 Login to Edit",
                        )
                    ]
                    if not auth.is_authenticated
                    else []
                ),
                html.div(
                    {"class": "schedule-head"},
                    html.span({"class": "label"}, "Schedule"),
                    *([html.span({"class": "pill pill-warning"}, "Saving...")] if timer_busy else []),
                ),
                html.div(
                    {"class": "schedule-grid"},
                    timer_input(on_key, "Start Time"),
                    timer_input(off_key, "Stop Time"),
                ),
            ),
        )

    export = session.export_csv()
    if export is not None:
        filename, csv_text = export
        export_button = html.a(
            {
                "class": "btn glass-btn",
                "href": "data:text/csv;charset=utf-8," + quote(csv_text),
                "download": filename,
            },
            "Export CSV",
        )
    else:
        export_button = html.button({"class": "btn glass-btn", "type": "button", "disabled": True}, "Export CSV")

    last_synced = session.last_updated.strftime("%H:%M:%S") if session.last_updated else "never"

    return html.div(
        {"class": "stack"},
        html.section(
            {"class": "hero"},
            html.div(
                html.h1("Dashboard Overview"),
                html.div({"class": "meta"}, f"Last synced: {last_synced}"),
            ),
            html.button(
                {
                    "class": "btn glass-btn",
                    "type": "button",
                    "disabled": session.refreshing,
                    "on_click": handle_refresh,
                },
                "Refreshing..." if session.refreshing else "Refresh",
            ),
        ),
        *(
            [
                html.div(
                    {"class": "alert pill-danger", "role": "alert"},
                    html.span(session.alert),
                    html.button(
                        {"class": "btn glass-btn ghost", "type": "button", "on_click": lambda event: session.dismiss_alert()},
                        "Dismiss",
                    ),
                )
            ]
            if session.alert
            else []
        ),
        html.section(
            {"class": "card glass-surface glass-card banner"},
            html.div({"class": "eyebrow"}, "AI Recommendation"),
            html.h2(realtime.recommendation or "Evaluating system status..."),
            html.div(
                {"class": "meta"},
                f"Based on current sensors: Temp {realtime.temperature}°C, pH {realtime.ph}, TDS {realtime.tds}ppm.",
            ),
        ),
        html.div(
            {"class": "grid-3"},
            sensor_card("Temperature", realtime.temperature, "°C", realtime.temperature_status),
            sensor_card("pH Level", realtime.ph, "pH", realtime.ph_status),
            sensor_card("TDS", realtime.tds, "ppm", realtime.tds_status),
        ),
        html.div({"class": "grid-2"}, *[relay_card(relay) for relay in RELAY_KEYS]),
        html.section(
            {"class": "card glass-surface glass-card"},
            html.div(
                {"class": "section-head"},
                html.div(
                    html.h2("Historical Data"),
                    html.div({"class": "meta"}, f"{len(session.history)} readings"),
                ),
                html.div(
                    {"class": "nav-actions"},
                    *[
                        html.button(
                            {
                                "key": period,
                                "type": "button",
                                "class": f"seg-btn {'active' if session.period == period else ''}",
                                "on_click": period_handler(period),
                            },
                            PERIOD_LABELS[period],
                        )
                        for period in HISTORY_PERIODS
                    ],
                    export_button,
                ),
            ),
            html.div({"class": "meta"}, "Loading chart data...")
            if session.loading
            else html.div(
                {"class": "chart"},
                render_chart(session.history, is_dark),
                html.div(
                    {"class": "chart-legend"},
                    *[
                        html.span({"key": metric, "style": {"color": color}}, f"■ {label}")
                        for metric, label, color in CHART_SERIES
                    ],
                    *(
                        [
                            html.span(
                                {"class": "meta"},
                                f"{session.history[0].full_date} – {session.history[-1].full_date}",
                            )
                        ]
                        if session.history
                        else []
                    ),
                ),
            ),
        ),
    )
