from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List

from reactpy import component, hooks, html

from aquascape_api import ApiError, ProxyClient
from aquascape_auth import AuthContext
from aquascape_config import NOTICE_DISMISS_SECONDS, SETTLE_ATTEMPTS, SETTLE_INTERVAL_SECONDS
from aquascape_models import CalibrationItem, FuzzyRule, RangeDefinition, to_number
from aquascape_sync import Sleep, in_thread

logger = logging.getLogger(__name__)

TABS = ("ranges", "rules", "calibrations")

SAVE_MESSAGES = {
    "ranges": ("Ranges updated successfully", "Failed to update ranges"),
    "rules": ("Fuzzy rules updated successfully", "Failed to update rules"),
    "calibrations": ("Calibrations updated successfully", "Failed to update calibrations"),
}

RANGE_FIELDS = {"category": str, "minimum": float, "maximum": float}
RULE_FIELDS = ("temperature", "ph", "tds", "action")


class SettingsSession:
    """Working copies of the three backend tables and their load/save cycle."""

    def __init__(
        self,
        client: ProxyClient,
        auth: AuthContext,
        on_change: Callable[[], None] = lambda: None,
        notice_seconds: float = NOTICE_DISMISS_SECONDS,
        confirm_attempts: int = SETTLE_ATTEMPTS,
        confirm_interval: float = SETTLE_INTERVAL_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.auth = auth
        self.on_change = on_change
        self.notice_seconds = notice_seconds
        self.confirm_attempts = max(1, confirm_attempts)
        self.confirm_interval = confirm_interval
        self.sleep = sleep

        self.active_tab = "ranges"
        self.ranges: List[RangeDefinition] = []
        self.rules: List[FuzzyRule] = []
        self.calibrations: List[CalibrationItem] = []
        self.revision = 0
        self.loading = False
        self.saving = False
        self.notice: Dict[str, str] | None = None
        self.closed = False
        self._dismiss_task: asyncio.Task | None = None

    def _changed(self) -> None:
        if not self.closed:
            self.on_change()

    def close(self) -> None:
        self.closed = True
        if self._dismiss_task is not None:
            self._dismiss_task.cancel()
            self._dismiss_task = None

    def _fetch(self, tab: str) -> Callable[[], Any]:
        return {
            "ranges": self.client.get_ranges,
            "rules": self.client.get_fuzzy_rules,
            "calibrations": self.client.get_calibrations,
        }[tab]

    def _store(self, tab: str, rows: List[Any]) -> None:
        setattr(self, tab, rows)
        self.revision += 1

    def working_copy(self, tab: str | None = None) -> List[Any]:
        return getattr(self, tab or self.active_tab)

    async def select_tab(self, tab: str) -> None:
        if tab not in TABS:
            raise ValueError(f"Unknown settings tab {tab!r}")
        self.active_tab = tab
        await self.load()

    async def load(self) -> bool:
        tab = self.active_tab
        self.loading = True
        self.notice = None
        self._changed()
        try:
            rows = await in_thread(self._fetch(tab))
        except ApiError as exc:
            logger.warning("Failed to load %s: %s", tab, exc)
            if tab == self.active_tab:
                self.notice = {"msg": "Failed to load data", "type": "error"}
            return False
        finally:
            self.loading = False
            self._changed()
        if tab == self.active_tab and not self.closed:
            self._store(tab, rows)
            self._changed()
        return True

    def edit_range(self, index: int, field: str, value: Any) -> None:
        if field not in RANGE_FIELDS:
            raise ValueError(f"Range field {field!r} is not editable")
        if RANGE_FIELDS[field] is float:
            number = to_number(value)
            value = 0.0 if number is None else number
        else:
            value = str(value)
        self.ranges[index] = replace(self.ranges[index], **{field: value})

    def edit_rule(self, index: int, field: str, value: Any) -> None:
        if field not in RULE_FIELDS:
            raise ValueError(f"Rule field {field!r} is not editable")
        self.rules[index] = replace(self.rules[index], **{field: str(value)})

    def edit_calibration(self, key: str, value: Any) -> None:
        self.calibrations = [
            replace(item, value=str(value)) if item.key == key else item for item in self.calibrations
        ]

    def _send(self, tab: str, rows: List[Any]) -> Any:
        if tab == "ranges":
            return self.client.update_ranges(rows)
        if tab == "rules":
            return self.client.update_fuzzy_rules(rows)
        return self.client.update_calibrations(rows)

    async def _confirm(self, tab: str, sent: List[Any]) -> List[Any]:
        rows: List[Any] = []
        for attempt in range(self.confirm_attempts):
            if attempt:
                await self.sleep(self.confirm_interval)
            rows = await in_thread(self._fetch(tab))
            if rows == sent:
                break
            logger.debug("Saved %s not visible yet (attempt %d)", tab, attempt + 1)
        else:
            logger.warning("Backend did not echo the saved %s after %d reads", tab, self.confirm_attempts)
        return rows

    async def save(self) -> bool:
        if not self.auth.is_authenticated:
            self.auth.open_login_modal()
            return False
        if self.saving:
            return False

        tab = self.active_tab
        sent = list(self.working_copy(tab))
        if tab == "calibrations" and not sent:
            return False

        success_msg, failure_msg = SAVE_MESSAGES[tab]
        self.saving = True
        self.notice = None
        self._changed()
        try:
            await in_thread(self._send, tab, sent)
            self.loading = True
            self._changed()
            rows = await self._confirm(tab, sent)
        except ApiError as exc:
            logger.error("Saving %s failed: %s", tab, exc)
            self.notice = {"msg": failure_msg, "type": "error"}
            return False
        finally:
            self.saving = False
            self.loading = False
            self._changed()

        if self.closed:
            return True
        if tab == self.active_tab:
            self._store(tab, rows)
        self.notice = {"msg": success_msg, "type": "success"}
        self._schedule_dismiss(self.notice)
        self._changed()
        return True

    def _schedule_dismiss(self, notice: Dict[str, str]) -> None:
        if self._dismiss_task is not None:
            self._dismiss_task.cancel()
        self._dismiss_task = asyncio.get_running_loop().create_task(self._dismiss_later(notice))

    async def _dismiss_later(self, notice: Dict[str, str]) -> None:
        await self.sleep(self.notice_seconds)
        if self.notice is notice:
            self.notice = None
            self._changed()


@component
def Settings(auth: AuthContext, client: ProxyClient):
    _, set_version = hooks.use_state(0)
    session_ref = hooks.use_ref(None)
    if session_ref.current is None:
        session_ref.current = SettingsSession(client, auth, on_change=lambda: set_version(lambda v: v + 1))
    session: SettingsSession = session_ref.current

    @hooks.use_effect(dependencies=[])
    async def initial_load():
        await session.load()

    @hooks.use_effect(dependencies=[])
    def close_session():
        return session.close

    read_only = not auth.is_authenticated

    def tab_handler(tab: str):
        async def handle(event: Dict[str, Any]) -> None:
            await session.select_tab(tab)

        return handle

    async def handle_save(event: Dict[str, Any]) -> None:
        await session.save()

    def value_of(event: Dict[str, Any]) -> str:
        return str(event.get("target", {}).get("value", ""))

    def text_input(key: str, value: Any, on_change, input_type: str = "text"):
        return html.input(
            {
                "key": f"{key}-{session.revision}",
                "class": "input glass-input",
                "type": input_type,
                "default_value": value,
                "read_only": read_only,
                "on_change": on_change,
            }
        )

    def render_ranges():
        return html.div(
            {"class": "table-wrap glass-surface glass-panel"},
            html.table(
                {"class": "table"},
                html.thead(html.tr(html.th("Variable"), html.th("Category"), html.th("Min"), html.th("Max"))),
                html.tbody(
                    *[
                        html.tr(
                            {"key": idx},
                            html.td(item.variable),
                            html.td(
                                text_input(
                                    f"range-{idx}-category",
                                    item.category,
                                    lambda event, idx=idx: session.edit_range(idx, "category", value_of(event)),
                                )
                            ),
                            html.td(
                                text_input(
                                    f"range-{idx}-min",
                                    item.minimum,
                                    lambda event, idx=idx: session.edit_range(idx, "minimum", value_of(event)),
                                    "number",
                                )
                            ),
                            html.td(
                                text_input(
                                    f"range-{idx}-max",
                                    item.maximum,
                                    lambda event, idx=idx: session.edit_range(idx, "maximum", value_of(event)),
                                    "number",
                                )
                            ),
                        )
                        for idx, item in enumerate(session.ranges)
                    ]
                ),
            ),
        )

    def render_rules():
        headers = ("ID", "Suhu", "pH", "TDS", "Recommended Action")
        return html.div(
            {"class": "table-wrap glass-surface glass-panel"},
            html.table(
                {"class": "table"},
                html.thead(html.tr(*[html.th(label) for label in headers])),
                html.tbody(
                    *[
                        html.tr(
                            {"key": idx},
                            html.td({"class": "meta"}, str(rule.rule_id)),
                            *[
                                html.td(
                                    text_input(
                                        f"rule-{idx}-{field}",
                                        getattr(rule, field),
                                        lambda event, idx=idx, field=field: session.edit_rule(idx, field, value_of(event)),
                                    )
                                )
                                for field in RULE_FIELDS
                            ],
                        )
                        for idx, rule in enumerate(session.rules)
                    ]
                ),
            ),
        )

    def render_calibrations():
        if not session.calibrations:
            return html.div({"class": "meta"}, "No calibration constants found.")
        return html.div(
            {"class": "grid-2"},
            *[
                html.div(
                    {"class": "field glass-surface glass-panel calibration", "key": item.key or idx},
                    html.span({"class": "label"}, item.key.replace("_", " ")),
                    text_input(
                        f"calibration-{item.key}",
                        item.value,
                        lambda event, key=item.key: session.edit_calibration(key, value_of(event)),
                    ),
                    *([html.div({"class": "helper"}, item.description)] if item.description else []),
                )
                for idx, item in enumerate(session.calibrations)
            ],
        )

    if session.loading:
        body = html.div({"class": "loading-card"}, html.div({"class": "spinner"}))
    elif session.active_tab == "ranges":
        body = render_ranges()
    elif session.active_tab == "rules":
        body = render_rules()
    else:
        body = render_calibrations()

    notice = session.notice
    return html.div(
        {"class": "stack"},
        html.section(
            {"class": "hero"},
            html.h1("System Configuration"),
            *(
                [
                    html.div(
                        {"class": f"pill {'pill-success' if notice['type'] == 'success' else 'pill-danger'}", "role": "status"},
                        notice["msg"],
                    )
                ]
                if notice
                else []
            ),
        ),
        html.div(
            {"class": "segmented tabs"},
            *[
                html.button(
                    {
                        "key": tab,
                        "type": "button",
                        "class": f"seg-btn {'active' if session.active_tab == tab else ''}",
                        "on_click": tab_handler(tab),
                    },
                    tab.capitalize(),
                )
                for tab in TABS
            ],
        ),
        html.section(
            {"class": "card glass-surface glass-card"},
            *(
                [html.div({"class": "readonly-banner pill-warning"}, "🔒 Read-only mode. Login to save changes.")]
                if read_only
                else []
            ),
            body,
            html.div(
                {"class": "form-actions"},
                html.button(
                    {
                        "type": "button",
                        "class": "btn glass-btn primary",
                        "disabled": read_only or session.saving or session.loading,
                        "on_click": handle_save,
                    },
                    "🔒 Login required" if read_only else ("Saving..." if session.saving else "Save changes"),
                ),
            ),
        ),
    )
