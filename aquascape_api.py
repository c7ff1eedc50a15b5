from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List

import requests

from aquascape_config import API_TIMEOUT_SECONDS, PROXY_URL
from aquascape_models import (
    HISTORY_ACTIONS,
    RELAY_KEYS,
    TIMER_KEYS,
    CalibrationItem,
    FuzzyRule,
    HistoryItem,
    RangeDefinition,
    RealtimeSnapshot,
    decode_calibrations,
    encode_calibrations,
    format_history,
    timer_iso,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class ProxyClient:
    """Talks to the backend script through the ``/api/proxy`` endpoint."""

    def __init__(
        self,
        proxy_url: str = PROXY_URL,
        timeout: float = API_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        token_provider: Callable[[], str | None] | None = None,
    ) -> None:
        self.proxy_url = proxy_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.token_provider = token_provider

    def _decode(self, response: requests.Response, action: str) -> Any:
        if not response.ok:
            raise ApiError(f"API Error: {response.status_code} {response.reason or ''}".strip(), response.status_code)
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(f"{action} returned a body that is not JSON", response.status_code) from exc
        if isinstance(body, dict) and body.get("status") == "error":
            raise ApiError(str(body.get("message") or "Unknown error from backend"), response.status_code)
        return body

    def fetch_get(self, action: str, params: Dict[str, Any] | None = None) -> Any:
        query: Dict[str, Any] = {"action": action, **(params or {})}
        query["_t"] = int(time.time() * 1000)
        try:
            response = self.session.get(self.proxy_url, params=query, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("GET %s failed: %s", action, exc)
            raise ApiError(f"Network error: {exc}") from exc
        return self._decode(response, action)

    def fetch_post(self, payload: Dict[str, Any]) -> Any:
        headers = {}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        action = str(payload.get("action", ""))
        try:
            response = self.session.post(self.proxy_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("POST %s failed: %s", action, exc)
            raise ApiError(f"Network error: {exc}") from exc
        return self._decode(response, action)

    def get_realtime_data(self) -> RealtimeSnapshot:
        body = self.fetch_get("realtime")
        try:
            return RealtimeSnapshot.from_wire(body)
        except ValueError as exc:
            raise ApiError(f"Malformed realtime data: {exc}") from exc

    def get_history_data(self, period: str) -> List[HistoryItem]:
        if period not in HISTORY_ACTIONS:
            raise ValueError(f"Unknown history period {period!r}")
        body = self.fetch_get(HISTORY_ACTIONS[period])
        try:
            return format_history(body, period)
        except ValueError as exc:
            raise ApiError(f"Malformed history data: {exc}") from exc

    def set_relay_status(self, relay: str, on: bool) -> Any:
        if relay not in RELAY_KEYS:
            raise ValueError(f"Unknown relay {relay!r}")
        return self.fetch_post({"action": "setStatus", relay: "on" if on else "off"})

    def set_timer(self, timer_key: str, time_string: str) -> Any:
        if timer_key not in TIMER_KEYS:
            raise ValueError(f"Unknown timer {timer_key!r}")
        if not time_string:
            return None
        return self.fetch_post({"action": "setStatus", timer_key: timer_iso(time_string)})

    def get_ranges(self) -> List[RangeDefinition]:
        body = self.fetch_get("getRangeDefinitions")
        try:
            if not isinstance(body, list):
                raise ValueError("expected a list")
            return [RangeDefinition.from_wire(row) for row in body]
        except ValueError as exc:
            raise ApiError(f"Malformed range definitions: {exc}") from exc

    def update_ranges(self, ranges: List[RangeDefinition]) -> Any:
        return self.fetch_post({"action": "updateRangeDefinitions", "data": [item.to_wire() for item in ranges]})

    def get_fuzzy_rules(self) -> List[FuzzyRule]:
        body = self.fetch_get("getFuzzyRules")
        try:
            if not isinstance(body, list):
                raise ValueError("expected a list")
            return [FuzzyRule.from_wire(row) for row in body]
        except ValueError as exc:
            raise ApiError(f"Malformed fuzzy rules: {exc}") from exc

    def update_fuzzy_rules(self, rules: List[FuzzyRule]) -> Any:
        return self.fetch_post({"action": "updateFuzzyRules", "data": [rule.to_wire() for rule in rules]})

    def get_calibrations(self) -> List[CalibrationItem]:
        body = self.fetch_get("getCalibrations")
        try:
            return decode_calibrations(body)
        except ValueError as exc:
            raise ApiError(f"Malformed calibrations: {exc}") from exc

    def update_calibrations(self, items: List[CalibrationItem]) -> Any:
        return self.fetch_post({"action": "updateCalibrations", "data": encode_calibrations(items)})
