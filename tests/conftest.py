import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aquascape_api import ApiError
from aquascape_auth import AuthContext
from aquascape_models import CalibrationItem, FuzzyRule, RangeDefinition, RealtimeSnapshot


REALTIME = {
    "relay1": "off",
    "relay2": "on",
    "suhu": 26.5,
    "ph": 7.1,
    "tds": 320,
    "suhu_status": "Ideal",
    "ph_status": "Optimal",
    "tds_status": "Tinggi",
    "fuzzy_rekomendasi": "Kondisi normal",
    "Timestamp": "2024-05-01T10:00:00Z",
    "timer1On": "",
    "timer1Off": "",
    "timer2On": "",
    "timer2Off": "",
}


class FakeClient:
    """In-memory stand-in for ProxyClient that applies writes to its own state."""

    def __init__(self):
        self.state = dict(REALTIME)
        self.calls = []
        self.history = []
        self.ranges = [RangeDefinition("suhu", "Ideal", 24.0, 28.0)]
        self.rules = [FuzzyRule(1, "Ideal", "Netral", "Rendah", "Tidak ada")]
        self.calibrations = [CalibrationItem("ph_offset", "0.2", "pH sensor offset")]
        self.fail = set()

    def _check(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise ApiError(f"{name} failed", 500)

    def get_realtime_data(self):
        self._check("get_realtime_data")
        return RealtimeSnapshot.from_wire(self.state)

    def get_history_data(self, period):
        self._check(f"get_history_data:{period}")
        return list(self.history)

    def set_relay_status(self, relay, on):
        self._check("set_relay_status")
        self.state[relay] = "on" if on else "off"

    def set_timer(self, timer_key, time_string):
        self._check("set_timer")
        self.state[timer_key] = f"2024-05-01T{time_string}:00"

    def get_ranges(self):
        self._check("get_ranges")
        return list(self.ranges)

    def update_ranges(self, ranges):
        self._check("update_ranges")
        self.ranges = list(ranges)

    def get_fuzzy_rules(self):
        self._check("get_fuzzy_rules")
        return list(self.rules)

    def update_fuzzy_rules(self, rules):
        self._check("update_fuzzy_rules")
        self.rules = list(rules)

    def get_calibrations(self):
        self._check("get_calibrations")
        return list(self.calibrations)

    def update_calibrations(self, items):
        self._check("update_calibrations")
        self.calibrations = list(items)


async def no_sleep(seconds):
    return None


def make_auth(authenticated=False):
    storage = {"auth_token": "valid"} if authenticated else {}
    return AuthContext(storage, lambda username, password: {"success": False}).start()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def admin():
    return make_auth(authenticated=True)


@pytest.fixture
def guest():
    return make_auth(authenticated=False)
