from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, Tuple

SESSION_COOKIE = "aquascape_session"
BROWSER_COOKIE = "aquascape_browser"
BROWSER_COOKIE_MAX_AGE = 365 * 24 * 60 * 60

SESSION_BUCKET_TTL = 12 * 60 * 60
MAX_BUCKETS = 10_000


class BrowserStorage:
    """Per-browser key/value buckets standing in for sessionStorage and localStorage.

    Session buckets are keyed by a cookie without an expiry, local buckets by
    a long-lived cookie. Both live in process memory, are dropped once idle
    for longer than their TTL, and each map holds at most ``max_buckets``
    entries (least recently used are evicted first). A missing id gets a
    throwaway bucket that is never stored.
    """

    def __init__(
        self,
        session_ttl: float = SESSION_BUCKET_TTL,
        local_ttl: float = BROWSER_COOKIE_MAX_AGE,
        max_buckets: int = MAX_BUCKETS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_ttl = session_ttl
        self.local_ttl = local_ttl
        self.max_buckets = max(1, max_buckets)
        self.clock = clock
        self._lock = threading.Lock()
        self._session: OrderedDict[str, Tuple[float, Dict[str, str]]] = OrderedDict()
        self._local: OrderedDict[str, Tuple[float, Dict[str, str]]] = OrderedDict()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def session_bucket(self, session_id: str | None) -> Dict[str, str]:
        return self._bucket(self._session, session_id, self.session_ttl)

    def local_bucket(self, browser_id: str | None) -> Dict[str, str]:
        return self._bucket(self._local, browser_id, self.local_ttl)

    def sizes(self) -> Tuple[int, int]:
        with self._lock:
            return len(self._session), len(self._local)

    def _bucket(self, store: "OrderedDict[str, Tuple[float, Dict[str, str]]]", key: str | None, ttl: float) -> Dict[str, str]:
        if not key:
            return {}
        now = self.clock()
        with self._lock:
            entry = store.pop(key, None)
            bucket = entry[1] if entry is not None and now - entry[0] <= ttl else {}
            store[key] = (now, bucket)
            self._prune(store, now, ttl)
            return bucket

    def _prune(self, store: "OrderedDict[str, Tuple[float, Dict[str, str]]]", now: float, ttl: float) -> None:
        # oldest access first
        while store:
            seen, _ = next(iter(store.values()))
            if now - seen <= ttl and len(store) <= self.max_buckets:
                break
            store.popitem(last=False)
