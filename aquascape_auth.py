"""Admin authentication state for one browser connection.

The flag is advisory: it gates UI affordances, while the proxy checks the
signed token it was issued alongside the flag before forwarding any write.
"""
from __future__ import annotations

import hmac
import logging
from typing import Any, Callable, Dict, List, MutableMapping

import requests

from aquascape_config import API_TIMEOUT_SECONDS
from aquascape_sync import in_thread

logger = logging.getLogger(__name__)

AUTH_FLAG_KEY = "auth_token"
AUTH_FLAG_VALUE = "valid"
ADMIN_TOKEN_KEY = "admin_token"

Verifier = Callable[[str, str], Dict[str, Any]]


def remote_verifier(login_url: str, timeout: float = API_TIMEOUT_SECONDS) -> Verifier:
    def verify(username: str, password: str) -> Dict[str, Any]:
        response = requests.post(login_url, json={"username": username, "pass": password}, timeout=timeout)
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError("login endpoint returned a non-object body")
        return body

    return verify


def local_verifier(admin_user: str, admin_pass: str) -> Verifier:
    def verify(username: str, password: str) -> Dict[str, Any]:
        if not admin_user or not admin_pass:
            return {"success": False, "message": "Server misconfiguration"}
        matched = hmac.compare_digest(username.encode("utf-8"), admin_user.encode("utf-8")) and hmac.compare_digest(
            password.encode("utf-8"), admin_pass.encode("utf-8")
        )
        if matched:
            return {"success": True}
        return {"success": False, "message": "Invalid credentials"}

    return verify


class AuthContext:
    def __init__(self, storage: MutableMapping[str, str], verifier: Verifier) -> None:
        self.storage = storage
        self.verifier = verifier
        self.is_authenticated = False
        self.token: str | None = None
        self.is_login_modal_open = False
        self._listeners: List[Callable[[], None]] = []

    def start(self) -> "AuthContext":
        self.is_authenticated = self.storage.get(AUTH_FLAG_KEY) == AUTH_FLAG_VALUE
        self.token = self.storage.get(ADMIN_TOKEN_KEY) or None
        return self

    def close(self) -> None:
        self._listeners.clear()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def open_login_modal(self) -> None:
        self.is_login_modal_open = True
        self._notify()

    def close_login_modal(self) -> None:
        self.is_login_modal_open = False
        self._notify()

    def _verify(self, username: str, password: str) -> Dict[str, Any] | None:
        try:
            return self.verifier(username, password)
        except (requests.RequestException, ValueError):
            logger.exception("Login error")
            return None

    def login(self, username: str, password: str) -> bool:
        return self._accept(self._verify(username, password))

    async def sign_in(self, username: str, password: str) -> bool:
        """Like ``login``, but the verifier runs off the event loop; listeners fire on the loop."""
        return self._accept(await in_thread(self._verify, username, password))

    def _accept(self, result: Dict[str, Any] | None) -> bool:
        if result is None:
            return False
        if not result.get("success"):
            logger.info("Login rejected: %s", result.get("message") or "no reason given")
            return False

        token = result.get("token")
        self.is_authenticated = True
        self.token = token if isinstance(token, str) and token else None
        self.storage[AUTH_FLAG_KEY] = AUTH_FLAG_VALUE
        if self.token:
            self.storage[ADMIN_TOKEN_KEY] = self.token
        else:
            self.storage.pop(ADMIN_TOKEN_KEY, None)
        self.close_login_modal()
        return True

    def logout(self) -> None:
        self.is_authenticated = False
        self.token = None
        self.storage.pop(AUTH_FLAG_KEY, None)
        self.storage.pop(ADMIN_TOKEN_KEY, None)
        self._notify()
