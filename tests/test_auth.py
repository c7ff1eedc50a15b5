import asyncio
import threading
import time

import requests

import aquascape_auth
from aquascape_auth import AuthContext, local_verifier, remote_verifier


def accepting(username, password):
    return {"success": True, "token": "signed-token"}


def rejecting(username, password):
    return {"success": False, "message": "Invalid credentials"}


def test_start_restores_stored_session():
    storage = {"auth_token": "valid", "admin_token": "signed-token"}
    auth = AuthContext(storage, rejecting).start()
    assert auth.is_authenticated
    assert auth.token == "signed-token"


def test_start_ignores_other_flag_values():
    auth = AuthContext({"auth_token": "yes"}, rejecting).start()
    assert not auth.is_authenticated


def test_login_success_persists_and_closes_modal():
    storage = {}
    auth = AuthContext(storage, accepting).start()
    notified = []
    auth.subscribe(lambda: notified.append(auth.is_login_modal_open))
    auth.open_login_modal()

    assert auth.login("admin", "hunter2") is True
    assert auth.is_authenticated
    assert storage == {"auth_token": "valid", "admin_token": "signed-token"}
    assert not auth.is_login_modal_open
    assert notified == [True, False]


def test_login_failure_leaves_storage_untouched():
    storage = {}
    auth = AuthContext(storage, rejecting).start()
    auth.open_login_modal()
    assert auth.login("admin", "wrong") is False
    assert storage == {}
    assert not auth.is_authenticated
    assert auth.is_login_modal_open


def test_login_network_error_counts_as_failure():
    def unreachable(username, password):
        raise requests.ConnectionError("down")

    auth = AuthContext({}, unreachable).start()
    assert auth.login("admin", "hunter2") is False


def test_logout_clears_storage_and_notifies():
    storage = {"auth_token": "valid", "admin_token": "signed-token", "other": "kept"}
    auth = AuthContext(storage, rejecting).start()
    calls = []
    auth.subscribe(lambda: calls.append("changed"))
    auth.logout()
    assert not auth.is_authenticated
    assert auth.token is None
    assert storage == {"other": "kept"}
    assert calls == ["changed"]


def test_unsubscribe_and_close_stop_notifications():
    auth = AuthContext({}, rejecting).start()
    calls = []
    unsubscribe = auth.subscribe(lambda: calls.append("a"))
    auth.subscribe(lambda: calls.append("b"))
    unsubscribe()
    auth.open_login_modal()
    auth.close()
    auth.close_login_modal()
    assert calls == ["b"]


def test_local_verifier():
    verify = local_verifier("admin", "hunter2")
    assert verify("admin", "hunter2") == {"success": True}
    assert verify("admin", "nope")["success"] is False
    assert local_verifier("", "")("admin", "hunter2")["message"] == "Server misconfiguration"


def test_remote_verifier_posts_credentials(monkeypatch):
    sent = {}

    class Reply:
        def json(self):
            return {"success": True, "token": "abc"}

    def fake_post(url, json=None, timeout=None):
        sent.update(url=url, json=json, timeout=timeout)
        return Reply()

    monkeypatch.setattr(aquascape_auth.requests, "post", fake_post)
    result = remote_verifier("http://proxy.test/api/login", timeout=3)("admin", "hunter2")
    assert result["token"] == "abc"
    assert sent == {"url": "http://proxy.test/api/login", "json": {"username": "admin", "pass": "hunter2"}, "timeout": 3}


def test_sign_in_verifies_off_the_event_loop():
    threads = {}

    def slow_accept(username, password):
        threads["verifier"] = threading.get_ident()
        time.sleep(0.3)
        return {"success": True, "token": "signed-token"}

    async def scenario():
        auth = AuthContext({}, slow_accept).start()
        auth.subscribe(lambda: threads.setdefault("listener", threading.get_ident()))
        auth.open_login_modal()
        threads.pop("listener")
        beats = []

        async def heartbeat():
            while True:
                beats.append(time.monotonic())
                await asyncio.sleep(0.05)

        ticker = asyncio.ensure_future(heartbeat())
        ok = await auth.sign_in("admin", "hunter2")
        ticker.cancel()
        await asyncio.gather(ticker, return_exceptions=True)
        return ok, auth, beats, threading.get_ident()

    ok, auth, beats, loop_thread = asyncio.run(scenario())
    assert ok is True
    assert auth.is_authenticated
    assert threads["verifier"] != loop_thread
    assert threads["listener"] == loop_thread
    assert len(beats) >= 4
    assert max(later - earlier for earlier, later in zip(beats, beats[1:])) < 0.25


def test_sign_in_failure_keeps_session_empty():
    storage = {}
    auth = AuthContext(storage, rejecting).start()
    assert asyncio.run(auth.sign_in("admin", "wrong")) is False
    assert storage == {}
