from __future__ import annotations

import os
from typing import Any, Dict

from flask import Flask, request
from reactpy import component, event, hooks, html
from reactpy.backend.flask import Options, configure, use_connection

from aquascape_api import ProxyClient
from aquascape_auth import AuthContext, Verifier, local_verifier, remote_verifier
from aquascape_config import AUTH_MODE, LOGIN_URL, PROXY_URL
from aquascape_dashboard import Dashboard
from aquascape_settings import Settings
from aquascape_storage import BROWSER_COOKIE, BROWSER_COOKIE_MAX_AGE, SESSION_COOKIE, BrowserStorage

app = Flask(__name__)

STORAGE = BrowserStorage()

PAGES = {"/": "dashboard", "/index.html": "dashboard", "/settings": "settings"}
THEME_KEY = "theme"


def page_for_path(path: str) -> str:
    normalized = path[:-1] if path.endswith("/") and len(path) > 1 else path
    return PAGES.get(normalized or "/", "not_found")


def build_verifier() -> Verifier:
    if AUTH_MODE == "local":
        return local_verifier(os.environ.get("ADMIN_USER", ""), os.environ.get("ADMIN_PASS", ""))
    return remote_verifier(LOGIN_URL)


@app.after_request
def issue_browser_cookies(response):
    if SESSION_COOKIE not in request.cookies:
        response.set_cookie(SESSION_COOKIE, BrowserStorage.new_id(), httponly=True, samesite="Lax")
    if BROWSER_COOKIE not in request.cookies:
        response.set_cookie(
            BROWSER_COOKIE,
            BrowserStorage.new_id(),
            max_age=BROWSER_COOKIE_MAX_AGE,
            httponly=True,
            samesite="Lax",
        )
    return response


AQUA_CSS = """
.theme-dark {
  color-scheme: dark;
  --bg: #020617;
  --bg-2: #0b1a33;
  --glass: rgba(15, 23, 42, 0.72);
  --glass-2: rgba(15, 23, 42, 0.5);
  --border: rgba(148, 163, 184, 0.18);
  --text: #e2e8f0;
  --muted: #94a3b8;
  --accent: #22d3ee;
  --accent-2: #0891b2;
  --shadow: 0 24px 60px rgba(0, 0, 0, 0.45);
}

.theme-light {
  color-scheme: light;
  --bg: #f1f5f9;
  --bg-2: #dff4fb;
  --glass: rgba(255, 255, 255, 0.82);
  --glass-2: rgba(255, 255, 255, 0.6);
  --border: rgba(15, 23, 42, 0.1);
  --text: #0f172a;
  --muted: #64748b;
  --accent: #0891b2;
  --accent-2: #0e7490;
  --shadow: 0 20px 50px rgba(15, 23, 42, 0.14);
}

* { box-sizing: border-box; }

body { margin: 0; }

.app {
  min-height: 100vh;
  font-family: "Inter", "Segoe UI", "Helvetica Neue", sans-serif;
  color: var(--text);
  background: linear-gradient(160deg, var(--bg-2) 0%, var(--bg) 60%);
  padding-bottom: 80px;
}

.page {
  max-width: 1180px;
  margin: 0 auto;
  padding: 24px;
}

.stack { display: grid; gap: 24px; }

.glass-surface {
  background: linear-gradient(135deg, var(--glass), var(--glass-2));
  border: 1px solid var(--border);
  border-radius: 18px;
  box-shadow: var(--shadow);
  backdrop-filter: blur(18px) saturate(160%);
  -webkit-backdrop-filter: blur(18px) saturate(160%);
  position: relative;
}

.card { padding: 24px; }

.hero, .section-head {
  display: flex;
  align-items: center;
  justify-content: space-between;
  gap: 16px;
  flex-wrap: wrap;
}

.section-head { margin-bottom: 16px; }

.navbar {
  position: sticky;
  top: 0;
  z-index: 20;
  display: flex;
  align-items: center;
  justify-content: space-between;
  gap: 16px;
  padding: 12px 24px;
  border-radius: 0;
}

.brand { font-weight: 700; font-size: 20px; letter-spacing: -0.01em; }
.brand span { color: var(--accent); }

.nav-actions { display: flex; gap: 8px; flex-wrap: wrap; align-items: center; }

.bottom-nav { display: none; }

h1, h2 { margin: 0 0 6px; font-weight: 650; letter-spacing: -0.02em; }
h1 { font-size: 26px; }
h2 { font-size: 18px; }

.meta, .helper { color: var(--muted); font-size: 13px; }

.eyebrow, .label {
  text-transform: uppercase;
  letter-spacing: 0.14em;
  font-size: 11px;
  color: var(--muted);
}

.btn, .seg-btn, .nav-btn, .switch {
  border: 1px solid var(--border);
  background: var(--glass-2);
  color: var(--text);
  padding: 9px 16px;
  border-radius: 10px;
  font-size: 13px;
  font-weight: 600;
  cursor: pointer;
  text-decoration: none;
  display: inline-flex;
  align-items: center;
  gap: 6px;
}

.btn.primary, .seg-btn.active, .nav-btn.active {
  background: linear-gradient(160deg, var(--accent), var(--accent-2));
  color: #fff;
  border-color: transparent;
}

.btn.ghost { background: transparent; }

.btn[disabled], .seg-btn[disabled], .switch[disabled] {
  cursor: wait;
  opacity: 0.6;
}

.switch { min-width: 72px; justify-content: center; border-radius: 999px; }
.switch-on { background: var(--accent-2); color: #fff; }

.pill {
  display: inline-flex;
  padding: 4px 10px;
  border-radius: 999px;
  font-size: 12px;
  font-weight: 600;
  border: 1px solid transparent;
}

.pill-success { background: rgba(16, 185, 129, 0.18); color: #059669; border-color: rgba(16, 185, 129, 0.45); }
.pill-warning { background: rgba(245, 158, 11, 0.18); color: #b45309; border-color: rgba(245, 158, 11, 0.45); }
.pill-danger { background: rgba(244, 63, 94, 0.18); color: #be123c; border-color: rgba(244, 63, 94, 0.45); }

.theme-dark .pill-success { color: #6ee7b7; }
.theme-dark .pill-warning { color: #fcd34d; }
.theme-dark .pill-danger { color: #fda4af; }

.alert, .readonly-banner {
  display: flex;
  justify-content: space-between;
  align-items: center;
  gap: 12px;
  padding: 10px 16px;
  border-radius: 12px;
  margin-bottom: 12px;
}

.banner h2 { font-size: 22px; }

.grid-3 { display: grid; grid-template-columns: repeat(3, minmax(0, 1fr)); gap: 20px; }
.grid-2 { display: grid; grid-template-columns: repeat(2, minmax(0, 1fr)); gap: 20px; }

.sensor { padding: 18px; display: grid; gap: 8px; }
.sensor-value { font-size: 28px; font-weight: 700; }

.schedule { padding: 16px; display: grid; gap: 12px; }
.schedule-head { display: flex; justify-content: space-between; align-items: center; }
.schedule-grid { display: grid; grid-template-columns: 1fr 1fr; gap: 12px; }

.lock-overlay {
  position: absolute;
  inset: 0;
  z-index: 5;
  display: flex;
  align-items: center;
  justify-content: center;
  border-radius: 18px;
  font-size: 12px;
  font-weight: 600;
  cursor: pointer;
  opacity: 0;
  background: rgba(15, 23, 42, 0.35);
  transition: opacity 0.2s ease;
}

.schedule:hover .lock-overlay { opacity: 1; }

.field { display: grid; gap: 6px; }

.input {
  width: 100%;
  padding: 9px 12px;
  border-radius: 10px;
  border: 1px solid var(--border);
  background: var(--glass-2);
  color: var(--text);
  font-size: 14px;
}

.input:focus { outline: none; border-color: var(--accent); }
.input[readonly] { opacity: 0.8; }

.segmented { display: flex; gap: 8px; flex-wrap: wrap; }

.table-wrap { overflow-x: auto; }
.table { width: 100%; border-collapse: collapse; font-size: 14px; }
.table th, .table td { text-align: left; padding: 10px 12px; border-bottom: 1px solid var(--border); }
.table th { font-size: 11px; letter-spacing: 0.12em; text-transform: uppercase; color: var(--muted); }

.calibration { padding: 16px; }

.form { display: grid; gap: 14px; }
.form-actions { display: flex; gap: 10px; justify-content: flex-end; margin-top: 16px; }

.chart { display: grid; gap: 8px; }
.chart-legend { display: flex; gap: 16px; flex-wrap: wrap; font-size: 13px; }

.loading-card {
  display: grid;
  justify-items: center;
  gap: 12px;
  padding: 60px 20px;
}

.spinner {
  width: 32px;
  height: 32px;
  border-radius: 50%;
  border: 3px solid var(--border);
  border-top-color: var(--accent);
  animation: spin 0.9s linear infinite;
}

@keyframes spin { to { transform: rotate(360deg); } }

.modal {
  position: fixed;
  inset: 0;
  z-index: 40;
  display: flex;
  align-items: center;
  justify-content: center;
  padding: 24px;
  background: rgba(2, 6, 23, 0.6);
}

.modal-card { width: min(420px, 95vw); padding: 24px; display: grid; gap: 16px; }
.modal-head { display: flex; justify-content: space-between; align-items: center; }

.not-found { max-width: 460px; margin: 80px auto; text-align: center; padding: 32px; display: grid; gap: 12px; }
.not-found code { font-size: 12px; color: var(--muted); word-break: break-all; }

@media (max-width: 760px) {
  .page { padding: 16px; }
  .grid-3, .grid-2 { grid-template-columns: 1fr; }
  .top-links { display: none; }
  .bottom-nav {
    display: grid;
    grid-template-columns: 1fr 1fr;
    position: fixed;
    bottom: 0;
    left: 0;
    right: 0;
    z-index: 20;
    border-radius: 0;
  }
  .bottom-nav .nav-btn { justify-content: center; border-radius: 0; padding: 16px; }
}
"""


@component
def LoginModal(auth: AuthContext):
    username, set_username = hooks.use_state("")
    password, set_password = hooks.use_state("")
    error, set_error = hooks.use_state("")

    @event(prevent_default=True)
    async def handle_submit(event_data: Dict[str, Any]) -> None:
        set_error("")
        if await auth.sign_in(username, password):
            set_username("")
            set_password("")
        else:
            set_error("Invalid username or password")

    return html.div(
        {"class": "modal"},
        html.div(
            {"class": "modal-card glass-surface"},
            html.div(
                {"class": "modal-head"},
                html.h2("Admin Login"),
                html.button(
                    {"class": "btn glass-btn ghost", "type": "button", "on_click": lambda e: auth.close_login_modal()},
                    "Close",
                ),
            ),
            *([html.div({"class": "pill pill-danger", "role": "alert"}, error)] if error else []),
            html.form(
                {"class": "form", "on_submit": handle_submit},
                html.div(
                    {"class": "field"},
                    html.span({"class": "label"}, "Username"),
                    html.input(
                        {
                            "class": "input glass-input",
                            "name": "username",
                            "default_value": username,
                            "placeholder": "Enter username",
                            "auto_complete": "username",
                            "on_change": lambda e: set_username(str(e.get("target", {}).get("value", ""))),
                        }
                    ),
                ),
                html.div(
                    {"class": "field"},
                    html.span({"class": "label"}, "Password"),
                    html.input(
                        {
                            "class": "input glass-input",
                            "name": "password",
                            "type": "password",
                            "default_value": password,
                            "placeholder": "Enter password",
                            "auto_complete": "current-password",
                            "on_change": lambda e: set_password(str(e.get("target", {}).get("value", ""))),
                        }
                    ),
                ),
                html.div(
                    {"class": "form-actions"},
                    html.button({"class": "btn glass-btn primary", "type": "submit"}, "Login"),
                ),
            ),
        ),
    )


@component
def NotFound(path: str):
    return html.section(
        {"class": "not-found glass-surface"},
        html.h1("404"),
        html.h2("Page Not Found"),
        html.div({"class": "meta"}, "The page or resource you are looking for does not exist or has been moved."),
        html.code(path),
        html.a({"class": "btn glass-btn primary", "href": "/"}, "Back to Dashboard"),
    )


@component
def App():
    connection = use_connection()
    cookies = connection.carrier.request.cookies
    path = connection.location.pathname

    _, set_version = hooks.use_state(0)
    local_ref = hooks.use_ref(None)
    if local_ref.current is None:
        local_ref.current = STORAGE.local_bucket(cookies.get(BROWSER_COOKIE))
    local = local_ref.current

    is_dark, set_is_dark = hooks.use_state(lambda: local.get(THEME_KEY) != "light")
    page, set_page = hooks.use_state(lambda: page_for_path(path))

    auth_ref = hooks.use_ref(None)
    if auth_ref.current is None:
        auth_ref.current = AuthContext(STORAGE.session_bucket(cookies.get(SESSION_COOKIE)), build_verifier()).start()
    auth: AuthContext = auth_ref.current

    client_ref = hooks.use_ref(None)
    if client_ref.current is None:
        client_ref.current = ProxyClient(PROXY_URL, token_provider=lambda: auth.token)
    client: ProxyClient = client_ref.current

    @hooks.use_effect(dependencies=[])
    def auth_lifecycle():
        unsubscribe = auth.subscribe(lambda: set_version(lambda v: v + 1))

        def teardown() -> None:
            unsubscribe()
            auth.close()
            client.session.close()

        return teardown

    def toggle_theme(event: Dict[str, Any]) -> None:
        local[THEME_KEY] = "light" if is_dark else "dark"
        set_is_dark(not is_dark)

    def toggle_auth(event: Dict[str, Any]) -> None:
        if auth.is_authenticated:
            auth.logout()
        else:
            auth.open_login_modal()

    theme_class = "theme-dark" if is_dark else "theme-light"

    if page == "not_found":
        return html.div(
            {"class": f"app {theme_class}"},
            html.style(AQUA_CSS),
            html.main({"class": "page"}, NotFound(path)),
        )

    def nav_button(target: str, label: str):
        return html.button(
            {
                "key": target,
                "type": "button",
                "class": f"nav-btn {'active' if page == target else ''}",
                "on_click": lambda e: set_page(target),
            },
            label,
        )

    if page == "settings":
        content = Settings(auth, client, key="settings")
    else:
        content = Dashboard(auth, client, is_dark, key="dashboard")

    return html.div(
        {"class": f"app {theme_class}"},
        html.style(AQUA_CSS),
        LoginModal(auth) if auth.is_login_modal_open else None,
        html.header(
            {"class": "navbar glass-surface"},
            html.div({"class": "brand"}, "🐟 Aqua", html.span("Smart")),
            html.nav(
                {"class": "nav-actions", "aria-label": "Desktop Navigation"},
                html.div(
                    {"class": "nav-actions top-links"},
                    nav_button("dashboard", "Dashboard"),
                    nav_button("settings", "Settings"),
                ),
                html.button(
                    {
                        "type": "button",
                        "class": f"btn glass-btn {'ghost' if auth.is_authenticated else 'primary'}",
                        "aria-label": "Logout" if auth.is_authenticated else "Admin Login",
                        "on_click": toggle_auth,
                    },
                    "Logout" if auth.is_authenticated else "🔒 Admin",
                ),
                html.button(
                    {
                        "type": "button",
                        "class": "btn glass-btn ghost",
                        "aria-label": "Switch to Light Mode" if is_dark else "Switch to Dark Mode",
                        "on_click": toggle_theme,
                    },
                    "☀" if is_dark else "☾",
                ),
            ),
        ),
        html.nav(
            {"class": "bottom-nav glass-surface", "aria-label": "Mobile Navigation"},
            nav_button("dashboard", "Dashboard"),
            nav_button("settings", "Settings"),
        ),
        html.main({"class": "page"}, content),
    )


configure(
    app,
    App,
    Options(
        head=(
            {"tagName": "title", "children": ["AquaSmart"]},
            {
                "tagName": "meta",
                "attributes": {"name": "viewport", "content": "width=device-width, initial-scale=1"},
            },
        )
    ),
)


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5001")),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
