from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return

    try:
        with open(path, "r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip("'").strip('"')
                if key:
                    os.environ.setdefault(key, value)
    except OSError:
        logger.exception("Failed to read %s", path)


def required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} is not configured")
    return value


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


load_dotenv()

PROXY_URL = os.environ.get("PROXY_URL", "http://127.0.0.1:5000/api/proxy")
LOGIN_URL = os.environ.get("LOGIN_URL", "http://127.0.0.1:5000/api/login")
AUTH_MODE = os.environ.get("AUTH_MODE", "remote").strip().lower()

API_TIMEOUT_SECONDS = env_float("API_TIMEOUT_SECONDS", 20.0)
POLL_INTERVAL_SECONDS = env_float("POLL_INTERVAL_SECONDS", 10.0)
SETTLE_INTERVAL_SECONDS = env_float("SETTLE_INTERVAL_SECONDS", 0.8)
SETTLE_ATTEMPTS = env_int("SETTLE_ATTEMPTS", 5)
NOTICE_DISMISS_SECONDS = env_float("NOTICE_DISMISS_SECONDS", 3.0)
