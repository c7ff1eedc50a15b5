from __future__ import annotations

import hmac
import json
import os
from typing import Any

import requests
from flask import Flask, Response, jsonify, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from aquascape_config import env_flag, env_float, env_int, required_env

app = Flask(__name__)

GAS_TIMEOUT_SECONDS = env_float("GAS_TIMEOUT_SECONDS", 30.0)
ADMIN_TOKEN_MAX_AGE = env_int("ADMIN_TOKEN_MAX_AGE", 12 * 60 * 60)
TOKEN_SALT = "aquascape-admin"

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
READ_METHODS = {"GET", "HEAD"}

QUERY_ACTIONS = {
    "realtime",
    "history1hour",
    "history1day",
    "history1week",
    "getRangeDefinitions",
    "getFuzzyRules",
    "getCalibrations",
}


def proxy_requires_auth() -> bool:
    return env_flag("PROXY_REQUIRE_AUTH", True)


def token_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(required_env("SECRET_KEY"), salt=TOKEN_SALT)


def issue_admin_token(username: str) -> str | None:
    try:
        serializer = token_serializer()
    except RuntimeError:
        app.logger.warning("SECRET_KEY is missing; login succeeds without a token")
        return None
    return serializer.dumps({"user": username})


def verify_admin_token(token: str) -> bool:
    serializer = token_serializer()
    if not token:
        return False
    try:
        serializer.loads(token, max_age=ADMIN_TOKEN_MAX_AGE)
    except SignatureExpired:
        app.logger.info("Rejected expired admin token")
        return False
    except BadSignature:
        app.logger.info("Rejected admin token with a bad signature")
        return False
    return True


def bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def error_json(message: str, status: int) -> tuple[Response, int]:
    return jsonify({"status": "error", "message": message}), status


def form_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_form(body: dict[str, Any]) -> dict[str, str]:
    return {str(key): form_value(value) for key, value in body.items()}


def credentials_match(given: Any, expected: str) -> bool:
    if not isinstance(given, str):
        return False
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


@app.before_request
def api_cors_preflight():
    if request.method == "OPTIONS" and request.path.startswith("/api/"):
        return "", 204


@app.after_request
def add_api_cors_headers(response):
    if not request.path.startswith("/api/"):
        return response

    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = ", ".join(PROXY_METHODS + ["OPTIONS"])
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["Access-Control-Max-Age"] = "600"
    return response


@app.route("/api/proxy", methods=PROXY_METHODS)
def api_proxy():
    try:
        target_url = required_env("GAS_API_URL")
    except RuntimeError:
        app.logger.exception("GAS_API_URL is missing")
        return error_json("GAS_API_URL not configured", 500)

    if request.method == "GET":
        action = request.args.get("action")
        if not action:
            return error_json("Missing action parameter", 400)
        if action not in QUERY_ACTIONS:
            return error_json(f"Unknown action '{action}'", 400)

    if request.method not in READ_METHODS and proxy_requires_auth():
        try:
            authorized = verify_admin_token(bearer_token())
        except RuntimeError:
            app.logger.exception("SECRET_KEY is missing; refusing proxied write")
            return error_json("SECRET_KEY not configured", 500)
        if not authorized:
            return error_json("Admin login required", 401)

    form: dict[str, str] | None = None
    if request.method == "POST":
        try:
            body = json.loads(request.get_data(as_text=True) or "null")
        except ValueError as exc:
            app.logger.warning("Rejected proxy body that is not JSON: %s", exc)
            return error_json(f"Invalid JSON body: {exc}", 500)
        if not isinstance(body, dict):
            return error_json("Expected a JSON object body", 400)
        form = encode_form(body)

    try:
        upstream = requests.request(
            request.method,
            target_url,
            params=list(request.args.items(multi=True)),
            data=form,
            timeout=GAS_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        app.logger.exception("Backend script request failed")
        return error_json(str(exc), 500)

    return Response(upstream.text, status=upstream.status_code, content_type="application/json")


@app.route("/api/login", methods=["POST"])
def api_login():
    admin_user = os.environ.get("ADMIN_USER")
    admin_pass = os.environ.get("ADMIN_PASS")
    if not admin_user or not admin_pass:
        app.logger.error("ADMIN_USER/ADMIN_PASS are not configured")
        return jsonify({"success": False, "message": "Server misconfiguration"}), 500

    try:
        payload = json.loads(request.get_data(as_text=True))
    except ValueError:
        app.logger.warning("Login request with an unparseable body")
        return jsonify({"success": False, "message": "Error processing request"}), 500
    if not isinstance(payload, dict):
        payload = {}

    username = payload.get("username")
    if credentials_match(username, admin_user) and credentials_match(payload.get("pass"), admin_pass):
        body: dict[str, Any] = {"success": True}
        token = issue_admin_token(admin_user)
        if token:
            body["token"] = token
        app.logger.info("Admin login succeeded")
        return jsonify(body)

    app.logger.info("Admin login rejected")
    return jsonify({"success": False, "message": "Invalid credentials"}), 401


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
