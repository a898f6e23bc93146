"""Signed cookie sessions."""

from __future__ import annotations

import base64
import binascii
import functools
import hashlib
import hmac
import json
import os
import secrets
import time
from http.cookies import CookieError, SimpleCookie
from typing import Any

SESSION_NAME = "_gotrue_session"
SESSION_KEY_ENV = "GOTRUE_SESSION_KEY"
_MAX_AGE = 86400 * 30


class SessionError(Exception):
    """Raised when a session cookie is missing, invalid or lacks a value."""


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class SessionStore:
    """Encodes session values into HMAC-signed, timestamped cookie values."""

    def __init__(self, key: bytes | str | None = None):
        if isinstance(key, str):
            key = key.encode("utf-8")
        self.key = key or secrets.token_bytes(32)

    def _sign(self, timestamp: str, payload: str) -> bytes:
        message = f"{SESSION_NAME}|{timestamp}|{payload}".encode("ascii")
        return hmac.new(self.key, message, hashlib.sha256).digest()

    def encode(self, values: dict[str, Any]) -> str:
        payload = _b64encode(json.dumps(values, separators=(",", ":")).encode("utf-8"))
        timestamp = str(int(time.time()))
        return f"{payload}.{timestamp}.{_b64encode(self._sign(timestamp, payload))}"

    def decode(self, cookie_value: str) -> dict[str, Any]:
        parts = cookie_value.split(".")
        if len(parts) != 3:
            raise SessionError("the value is not valid")
        payload, timestamp, mac = parts
        try:
            given = _b64decode(mac)
        except (binascii.Error, ValueError) as exc:
            raise SessionError("the value is not valid") from exc
        if not hmac.compare_digest(given, self._sign(timestamp, payload)):
            raise SessionError("the value is not valid")
        if not timestamp.isdigit():
            raise SessionError("invalid timestamp")
        if int(timestamp) < time.time() - _MAX_AGE:
            raise SessionError("expired timestamp")
        try:
            values = json.loads(_b64decode(payload))
        except (binascii.Error, ValueError) as exc:
            raise SessionError("the value is not valid") from exc
        if not isinstance(values, dict):
            raise SessionError("the value is not valid")
        return values


@functools.lru_cache(maxsize=None)
def _default_store() -> SessionStore:
    return SessionStore(os.environ.get(SESSION_KEY_ENV, "") or None)


def _session_cookie(cookie_header: str | None) -> str | None:
    if not cookie_header:
        return None
    cookie = SimpleCookie()
    try:
        cookie.load(cookie_header)
    except CookieError:
        return None
    morsel = cookie.get(SESSION_NAME)
    return morsel.value if morsel is not None else None


def _read_values(cookie_header: str | None, store: SessionStore) -> dict[str, Any]:
    raw = _session_cookie(cookie_header)
    if raw is None:
        return {}
    try:
        return store.decode(raw)
    except SessionError:
        return {}


def store_in_session(
    key: str, value: str, cookie_header: str | None = None, store: SessionStore | None = None
) -> str:
    """Add ``key`` to the session and return the ``Set-Cookie`` header value."""
    store = store or _default_store()
    values = _read_values(cookie_header, store)
    values[key] = value
    cookie = SimpleCookie()
    cookie[SESSION_NAME] = store.encode(values)
    morsel = cookie[SESSION_NAME]
    morsel["path"] = "/"
    morsel["max-age"] = str(_MAX_AGE)
    return morsel.OutputString()


def get_from_session(
    key: str, cookie_header: str | None, store: SessionStore | None = None
) -> str:
    """Return the string stored under ``key`` in the request's session."""
    values = _read_values(cookie_header, store or _default_store())
    if key not in values or not isinstance(values[key], str):
        raise SessionError("session could not be found for this request")
    return values[key]