import time
from http.cookies import SimpleCookie
from unittest.mock import patch

import pytest

from trueauth.session import (
    SessionError,
    SessionStore,
    get_from_session,
    store_in_session,
)

NAME = "_gotrue_session"


def _request_header(set_cookie):
    value = SimpleCookie(set_cookie)[NAME].value
    return f"{NAME}={value}"


def test_encode_decode_round_trip():
    store = SessionStore(b"secret")
    values = {"state": "token", "n": 3}
    assert store.decode(store.encode(values)) == values


def test_decode_with_other_key_fails():
    cookie = SessionStore(b"secret").encode({"a": "b"})
    with pytest.raises(SessionError):
        SessionStore(b"placeholder").decode(cookie)


def test_tampered_cookie_fails():
    store = SessionStore(b"secret")
    payload, timestamp, mac = store.encode({"a": "b"}).split(".")
    forged = SessionStore(b"secret").encode({"a": "c"}).split(".")[0]
    with pytest.raises(SessionError):
        store.decode(f"{forged}.{timestamp}.{mac}")
    with pytest.raises(SessionError):
        store.decode("garbage")


def test_empty_key_generates_random_key():
    first, second = SessionStore(b""), SessionStore(None)
    cookie = first.encode({"a": "b"})
    assert first.decode(cookie) == {"a": "b"}
    with pytest.raises(SessionError):
        second.decode(cookie)


def test_expired_cookie_rejected():
    store = SessionStore(b"secret")
    cookie = store.encode({"a": "b"})
    with patch("time.time", return_value=time.time() + 86400 * 31):
        with pytest.raises(SessionError):
            store.decode(cookie)


def test_store_then_get():
    store = SessionStore(b"secret")
    set_cookie = store_in_session("provider", "github", None, store)
    assert set_cookie.startswith(NAME + "=")
    assert get_from_session("provider", _request_header(set_cookie), store) == "github"


def test_store_keeps_existing_values():
    store = SessionStore(b"secret")
    first = store_in_session("a", "one", None, store)
    second = store_in_session("b", "two", _request_header(first), store)
    header = _request_header(second)
    assert get_from_session("a", header, store) == "one"
    assert get_from_session("b", header, store) == "two"


def test_get_missing_key_raises():
    store = SessionStore(b"secret")
    set_cookie = store_in_session("a", "one", None, store)
    with pytest.raises(SessionError, match="session could not be found for this request"):
        get_from_session("missing", _request_header(set_cookie), store)
    with pytest.raises(SessionError):
        get_from_session("a", None, store)