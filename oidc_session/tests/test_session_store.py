"""Tests for the two session store backends and the refresh-token rotation rule."""
from dataclasses import replace

import pytest
from fastapi import Response

from oidc_session.errors import ConfigurationError, SlotAccessError
from oidc_session.session_store import (
    REFRESH_COOKIE,
    REFRESH_COOKIE_MAX_AGE,
    SLOT_ACCESS,
    SLOT_ID,
    SLOT_REFRESH,
    ClientSessionStore,
    CookieJar,
    CookieSessionStore,
    make_session_store,
)
from oidc_session.tokens import TokenSet


def _login(store):
    store.write(TokenSet(access_token="AT1", refresh_token="RT1", id_token="ID1"), rotate=False)


def test_client_store_read_write_all_slots():
    store = ClientSessionStore()
    _login(store)
    assert store.read(SLOT_ACCESS) == "AT1"
    assert store.read(SLOT_REFRESH) == "RT1"
    assert store.read(SLOT_ID) == "ID1"
    assert store.current().refresh_token is None


def test_unknown_slot():
    with pytest.raises(KeyError):
        ClientSessionStore().read("password")


def test_refresh_without_refresh_token_keeps_old_value():
    store = ClientSessionStore()
    _login(store)
    store.write(TokenSet(access_token="AT2"))
    assert store.read(SLOT_ACCESS) == "AT2"
    assert store.read(SLOT_REFRESH) == "RT1"
    assert store.read(SLOT_ID) == "ID1"


def test_refresh_with_new_refresh_token_replaces_it():
    store = ClientSessionStore()
    _login(store)
    store.write(TokenSet(access_token="AT2", refresh_token="RT2", id_token="ID2"))
    assert store.read(SLOT_REFRESH) == "RT2"
    assert store.read(SLOT_ID) == "ID2"


def test_fresh_login_without_refresh_token_drops_previous_one():
    store = ClientSessionStore()
    _login(store)
    store.write(TokenSet(access_token="AT9"), rotate=False)
    assert store.read(SLOT_REFRESH) is None
    assert store.read(SLOT_ID) is None


def test_clear_zeroes_all_slots():
    store = ClientSessionStore()
    _login(store)
    store.clear()
    assert [store.read(s) for s in (SLOT_ACCESS, SLOT_REFRESH, SLOT_ID)] == [None, None, None]
    assert not store.has_refresh_token()


def test_cookie_store_refresh_slot_is_opaque():
    store = CookieSessionStore(CookieJar())
    _login(store)
    assert store.read(SLOT_ACCESS) == "AT1"
    assert store.read(SLOT_ID) == "ID1"
    with pytest.raises(SlotAccessError):
        store.read(SLOT_REFRESH)
    assert store.refresh_credential() == "RT1"


def test_cookie_store_cookie_attributes():
    jar = CookieJar()
    store = CookieSessionStore(jar, secure=True)
    _login(store)
    assert jar.get(REFRESH_COOKIE) == "RT1"
    assert jar.attributes(REFRESH_COOKIE) == {
        "httponly": True,
        "secure": True,
        "samesite": "lax",
        "path": "/",
        "max_age": REFRESH_COOKIE_MAX_AGE,
    }
    assert REFRESH_COOKIE_MAX_AGE == 30 * 24 * 60 * 60


def test_cookie_store_rotation_rule():
    jar = CookieJar({REFRESH_COOKIE: "RT1"})
    store = CookieSessionStore(jar)
    store.write(TokenSet(access_token="AT2"))
    assert jar.get(REFRESH_COOKIE) == "RT1"
    assert jar.pending == []
    store.write(TokenSet(access_token="AT3", refresh_token="RT2"))
    assert jar.get(REFRESH_COOKIE) == "RT2"
    assert jar.pending == [("set", REFRESH_COOKIE)]


def test_cookie_jar_applies_to_response():
    jar = CookieJar()
    store = CookieSessionStore(jar)
    _login(store)
    response = Response()
    jar.apply(response)
    header = response.headers["set-cookie"]
    assert header.startswith("refresh_token=RT1")
    assert "HttpOnly" in header
    assert "Max-Age=2592000" in header
    assert "Path=/" in header
    assert "samesite=lax" in header.lower()
    assert "Secure" not in header


def test_cookie_store_clear_deletes_cookie():
    jar = CookieJar({REFRESH_COOKIE: "RT1"})
    store = CookieSessionStore(jar)
    store.clear()
    assert jar.get(REFRESH_COOKIE) is None
    assert jar.pending == [("delete", REFRESH_COOKIE)]
    response = Response()
    jar.apply(response)
    assert "Max-Age=0" in response.headers["set-cookie"]


class FlakyJar(CookieJar):
    def __init__(self, *args, failures=1, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures

    def delete(self, name, **attrs):
        if self.failures:
            self.failures -= 1
            raise OSError("boundary unreachable")
        super().delete(name, **attrs)


def test_refresh_clear_is_retryable_after_visible_clear():
    jar = FlakyJar({REFRESH_COOKIE: "RT1"})
    store = CookieSessionStore(jar)
    store.write(TokenSet(access_token="AT1", id_token="ID1"))
    with pytest.raises(OSError):
        store.clear()
    # visible slots went first and stay cleared
    assert store.read(SLOT_ACCESS) is None
    assert store.has_refresh_token()
    store.clear_refresh()
    assert not store.has_refresh_token()


def test_make_session_store_by_trust(settings):
    assert isinstance(make_session_store(replace(settings, session_trust="client")), ClientSessionStore)
    server = make_session_store(replace(settings, session_trust="server", cookie_secure=True), CookieJar())
    assert isinstance(server, CookieSessionStore)
    assert server.secure is True
    with pytest.raises(ConfigurationError):
        make_session_store(replace(settings, session_trust="server"))


def test_clear_refresh_if_equals_keeps_rotated_token():
    store = ClientSessionStore()
    _login(store)
    store.write(TokenSet(access_token="AT2", refresh_token="RT2"))
    assert store.clear_refresh(if_equals="RT1") is False
    assert store.read(SLOT_REFRESH) == "RT2"
    assert store.clear_refresh(if_equals="RT2") is True
    assert store.read(SLOT_REFRESH) is None


def test_cookie_store_clear_refresh_if_equals():
    jar = CookieJar({REFRESH_COOKIE: "RT2"})
    store = CookieSessionStore(jar)
    assert store.clear_refresh(if_equals="RT1") is False
    assert jar.pending == []
    assert store.clear_refresh(if_equals="RT2") is True
    assert jar.pending == [("delete", REFRESH_COOKIE)]
