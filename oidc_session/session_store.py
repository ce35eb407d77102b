"""
Session token storage over three slots (access, refresh, id), in two trust variants.

ClientSessionStore: every slot readable/writable by the caller (public client; refresh token exposed).
CookieSessionStore: refresh token lives only in an HTTP-only cookie owned by the server boundary;
the caller sees access/id tokens and can never read or set the refresh slot directly.

Both apply the rotation rule on write: a refresh response without refresh_token keeps the stored one.
A TokenSet is written as a whole under the store lock, or not at all.
"""
import logging
import threading
from dataclasses import replace

from oidc_session.config import OAuthSettings
from oidc_session.errors import ConfigurationError, SlotAccessError
from oidc_session.tokens import TokenSet

logger = logging.getLogger(__name__)

SLOT_ACCESS = "access"
SLOT_REFRESH = "refresh"
SLOT_ID = "id"
SLOTS = (SLOT_ACCESS, SLOT_REFRESH, SLOT_ID)

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_MAX_AGE = 30 * 24 * 60 * 60  # 30 days
REFRESH_COOKIE_PATH = "/"


class CookieJar:
    """
    Buffered cookie view for one request/response pair: reads see incoming cookies plus pending changes;
    apply(response) replays the changes onto a Starlette/FastAPI response.
    """

    def __init__(self, incoming: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(incoming or {})
        self._attrs: dict[str, dict] = {}
        self._ops: list[tuple[str, str, str | None, dict]] = []

    def get(self, name: str) -> str | None:
        return self._values.get(name)

    def attributes(self, name: str) -> dict:
        return dict(self._attrs.get(name, {}))

    def set(self, name: str, value: str, **attrs) -> None:
        self._values[name] = value
        self._attrs[name] = attrs
        self._ops.append(("set", name, value, attrs))

    def delete(self, name: str, **attrs) -> None:
        self._values.pop(name, None)
        self._attrs.pop(name, None)
        self._ops.append(("delete", name, None, attrs))

    @property
    def pending(self) -> list[tuple[str, str]]:
        return [(op, name) for op, name, _, _ in self._ops]

    def apply(self, response) -> None:
        for op, name, value, attrs in self._ops:
            if op == "set":
                response.set_cookie(name, value, **attrs)
            else:
                response.delete_cookie(name, **attrs)
        self._ops.clear()


class SessionStore:
    """Capability contract shared by both variants; the orchestrator only talks to this."""

    trust = ""

    def __init__(self):
        self._lock = threading.RLock()
        # Held by a refresh from reading the refresh token until the rotated set is written
        self.refresh_lock = threading.Lock()
        self._current: TokenSet | None = None

    # --- caller-facing ---

    def read(self, slot: str) -> str | None:
        if slot not in SLOTS:
            raise KeyError(slot)
        with self._lock:
            if slot == SLOT_REFRESH:
                return self._read_refresh()
            if self._current is None:
                return None
            return self._current.access_token if slot == SLOT_ACCESS else self._current.id_token

    def write(self, tokens: TokenSet, *, rotate: bool = True) -> None:
        """
        Persist an exchange result. rotate=True (refresh): absent refresh_token/id_token keep the stored values.
        rotate=False (fresh login): the new set replaces everything, including the refresh slot.
        """
        with self._lock:
            visible = tokens.without_refresh_token()
            if rotate and not visible.id_token and self._current is not None and self._current.id_token:
                visible = replace(visible, id_token=self._current.id_token)
            if tokens.refresh_token:
                self._write_refresh(tokens.refresh_token)
            elif not rotate:
                self._clear_refresh()
            self._current = visible

    def clear(self) -> None:
        """Zero all three slots. The visible slots are cleared first; refresh clearing may still raise."""
        self.clear_visible()
        self.clear_refresh()

    def clear_visible(self) -> None:
        with self._lock:
            self._current = None

    def clear_refresh(self, *, if_equals: str | None = None) -> bool:
        """
        Zero the refresh slot. With if_equals, only when it still holds that token
        (a rotated token stored meanwhile is kept). Returns whether the slot was cleared.
        """
        with self._lock:
            if if_equals is not None and self._refresh_value() != if_equals:
                logger.info("refresh token changed since it was spent; keeping the stored one")
                return False
            self._clear_refresh()
            return True

    def current(self) -> TokenSet | None:
        """Visible token set (refresh_token always None)."""
        with self._lock:
            return self._current

    # --- exchange-facing (used only to run the refresh grant) ---

    def refresh_credential(self) -> str | None:
        with self._lock:
            return self._refresh_value()

    def has_refresh_token(self) -> bool:
        return self.refresh_credential() is not None

    # --- backend hooks ---

    def _read_refresh(self) -> str | None:
        raise NotImplementedError

    def _refresh_value(self) -> str | None:
        raise NotImplementedError

    def _write_refresh(self, value: str) -> None:
        raise NotImplementedError

    def _clear_refresh(self) -> None:
        raise NotImplementedError


class ClientSessionStore(SessionStore):
    """Public-client trust model: the calling context owns all three slots."""

    trust = "client"

    def __init__(self):
        super().__init__()
        self._refresh: str | None = None

    def _read_refresh(self) -> str | None:
        return self._refresh

    def _refresh_value(self) -> str | None:
        return self._refresh

    def _write_refresh(self, value: str) -> None:
        self._refresh = value

    def _clear_refresh(self) -> None:
        self._refresh = None


class CookieSessionStore(SessionStore):
    """Confidential-client trust model: refresh slot is an HTTP-only cookie, opaque to the caller."""

    trust = "server"

    def __init__(self, jar: CookieJar, *, secure: bool = False):
        super().__init__()
        self.jar = jar
        self.secure = secure

    def cookie_attributes(self) -> dict:
        return {
            "httponly": True,
            "secure": self.secure,
            "samesite": "lax",
            "path": REFRESH_COOKIE_PATH,
            "max_age": REFRESH_COOKIE_MAX_AGE,
        }

    def _read_refresh(self) -> str | None:
        raise SlotAccessError("Refresh token is held by the server and cannot be read directly")

    def _refresh_value(self) -> str | None:
        return self.jar.get(REFRESH_COOKIE) or None

    def _write_refresh(self, value: str) -> None:
        self.jar.set(REFRESH_COOKIE, value, **self.cookie_attributes())

    def _clear_refresh(self) -> None:
        if self.jar.get(REFRESH_COOKIE) is None:
            return
        self.jar.delete(
            REFRESH_COOKIE,
            path=REFRESH_COOKIE_PATH,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )
        logger.info("refresh cookie cleared")


def make_session_store(settings: OAuthSettings, jar: CookieJar | None = None) -> SessionStore:
    """Pick the backend for the configured trust model."""
    if settings.session_trust == "client":
        return ClientSessionStore()
    if jar is None:
        raise ConfigurationError("Server-trusted session storage needs a cookie jar")
    return CookieSessionStore(jar, secure=settings.cookie_secure)
