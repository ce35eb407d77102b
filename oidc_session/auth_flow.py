"""
Authorization Code + PKCE flow orchestration.

    Idle -> Initiated -> AwaitingCallback -> Exchanging -> Validating -> Established | Failed
    Established -> Refreshing -> Established | Failed(RefreshDenied)
    logout: any state -> Idle

Errors are raised to the caller as typed exceptions (oidc_session.errors); the flow also records
status/failure so a UI layer can decide where to send the user.
"""
import hashlib
import hmac
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping
from urllib.parse import urlencode

import httpx

from oidc_session import id_token as id_token_validator
from oidc_session.config import OAuthSettings, load_settings
from oidc_session.errors import (
    AuthServerDeniedError,
    ConfigurationError,
    ExchangeError,
    FlowExpiredError,
    InvalidCallbackError,
    MalformedTokenError,
    OAuthClientError,
    RefreshDeniedError,
    ResourceUnauthorizedError,
    StateMismatchError,
    TokenValidationError,
    TransportError,
)
from oidc_session.flow_store import FlowState, FlowStore
from oidc_session.pkce import build_authorize_url, generate_flow_parameters
from oidc_session.session_store import SLOT_ACCESS, SLOT_ID, CookieJar, SessionStore, make_session_store
from oidc_session.token_exchange import ClientCredentials, TokenExchangeClient
from oidc_session.tokens import IdentityClaims, TokenSet

logger = logging.getLogger(__name__)

DEFAULT_FLOW_KEY = "default"

# Seconds a completed refresh stays reusable for callers presenting the same (now spent) token
REFRESH_REUSE_WINDOW = 10.0


class FlowStatus(str, Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    VALIDATING = "validating"
    ESTABLISHED = "established"
    REFRESHING = "refreshing"
    FAILED = "failed"


class Failure(str, Enum):
    AUTH_SERVER_ERROR = "AuthServerError"
    INVALID_CALLBACK = "InvalidCallback"
    STATE_MISMATCH = "StateMismatch"
    FLOW_EXPIRED = "FlowExpired"
    EXCHANGE_ERROR = "ExchangeError"
    ID_TOKEN_INVALID = "IdTokenInvalid"
    REFRESH_DENIED = "RefreshDenied"
    CONFIGURATION = "ConfigurationError"


def failure_for(exc: OAuthClientError) -> Failure:
    if isinstance(exc, AuthServerDeniedError):
        return Failure.AUTH_SERVER_ERROR
    if isinstance(exc, StateMismatchError):
        return Failure.STATE_MISMATCH
    if isinstance(exc, FlowExpiredError):
        return Failure.FLOW_EXPIRED
    if isinstance(exc, RefreshDeniedError):
        return Failure.REFRESH_DENIED
    if isinstance(exc, (ExchangeError, TransportError)):
        return Failure.EXCHANGE_ERROR
    if isinstance(exc, TokenValidationError):
        return Failure.ID_TOKEN_INVALID
    if isinstance(exc, ConfigurationError):
        return Failure.CONFIGURATION
    return Failure.INVALID_CALLBACK


@dataclass(frozen=True)
class FlowResult:
    status: FlowStatus
    tokens: TokenSet | None = None
    claims: IdentityClaims | None = None

    def to_dict(self) -> dict:
        body = self.tokens.visible() if self.tokens else {}
        body["claims"] = self.claims.to_dict() if self.claims else None
        return body


class _InFlight:
    def __init__(self):
        self.done = threading.Event()
        self.result: TokenSet | None = None
        self.error: BaseException | None = None


class RefreshGate:
    """
    Single-flight for refresh exchanges, keyed by a fingerprint of the refresh token being spent.
    Concurrent callers holding the same token wait for the one in-flight exchange and share its outcome,
    so a token is never spent twice.

    A successful result is also kept for reuse_window seconds: a late caller still holding the spent
    token (e.g. a second request carrying the old refresh cookie) gets the rotated set instead of
    spending the token again and being denied.
    """

    def __init__(self, reuse_window: float = REFRESH_REUSE_WINDOW):
        self.reuse_window = reuse_window
        self._lock = threading.Lock()
        self._inflight: dict[str, _InFlight] = {}
        self._recent: dict[str, tuple[float, TokenSet]] = {}

    @staticmethod
    def fingerprint(refresh_token: str) -> str:
        return hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()

    def _recent_result(self, key: str, now: float) -> TokenSet | None:
        for k, (at, _) in list(self._recent.items()):
            if now - at > self.reuse_window:
                del self._recent[k]
        hit = self._recent.get(key)
        return hit[1] if hit else None

    def run(self, refresh_token: str, exchange: Callable[[], TokenSet]) -> TokenSet:
        key = self.fingerprint(refresh_token)
        with self._lock:
            recent = self._recent_result(key, time.monotonic())
            if recent is not None:
                logger.debug("refresh for %s completed moments ago; reusing result", key[:12])
                return recent
            call = self._inflight.get(key)
            leader = call is None
            if leader:
                call = _InFlight()
                self._inflight[key] = call
        if not leader:
            logger.debug("refresh already in flight for %s; waiting", key[:12])
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result
        try:
            call.result = exchange()
            return call.result
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._inflight.pop(key, None)
                if call.error is None and self.reuse_window > 0:
                    self._recent[key] = (time.monotonic(), call.result)
            call.done.set()

    def in_flight(self) -> int:
        with self._lock:
            return len(self._inflight)


class AuthFlow:
    """One client context's login/session state machine over explicit stores."""

    def __init__(
        self,
        settings: OAuthSettings,
        session_store: SessionStore,
        *,
        flow_store: FlowStore | None = None,
        flow_key: str = DEFAULT_FLOW_KEY,
        exchange_client: TokenExchangeClient | None = None,
        exchange_factory: Callable[[], TokenExchangeClient] | None = None,
        refresh_gate: RefreshGate | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.settings = settings
        self.session_store = session_store
        self.flow_store = flow_store if flow_store is not None else FlowStore(ttl=settings.flow_ttl)
        self.flow_key = flow_key
        self.refresh_gate = refresh_gate if refresh_gate is not None else RefreshGate()
        self._exchange = exchange_client
        self._exchange_factory = exchange_factory
        self._http = http_client
        self.status = FlowStatus.IDLE
        self.failure: Failure | None = None

    @classmethod
    def from_settings(cls, settings: OAuthSettings | None = None, jar: CookieJar | None = None, **kwargs) -> "AuthFlow":
        settings = settings or load_settings()
        return cls(settings, make_session_store(settings, jar), **kwargs)

    # --- state bookkeeping ---

    def _transition(self, status: FlowStatus) -> None:
        logger.debug("auth flow %s: %s -> %s", self.flow_key, self.status.value, status.value)
        self.status = status
        if status is not FlowStatus.FAILED:
            self.failure = None

    def _fail(self, exc: OAuthClientError) -> None:
        self.status = FlowStatus.FAILED
        self.failure = failure_for(exc)
        logger.warning("auth flow %s failed: %s (%s)", self.flow_key, self.failure.value, exc.error)

    def _exchange_client(self) -> TokenExchangeClient:
        if self._exchange is None:
            # resolved on first exchange, after the callback checks
            factory = self._exchange_factory or (lambda: TokenExchangeClient.from_settings(self.settings))
            self._exchange = factory()
        return self._exchange

    def _credentials(self) -> ClientCredentials:
        return ClientCredentials.from_settings(self.settings)

    # --- Idle -> Initiated ---

    def start_login(self) -> str:
        """New PKCE/state/nonce, stored under flow_key; returns the authorization URL. No network call."""
        self.settings.require("authorization_endpoint", "client_id", "redirect_uri", "scope")
        params = generate_flow_parameters()
        self.flow_store.save(
            self.flow_key,
            FlowState(state=params.state, nonce=params.nonce, code_verifier=params.code_verifier),
        )
        self._transition(FlowStatus.INITIATED)
        return build_authorize_url(
            authorization_endpoint=self.settings.authorization_endpoint,
            client_id=self.settings.client_id,
            redirect_uri=self.settings.redirect_uri,
            scope=self.settings.scope,
            state=params.state,
            code_challenge=params.code_challenge,
            nonce=params.nonce,
        )

    # --- AwaitingCallback -> Exchanging -> Validating -> Established ---

    def handle_callback(self, params: Mapping[str, str]) -> FlowResult:
        """
        Process the AS redirect (?code&state or ?error). The pending flow is discarded whatever the outcome.
        State is checked before any token endpoint call.
        """
        self._transition(FlowStatus.AWAITING_CALLBACK)
        try:
            error = params.get("error")
            if error:
                raise AuthServerDeniedError(error, params.get("error_description"))
            code = params.get("code")
            state = params.get("state")
            if not code or not state:
                raise InvalidCallbackError("Missing code or state parameter")

            stored = self.flow_store.load(self.flow_key)
            if stored is None or not hmac.compare_digest(stored.state.encode(), state.encode()):
                raise StateMismatchError("State does not match the pending login; possible CSRF")
            if not stored.code_verifier or self.flow_store.is_expired(stored):
                raise FlowExpiredError("Login flow expired; start again")

            client = self._exchange_client()
            credentials = self._credentials()

            self._transition(FlowStatus.EXCHANGING)
            tokens = client.exchange_code(code, stored.code_verifier, credentials)

            self._transition(FlowStatus.VALIDATING)
            claims = None
            if tokens.id_token and stored.nonce:
                claims = id_token_validator.validate(tokens.id_token, stored.nonce)
            else:
                logger.info("ID token validation skipped (id_token=%s)", bool(tokens.id_token))

            self.session_store.write(tokens, rotate=False)
            self._transition(FlowStatus.ESTABLISHED)
            logger.info("session established for flow %s", self.flow_key)
            return FlowResult(FlowStatus.ESTABLISHED, self.session_store.current(), claims)
        except OAuthClientError as e:
            self._fail(e)
            raise
        finally:
            self.flow_store.discard(self.flow_key)

    # --- Established -> Refreshing -> Established | Failed(RefreshDenied) ---

    def refresh(self) -> FlowResult:
        """
        Spend the stored refresh token. 400/401 discards it (RefreshDeniedError, restart login);
        any other failure leaves the session as it was and re-raises.
        The store's refresh_lock is held from reading the token until the rotated set is written, and
        a denial only clears the slot while it still holds the spent token.
        """
        with self.session_store.refresh_lock:
            refresh_token = self.session_store.refresh_credential()
            if not refresh_token:
                exc = RefreshDeniedError(401, "invalid_grant", "No refresh token available")
                self._fail(exc)
                raise exc

            client = self._exchange_client()
            credentials = self._credentials()
            self._transition(FlowStatus.REFRESHING)
            try:
                tokens = self.refresh_gate.run(
                    refresh_token, lambda: client.exchange_refresh(refresh_token, credentials)
                )
            except ExchangeError as e:
                if e.status in (400, 401) and self.session_store.clear_refresh(if_equals=refresh_token):
                    denied = RefreshDeniedError(e.status, e.error, e.error_description)
                    self._fail(denied)
                    raise denied from e
                self._transition(FlowStatus.ESTABLISHED)
                raise
            except TransportError:
                self._transition(FlowStatus.ESTABLISHED)
                raise

            self.session_store.write(tokens, rotate=True)
            self._transition(FlowStatus.ESTABLISHED)
        return FlowResult(FlowStatus.ESTABLISHED, self.session_store.current(), self.current_claims())

    # --- logout ---

    def logout(self, *, global_logout: bool = False, id_token_hint: str | None = None) -> str | None:
        """
        Clear every slot (visible first, then the refresh slot, each retryable on its own).
        global_logout also returns the RP-Initiated Logout URL, built after local state is gone.
        id_token_hint overrides the stored id_token (when the caller, not this store, holds it).
        """
        id_token = id_token_hint or self.session_store.read(SLOT_ID)
        self.flow_store.discard(self.flow_key)
        self.session_store.clear_visible()
        self.session_store.clear_refresh()
        self._transition(FlowStatus.IDLE)
        logger.info("logged out (%s)", "global" if global_logout else "local")
        if not global_logout:
            return None
        self.settings.require("end_session_endpoint", "post_logout_redirect_uri")
        params = {}
        if id_token:
            params["id_token_hint"] = id_token
        params["post_logout_redirect_uri"] = self.settings.post_logout_redirect_uri
        endpoint = self.settings.end_session_endpoint
        return f"{endpoint}{'&' if '?' in endpoint else '?'}{urlencode(params)}"

    # --- helpers for the presentation layer ---

    def current_claims(self) -> IdentityClaims | None:
        """Claims re-derived from the stored id_token; None when absent or unreadable."""
        token = self.session_store.read(SLOT_ID)
        if not token:
            return None
        try:
            return IdentityClaims.from_mapping(id_token_validator.decode_claims(token))
        except MalformedTokenError:
            logger.warning("stored id_token could not be decoded")
            return None

    def call_resource(
        self,
        url: str,
        *,
        method: str = "GET",
        refresh_on_401: bool = False,
        **kwargs,
    ) -> httpx.Response:
        """
        Call a protected resource with the bearer access token. On 401 either raise
        ResourceUnauthorizedError or, with refresh_on_401, refresh once and retry once.
        """
        access_token = self.session_store.read(SLOT_ACCESS)
        if not access_token:
            raise ResourceUnauthorizedError("No access token available")
        r = self._send(method, url, access_token, **kwargs)
        if r.status_code != 401:
            return r
        if not refresh_on_401:
            raise ResourceUnauthorizedError("Session expired")
        self.refresh()
        return self._send(method, url, self.session_store.read(SLOT_ACCESS), **kwargs)

    def _send(self, method: str, url: str, access_token: str, headers: dict | None = None, **kwargs) -> httpx.Response:
        if self._http is None:
            self._http = httpx.Client(timeout=self.settings.http_timeout)
        headers = dict(headers or {})
        headers["Authorization"] = f"Bearer {access_token}"
        try:
            return self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("resource call failed: %s", type(e).__name__)
            raise TransportError(f"Resource request failed: {type(e).__name__}") from e
