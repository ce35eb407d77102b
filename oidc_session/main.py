"""
Confidential-client backend-for-frontend.
Runs the login flow server-side; the refresh token only ever travels in an HTTP-only cookie,
access/id tokens are returned to the browser as JSON.
GET /start-login, GET /callback, POST /api/auth/refresh, POST /logout.
"""
import logging
import secrets

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oidc_session.auth_flow import AuthFlow, RefreshGate
from oidc_session.config import FLOW_TTL, OAuthSettings, load_settings
from oidc_session.errors import ConfigurationError, ExchangeError, OAuthClientError, TransportError
from oidc_session.flow_store import FlowStore
from oidc_session.session_store import CookieJar, CookieSessionStore
from oidc_session.token_exchange import TokenExchangeClient

logger = logging.getLogger(__name__)

app = FastAPI(title="OIDC Session BFF", version="0.1.0")

# Pending logins, keyed by the browser's flow cookie
FLOW_COOKIE = "oauth_flow"
_flows = FlowStore(ttl=FLOW_TTL)

# One in-flight refresh per refresh token across concurrent requests
_refresh_gate = RefreshGate()

# Shared token endpoint client (connection pooling); rebuilt when its settings change
_exchange_client: TokenExchangeClient | None = None
_exchange_key: tuple | None = None


def _client_key(settings: OAuthSettings) -> tuple:
    return (settings.token_endpoint, settings.redirect_uri, settings.http_timeout)


def get_exchange_client(settings: OAuthSettings) -> TokenExchangeClient:
    global _exchange_client, _exchange_key
    key = _client_key(settings)
    if _exchange_client is None or key != _exchange_key:
        if _exchange_client is not None:
            logger.info("token endpoint settings changed; rebuilding exchange client")
        # the old client is left to requests still using it
        _exchange_client = TokenExchangeClient.from_settings(settings)
        _exchange_key = key
    return _exchange_client


def _auth_flow(settings: OAuthSettings, jar: CookieJar, flow_key: str) -> AuthFlow:
    return AuthFlow(
        settings,
        CookieSessionStore(jar, secure=settings.cookie_secure),
        flow_store=_flows,
        flow_key=flow_key,
        exchange_factory=lambda: get_exchange_client(settings),
        refresh_gate=_refresh_gate,
    )


def _error_response(exc: OAuthClientError) -> JSONResponse:
    """Map typed errors to {error, error_description}. Configuration details stay in the log."""
    if isinstance(exc, ConfigurationError):
        logger.error("configuration error: %s", exc.error_description)
        return JSONResponse(
            {"error": exc.error, "error_description": "Server configuration error"},
            status_code=500,
        )
    if isinstance(exc, ExchangeError):
        status = exc.status if 400 <= exc.status < 600 else 502
    elif isinstance(exc, TransportError):
        status = 502
    else:
        status = 400
    return JSONResponse(exc.to_dict(), status_code=status)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "oidc_session"}


@app.get("/start-login")
def start_login(request: Request):
    """New state, nonce, PKCE pair bound to a fresh flow cookie; redirect to the AS."""
    _flows.purge_expired()
    flow_key = secrets.token_urlsafe(16)
    try:
        settings = load_settings()
        url = _auth_flow(settings, CookieJar(request.cookies), flow_key).start_login()
    except OAuthClientError as e:
        return _error_response(e)
    response = RedirectResponse(url=url, status_code=302)
    response.set_cookie(
        FLOW_COOKIE,
        flow_key,
        max_age=settings.flow_ttl,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    return response


@app.get("/callback")
def callback(request: Request):
    """
    Handle the AS redirect: state check, code exchange, nonce check.
    Body carries access/id tokens and claims; the refresh token is set as an HTTP-only cookie only.
    """
    flow_key = request.cookies.get(FLOW_COOKIE, "")
    jar = CookieJar(request.cookies)
    try:
        settings = load_settings()
        result = _auth_flow(settings, jar, flow_key).handle_callback(dict(request.query_params))
    except OAuthClientError as e:
        response = _error_response(e)
    else:
        response = JSONResponse(result.to_dict())
        jar.apply(response)
    response.delete_cookie(FLOW_COOKIE, path="/")
    return response


@app.post("/api/auth/refresh")
def refresh(request: Request):
    """Spend the refresh cookie for new tokens; a rejected refresh token also deletes the cookie."""
    jar = CookieJar(request.cookies)
    try:
        settings = load_settings()
        result = _auth_flow(settings, jar, flow_key="").refresh()
    except OAuthClientError as e:
        response = _error_response(e)
    else:
        response = JSONResponse(result.to_dict())
    jar.apply(response)
    return response


@app.post("/logout")
def logout(request: Request, mode: str = "local", id_token_hint: str | None = None):
    """
    Clear the session. mode=global also redirects (303) to the AS end-session endpoint.
    The browser holds the id_token, so it passes it as id_token_hint; logout proceeds without it.
    """
    jar = CookieJar(request.cookies)
    try:
        settings = load_settings()
        flow = _auth_flow(settings, jar, request.cookies.get(FLOW_COOKIE, ""))
        url = flow.logout(global_logout=(mode == "global"), id_token_hint=id_token_hint)
    except OAuthClientError as e:
        response = _error_response(e)
    else:
        if url:
            response = RedirectResponse(url=url, status_code=303)
        else:
            response = JSONResponse({"status": "logged_out"})
    jar.apply(response)
    response.delete_cookie(FLOW_COOKIE, path="/")
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oidc_session.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
