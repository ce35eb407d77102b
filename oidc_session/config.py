"""
OIDC session client configuration. Environment-style settings; no secrets in this file.
Module constants are read once at import; load_settings() takes a fresh snapshot for the orchestrator.
"""
import os
from dataclasses import dataclass, fields

from oidc_session.errors import ConfigurationError

# Authorization endpoint (external AS) where login redirects go
AUTHORIZATION_ENDPOINT = os.environ.get("OAUTH_AUTHORIZATION_ENDPOINT", "").strip()

# Token endpoint for authorization_code and refresh_token grants
TOKEN_ENDPOINT = os.environ.get("OAUTH_TOKEN_ENDPOINT", "").strip()

# RP-Initiated Logout endpoint; only global logout needs it
END_SESSION_ENDPOINT = os.environ.get("OAUTH_END_SESSION_ENDPOINT", "").strip()

CLIENT_ID = os.environ.get("OAUTH_CLIENT_ID", "").strip()

# Confidential clients only. Never logged.
CLIENT_SECRET = os.environ.get("OAUTH_CLIENT_SECRET", "").strip() or None

# client_secret_post (form field) or client_secret_basic (Authorization header); never both
CLIENT_AUTH_METHOD = os.environ.get("OAUTH_CLIENT_AUTH_METHOD", "client_secret_post").strip()

REDIRECT_URI = os.environ.get("OAUTH_REDIRECT_URI", "").strip()

DEFAULT_SCOPE = os.environ.get("OAUTH_SCOPE", "openid profile email")

POST_LOGOUT_REDIRECT_URI = os.environ.get("OAUTH_POST_LOGOUT_REDIRECT_URI", "").strip()

# "server": refresh token lives in an HTTP-only cookie; "client": all slots visible to the caller
SESSION_TRUST = os.environ.get("OAUTH_SESSION_TRUST", "server").strip().lower()

# Secure cookie flag; on by default in production
COOKIE_SECURE = os.environ.get(
    "OAUTH_COOKIE_SECURE",
    "1" if os.environ.get("OAUTH_ENV", "development") == "production" else "0",
).strip().lower() in ("1", "true", "yes")

# Pending flow lifetime (seconds); a callback after this is rejected as expired
FLOW_TTL = int(os.environ.get("OAUTH_FLOW_TTL", "600"))

# Token endpoint timeout (seconds)
HTTP_TIMEOUT = float(os.environ.get("OAUTH_HTTP_TIMEOUT", "10"))

AUTH_METHODS = ("client_secret_post", "client_secret_basic")
TRUST_MODES = ("client", "server")


@dataclass(frozen=True)
class OAuthSettings:
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    end_session_endpoint: str = ""
    client_id: str = ""
    client_secret: str | None = None
    client_auth_method: str = "client_secret_post"
    redirect_uri: str = ""
    scope: str = "openid profile email"
    post_logout_redirect_uri: str = ""
    session_trust: str = "server"
    cookie_secure: bool = False
    flow_ttl: int = 600
    http_timeout: float = 10.0

    def __post_init__(self):
        if self.client_auth_method not in AUTH_METHODS:
            raise ConfigurationError(
                f"OAUTH_CLIENT_AUTH_METHOD must be one of {', '.join(AUTH_METHODS)}"
            )
        if self.session_trust not in TRUST_MODES:
            raise ConfigurationError(f"OAUTH_SESSION_TRUST must be one of {', '.join(TRUST_MODES)}")
        if self.flow_ttl <= 0:
            raise ConfigurationError("OAUTH_FLOW_TTL must be positive")

    @property
    def is_confidential(self) -> bool:
        return bool(self.client_secret)

    def require(self, *names: str) -> None:
        """Raise ConfigurationError listing every named setting that is empty."""
        known = {f.name for f in fields(self)}
        missing = [n for n in names if n in known and not getattr(self, n)]
        if missing:
            raise ConfigurationError(
                "Missing OAuth configuration: " + ", ".join(f"OAUTH_{n.upper()}" for n in missing)
            )


def load_settings() -> OAuthSettings:
    """Snapshot the current environment (re-read, so tests can monkeypatch env)."""
    secure_default = "1" if os.environ.get("OAUTH_ENV", "development") == "production" else "0"
    return OAuthSettings(
        authorization_endpoint=os.environ.get("OAUTH_AUTHORIZATION_ENDPOINT", AUTHORIZATION_ENDPOINT).strip(),
        token_endpoint=os.environ.get("OAUTH_TOKEN_ENDPOINT", TOKEN_ENDPOINT).strip(),
        end_session_endpoint=os.environ.get("OAUTH_END_SESSION_ENDPOINT", END_SESSION_ENDPOINT).strip(),
        client_id=os.environ.get("OAUTH_CLIENT_ID", CLIENT_ID).strip(),
        client_secret=os.environ.get("OAUTH_CLIENT_SECRET", CLIENT_SECRET or "").strip() or None,
        client_auth_method=os.environ.get("OAUTH_CLIENT_AUTH_METHOD", CLIENT_AUTH_METHOD).strip(),
        redirect_uri=os.environ.get("OAUTH_REDIRECT_URI", REDIRECT_URI).strip(),
        scope=os.environ.get("OAUTH_SCOPE", DEFAULT_SCOPE),
        post_logout_redirect_uri=os.environ.get(
            "OAUTH_POST_LOGOUT_REDIRECT_URI", POST_LOGOUT_REDIRECT_URI
        ).strip(),
        session_trust=os.environ.get("OAUTH_SESSION_TRUST", SESSION_TRUST).strip().lower(),
        cookie_secure=os.environ.get("OAUTH_COOKIE_SECURE", secure_default).strip().lower()
        in ("1", "true", "yes"),
        flow_ttl=int(os.environ.get("OAUTH_FLOW_TTL", str(FLOW_TTL))),
        http_timeout=float(os.environ.get("OAUTH_HTTP_TIMEOUT", str(HTTP_TIMEOUT))),
    )
