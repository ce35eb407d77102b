"""
Token endpoint client: authorization_code and refresh_token grants (RFC 6749 §4.1.3, §6).
Form-encoded POST; confidential clients authenticate with client_secret in the form OR HTTP Basic, never both.
"""
import logging
from dataclasses import dataclass

import httpx

from oidc_session.config import HTTP_TIMEOUT, OAuthSettings
from oidc_session.errors import ConfigurationError, ExchangeError, TransportError
from oidc_session.tokens import TokenSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str | None = None
    auth_method: str = "client_secret_post"

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r}, confidential={self.is_confidential}, auth_method={self.auth_method!r})"

    @property
    def is_confidential(self) -> bool:
        return bool(self.client_secret)

    @classmethod
    def from_settings(cls, settings: OAuthSettings) -> "ClientCredentials":
        settings.require("client_id")
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            auth_method=settings.client_auth_method,
        )

    def apply(self, form: dict) -> httpx.BasicAuth | None:
        """Add client authentication to form; return Basic auth to send instead, if that method is used."""
        form["client_id"] = self.client_id
        if not self.is_confidential:
            return None
        if self.auth_method == "client_secret_basic":
            return httpx.BasicAuth(self.client_id, self.client_secret)
        form["client_secret"] = self.client_secret
        return None


def _error_from_response(r: httpx.Response) -> ExchangeError:
    """Parse {error, error_description}; synthesize one when the body is not usable."""
    try:
        body = r.json()
    except ValueError:
        body = None
    if not isinstance(body, dict) or not isinstance(body.get("error"), str):
        return ExchangeError(r.status_code, f"HTTP {r.status_code}")
    desc = body.get("error_description")
    return ExchangeError(r.status_code, body["error"], desc if isinstance(desc, str) else None)


class TokenExchangeClient:
    def __init__(
        self,
        token_endpoint: str,
        *,
        redirect_uri: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        if not token_endpoint:
            raise ConfigurationError("Missing OAuth configuration: OAUTH_TOKEN_ENDPOINT")
        self.token_endpoint = token_endpoint
        self.redirect_uri = redirect_uri
        self._http = http_client or httpx.Client(timeout=timeout)
        self._owns_http = http_client is None

    @classmethod
    def from_settings(cls, settings: OAuthSettings, http_client: httpx.Client | None = None) -> "TokenExchangeClient":
        settings.require("token_endpoint")
        return cls(
            settings.token_endpoint,
            redirect_uri=settings.redirect_uri or None,
            http_client=http_client,
            timeout=settings.http_timeout,
        )

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def exchange_code(self, code: str, code_verifier: str, credentials: ClientCredentials) -> TokenSet:
        if not self.redirect_uri:
            raise ConfigurationError("Missing OAuth configuration: OAUTH_REDIRECT_URI")
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }
        return self._post(form, credentials)

    def exchange_refresh(self, refresh_token: str, credentials: ClientCredentials) -> TokenSet:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return self._post(form, credentials)

    def _post(self, form: dict, credentials: ClientCredentials) -> TokenSet:
        grant = form["grant_type"]
        auth = credentials.apply(form)
        try:
            r = self._http.post(
                self.token_endpoint,
                data=form,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("%s grant: transport failure (%s)", grant, type(e).__name__)
            raise TransportError(f"Token endpoint unreachable: {type(e).__name__}") from e

        if not r.is_success:
            err = _error_from_response(r)
            logger.warning(
                "%s grant failed: status=%s error=%s description=%s",
                grant,
                err.status,
                err.error,
                err.error_description or "-",
            )
            raise err

        try:
            data = r.json()
            if not isinstance(data, dict):
                raise ValueError("token response is not a JSON object")
            tokens = TokenSet.from_response(data)
        except ValueError as e:
            logger.warning("%s grant: malformed token response (status=%s)", grant, r.status_code)
            raise TransportError("Token endpoint returned a malformed response") from e

        logger.info(
            "%s grant succeeded (refresh_token=%s, id_token=%s)",
            grant,
            "present" if tokens.refresh_token else "absent",
            "present" if tokens.id_token else "absent",
        )
        return tokens
