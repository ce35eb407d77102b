"""
Error types for the OIDC session client.
Each error carries an OAuth-style (error, error_description) pair for the HTTP layer; none ever holds a token.
"""


class OAuthClientError(Exception):
    """Base class. error is a short machine code, error_description is safe to show and log."""

    error = "client_error"

    def __init__(self, error_description: str = "", *, error: str | None = None):
        if error:
            self.error = error
        self.error_description = error_description
        super().__init__(error_description or self.error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.error_description:
            body["error_description"] = self.error_description
        return body


class ConfigurationError(OAuthClientError):
    """Missing or invalid deployment settings. Fatal to the attempted operation only."""

    error = "server_configuration_error"


class RandomnessUnavailableError(OAuthClientError):
    """No cryptographically secure randomness; a flow must not be started."""

    error = "randomness_unavailable"


# --- Callback failures: terminal for the flow attempt ---


class CallbackError(OAuthClientError):
    error = "invalid_callback"


class InvalidCallbackError(CallbackError):
    error = "invalid_callback"


class StateMismatchError(CallbackError):
    error = "state_mismatch"


class FlowExpiredError(CallbackError):
    error = "flow_expired"


class AuthServerDeniedError(CallbackError):
    """The authorization server redirected back with ?error=..."""

    def __init__(self, error: str, error_description: str | None = None):
        super().__init__(error_description or "", error=error)


# --- Token endpoint ---


class ExchangeError(OAuthClientError):
    """Non-2xx answer from the token endpoint."""

    def __init__(self, status: int, error: str, error_description: str | None = None):
        self.status = status
        super().__init__(error_description or "", error=error)

    def __str__(self) -> str:
        desc = f": {self.error_description}" if self.error_description else ""
        return f"token endpoint returned {self.status} {self.error}{desc}"


class RefreshDeniedError(ExchangeError):
    """Refresh token rejected (400/401); the stored refresh token has been discarded."""


class TransportError(OAuthClientError):
    """Network-level failure or unusable response. Retryable; says nothing about token validity."""

    error = "temporarily_unavailable"


# --- ID token ---


class TokenValidationError(OAuthClientError):
    error = "invalid_id_token"


class MalformedTokenError(TokenValidationError):
    error = "malformed_token"


class NonceMismatchError(TokenValidationError):
    error = "nonce_mismatch"


# --- Session store / resources ---


class SlotAccessError(OAuthClientError):
    """Direct access to a slot owned by another trust boundary."""

    error = "slot_not_accessible"


class ResourceUnauthorizedError(OAuthClientError):
    """Downstream resource answered 401 and the caller did not ask for refresh-on-401."""

    error = "session_expired"
