"""
Token endpoint results and identity claims.
TokenSet is what every successful exchange yields; IdentityClaims is derived from an id_token, read-only.
"""
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    issued_at: float = field(default_factory=time.time)

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return (
            f"TokenSet(token_type={self.token_type!r}, expires_in={self.expires_in!r}, "
            f"has_refresh_token={bool(self.refresh_token)}, has_id_token={bool(self.id_token)})"
        )

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> "TokenSet":
        """Build from a token endpoint JSON body. Raises ValueError if unusable."""
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response has no access_token")
        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError):
                raise ValueError("expires_in is not an integer") from None
        return cls(
            access_token=access_token,
            token_type=str(data.get("token_type") or "Bearer"),
            expires_in=expires_in,
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            scope=data.get("scope") or None,
        )

    def without_refresh_token(self) -> "TokenSet":
        return replace(self, refresh_token=None)

    def visible(self) -> dict:
        """Fields that may be handed to the presentation layer (never the refresh token)."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "id_token": self.id_token,
        }

    def expired_or_soon(self, buffer_seconds: int = 60) -> bool:
        """
        True if the access token is expired or within buffer_seconds of expiry (for proactive refresh).
        When lifetime is shorter than buffer_seconds, only True once actually expired.
        Unknown lifetime (no expires_in) never counts as expired.
        """
        if self.expires_in is None:
            return False
        elapsed = time.time() - self.issued_at
        if elapsed >= self.expires_in:
            return True
        if self.expires_in > buffer_seconds and elapsed >= (self.expires_in - buffer_seconds):
            return True
        return False


KNOWN_CLAIMS = ("sub", "name", "email", "nonce")


@dataclass(frozen=True)
class IdentityClaims:
    """Known OIDC claims as typed fields; every other issuer-defined claim in extra."""

    subject: str | None = None
    name: str | None = None
    email: str | None = None
    nonce: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "IdentityClaims":
        def _str(key):
            value = payload.get(key)
            return value if isinstance(value, str) else None

        return cls(
            subject=_str("sub"),
            name=_str("name"),
            email=_str("email"),
            nonce=_str("nonce"),
            extra=MappingProxyType({k: v for k, v in payload.items() if k not in KNOWN_CLAIMS}),
        )

    def get(self, key: str, default: Any = None) -> Any:
        if key == "sub":
            return self.subject if self.subject is not None else default
        if key in KNOWN_CLAIMS:
            value = getattr(self, key)
            return value if value is not None else default
        return self.extra.get(key, default)

    def to_dict(self) -> dict:
        out = dict(self.extra)
        for key, value in (("sub", self.subject), ("name", self.name), ("email", self.email), ("nonce", self.nonce)):
            if value is not None:
                out[key] = value
        return out
