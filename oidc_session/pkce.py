"""
PKCE (RFC 7636, S256 only) and login request helpers.
Verifier, state and nonce are independent draws from the OS CSPRNG, base64url without padding.
"""
import hashlib
import logging
import secrets
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from urllib.parse import urlencode

from oidc_session.errors import RandomnessUnavailableError

logger = logging.getLogger(__name__)

# 32 bytes -> 43 chars base64url (RFC 7636 recommendation)
VERIFIER_BYTES = 32


def _b64url(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_verifier(nbytes: int = VERIFIER_BYTES) -> str:
    """Random code_verifier. Refuses to fall back to a non-cryptographic source."""
    if nbytes < VERIFIER_BYTES:
        raise ValueError(f"verifier needs at least {VERIFIER_BYTES} bytes of randomness")
    try:
        raw = secrets.token_bytes(nbytes)
    except (NotImplementedError, OSError) as e:
        logger.error("OS randomness source unavailable: %s", type(e).__name__)
        raise RandomnessUnavailableError("Secure random source unavailable; login cannot start") from e
    return _b64url(raw)


def derive_challenge(verifier: str) -> str:
    """code_challenge = base64url(SHA256(utf-8 verifier)), no padding."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return _b64url(digest)


def generate_state() -> str:
    """Opaque value for CSRF protection; echoed back in the callback."""
    return generate_verifier()


def generate_nonce() -> str:
    """Random value bound into the ID token."""
    return generate_verifier()


@dataclass(frozen=True)
class FlowParameters:
    state: str
    nonce: str
    code_verifier: str
    code_challenge: str


def generate_flow_parameters() -> FlowParameters:
    verifier = generate_verifier()
    return FlowParameters(
        state=generate_state(),
        nonce=generate_nonce(),
        code_verifier=verifier,
        code_challenge=derive_challenge(verifier),
    )


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
    nonce: str | None = None,
) -> str:
    """Build the AS authorize URL with required and optional params."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": scope,
        "state": state,
        "redirect_uri": redirect_uri,
    }
    if nonce:
        params["nonce"] = nonce
    params["code_challenge"] = code_challenge
    params["code_challenge_method"] = "S256"
    sep = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{sep}{urlencode(params)}"
