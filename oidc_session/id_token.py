"""
ID token checks done by the client after the code exchange.

Only two things are checked: the token is a three-segment JWT whose payload is a JSON object,
and its nonce claim equals the nonce stored when the login started.

Not checked: signature (no JWKS lookup), exp/iat, iss, aud. A token that passes here is
"nonce-fresh" only; it is not proof that the issuer produced it. Anything that needs
authenticity must verify the signature against the issuer's keys itself.
"""
import binascii
import hmac
import json
import logging

from jwt.utils import base64url_decode

from oidc_session.errors import MalformedTokenError, NonceMismatchError
from oidc_session.tokens import IdentityClaims

logger = logging.getLogger(__name__)


def decode_claims(id_token: str) -> dict:
    """
    Decode the payload segment without verification. Raises MalformedTokenError.
    Header and signature segments are not parsed.
    """
    if not isinstance(id_token, str):
        raise MalformedTokenError("ID token must be a string")
    parts = id_token.split(".")
    if len(parts) != 3:
        raise MalformedTokenError("ID token must have exactly three dot-separated segments")
    try:
        payload = json.loads(base64url_decode(parts[1]))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.debug("ID token payload not decodable: %s", type(e).__name__)
        raise MalformedTokenError("ID token payload is not a decodable claims object") from e
    if not isinstance(payload, dict):
        raise MalformedTokenError("ID token payload is not a claims object")
    return payload


def validate(id_token: str, expected_nonce: str | None) -> IdentityClaims:
    """
    Decode id_token and require claims.nonce == expected_nonce (exact string match).
    Absence on either side is a mismatch. Returns the decoded claims.
    """
    payload = decode_claims(id_token)
    actual = payload.get("nonce")
    if (
        not isinstance(actual, str)
        or not isinstance(expected_nonce, str)
        or not hmac.compare_digest(actual.encode("utf-8"), expected_nonce.encode("utf-8"))
    ):
        logger.warning("ID token nonce mismatch (present=%s)", actual is not None)
        raise NonceMismatchError("ID token nonce does not match the login request")
    return IdentityClaims.from_mapping(payload)
