"""Bearer token handling for tenant tokens.

Tokens are compact HS256 JWTs processed with PyJWT. Claims are read without
verification first so expiry can be judged against the resolver's own clock
before the signature is checked. The header's ``alg`` field is not inspected:
signatures are always recomputed as HMAC-SHA256.
"""

import time

import jwt
from jwt.algorithms import HMACAlgorithm
from jwt.utils import base64url_decode
from pydantic import BaseModel, ConfigDict, ValidationError

from tenancy_core.exceptions import InvalidTokenError, TokenExpiredError

_HS256 = HMACAlgorithm(HMACAlgorithm.SHA256)

# Verification happens in check_expiry and verify_signature
_UNVERIFIED = {"verify_signature": False, "verify_exp": False}


class JWTClaims(BaseModel):
    """Claims recognised in a tenant token payload. Unknown claims are ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    tenant_id: str | None = None
    sub: str | None = None
    exp: float | None = None
    iat: float | None = None
    iss: str | None = None


def split_token(token: str) -> tuple[str, str, str]:
    """
    Split a compact JWT into its header, payload and signature segments.

    Raises:
        InvalidTokenError: If the token does not have exactly three parts.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidTokenError("Invalid token format: expected 3 parts")
    return parts[0], parts[1], parts[2]


def decode_claims(token: str) -> JWTClaims:
    """
    Read a token's claims without verifying it.

    Raises:
        InvalidTokenError: If the token cannot be decoded or a known claim has
            the wrong type.
    """
    try:
        payload = jwt.decode(token, options=_UNVERIFIED)
    except jwt.DecodeError as e:
        raise InvalidTokenError(f"Failed to decode payload: {e}") from e

    try:
        return JWTClaims.model_validate(payload)
    except ValidationError as e:
        raise InvalidTokenError(
            f"Failed to decode payload: {e.error_count()} invalid claim(s)"
        ) from e


def check_expiry(claims: JWTClaims, now: float | None = None) -> None:
    """
    Reject tokens whose ``exp`` claim lies in the past.

    Args:
        claims: Parsed token claims.
        now: Unix timestamp to compare against (defaults to wall-clock time).

    Raises:
        TokenExpiredError: If the token has expired.
    """
    if claims.exp is None:
        return
    current = time.time() if now is None else now
    if claims.exp < current:
        raise TokenExpiredError()


def verify_signature(
    header_segment: str,
    payload_segment: str,
    signature_segment: str,
    secret: str,
) -> bool:
    """
    Check a token's HS256 signature.

    Returns:
        True if the provided signature matches the one computed with ``secret``.
    """
    try:
        signature = base64url_decode(signature_segment)
    except ValueError:
        # binascii.Error and non-ASCII segments
        return False
    signing_input = f"{header_segment}.{payload_segment}".encode("utf-8")
    return _HS256.verify(signing_input, _HS256.prepare_key(secret), signature)


def encode_token(claims: dict, secret: str) -> str:
    """
    Build a signed HS256 token.

    Intended for tooling and tests that need tokens the resolver accepts.
    """
    return jwt.encode(claims, secret, algorithm="HS256")
