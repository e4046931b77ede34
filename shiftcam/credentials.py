import base64
import binascii
import json
import logging

import jwt

from shiftcam.errors import Unauthenticated
from shiftcam.models import Identity

logger = logging.getLogger(__name__)

AUTHENTICATED_ROLE = "authenticated"


def base64url_padding(length: int) -> int:
    return (4 - length % 4) % 4


def decode_base64url(segment: str) -> bytes:
    """
    Decode an unpadded base64url segment (as found in JWTs).

    Raises ValueError when the segment is not valid base64 after padding.
    """
    normalized = segment.replace("-", "+").replace("_", "/")
    normalized += "=" * base64url_padding(len(normalized))
    try:
        return base64.b64decode(normalized, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64url segment: {exc}") from exc


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise Unauthenticated("Missing authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated()
    return token.strip()


def decode_claims(token: str) -> dict:
    parts = token.split(".")
    if len(parts) != 3:
        raise Unauthenticated()
    try:
        claims = json.loads(decode_base64url(parts[1]))
    except ValueError as exc:
        # JSONDecodeError and UnicodeDecodeError are ValueErrors too
        logger.warning("bearer payload could not be decoded: %s", exc)
        raise Unauthenticated() from exc
    if not isinstance(claims, dict):
        raise Unauthenticated()
    return claims


def verify_bearer(
    authorization: str | None, *, secret: str | None = None
) -> Identity:
    """
    Extract the caller identity from an `Authorization: Bearer <jwt>` header.

    Without a secret only the structure and claims are checked; the
    signature is trusted to the layer that owns the signing key. With a
    secret the token is also verified as HS256 (expiry enforced).
    """
    token = _bearer_token(authorization)
    claims = decode_claims(token)

    if secret is not None:
        try:
            jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                options={"verify_aud": False, "require": ["sub"]},
            )
        except jwt.PyJWTError as exc:
            logger.warning("bearer signature check failed: %s", exc)
            raise Unauthenticated() from exc

    subject = claims.get("sub")
    if not subject or not isinstance(subject, str):
        raise Unauthenticated()
    if claims.get("role") != AUTHENTICATED_ROLE:
        raise Unauthenticated()

    email = claims.get("email") or ""
    return Identity(subject_id=subject, subject_email=str(email))
