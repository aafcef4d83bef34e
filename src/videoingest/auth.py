"""
Bearer token handling.

Tokens are HS256 JWTs whose ``sub`` claim is the user's UUID and whose
``iss`` claim must match the configured issuer.
"""

import time
import uuid

from jose import JWTError, jwt

from .errors import Unauthenticated

JWT_ALG = "HS256"
DEFAULT_ISSUER = "videoingest-access"


def get_bearer_token(headers):
    value = headers.get("Authorization")
    if not value:
        raise Unauthenticated("Couldn't find JWT")
    scheme, _, token = value.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated("Malformed authorization header")
    return token


def validate_token(token, secret, issuer=DEFAULT_ISSUER):
    """Returns the user id a valid token was issued for."""
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALG], issuer=issuer)
    except JWTError as e:
        raise Unauthenticated(f"Couldn't validate JWT: {e}") from e

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError as e:
        raise Unauthenticated("Couldn't validate JWT: invalid subject") from e


def make_token(user_id, secret, expires_in=3600, issuer=DEFAULT_ISSUER):
    now = int(time.time())
    claims = {
        "iss": issuer,
        "sub": str(user_id),
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(claims, secret, algorithm=JWT_ALG)
