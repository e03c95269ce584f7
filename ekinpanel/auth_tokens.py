from __future__ import annotations

import time
from typing import Dict, Optional

import jwt

from ekinpanel import settings

ALGORITHM = "HS256"
AUDIENCE = "authenticated"
# Refresh a little before the auth service would reject the token.
EXPIRY_LEEWAY_SEC = 30


class TokenError(Exception):
    """Raised when an access token cannot be used for a session."""


def _now() -> int:
    return int(time.time())


def _decode(token: str, secret: Optional[str]) -> Dict[str, object]:
    try:
        if secret:
            return jwt.decode(token, secret, algorithms=[ALGORITHM], audience=AUDIENCE)
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_aud": False, "verify_exp": True},
            algorithms=[ALGORITHM, "RS256", "ES256"],
        )
    except jwt.PyJWTError as exc:
        raise TokenError(str(exc)) from exc


def decode_access_token(token: str, *, secret: Optional[str] = None) -> Dict[str, object]:
    """Return the claims of an auth-service access token.

    The signature is only checked when a JWT secret is configured; otherwise
    the claims are read as-is and the auth service stays the authority on
    every store call made with the token.
    """
    if not token:
        raise TokenError("Missing access token")
    payload = _decode(token, secret if secret is not None else settings.SUPABASE_JWT_SECRET)
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise TokenError("Access token has no subject")
    return payload


def token_expires_soon(payload: Dict[str, object], *, leeway: int = EXPIRY_LEEWAY_SEC) -> bool:
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        return False
    return exp - leeway <= _now()
