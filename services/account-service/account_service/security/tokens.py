"""Utilities for issuing and validating session access JWTs."""

from __future__ import annotations

import time
from typing import Any

import jwt

from ..config import get_settings


def issue_access_token(*, subject: str, session_id: str) -> tuple[str, int]:
    """Create a signed JWT bound to a server-side session.

    Parameters
    ----------
    subject:
        Identifier of the signed-in account, carried as `sub`.
    session_id:
        Identifier of the Redis session record, stored in the `sid` claim so the
        token stops working once the session is revoked.

    Returns
    -------
    tuple[str, int]
        The encoded token and its lifetime in seconds.
    """

    settings = get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "sid": session_id,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify ``token`` and return its claims.

    Raises
    ------
    jwt.PyJWTError
        When the signature, expiry or issuer check fails.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
    )
