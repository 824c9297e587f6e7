"""Password digest used for local credential verification."""

from __future__ import annotations

import hashlib
import hmac

from ..config import get_settings


def hash_password(plaintext: str) -> str:
    """Return the deterministic hex digest stored in place of a password.

    The digest is an HMAC-SHA256 keyed with the service-wide ``PASSWORD_SECRET``;
    equal inputs always produce equal digests.
    """
    secret = get_settings().password_secret.encode("utf-8")
    return hmac.new(secret, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_password(plaintext: str, digest: str | None) -> bool:
    """Return ``True`` when ``plaintext`` hashes to ``digest``."""
    if not digest:
        return False
    return hmac.compare_digest(hash_password(plaintext), digest)
