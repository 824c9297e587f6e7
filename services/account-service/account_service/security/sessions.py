"""Redis-backed session issuance for verified accounts."""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..domain.account import Account
from ..domain.contracts import RequestContext
from ..domain.errors import SessionStoreError
from .tokens import issue_access_token

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionPayload:
    """Session handed back to the caller after a successful verification."""

    session_id: str
    account_id: str
    access_token: str
    expires_in: int
    created_at: datetime


@dataclass(slots=True)
class SessionRecord:
    """Server-side view of a stored session."""

    session_id: str
    account_id: str
    created_at: datetime
    client_ip: str | None = None
    user_agent: str | None = None


class SessionIssuer:
    """Create and resolve sessions stored in Redis with a fixed TTL."""

    def __init__(self, client: Redis, *, ttl_seconds: int, key_prefix: str = "session") -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:{session_id}"

    async def issue(self, context: RequestContext, account: Account) -> SessionPayload:
        """Store exactly one new session for ``account`` and mint its access token.

        A session already attached to the request is revoked first so a
        pre-existing identifier cannot be carried across a sign-in.
        """
        session_id = secrets.token_urlsafe(32)
        created_at = datetime.now(timezone.utc)
        record = {
            "account_id": account.account_id,
            "created_at": created_at.isoformat(),
            "client_ip": context.client_ip,
            "user_agent": context.user_agent,
        }
        try:
            if context.session_id:
                await self._client.delete(self._key(context.session_id))
            await self._client.set(self._key(session_id), json.dumps(record), ex=self._ttl_seconds)
        except RedisError as exc:
            logger.error("session store unavailable while issuing for %s: %s", account.account_id, exc)
            raise SessionStoreError(f"failed to store session: {exc}") from exc

        access_token, expires_in = issue_access_token(
            subject=account.account_id, session_id=session_id
        )
        logger.info("session issued for account %s", account.account_id)
        return SessionPayload(
            session_id=session_id,
            account_id=account.account_id,
            access_token=access_token,
            expires_in=expires_in,
            created_at=created_at,
        )

    async def resolve(self, session_id: str) -> SessionRecord | None:
        """Return the stored session or ``None`` when it is unknown or expired."""
        try:
            raw = await self._client.get(self._key(session_id))
        except RedisError as exc:
            raise SessionStoreError(f"failed to load session: {exc}") from exc
        if raw is None:
            return None
        data = json.loads(raw)
        return SessionRecord(
            session_id=session_id,
            account_id=data["account_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            client_ip=data.get("client_ip"),
            user_agent=data.get("user_agent"),
        )
