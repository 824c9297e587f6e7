"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .account import AccountType


@dataclass(slots=True)
class SignupInput:
    """Validated inputs required to register a local account."""

    account: str
    nick_name: str
    password: str


@dataclass(slots=True)
class SigninInput:
    """Validated credentials presented at sign-in."""

    account: str
    password: str


@dataclass(slots=True)
class NewAccount:
    """Projection handed to the store when creating an account."""

    account: str
    nick_name: str
    type: AccountType = AccountType.LOCAL
    is_active: bool = False
    hashed_password: str | None = None
    open_id: str | None = None
    gender: str | None = None
    avatar: str | None = None
    province: str | None = None
    city: str | None = None


@dataclass(slots=True)
class AccountFilter:
    """Equality filter over the identifying columns of an account."""

    account_id: str | None = None
    account: str | None = None
    open_id: str | None = None

    def is_empty(self) -> bool:
        return self.account_id is None and self.account is None and self.open_id is None


@dataclass(slots=True)
class AccountChanges:
    """Self-service changes requested by a signed-in account holder.

    ``account`` and ``password`` are carried only so the service can reject
    them explicitly.
    """

    nick_name: str | None = None
    gender: str | None = None
    avatar: str | None = None
    province: str | None = None
    city: str | None = None
    account: str | None = None
    password: str | None = None

    def profile_values(self) -> dict[str, Any]:
        values = {
            "nick_name": self.nick_name,
            "gender": self.gender,
            "avatar": self.avatar,
            "province": self.province,
            "city": self.city,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass(slots=True)
class UpdateResult:
    """Outcome of a store update."""

    matched: int
    modified: int


@dataclass(slots=True)
class RequestContext:
    """Request-bound facts the session issuer needs."""

    client_ip: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
