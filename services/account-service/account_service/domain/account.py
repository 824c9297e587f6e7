from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum


class AccountType(IntEnum):
    """Origin of an account: registered locally or federated from a provider."""

    LOCAL = 1
    QQ = 2


@dataclass(slots=True)
class Account:
    """Aggregate root for one principal, local or federated."""

    account_id: str
    account: str
    nick_name: str
    created_at: datetime
    updated_at: datetime
    type: AccountType = AccountType.LOCAL
    is_active: bool = False
    hashed_password: str | None = None
    open_id: str | None = None
    gender: str | None = None
    avatar: str | None = None
    province: str | None = None
    city: str | None = None
