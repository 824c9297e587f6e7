"""Database repository for account data."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import psycopg
from psycopg import errors
from psycopg.rows import tuple_row
from psycopg_pool import AsyncConnectionPool

from .domain.account import Account, AccountType
from .domain.contracts import AccountFilter, NewAccount, UpdateResult
from .domain.errors import AccountExistsError, StoreError

_COLUMNS = (
    "account_id, account, nick_name, hashed_password, is_active, open_id, type, "
    "gender, avatar, province, city, created_at, updated_at"
)

_UPDATABLE_COLUMNS = frozenset(
    {"nick_name", "hashed_password", "is_active", "open_id", "type", "gender", "avatar", "province", "city"}
)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class AccountRepository:
    """Postgres-backed account persistence.

    ``accounts.account`` and ``accounts.open_id`` carry unique indexes; a
    duplicate insert surfaces as :class:`AccountExistsError`. Any other driver
    failure surfaces as :class:`StoreError`.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[psycopg.AsyncCursor]:
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
        except errors.UniqueViolation as exc:
            raise AccountExistsError() from exc
        except psycopg.Error as exc:
            raise StoreError(f"account store failure: {exc}") from exc

    async def handle_exists(self, handle: str) -> bool:
        """Return ``True`` when an account already uses ``handle``."""
        async with self._cursor() as cur:
            await cur.execute("SELECT 1 FROM accounts WHERE account = %s LIMIT 1", (handle,))
            row = await cur.fetchone()
        return row is not None

    async def create(self, payload: NewAccount) -> Account:
        """Persist a new account and return the stored aggregate."""
        now = datetime.now(timezone.utc)
        async with self._cursor() as cur:
            await cur.execute(
                f"""
                INSERT INTO accounts ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (
                    str(uuid.uuid4()),
                    payload.account,
                    payload.nick_name,
                    payload.hashed_password,
                    payload.is_active,
                    payload.open_id,
                    int(payload.type),
                    payload.gender,
                    payload.avatar,
                    payload.province,
                    payload.city,
                    now,
                    now,
                ),
            )
            row = await cur.fetchone()
        return self._map_record(row)

    async def find_by_id(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        if not _is_uuid(account_id):
            return None
        return await self.find_one(AccountFilter(account_id=account_id))

    async def find_one(self, account_filter: AccountFilter) -> Account | None:
        """Return the first account matching every populated filter field."""
        where_sql, params = self._where(account_filter)
        async with self._cursor() as cur:
            await cur.execute(f"SELECT {_COLUMNS} FROM accounts WHERE {where_sql} LIMIT 1", params)
            row = await cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    async def update(self, account_filter: AccountFilter, changes: dict[str, Any]) -> UpdateResult:
        """Apply ``changes`` to matching accounts and refresh ``updated_at``."""
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"columns not updatable: {', '.join(sorted(unknown))}")

        assignments = ["updated_at = %s"]
        params: list[Any] = [datetime.now(timezone.utc)]
        for column, value in changes.items():
            assignments.append(f"{column} = %s")
            params.append(int(value) if column == "type" else value)

        where_sql, where_params = self._where(account_filter)
        params.extend(where_params)
        async with self._cursor() as cur:
            await cur.execute(
                f"UPDATE accounts SET {', '.join(assignments)} WHERE {where_sql}", params
            )
            count = cur.rowcount
        return UpdateResult(matched=count, modified=count)

    def _where(self, account_filter: AccountFilter) -> tuple[str, list[Any]]:
        if account_filter.is_empty():
            raise ValueError("account filter must name at least one field")
        clauses: list[str] = []
        params: list[Any] = []
        if account_filter.account_id is not None:
            clauses.append("account_id = %s")
            params.append(account_filter.account_id)
        if account_filter.account is not None:
            clauses.append("account = %s")
            params.append(account_filter.account)
        if account_filter.open_id is not None:
            clauses.append("open_id = %s")
            params.append(account_filter.open_id)
        return " AND ".join(clauses), params

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            account=row[1],
            nick_name=row[2],
            hashed_password=row[3],
            is_active=row[4],
            open_id=row[5],
            type=AccountType(row[6]),
            gender=row[7],
            avatar=row[8],
            province=row[9],
            city=row[10],
            created_at=row[11],
            updated_at=row[12],
        )
