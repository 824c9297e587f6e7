"""Third-party login: resolve a provider identity and sign in its local account.

The callback runs in three phases:

1. exchange the authorization code for an access token, then resolve the open
   id (sequential, each call needs the previous result);
2. look up the local account bound to the open id and fetch the provider
   profile concurrently, joined with :class:`BranchJoin`;
3. create or refresh the local account from the profile and issue a session.

Any failure aborts the request with a single error. Nothing is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .. import metrics
from ..providers.base import ProviderClient, ProviderProfile
from ..repository import AccountRepository
from ..security.sessions import SessionIssuer, SessionPayload
from .account import Account
from .contracts import AccountFilter, NewAccount, RequestContext
from .errors import AccountError, AccountExistsError, StoreError
from .join import BranchJoin

logger = logging.getLogger(__name__)

LOCAL_ACCOUNT = "local_account"
PROFILE = "profile"


@dataclass(slots=True)
class FederationJoinState:
    """Both branch results, available only once both branches finished."""

    local_account: Account | None
    profile: ProviderProfile


@dataclass(slots=True)
class FederationResult:
    account: Account
    session: SessionPayload
    created: bool


class FederationService:
    """Federated sign-in against a single identity provider."""

    def __init__(
        self,
        repository: AccountRepository,
        provider: ProviderClient,
        sessions: SessionIssuer,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._sessions = sessions

    @property
    def provider_name(self) -> str:
        """Lower-case provider label used in logs and metrics."""
        return self._provider.account_type.name.lower()

    def authorization_url(self, state: str) -> str:
        """Return the provider login URL that echoes ``state`` back to the callback."""
        return self._provider.get_authorization_url(state)

    async def authenticate_with_code(self, code: str, context: RequestContext) -> FederationResult:
        """Complete a provider callback and sign in the bound local account."""
        try:
            result = await self._authenticate(code, context)
        except AccountError:
            metrics.record_federation_login(self.provider_name, "failed")
            raise
        metrics.record_federation_login(self.provider_name, "created" if result.created else "updated")
        return result

    async def _authenticate(self, code: str, context: RequestContext) -> FederationResult:
        token = await self._provider.exchange_code_for_token(code)
        open_id = await self._provider.fetch_open_id(token.access_token)

        state = await self._join(token.access_token, open_id)

        projection = self._project(open_id, state.profile)
        if state.local_account is not None:
            account = await self._refresh(state.local_account, projection)
            created = False
        else:
            account, created = await self._create(open_id, projection)

        session = await self._sessions.issue(context, account)
        return FederationResult(account=account, session=session, created=created)

    async def _create(self, open_id: str, projection: NewAccount) -> tuple[Account, bool]:
        try:
            account = await self._repository.create(projection)
        except AccountExistsError as exc:
            # A concurrent callback for the same open id inserted first.
            winner = await self._repository.find_one(AccountFilter(open_id=open_id))
            if winner is None:
                raise StoreError(f"account for open id {open_id} conflicts but cannot be found") from exc
            logger.info("federated account %s created concurrently; refreshing", winner.account_id)
            return await self._refresh(winner, projection), False

        logger.info("federated account %s created from %s", account.account_id, self.provider_name)
        return account, True

    async def _join(self, access_token: str, open_id: str) -> FederationJoinState:
        join = BranchJoin()
        join.add(LOCAL_ACCOUNT, self._repository.find_one(AccountFilter(open_id=open_id)))
        join.add(PROFILE, self._provider.fetch_profile(access_token, open_id))
        results = await join.wait()
        return FederationJoinState(local_account=results[LOCAL_ACCOUNT], profile=results[PROFILE])

    def _project(self, open_id: str, profile: ProviderProfile) -> NewAccount:
        return NewAccount(
            account=open_id,
            open_id=open_id,
            nick_name=profile.nick_name,
            gender=profile.gender,
            avatar=profile.avatar,
            province=profile.province,
            city=profile.city,
            type=self._provider.account_type,
            is_active=True,
        )

    async def _refresh(self, account: Account, projection: NewAccount) -> Account:
        await self._repository.update(
            AccountFilter(account_id=account.account_id),
            {
                "nick_name": projection.nick_name,
                "gender": projection.gender,
                "avatar": projection.avatar,
                "province": projection.province,
                "city": projection.city,
                "type": projection.type,
                "is_active": True,
            },
        )
        refreshed = await self._repository.find_by_id(account.account_id)
        if refreshed is None:
            raise StoreError(f"account {account.account_id} vanished during refresh")
        logger.info("federated account %s refreshed from %s", account.account_id, self.provider_name)
        return refreshed
