"""Account service orchestrating registration, activation, sign-in and profile updates."""

from __future__ import annotations

import logging

from .. import metrics
from ..mail import ActivationMailer
from ..repository import AccountRepository
from ..security.passwords import hash_password, verify_password
from ..security.sessions import SessionIssuer, SessionPayload
from .account import Account, AccountType
from .background import DetachedTasks
from .contracts import (
    AccountChanges,
    AccountFilter,
    NewAccount,
    RequestContext,
    SigninInput,
    SignupInput,
    UpdateResult,
)
from .errors import (
    AccountAlreadyActiveError,
    AccountExistsError,
    AccountInactiveError,
    AccountNotFoundError,
    CollaboratorError,
    FieldChangeNotAllowedError,
    PasswordIncorrectError,
)

logger = logging.getLogger(__name__)


class AccountService:
    """Local account workflows backed by Postgres storage and Redis sessions."""

    def __init__(
        self,
        repository: AccountRepository,
        sessions: SessionIssuer,
        mailer: ActivationMailer,
        background: DetachedTasks,
    ) -> None:
        """Store dependencies used to orchestrate persistence, sessions and mail."""
        self._repository = repository
        self._sessions = sessions
        self._mailer = mailer
        self._background = background

    async def handle_exists(self, handle: str) -> bool:
        """Return ``True`` when ``handle`` is already registered."""
        return await self._repository.handle_exists(handle)

    async def signup(self, payload: SignupInput) -> Account:
        """Register an inactive local account and dispatch its activation email.

        The email is sent from a detached task; its outcome never affects the
        returned account.
        """
        if await self._repository.handle_exists(payload.account):
            raise AccountExistsError()

        account = await self._repository.create(
            NewAccount(
                account=payload.account,
                nick_name=payload.nick_name,
                hashed_password=hash_password(payload.password),
                is_active=False,
                type=AccountType.LOCAL,
            )
        )
        logger.info("account %s registered", account.account_id)
        metrics.record_signup()

        self._background.spawn(
            self._dispatch_activation_email(account),
            name=f"activation-email:{account.account_id}",
        )
        return account

    async def _dispatch_activation_email(self, account: Account) -> None:
        try:
            await self._mailer.send_activation_email(account)
        except CollaboratorError as exc:
            logger.error("activation email to %s failed: %s", account.account, exc)
            metrics.record_activation_email("failed")
        except Exception:
            metrics.record_activation_email("failed")
            raise
        else:
            metrics.record_activation_email("sent")

    async def activate(self, account_id: str) -> Account:
        """Flip ``is_active`` for an inactive account."""
        account = await self._repository.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError()
        if account.is_active:
            raise AccountAlreadyActiveError()

        await self._repository.update(AccountFilter(account_id=account_id), {"is_active": True})
        account.is_active = True
        logger.info("account %s activated", account_id)
        metrics.record_activation()
        return account

    async def signin(
        self, payload: SigninInput, context: RequestContext
    ) -> tuple[Account, SessionPayload]:
        """Verify local credentials and issue a session."""
        account = await self._repository.find_one(AccountFilter(account=payload.account))
        if account is None:
            metrics.record_signin("not_found")
            raise AccountNotFoundError()
        if not account.is_active:
            metrics.record_signin("inactive")
            raise AccountInactiveError()
        if not verify_password(payload.password, account.hashed_password):
            logger.info("password mismatch for account %s", account.account_id)
            metrics.record_signin("password_incorrect")
            raise PasswordIncorrectError()

        session = await self._sessions.issue(context, account)
        metrics.record_signin("success")
        return account, session

    async def update_profile(self, account_id: str, changes: AccountChanges) -> UpdateResult:
        """Apply self-service profile changes; the handle and password are immutable here."""
        if changes.account is not None:
            raise FieldChangeNotAllowedError("account")
        if changes.password is not None:
            raise FieldChangeNotAllowedError("password")

        return await self._repository.update(
            AccountFilter(account_id=account_id), changes.profile_values()
        )
