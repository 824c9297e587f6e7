"""Error taxonomy raised by the account flows.

Every error carries a machine-readable ``code`` that the HTTP layer copies into
the ``X-Error`` header and the response body. Input, conflict, state and
credential errors are terminal for the request; collaborator errors describe a
failed store, provider, session or mail call and are never retried.
"""

from __future__ import annotations

from typing import Mapping


class AccountError(Exception):
    """Base class for errors surfaced by the account service."""

    code = "ACCOUNT_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class InvalidInputError(AccountError):
    """Aggregated field validation failure."""

    def __init__(self, code: str, fields: Mapping[str, str]) -> None:
        self.code = code
        self.fields = dict(fields)
        super().__init__(f"{code}: {', '.join(sorted(self.fields))}")


class ConflictError(AccountError):
    code = "CONFLICT"


class AccountExistsError(ConflictError):
    code = "ACCOUNT_IS_EXIST"


class NotFoundError(AccountError):
    code = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"


class StateError(AccountError):
    code = "INVALID_STATE"


class AccountAlreadyActiveError(StateError):
    code = "USER_IS_ACTIVED"


class AccountInactiveError(StateError):
    code = "USER_IS_NOT_ACTIVE"


class AuthError(AccountError):
    code = "AUTH_ERROR"


class PasswordIncorrectError(AuthError):
    code = "PASSWORD_INCORRECT"


class NotAuthenticatedError(AuthError):
    code = "NOT_SIGNED_IN"


class FieldChangeNotAllowedError(AccountError):
    """Raised when a self-service update touches a protected field."""

    code = "FIELD_CHANGE_NOT_ALLOWED"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is not allowed to change")


class OAuthStateError(AccountError):
    code = "OAUTH_STATE_MISMATCH"


class CollaboratorError(AccountError):
    """A store, provider, session or mail call failed."""

    code = "COLLABORATOR_ERROR"


class StoreError(CollaboratorError):
    code = "STORE_ERROR"


class SessionStoreError(CollaboratorError):
    code = "SESSION_ERROR"


class MailDeliveryError(CollaboratorError):
    code = "MAIL_ERROR"


class ProviderError(CollaboratorError):
    code = "PROVIDER_ERROR"


class ProviderTokenError(ProviderError):
    """Raised when exchanging the authorization code or resolving the open id fails."""


class ProviderProfileError(ProviderError):
    """Raised when fetching the provider profile fails."""
