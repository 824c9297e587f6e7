"""Translate account errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import (
    AccountAlreadyActiveError,
    AccountError,
    AccountExistsError,
    AccountInactiveError,
    AccountNotFoundError,
    CollaboratorError,
    FieldChangeNotAllowedError,
    InvalidInputError,
    NotAuthenticatedError,
    OAuthStateError,
    PasswordIncorrectError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[AccountError], int] = {
    InvalidInputError: status.HTTP_403_FORBIDDEN,
    AccountExistsError: status.HTTP_403_FORBIDDEN,
    AccountInactiveError: status.HTTP_403_FORBIDDEN,
    FieldChangeNotAllowedError: status.HTTP_403_FORBIDDEN,
    OAuthStateError: status.HTTP_403_FORBIDDEN,
    AccountNotFoundError: status.HTTP_404_NOT_FOUND,
    AccountAlreadyActiveError: status.HTTP_400_BAD_REQUEST,
    PasswordIncorrectError: status.HTTP_400_BAD_REQUEST,
    NotAuthenticatedError: status.HTTP_401_UNAUTHORIZED,
    CollaboratorError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: AccountError) -> int:
    """Return the HTTP status of the closest mapped ancestor of ``exc``."""
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return status.HTTP_400_BAD_REQUEST


async def handle_account_error(request: Request, exc: AccountError) -> JSONResponse:
    """Render ``exc`` as a `{"result": false, "msg": ...}` body with an `X-Error` header."""
    status_code = status_for(exc)
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc
        )
    message = exc.fields if isinstance(exc, InvalidInputError) else exc.code
    return JSONResponse(
        status_code=status_code,
        content={"result": False, "msg": message},
        headers={"X-Error": exc.code},
    )


_VALIDATION_CODE_BY_ROUTE = {
    "check_unique": "UNIQUE_ERROR",
    "signup": "REGISTER_ERROR",
    "signin": "LOGIN_ERROR",
    "update_me": "UPDATE_ERROR",
    "qq_callback": "OAUTH_ERROR",
}


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report requests FastAPI could not parse (e.g. malformed JSON) like any other input error."""
    route_name = getattr(request.scope.get("route"), "name", None) or getattr(
        request.scope.get("endpoint"), "__name__", ""
    )
    code = _VALIDATION_CODE_BY_ROUTE.get(route_name, "INVALID_REQUEST")
    fields: dict[str, str] = {}
    for error in exc.errors():
        names = [
            part
            for part in error.get("loc", ())
            if isinstance(part, str) and part not in ("body", "query", "path")
        ]
        fields.setdefault(names[0] if names else "body", error.get("msg", "invalid request"))
    return await handle_account_error(request, InvalidInputError(code, fields))


def register_error_handlers(app: FastAPI) -> None:
    """Install the account error handlers on ``app``."""
    app.add_exception_handler(AccountError, handle_account_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)  # type: ignore[arg-type]
