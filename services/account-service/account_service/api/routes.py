"""HTTP route definitions for the account service."""

from __future__ import annotations

import logging
import secrets
from typing import Any, ClassVar

import jwt
from fastapi import APIRouter, Body, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from ..config import get_settings
from ..domain.account import Account
from ..domain.contracts import AccountChanges, RequestContext, SigninInput, SignupInput
from ..domain.errors import AccountExistsError, InvalidInputError, NotAuthenticatedError, OAuthStateError
from ..domain.federation import FederationService
from ..domain.service import AccountService
from ..security.sessions import SessionIssuer, SessionPayload, SessionRecord
from ..security.tokens import decode_access_token
from .validation import RequestModel, parse_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_TTL_SECONDS = 600


class ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PublicAccountResponse(ResponseModel):
    """Serialised representation of an `Account` without its password digest."""

    account_id: str
    account: str
    nick_name: str
    type: int
    is_active: bool
    open_id: str | None = None
    gender: str | None = None
    avatar: str | None = None
    province: str | None = None
    city: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "PublicAccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(**_account_fields(account))


class AccountResponse(PublicAccountResponse):
    """Account as returned right after registration, digest included."""

    hashed_password: str | None = None

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        return cls(**_account_fields(account), hashed_password=account.hashed_password)


def _account_fields(account: Account) -> dict[str, Any]:
    return {
        "account_id": account.account_id,
        "account": account.account,
        "nick_name": account.nick_name,
        "type": int(account.type),
        "is_active": account.is_active,
        "open_id": account.open_id,
        "gender": account.gender,
        "avatar": account.avatar,
        "province": account.province,
        "city": account.city,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
    }


class ResultResponse(ResponseModel):
    result: bool = True
    msg: str


class SessionResponse(ResponseModel):
    """Sign-in response carrying the bearer token and the signed-in account."""

    result: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    account: PublicAccountResponse


class UpdateResultResponse(ResponseModel):
    matched: int
    modified: int


class SignupRequest(RequestModel):
    """Payload accepted when registering a local account."""

    account: EmailStr
    nick_name: str = Field(min_length=2, max_length=20)
    password: str = Field(min_length=6, max_length=20)

    error_messages: ClassVar[dict[str, str]] = {
        "account": "ACCOUNT_INCORRECT",
        "nickName": "NICKNAME_INCORRECT",
        "password": "password required and length must between 6-20",
    }


class UniqueQuery(RequestModel):
    """Handle whose availability is being checked, normalised like a signup handle."""

    account: EmailStr

    error_messages: ClassVar[dict[str, str]] = {
        "account": "ACCOUNT_REQUIRED&MUST_BE_EMAIL",
    }


class SigninRequest(RequestModel):
    """Credentials presented at sign-in."""

    account: EmailStr
    password: str = Field(min_length=6, max_length=20)

    error_messages: ClassVar[dict[str, str]] = {
        "account": "ACCOUNT_REQUIRED&MUST_BE_EMAIL",
        "password": "PASSWORD_REQUIRED&MUST_BETWEEN_6-20",
    }


class UpdateAccountRequest(RequestModel):
    """Self-service profile changes; ``account`` and ``password`` are accepted only to be refused."""

    nick_name: str | None = Field(default=None, min_length=2, max_length=20)
    gender: str | None = None
    avatar: str | None = None
    province: str | None = None
    city: str | None = None
    account: str | None = None
    password: str | None = None

    error_messages: ClassVar[dict[str, str]] = {
        "nickName": "NICKNAME_INCORRECT",
    }


settings = get_settings()


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_federation_service(request: Request) -> FederationService:
    """Resolve the `FederationService` stored on the FastAPI application state."""
    service: FederationService = request.app.state.federation_service
    return service


def get_session_issuer(request: Request) -> SessionIssuer:
    """Resolve the shared `SessionIssuer` from the application state."""
    issuer: SessionIssuer = request.app.state.session_issuer
    return issuer


def request_context(request: Request) -> RequestContext:
    """Capture the request facts a new session is bound to."""
    return RequestContext(
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        session_id=request.cookies.get(settings.session_cookie_name),
    )


async def current_session(
    request: Request,
    sessions: SessionIssuer = Depends(get_session_issuer),
) -> SessionRecord:
    """Resolve the caller's session from the session cookie or a Bearer access token."""
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        scheme, _, token = request.headers.get("authorization", "").partition(" ")
        if scheme.lower() == "bearer" and token:
            try:
                session_id = decode_access_token(token).get("sid")
            except jwt.PyJWTError as exc:
                raise NotAuthenticatedError() from exc
    if not session_id:
        raise NotAuthenticatedError()

    record = await sessions.resolve(session_id)
    if record is None:
        raise NotAuthenticatedError()
    return record


def _set_session_cookie(response: Response, session: SessionPayload) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


@router.get("/users/unique", response_model=ResultResponse)
async def check_unique(
    account: str | None = Query(default=None),
    service: AccountService = Depends(get_service),
) -> ResultResponse:
    """Report whether a handle is still available."""
    query = parse_payload(UniqueQuery, {"account": account}, error_code="UNIQUE_ERROR")
    if await service.handle_exists(query.account):
        raise AccountExistsError()
    return ResultResponse(result=True, msg="ACCOUNT_IS_NOT_EXIST")


@router.post("/users/signup", response_model=AccountResponse)
async def signup(
    payload: Any = Body(default=None),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    """Register an inactive local account; the activation email is sent in the background."""
    body = parse_payload(SignupRequest, payload, error_code="REGISTER_ERROR")
    account = await service.signup(
        SignupInput(account=body.account, nick_name=body.nick_name, password=body.password)
    )
    return AccountResponse.from_domain(account)


@router.get("/users/{account_id}/activate", response_model=ResultResponse)
async def activate(
    account_id: str,
    service: AccountService = Depends(get_service),
) -> ResultResponse:
    """Activate an account from the emailed link."""
    await service.activate(account_id)
    return ResultResponse(result=True, msg="ACTIVE_USER_SUCCESS")


@router.post("/users/signin", response_model=SessionResponse)
async def signin(
    request: Request,
    response: Response,
    payload: Any = Body(default=None),
    service: AccountService = Depends(get_service),
) -> SessionResponse:
    """Verify local credentials and open a session."""
    body = parse_payload(SigninRequest, payload, error_code="LOGIN_ERROR")
    account, session = await service.signin(
        SigninInput(account=body.account, password=body.password),
        request_context(request),
    )
    _set_session_cookie(response, session)
    return SessionResponse(
        access_token=session.access_token,
        expires_in=session.expires_in,
        account=PublicAccountResponse.from_domain(account),
    )


@router.patch("/users/me", response_model=UpdateResultResponse)
async def update_me(
    payload: Any = Body(default=None),
    session: SessionRecord = Depends(current_session),
    service: AccountService = Depends(get_service),
) -> UpdateResultResponse:
    """Update the signed-in account's profile."""
    body = parse_payload(UpdateAccountRequest, payload, error_code="UPDATE_ERROR")
    result = await service.update_profile(
        session.account_id,
        AccountChanges(
            nick_name=body.nick_name,
            gender=body.gender,
            avatar=body.avatar,
            province=body.province,
            city=body.city,
            account=body.account,
            password=body.password,
        ),
    )
    return UpdateResultResponse(matched=result.matched, modified=result.modified)


@router.get("/auth/qq", status_code=status.HTTP_302_FOUND)
async def start_qq_login(
    federation: FederationService = Depends(get_federation_service),
) -> RedirectResponse:
    """Send the browser to the provider login page."""
    state = secrets.token_urlsafe(16)
    response = RedirectResponse(
        federation.authorization_url(state), status_code=status.HTTP_302_FOUND
    )
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_TTL_SECONDS,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/auth/qq/callback", status_code=status.HTTP_302_FOUND)
async def qq_callback(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    federation: FederationService = Depends(get_federation_service),
) -> RedirectResponse:
    """Complete a provider login and redirect into the application."""
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if expected_state is not None and not secrets.compare_digest(
        expected_state.encode("utf-8"), (state or "").encode("utf-8")
    ):
        raise OAuthStateError()
    if not code:
        raise InvalidInputError("OAUTH_ERROR", {"code": "CODE_REQUIRED"})

    result = await federation.authenticate_with_code(code, request_context(request))

    response = RedirectResponse(settings.federation_success_url, status_code=status.HTTP_302_FOUND)
    _set_session_cookie(response, result.session)
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response
