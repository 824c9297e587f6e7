from __future__ import annotations

import asyncio
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import FastAPI

from account_service.api import routes
from account_service.api.errors import register_error_handlers
from account_service.config import get_settings
from account_service.domain.account import AccountType
from account_service.domain.background import DetachedTasks
from account_service.domain.errors import ProviderTokenError, StoreError
from account_service.domain.federation import FederationService
from account_service.domain.service import AccountService
from account_service.security.passwords import hash_password
from account_service.security.sessions import SessionIssuer

from fakes import FakeMailer, FakeProvider, FakeRepository, fake_redis


@dataclass
class ApiHarness:
    app: FastAPI
    repository: FakeRepository
    mailer: FakeMailer
    provider: FakeProvider
    background: DetachedTasks
    redis_client: object

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self.app), base_url="http://testserver"
        )

    async def session_count(self) -> int:
        return len([key async for key in self.redis_client.scan_iter("session:*")])


@pytest.fixture
def api() -> ApiHarness:
    """Provide a FastAPI app with isolated in-memory collaborators."""
    repository = FakeRepository()
    mailer = FakeMailer()
    provider = FakeProvider(open_id="oq1")
    background = DetachedTasks()
    redis_client = fake_redis()
    sessions = SessionIssuer(redis_client, ttl_seconds=3600)

    app = FastAPI()
    register_error_handlers(app)
    app.include_router(routes.router)
    app.state.session_issuer = sessions
    app.state.account_service = AccountService(repository, sessions, mailer, background)
    app.state.federation_service = FederationService(repository, provider, sessions)

    return ApiHarness(app, repository, mailer, provider, background, redis_client)


def seed_active(api: ApiHarness, handle: str = "a@b.com", password: str = "secret1"):
    return api.repository.add(
        account=handle, nick_name="Al", hashed_password=hash_password(password), is_active=True
    )


@pytest.mark.asyncio
async def test_signup_returns_inactive_account_with_digest(api):
    async with api.client() as client:
        response = await client.post(
            "/v1/users/signup",
            json={"account": "a@b.com", "nickName": "Al", "password": "secret1"},
        )
    await api.background.drain()

    assert response.status_code == 200
    body = response.json()
    assert body["account"] == "a@b.com"
    assert body["nickName"] == "Al"
    assert body["isActive"] is False
    assert body["type"] == 1
    assert body["hashedPassword"] == hash_password("secret1")
    assert len(api.repository.accounts) == 1
    assert [account.account for account in api.mailer.sent] == ["a@b.com"]


@pytest.mark.asyncio
async def test_signup_aggregates_validation_errors(api):
    async with api.client() as client:
        response = await client.post(
            "/v1/users/signup", json={"account": "not-an-email", "nickName": "A", "password": "123"}
        )

    assert response.status_code == 403
    assert response.headers["X-Error"] == "REGISTER_ERROR"
    assert response.json() == {
        "result": False,
        "msg": {
            "account": "ACCOUNT_INCORRECT",
            "nickName": "NICKNAME_INCORRECT",
            "password": "password required and length must between 6-20",
        },
    }
    assert api.repository.create_calls == 0


@pytest.mark.asyncio
async def test_signup_with_empty_body_reports_every_field(api):
    async with api.client() as client:
        response = await client.post("/v1/users/signup")

    assert response.status_code == 403
    assert set(response.json()["msg"]) == {"account", "nickName", "password"}


@pytest.mark.asyncio
async def test_signup_duplicate_handle(api):
    seed_active(api)
    async with api.client() as client:
        response = await client.post(
            "/v1/users/signup",
            json={"account": "a@b.com", "nickName": "Al", "password": "secret1"},
        )

    assert response.status_code == 403
    assert response.headers["X-Error"] == "ACCOUNT_IS_EXIST"
    assert response.json()["msg"] == "ACCOUNT_IS_EXIST"
    assert len(api.repository.accounts) == 1


@pytest.mark.asyncio
async def test_unique_endpoint(api):
    seed_active(api)
    async with api.client() as client:
        taken = await client.get("/v1/users/unique", params={"account": "a@b.com"})
        free = await client.get("/v1/users/unique", params={"account": "new@b.com"})
        missing = await client.get("/v1/users/unique")

    assert taken.status_code == 403
    assert taken.headers["X-Error"] == "ACCOUNT_IS_EXIST"
    assert free.status_code == 200
    assert free.json() == {"result": True, "msg": "ACCOUNT_IS_NOT_EXIST"}
    assert missing.status_code == 403
    assert missing.headers["X-Error"] == "UNIQUE_ERROR"


@pytest.mark.asyncio
async def test_activation_is_reported_once(api):
    stored = api.repository.add(account="a@b.com", nick_name="Al", hashed_password=hash_password("secret1"))
    async with api.client() as client:
        first = await client.get(f"/v1/users/{stored.account_id}/activate")
        second = await client.get(f"/v1/users/{stored.account_id}/activate")
        unknown = await client.get("/v1/users/does-not-exist/activate")

    assert first.status_code == 200
    assert first.json() == {"result": True, "msg": "ACTIVE_USER_SUCCESS"}
    assert second.status_code == 400
    assert second.headers["X-Error"] == "USER_IS_ACTIVED"
    assert unknown.status_code == 404
    assert unknown.json()["msg"] == "USER_NOT_FOUND"
    assert api.repository.accounts[stored.account_id].is_active is True


@pytest.mark.asyncio
async def test_signin_wrong_password_does_not_leak_account(api):
    seed_active(api)
    async with api.client() as client:
        response = await client.post("/v1/users/signin", json={"account": "a@b.com", "password": "wrong12"})

    assert response.status_code == 400
    assert response.headers["X-Error"] == "PASSWORD_INCORRECT"
    assert response.json() == {"result": False, "msg": "PASSWORD_INCORRECT"}
    assert hash_password("secret1") not in response.text
    assert "set-cookie" not in response.headers
    assert await api.session_count() == 0


@pytest.mark.asyncio
async def test_signin_issues_session_cookie_and_token(api):
    stored = seed_active(api)
    async with api.client() as client:
        response = await client.post("/v1/users/signin", json={"account": "a@b.com", "password": "secret1"})

    assert response.status_code == 200
    body = response.json()
    assert body["result"] is True
    assert body["tokenType"] == "bearer"
    assert body["accessToken"]
    assert body["account"]["accountId"] == stored.account_id
    assert "hashedPassword" not in body["account"]
    assert get_settings().session_cookie_name in response.cookies
    assert await api.session_count() == 1


@pytest.mark.asyncio
async def test_signin_inactive_account(api):
    api.repository.add(account="a@b.com", nick_name="Al", hashed_password=hash_password("secret1"))
    async with api.client() as client:
        response = await client.post("/v1/users/signin", json={"account": "a@b.com", "password": "secret1"})

    assert response.status_code == 403
    assert response.headers["X-Error"] == "USER_IS_NOT_ACTIVE"
    assert await api.session_count() == 0


@pytest.mark.asyncio
async def test_signin_validation_and_unknown_account(api):
    async with api.client() as client:
        invalid = await client.post("/v1/users/signin", json={"account": "a@b.com"})
        unknown = await client.post("/v1/users/signin", json={"account": "x@b.com", "password": "secret1"})

    assert invalid.status_code == 403
    assert invalid.headers["X-Error"] == "LOGIN_ERROR"
    assert invalid.json()["msg"] == {"password": "PASSWORD_REQUIRED&MUST_BETWEEN_6-20"}
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_update_requires_session(api):
    async with api.client() as client:
        response = await client.patch("/v1/users/me", json={"nickName": "Alan"})

    assert response.status_code == 401
    assert response.headers["X-Error"] == "NOT_SIGNED_IN"


@pytest.mark.asyncio
async def test_update_profile_with_session_cookie(api):
    stored = seed_active(api)
    async with api.client() as client:
        await client.post("/v1/users/signin", json={"account": "a@b.com", "password": "secret1"})
        updated = await client.patch("/v1/users/me", json={"nickName": "Alan", "city": "Hangzhou"})
        refused = await client.patch("/v1/users/me", json={"account": "other@b.com"})
        refused_password = await client.patch("/v1/users/me", json={"password": "newsecret"})

    assert updated.status_code == 200
    assert updated.json() == {"matched": 1, "modified": 1}
    assert api.repository.accounts[stored.account_id].nick_name == "Alan"
    assert refused.status_code == 403
    assert refused.headers["X-Error"] == "FIELD_CHANGE_NOT_ALLOWED"
    assert refused_password.status_code == 403
    assert api.repository.accounts[stored.account_id].account == "a@b.com"
    assert api.repository.accounts[stored.account_id].hashed_password == hash_password("secret1")


@pytest.mark.asyncio
async def test_update_profile_with_bearer_token(api):
    stored = seed_active(api)
    async with api.client() as client:
        signin = await client.post("/v1/users/signin", json={"account": "a@b.com", "password": "secret1"})
        token = signin.json()["accessToken"]
        client.cookies.clear()
        response = await client.patch(
            "/v1/users/me",
            json={"avatar": "http://img/1"},
            headers={"Authorization": f"Bearer {token}"},
        )
        rejected = await client.patch(
            "/v1/users/me", json={"avatar": "x"}, headers={"Authorization": "Bearer not-a-jwt"}
        )

    assert response.status_code == 200
    assert api.repository.accounts[stored.account_id].avatar == "http://img/1"
    assert rejected.status_code == 401


@pytest.mark.asyncio
async def test_federation_callback_creates_account_and_redirects(api):
    async with api.client() as client:
        response = await client.get("/v1/auth/qq/callback", params={"code": "c1"})

    assert response.status_code == 302
    assert response.headers["location"] == get_settings().federation_success_url
    assert get_settings().session_cookie_name in response.cookies
    accounts = list(api.repository.accounts.values())
    assert len(accounts) == 1
    assert accounts[0].open_id == "oq1"
    assert accounts[0].type == AccountType.QQ
    assert accounts[0].is_active is True
    assert await api.session_count() == 1


@pytest.mark.asyncio
async def test_federation_login_round_trip_checks_state(api):
    async with api.client() as client:
        start = await client.get("/v1/auth/qq")
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
        mismatch = await client.get("/v1/auth/qq/callback", params={"code": "c1", "state": "forged"})
        callback = await client.get("/v1/auth/qq/callback", params={"code": "c1", "state": state})

    assert start.status_code == 302
    assert start.headers["location"].startswith("https://provider.test/authorize")
    assert mismatch.status_code == 403
    assert mismatch.headers["X-Error"] == "OAUTH_STATE_MISMATCH"
    assert callback.status_code == 302
    assert len(api.repository.accounts) == 1


@pytest.mark.asyncio
async def test_federation_callback_requires_code(api):
    async with api.client() as client:
        response = await client.get("/v1/auth/qq/callback")

    assert response.status_code == 403
    assert response.headers["X-Error"] == "OAUTH_ERROR"


@pytest.mark.asyncio
async def test_federation_provider_failure_is_a_server_error(api):
    api.provider.token_error = ProviderTokenError("code is reused")
    async with api.client() as client:
        response = await client.get("/v1/auth/qq/callback", params={"code": "c1"})

    assert response.status_code == 500
    assert response.headers["X-Error"] == "PROVIDER_ERROR"
    assert response.json() == {"result": False, "msg": "PROVIDER_ERROR"}
    assert api.repository.find_one_calls == 0


@pytest.mark.asyncio
async def test_federation_store_failure_yields_one_error_response(api):
    api.repository.find_one_error = StoreError("db down")
    async with api.client() as client:
        response = await client.get("/v1/auth/qq/callback", params={"code": "c1"})

    assert response.status_code == 500
    assert response.headers["X-Error"] == "STORE_ERROR"
    assert "db down" not in response.text
    assert api.provider.profile_finished.is_set()
    assert await api.session_count() == 0


@pytest.mark.asyncio
async def test_unique_endpoint_normalises_the_handle_like_signup(api):
    async with api.client() as client:
        signup = await client.post(
            "/v1/users/signup",
            json={"account": "al@Example.COM", "nickName": "Al", "password": "secret1"},
        )
        taken = await client.get("/v1/users/unique", params={"account": "al@Example.COM"})
        invalid = await client.get("/v1/users/unique", params={"account": "not-an-email"})
    await api.background.drain()

    assert signup.status_code == 200
    assert [account.account for account in api.repository.accounts.values()] == ["al@example.com"]
    assert taken.status_code == 403
    assert taken.headers["X-Error"] == "ACCOUNT_IS_EXIST"
    assert invalid.status_code == 403
    assert invalid.json()["msg"] == {"account": "ACCOUNT_REQUIRED&MUST_BE_EMAIL"}


@pytest.mark.asyncio
async def test_non_object_bodies_are_validation_errors(api):
    async with api.client() as client:
        array_body = await client.post("/v1/users/signup", json=["a@b.com", "Al", "secret1"])
        malformed = await client.post(
            "/v1/users/signin",
            content=b'{"account": "a@b.com",',
            headers={"Content-Type": "application/json"},
        )

    assert array_body.status_code == 403
    assert array_body.headers["X-Error"] == "REGISTER_ERROR"
    assert malformed.status_code == 403
    assert malformed.headers["X-Error"] == "LOGIN_ERROR"
    assert malformed.json()["result"] is False
    assert api.repository.create_calls == 0


@pytest.mark.asyncio
async def test_concurrent_federation_callbacks_both_sign_in(api):
    async with api.client() as client:
        first, second = await asyncio.gather(
            client.get("/v1/auth/qq/callback", params={"code": "c1"}),
            client.get("/v1/auth/qq/callback", params={"code": "c2"}),
        )

    assert (first.status_code, second.status_code) == (302, 302)
    assert len(api.repository.accounts) == 1
    assert await api.session_count() == 2
