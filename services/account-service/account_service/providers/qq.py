"""QQ Connect implementation of the provider client."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from ..domain.account import AccountType
from ..domain.errors import ProviderProfileError, ProviderTokenError
from .base import AccessToken, ProviderClient, ProviderProfile

logger = logging.getLogger(__name__)


class QQConnectClient(ProviderClient):
    """QQ Connect OAuth 2.0 client.

    Every endpoint is asked for ``fmt=json``; QQ reports errors with HTTP 200
    and an ``error``/``ret`` field in the body, which is checked explicitly.
    """

    account_type = AccountType.QQ

    authorization_endpoint = "https://graph.qq.com/oauth2.0/authorize"
    token_endpoint = "https://graph.qq.com/oauth2.0/token"
    open_id_endpoint = "https://graph.qq.com/oauth2.0/me"
    user_info_endpoint = "https://graph.qq.com/user/get_user_info"
    scopes = ("get_user_info",)

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        app_id: str,
        app_key: str,
        redirect_uri: str,
    ) -> None:
        super().__init__(client)
        self.app_id = app_id
        self.app_key = app_key
        self.redirect_uri = redirect_uri

    def get_authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.app_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": ",".join(self.scopes),
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str) -> AccessToken:
        payload = await self._get_json(
            self.token_endpoint,
            {
                "grant_type": "authorization_code",
                "client_id": self.app_id,
                "client_secret": self.app_key,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "fmt": "json",
            },
            ProviderTokenError,
        )
        self._raise_for_error(payload, ProviderTokenError)
        access_token = payload.get("access_token")
        if not access_token:
            raise ProviderTokenError("no access token in provider response")
        logger.info("qq token exchange succeeded")
        return AccessToken(
            access_token=access_token,
            expires_in=_as_int(payload.get("expires_in")),
            refresh_token=payload.get("refresh_token"),
        )

    async def fetch_open_id(self, access_token: str) -> str:
        payload = await self._get_json(
            self.open_id_endpoint,
            {"access_token": access_token, "fmt": "json"},
            ProviderTokenError,
        )
        self._raise_for_error(payload, ProviderTokenError)
        open_id = payload.get("openid")
        if not open_id:
            raise ProviderTokenError("no openid in provider response")
        return open_id

    async def fetch_profile(self, access_token: str, open_id: str) -> ProviderProfile:
        payload = await self._get_json(
            self.user_info_endpoint,
            {
                "access_token": access_token,
                "oauth_consumer_key": self.app_id,
                "openid": open_id,
                "format": "json",
            },
            ProviderProfileError,
        )
        ret = _as_int(payload.get("ret"))
        if ret not in (None, 0):
            logger.error("qq user info rejected | ret=%s msg=%s", ret, payload.get("msg"))
            raise ProviderProfileError(f"provider rejected profile request: {ret}")
        return self.extract_profile(payload)

    def extract_profile(self, payload: dict[str, Any]) -> ProviderProfile:
        """Map the ``get_user_info`` response onto a :class:`ProviderProfile`."""
        return ProviderProfile(
            nick_name=payload.get("nickname") or "",
            gender=payload.get("gender") or None,
            avatar=payload.get("figureurl_qq_1") or None,
            province=payload.get("province") or None,
            city=payload.get("city") or None,
        )

    def _raise_for_error(self, payload: dict[str, Any], error_cls: type[ProviderTokenError]) -> None:
        if "error" in payload:
            logger.error(
                "qq oauth error | error=%s description=%s",
                payload.get("error"),
                payload.get("error_description"),
            )
            raise error_cls(f"provider error {payload.get('error')}")


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
