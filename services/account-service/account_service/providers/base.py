"""Abstract base class for third-party identity providers.

A provider covers the three remote calls federation needs: exchanging an
authorization code for an access token, resolving the provider-scoped user id
("open id") and fetching the profile used to project a local account.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from ..domain.account import AccountType
from ..domain.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccessToken:
    """Token returned by the provider's code exchange."""

    access_token: str
    expires_in: int | None = None
    refresh_token: str | None = None


@dataclass(slots=True)
class ProviderProfile:
    """Provider profile fields copied onto the local account."""

    nick_name: str
    gender: str | None = None
    avatar: str | None = None
    province: str | None = None
    city: str | None = None


class ProviderClient(ABC):
    """OAuth-style provider reached over a shared ``httpx.AsyncClient``."""

    account_type: AccountType

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @abstractmethod
    def get_authorization_url(self, state: str) -> str:
        """Return the provider login URL carrying ``state``."""

    @abstractmethod
    async def exchange_code_for_token(self, code: str) -> AccessToken:
        """Exchange an authorization code for an access token."""

    @abstractmethod
    async def fetch_open_id(self, access_token: str) -> str:
        """Resolve the provider-scoped user identifier for ``access_token``."""

    @abstractmethod
    async def fetch_profile(self, access_token: str, open_id: str) -> ProviderProfile:
        """Fetch the profile of ``open_id``."""

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any],
        error_cls: type[ProviderError],
    ) -> dict[str, Any]:
        """GET ``url`` and decode a JSON object, mapping every failure to ``error_cls``."""
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "provider request failed | url=%s status=%s", url, exc.response.status_code
            )
            raise error_cls(f"provider returned {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.error("provider request failed | url=%s error=%s", url, exc)
            raise error_cls("failed to connect to provider") from exc
        except ValueError as exc:
            logger.error("provider response is not JSON | url=%s", url)
            raise error_cls("provider returned a malformed response") from exc

        if not isinstance(payload, dict):
            raise error_cls("provider returned a malformed response")
        return payload
