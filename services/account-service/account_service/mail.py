"""Activation email delivery through Resend."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from html import escape as html_escape
from typing import Any

import resend

from .domain.account import Account
from .domain.errors import MailDeliveryError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeliveryInfo:
    """Provider acknowledgement for a sent message."""

    recipient: str
    message_id: str | None


class ActivationMailer:
    """Send the account activation link to newly registered accounts."""

    subject = "Activate your account"

    def __init__(self, *, api_key: str, from_email: str, public_base_url: str) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._public_base_url = public_base_url.rstrip("/")

    def activation_link(self, account: Account) -> str:
        """Return the public activation URL for ``account``."""
        return f"{self._public_base_url}/v1/users/{account.account_id}/activate"

    async def send_activation_email(self, account: Account) -> DeliveryInfo:
        """Deliver the activation email; raises :class:`MailDeliveryError` on failure."""
        if not self._api_key or not self._from_email:
            raise MailDeliveryError("RESEND_API_KEY and MAIL_FROM must be configured")

        link = self.activation_link(account)
        text_body = (
            f"Hi {account.nick_name},\n\n"
            f"Open the link below to activate your account:\n\n{link}\n\n"
            "If you did not sign up, ignore this message."
        )
        html_body = (
            f"<p>Hi {html_escape(account.nick_name)},</p>"
            f'<p><a href="{html_escape(link)}">Activate your account</a></p>'
            "<p>If you did not sign up, ignore this message.</p>"
        )
        payload: dict[str, Any] = {
            "from": self._from_email,
            "to": [account.account],
            "subject": self.subject,
            "text": text_body,
            "html": html_body,
        }

        try:
            result = await asyncio.to_thread(self._send, payload)
        except Exception as exc:  # noqa: BLE001
            raise MailDeliveryError(f"Resend send failed: {exc}") from exc

        message_id = result.get("id") if isinstance(result, dict) else None
        logger.info("activation email sent: to=%s msg_id=%s", account.account, message_id)
        return DeliveryInfo(recipient=account.account, message_id=message_id)

    def _send(self, payload: dict[str, Any]) -> Any:
        resend.api_key = self._api_key
        return resend.Emails.send(payload)  # type: ignore[arg-type]
