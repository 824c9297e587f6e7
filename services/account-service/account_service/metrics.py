"""Metrics facade.

Service code only calls the semantic helpers here.
"""

from __future__ import annotations

from prometheus_client import Counter

_SIGNUPS = Counter("account_signups_total", "Local accounts registered")
_ACTIVATION_EMAILS = Counter(
    "account_activation_emails_total", "Activation email dispatch attempts", ["outcome"]
)
_ACTIVATIONS = Counter("account_activations_total", "Accounts activated")
_SIGNINS = Counter("account_signins_total", "Local sign-in attempts", ["outcome"])
_FEDERATION_LOGINS = Counter(
    "account_federation_logins_total", "Federated login callbacks", ["provider", "outcome"]
)


def record_signup() -> None:
    _SIGNUPS.inc()


def record_activation_email(outcome: str) -> None:
    _ACTIVATION_EMAILS.labels(outcome=outcome).inc()


def record_activation() -> None:
    _ACTIVATIONS.inc()


def record_signin(outcome: str) -> None:
    _SIGNINS.labels(outcome=outcome).inc()


def record_federation_login(provider: str, outcome: str) -> None:
    _FEDERATION_LOGINS.labels(provider=provider, outcome=outcome).inc()
