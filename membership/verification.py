"""
membership/verification.py -- Outbound calls made while accepting an access request.

TurnstileVerifier checks the bot-challenge token with Cloudflare's siteverify
endpoint. A failed or unreachable verification stops the submission.

FormRelay forwards an accepted submission to a Formspree form so the site
owners get an email. It is best-effort: failures are logged and never reach
the applicant.

Both share one requests.Session for connection pooling, with an explicit
timeout on every call and a low redirect ceiling.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from core.config import Settings, get_settings
from core.errors import ExternalServiceFailure

logger = logging.getLogger("membership.verification")

FORMSPREE_URL = "https://formspree.io/f/{form_id}"


def _new_session() -> requests.Session:
    session = requests.Session()
    session.max_redirects = 3
    return session


class TurnstileVerifier:
    """Validates Turnstile tokens. Disabled when no secret key is configured."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or get_settings()
        self.session = session or _new_session()

    @property
    def enabled(self) -> bool:
        return self.settings.bot_verification_enabled

    def verify(self, token: str, remote_ip: Optional[str] = None) -> None:
        """Raise ExternalServiceFailure unless the token is accepted.

        Returns without a network call when verification is disabled.
        """
        if not self.enabled:
            return
        if not token:
            raise ExternalServiceFailure("Please complete the verification challenge.")

        payload = {"secret": self.settings.turnstile_secret_key, "response": token}
        if remote_ip:
            payload["remoteip"] = remote_ip
        try:
            resp = self.session.post(
                self.settings.turnstile_verify_url,
                data=payload,
                timeout=self.settings.outbound_timeout_seconds,
            )
            resp.raise_for_status()
            outcome = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Turnstile verification request failed: %s", e)
            raise ExternalServiceFailure("Verification service unavailable. Please try again.") from e

        if not isinstance(outcome, dict):
            logger.warning("Turnstile returned a non-object body: %r", outcome)
            raise ExternalServiceFailure("Verification service unavailable. Please try again.")
        if not outcome.get("success"):
            logger.info("Turnstile rejected token: %s", outcome.get("error-codes", []))
            raise ExternalServiceFailure("Verification failed. Please try again.")


class FormRelay:
    """Forwards submissions to Formspree. Disabled when no form id is configured."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or get_settings()
        self.session = session or _new_session()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.formspree_form_id)

    def relay(self, fields: dict[str, Any]) -> bool:
        """POST the submission as JSON. Returns True on a 2xx response."""
        if not self.enabled:
            return False
        url = FORMSPREE_URL.format(form_id=self.settings.formspree_form_id)
        try:
            resp = self.session.post(
                url,
                json=fields,
                headers={"Accept": "application/json"},
                timeout=self.settings.outbound_timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Form relay failed: %s", e)
            return False
        return True
