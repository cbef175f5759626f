from __future__ import annotations

import os

from dropcart.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from dropcart.integrations.messaging.base import MessagingProvider
from dropcart.integrations.messaging.mock_provider import MockMessagingProvider
from dropcart.integrations.messaging.smtp_provider import SmtpMessagingProvider, smtp_health


def build_messaging_provider(settings) -> MessagingProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:email")

    provider = (getattr(settings, "notifications_provider", "mock") or "mock").strip().lower()
    if provider == "mock":
        return MockMessagingProvider()
    if provider != "smtp":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:notifications_provider={provider}")

    missing = smtp_health()["missing"]
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    try:
        port = int((os.getenv("SMTP_PORT") or "587").strip())
    except ValueError:
        port = 587
    return SmtpMessagingProvider(
        host=os.getenv("SMTP_HOST", "").strip(),
        port=port,
        sender=os.getenv("SMTP_FROM", "").strip(),
        user=(os.getenv("SMTP_USER") or "").strip(),
        password=(os.getenv("SMTP_PASS") or "").strip(),
        reply_to=(os.getenv("SMTP_REPLY_TO") or "").strip(),
        starttls=(os.getenv("SMTP_STARTTLS") or "1").strip().lower() in ("1", "true", "yes", "on"),
    )


def messaging_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "notifications_provider", "mock") or "mock").strip().lower()
    missing = smtp_health()["missing"] if provider == "smtp" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
