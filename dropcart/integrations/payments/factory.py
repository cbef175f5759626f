from __future__ import annotations

import os

from dropcart.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from dropcart.integrations.payments.base import PaymentsProvider
from dropcart.integrations.payments.mock_provider import MockPaymentsProvider
from dropcart.integrations.payments.stripe_provider import StripePaymentsProvider


def build_payments_provider(settings) -> PaymentsProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if provider == "mock":
        return MockPaymentsProvider()

    if provider != "stripe":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing STRIPE_SECRET_KEY")

    return StripePaymentsProvider(
        secret_key=secret_key,
        webhook_secret=(os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
    )


def payment_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()
    missing = []
    if mode != "disabled" and provider == "stripe":
        if not (os.getenv("STRIPE_SECRET_KEY") or "").strip():
            missing.append("STRIPE_SECRET_KEY")
        if not (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip():
            missing.append("STRIPE_WEBHOOK_SECRET")
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
