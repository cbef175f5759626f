from __future__ import annotations

import json
import uuid

from dropcart.integrations.common import IntegrationCallError
from dropcart.integrations.payments.base import (
    AccountLinkResult,
    CheckoutLine,
    CheckoutSessionResult,
    ConnectedAccount,
    PaymentsProvider,
    WebhookEventData,
)


class MockPaymentsProvider(PaymentsProvider):
    """Deterministic in-process gateway for sandbox runs and tests.

    New accounts start unsubmitted; retrieving one reports onboarding done
    unless its id ends in ``_pending``.
    Webhook payloads are accepted unsigned.
    """

    name = "mock"

    def create_account(self, *, email: str = "", metadata: dict | None = None) -> ConnectedAccount:
        account_id = f"acct_mock_{uuid.uuid4().hex[:12]}"
        return ConnectedAccount(
            account_id=account_id,
            details_submitted=False,
            provider=self.name,
            raw={"email": email, "metadata": metadata or {}},
        )

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkResult:
        return AccountLinkResult(
            url=f"https://example.com/mock/onboarding?account={account_id}",
            provider=self.name,
            raw={"refresh_url": refresh_url, "return_url": return_url},
        )

    def retrieve_account(self, account_id: str) -> ConnectedAccount:
        submitted = not (account_id or "").endswith("_pending")
        return ConnectedAccount(
            account_id=account_id,
            details_submitted=submitted,
            charges_enabled=submitted,
            provider=self.name,
        )

    def create_checkout_session(
        self,
        *,
        account_id: str,
        lines: list[CheckoutLine],
        currency: str,
        application_fee_minor: int,
        success_url: str,
        cancel_url: str,
        metadata: dict | None = None,
        customer_email: str = "",
    ) -> CheckoutSessionResult:
        session_id = f"cs_mock_{uuid.uuid4().hex[:16]}"
        return CheckoutSessionResult(
            session_id=session_id,
            url=f"https://example.com/mock/checkout?session={session_id}",
            provider=self.name,
            raw={
                "account_id": account_id,
                "currency": currency,
                "application_fee_minor": int(application_fee_minor),
                "amount_minor": sum(int(l.unit_amount_minor) * int(l.quantity) for l in lines),
                "metadata": metadata or {},
            },
        )

    def verify_webhook(self, *, payload: bytes, signature: str | None) -> WebhookEventData:
        try:
            event = json.loads(payload or b"{}")
        except ValueError:
            raise IntegrationCallError("WEBHOOK_INVALID_PAYLOAD")
        if not isinstance(event, dict) or not event.get("id"):
            raise IntegrationCallError("WEBHOOK_INVALID_PAYLOAD")
        return WebhookEventData(
            event_id=str(event.get("id")),
            event_type=str(event.get("type") or ""),
            data=((event.get("data") or {}).get("object") or {}),
            account_id=str(event.get("account") or ""),
            raw=event,
        )
