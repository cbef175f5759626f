from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CheckoutLine:
    name: str
    unit_amount_minor: int
    quantity: int
    description: str = ""


@dataclass
class CheckoutSessionResult:
    session_id: str
    url: str
    provider: str
    raw: dict | None = None


@dataclass
class ConnectedAccount:
    account_id: str
    details_submitted: bool
    charges_enabled: bool = False
    provider: str = ""
    raw: dict | None = None


@dataclass
class AccountLinkResult:
    url: str
    provider: str
    raw: dict | None = None


@dataclass
class WebhookEventData:
    event_id: str
    event_type: str
    data: dict = field(default_factory=dict)
    account_id: str = ""
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def create_account(self, *, email: str = "", metadata: dict | None = None) -> ConnectedAccount:
        raise NotImplementedError

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkResult:
        raise NotImplementedError

    def retrieve_account(self, account_id: str) -> ConnectedAccount:
        raise NotImplementedError

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
        raise NotImplementedError

    def verify_webhook(self, *, payload: bytes, signature: str | None) -> WebhookEventData:
        raise NotImplementedError
