from __future__ import annotations

import hashlib
import hmac
import json
import time

import requests

from dropcart.integrations.common import IntegrationCallError
from dropcart.integrations.payments.base import (
    AccountLinkResult,
    CheckoutLine,
    CheckoutSessionResult,
    ConnectedAccount,
    PaymentsProvider,
    WebhookEventData,
)

STRIPE_API_BASE = "https://api.stripe.com/v1"
SIGNATURE_TOLERANCE_SECONDS = 300


def flatten_form(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested dicts/lists the way Stripe's form API expects (a[b][0][c]=v)."""
    out: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            out.extend(flatten_form(value, name))
        elif isinstance(value, (list, tuple)):
            for idx, entry in enumerate(value):
                if isinstance(entry, dict):
                    out.extend(flatten_form(entry, f"{name}[{idx}]"))
                else:
                    out.append((f"{name}[{idx}]", str(entry)))
        elif isinstance(value, bool):
            out.append((name, "true" if value else "false"))
        else:
            out.append((name, str(value)))
    return out


def _map_stripe_error(status: int, body: dict) -> str:
    err = (body or {}).get("error") or {}
    if status in (401, 403):
        return "STRIPE_AUTH_FAILED"
    if status == 429:
        return "STRIPE_RATE_LIMITED"
    if status >= 500:
        return "STRIPE_PROVIDER_DOWN"
    if (err.get("type") or "") == "invalid_request_error":
        return "STRIPE_INVALID_REQUEST"
    return "STRIPE_REQUEST_FAILED"


class StripePaymentsProvider(PaymentsProvider):
    name = "stripe"

    def __init__(self, *, secret_key: str, webhook_secret: str = "", timeout: int = 25):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def _request(self, method: str, path: str, *, data: dict | None = None, account_id: str = "") -> dict:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if account_id:
            headers["Stripe-Account"] = account_id
        try:
            r = requests.request(
                method,
                f"{STRIPE_API_BASE}{path}",
                headers=headers,
                data=flatten_form(data or {}),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise IntegrationCallError("STRIPE_PROVIDER_DOWN", str(exc))
        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = {}
        if r.status_code < 200 or r.status_code >= 300:
            msg = (((body or {}).get("error") or {}).get("message") or f"HTTP {r.status_code}").strip()
            raise IntegrationCallError(_map_stripe_error(r.status_code, body), msg, status=r.status_code)
        return body if isinstance(body, dict) else {"payload": body}

    @staticmethod
    def _account(body: dict) -> ConnectedAccount:
        return ConnectedAccount(
            account_id=str(body.get("id") or ""),
            details_submitted=bool(body.get("details_submitted")),
            charges_enabled=bool(body.get("charges_enabled")),
            provider="stripe",
            raw=body,
        )

    def create_account(self, *, email: str = "", metadata: dict | None = None) -> ConnectedAccount:
        payload = {"type": "standard", "metadata": metadata or {}}
        if email:
            payload["email"] = email
        return self._account(self._request("POST", "/accounts", data=payload))

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> AccountLinkResult:
        body = self._request(
            "POST",
            "/account_links",
            data={
                "account": account_id,
                "refresh_url": refresh_url,
                "return_url": return_url,
                "type": "account_onboarding",
            },
        )
        return AccountLinkResult(url=(body.get("url") or "").strip(), provider=self.name, raw=body)

    def retrieve_account(self, account_id: str) -> ConnectedAccount:
        return self._account(self._request("GET", f"/accounts/{account_id}"))

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
        payload = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [
                {
                    "quantity": int(line.quantity),
                    "price_data": {
                        "currency": currency,
                        "unit_amount": int(line.unit_amount_minor),
                        "product_data": {"name": line.name, "metadata": {"description": line.description}},
                    },
                }
                for line in lines
            ],
            "payment_intent_data": {"application_fee_amount": int(application_fee_minor)},
            "metadata": metadata or {},
        }
        if customer_email:
            payload["customer_email"] = customer_email
        body = self._request("POST", "/checkout/sessions", data=payload, account_id=account_id)
        return CheckoutSessionResult(
            session_id=str(body.get("id") or ""),
            url=(body.get("url") or "").strip(),
            provider=self.name,
            raw=body,
        )

    def verify_webhook(self, *, payload: bytes, signature: str | None) -> WebhookEventData:
        if not self.webhook_secret:
            raise IntegrationCallError("STRIPE_WEBHOOK_SECRET_MISSING")
        parts = {}
        for chunk in (signature or "").split(","):
            key, _, value = chunk.strip().partition("=")
            parts.setdefault(key, []).append(value)
        timestamp = (parts.get("t") or [""])[0]
        candidates = parts.get("v1") or []
        if not timestamp or not candidates:
            raise IntegrationCallError("WEBHOOK_SIGNATURE_INVALID")
        signed = f"{timestamp}.".encode("utf-8") + (payload or b"")
        expected = hmac.new(self.webhook_secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        if not any(hmac.compare_digest(expected, c) for c in candidates):
            raise IntegrationCallError("WEBHOOK_SIGNATURE_INVALID")
        try:
            if abs(time.time() - int(timestamp)) > SIGNATURE_TOLERANCE_SECONDS:
                raise IntegrationCallError("WEBHOOK_SIGNATURE_EXPIRED")
        except ValueError:
            raise IntegrationCallError("WEBHOOK_SIGNATURE_INVALID")
        try:
            event = json.loads(payload)
        except ValueError:
            raise IntegrationCallError("WEBHOOK_INVALID_PAYLOAD")
        return WebhookEventData(
            event_id=str(event.get("id") or ""),
            event_type=str(event.get("type") or ""),
            data=((event.get("data") or {}).get("object") or {}),
            account_id=str(event.get("account") or ""),
            raw=event,
        )
