from __future__ import annotations

import hashlib
import hmac
import json
import time
import unittest
from unittest.mock import MagicMock, patch

import requests

from dropcart.integrations.common import IntegrationCallError
from dropcart.integrations.payments.base import CheckoutLine
from dropcart.integrations.payments.factory import build_payments_provider, payment_health
from dropcart.integrations.payments.stripe_provider import StripePaymentsProvider, flatten_form
from dropcart.utils.settings import IntegrationSettings


def _response(status: int, body: dict):
    res = MagicMock()
    res.status_code = status
    res.content = json.dumps(body).encode("utf-8")
    res.json.return_value = body
    return res


class StripeProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = StripePaymentsProvider(secret_key="sk_test_123", webhook_secret="whsec_abc")

    def test_flatten_form_nests_like_stripe(self):
        pairs = flatten_form({"line_items": [{"quantity": 2, "price_data": {"unit_amount": 1250}}], "flag": True, "skip": None})
        self.assertIn(("line_items[0][quantity]", "2"), pairs)
        self.assertIn(("line_items[0][price_data][unit_amount]", "1250"), pairs)
        self.assertIn(("flag", "true"), pairs)
        self.assertNotIn("skip", [k for k, _ in pairs])

    @patch("dropcart.integrations.payments.stripe_provider.requests.request")
    def test_checkout_session_goes_to_connected_account(self, mock_request):
        mock_request.return_value = _response(200, {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"})
        session = self.provider.create_checkout_session(
            account_id="acct_42",
            lines=[CheckoutLine(name="Pizza", unit_amount_minor=1250, quantity=2)],
            currency="usd",
            application_fee_minor=250,
            success_url="https://shop.test/ok",
            cancel_url="https://shop.test/cancel",
            metadata={"tenant_id": 1},
        )
        self.assertEqual(session.session_id, "cs_test_1")
        self.assertEqual(session.url, "https://checkout.stripe.com/c/cs_test_1")
        args, kwargs = mock_request.call_args
        self.assertEqual(args[0], "POST")
        self.assertTrue(args[1].endswith("/checkout/sessions"))
        self.assertEqual(kwargs["headers"]["Stripe-Account"], "acct_42")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test_123")
        self.assertIn(("payment_intent_data[application_fee_amount]", "250"), kwargs["data"])
        self.assertIn(("line_items[0][price_data][currency]", "usd"), kwargs["data"])

    @patch("dropcart.integrations.payments.stripe_provider.requests.request")
    def test_error_codes_are_mapped(self, mock_request):
        mock_request.return_value = _response(401, {"error": {"message": "bad key"}})
        with self.assertRaises(IntegrationCallError) as ctx:
            self.provider.retrieve_account("acct_42")
        self.assertEqual(ctx.exception.code, "STRIPE_AUTH_FAILED")
        self.assertEqual(ctx.exception.status, 401)

        mock_request.return_value = _response(400, {"error": {"type": "invalid_request_error", "message": "nope"}})
        with self.assertRaises(IntegrationCallError) as ctx:
            self.provider.create_account(email="m@dropcart.test")
        self.assertEqual(ctx.exception.code, "STRIPE_INVALID_REQUEST")

        mock_request.side_effect = requests.ConnectionError("down")
        with self.assertRaises(IntegrationCallError) as ctx:
            self.provider.retrieve_account("acct_42")
        self.assertEqual(ctx.exception.code, "STRIPE_PROVIDER_DOWN")

    def _signed(self, payload: bytes, *, secret: str = "whsec_abc", ts: int | None = None) -> str:
        ts = int(ts if ts is not None else time.time())
        digest = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    def test_webhook_signature_verification(self):
        payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}).encode("utf-8")
        event = self.provider.verify_webhook(payload=payload, signature=self._signed(payload))
        self.assertEqual(event.event_id, "evt_1")
        self.assertEqual(event.data["id"], "cs_1")

        for bad in (None, "t=1", self._signed(payload, secret="whsec_other")):
            with self.assertRaises(IntegrationCallError):
                self.provider.verify_webhook(payload=payload, signature=bad)

        with self.assertRaises(IntegrationCallError) as ctx:
            self.provider.verify_webhook(payload=payload, signature=self._signed(payload, ts=int(time.time()) - 3600))
        self.assertEqual(ctx.exception.code, "WEBHOOK_SIGNATURE_EXPIRED")


class PaymentsFactoryTestCase(unittest.TestCase):
    def test_mock_by_default(self):
        provider = build_payments_provider(IntegrationSettings())
        self.assertEqual(provider.name, "mock")

    def test_stripe_requires_secret(self):
        settings = IntegrationSettings(payments_provider="stripe")
        with patch.dict("os.environ", {"STRIPE_SECRET_KEY": "", "STRIPE_WEBHOOK_SECRET": ""}):
            self.assertEqual(payment_health(settings)["missing"], ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"])
            with self.assertRaises(Exception) as ctx:
                build_payments_provider(settings)
            self.assertIn("STRIPE_SECRET_KEY", str(ctx.exception))
        with patch.dict("os.environ", {"STRIPE_SECRET_KEY": "sk_test_1"}):
            self.assertEqual(build_payments_provider(settings).name, "stripe")


if __name__ == "__main__":
    unittest.main()
