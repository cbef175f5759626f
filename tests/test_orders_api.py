from __future__ import annotations

import os
import shutil
import tempfile
import threading
import unittest
from unittest.mock import patch

from dropcart.extensions import db
from dropcart.integrations.common import IntegrationCallError
from dropcart.models import InventoryAdjustment, Item, Notification, Order, OrderTransition

from storefront_case import StorefrontTestCase


class _FailingGateway:
    name = "broken"

    def create_checkout_session(self, **kwargs):
        raise IntegrationCallError("STRIPE_PROVIDER_DOWN", "timeout")


class OrdersApiTestCase(StorefrontTestCase):
    def _payload(self, slug: str, item_id: int, quantity: int = 2, **extra) -> dict:
        payload = {
            "tenant_slug": slug,
            "items": [{"item_id": item_id, "quantity": quantity}],
            "order_type": "delivery",
            "payment_method": "card",
            "delivery_address": self.delivery_address(),
        }
        payload.update(extra)
        return payload

    def _seed(self, *, inventory: int = 5, price: str = "12.50", **tenant_kwargs) -> dict:
        with self.app.app_context():
            store = self.seed_store(**tenant_kwargs)
            store["item_id"] = self.seed_item(store["tenant_id"], price=price, inventory=inventory)
        return store

    def test_place_card_delivery_order(self):
        store = self._seed()
        res = self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"]), headers=self.auth(store["customer_id"]))
        self.assertEqual(res.status_code, 201)
        order = res.get_json()["order"]
        self.assertEqual(order["status"], "pending")
        self.assertEqual(order["payment_status"], "unpaid")
        self.assertEqual(order["subtotal"], 25.0)
        self.assertEqual(order["delivery_fee"], 3.0)
        self.assertEqual(order["total"], 28.0)
        self.assertEqual(order["distance_km"], 1.1)
        self.assertTrue(order["checkout_url"].startswith("https://example.com/mock/checkout?session=cs_mock_"))
        self.assertEqual(order["lines"][0]["line_total"], 25.0)

        with self.app.app_context():
            self.assertEqual(db.session.get(Item, store["item_id"]).inventory, 3)
            self.assertEqual(InventoryAdjustment.query.filter_by(order_id=order["id"], reason="sale").count(), 1)
            self.assertEqual(OrderTransition.query.filter_by(order_id=order["id"], to_status="pending").count(), 1)
            kinds = sorted(n.kind for n in Notification.query.filter_by(order_id=order["id"]).all())
            self.assertEqual(kinds, ["new_order", "order_confirmation"])

    def test_pickup_cash_order_skips_delivery_rules(self):
        store = self._seed(price="5.00")
        payload = self._payload(store["slug"], store["item_id"], quantity=1, order_type="pickup", payment_method="cash")
        payload.pop("delivery_address")
        res = self.client.post("/api/orders", json=payload, headers=self.auth(store["customer_id"]))
        self.assertEqual(res.status_code, 201)
        order = res.get_json()["order"]
        self.assertEqual(order["delivery_fee"], 0.0)
        self.assertEqual(order["total"], 5.0)
        self.assertEqual(order["checkout_url"], "")
        self.assertIsNone(order["delivery_address"])

    def test_last_unit_sells_once(self):
        store = self._seed(inventory=1, price="25.00")
        with self.app.app_context():
            second_customer = self.seed_user("customer")
        first = self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"], quantity=1), headers=self.auth(store["customer_id"]))
        second = self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"], quantity=1), headers=self.auth(second_customer))
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 400)
        body = second.get_json()
        self.assertEqual(body["error"], "BAD_REQUEST")
        self.assertEqual(body["code"], "INSUFFICIENT_INVENTORY")
        with self.app.app_context():
            self.assertEqual(db.session.get(Item, store["item_id"]).inventory, 0)
            self.assertEqual(Order.query.count(), 1)

    def test_outside_radius_and_minimum_are_rejected(self):
        store = self._seed()
        far = self._payload(store["slug"], store["item_id"], delivery_address=self.delivery_address(lat_offset=0.1))
        res = self.client.post("/api/orders", json=far, headers=self.auth(store["customer_id"]))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "OUTSIDE_DELIVERY_RADIUS")

        small = self._payload(store["slug"], store["item_id"], quantity=1)
        res = self.client.post("/api/orders", json=small, headers=self.auth(store["customer_id"]))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "BELOW_MINIMUM_ORDER")
        with self.app.app_context():
            self.assertEqual(Order.query.count(), 0)
            self.assertEqual(db.session.get(Item, store["item_id"]).inventory, 5)

    def test_unverified_and_inactive_merchants_refuse_orders(self):
        unverified = self._seed(verified=False)
        res = self.client.post(
            "/api/orders",
            json=self._payload(unverified["slug"], unverified["item_id"]),
            headers=self.auth(unverified["customer_id"]),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "MERCHANT_NOT_VERIFIED")

        inactive = self._seed(active=False)
        res = self.client.post(
            "/api/orders",
            json=self._payload(inactive["slug"], inactive["item_id"]),
            headers=self.auth(inactive["customer_id"]),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "MERCHANT_NOT_ACCEPTING_ORDERS")

    def test_foreign_item_is_not_found(self):
        store = self._seed()
        other = self._seed()
        res = self.client.post("/api/orders", json=self._payload(store["slug"], other["item_id"]), headers=self.auth(store["customer_id"]))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["code"], "ITEM_NOT_FOUND")

    def test_gateway_failure_leaves_no_order_or_stock_change(self):
        store = self._seed()
        with patch("dropcart.services.checkout_service._provider", return_value=_FailingGateway()):
            res = self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"]), headers=self.auth(store["customer_id"]))
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body["error"], "INTERNAL")
        self.assertEqual(body["code"], "CHECKOUT_SESSION_FAILED")
        with self.app.app_context():
            self.assertEqual(Order.query.count(), 0)
            self.assertEqual(InventoryAdjustment.query.count(), 0)
            self.assertEqual(db.session.get(Item, store["item_id"]).inventory, 5)

    def test_idempotency_key_replays_and_conflicts(self):
        store = self._seed()
        headers = {**self.auth(store["customer_id"]), "Idempotency-Key": "order-attempt-1"}
        payload = self._payload(store["slug"], store["item_id"])
        first = self.client.post("/api/orders", json=payload, headers=headers)
        replay = self.client.post("/api/orders", json=payload, headers=headers)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(replay.status_code, 201)
        self.assertEqual(first.get_json()["order"]["id"], replay.get_json()["order"]["id"])

        changed = self._payload(store["slug"], store["item_id"], quantity=3)
        conflict = self.client.post("/api/orders", json=changed, headers=headers)
        self.assertEqual(conflict.status_code, 409)
        with self.app.app_context():
            self.assertEqual(Order.query.count(), 1)
            self.assertEqual(db.session.get(Item, store["item_id"]).inventory, 3)

    def test_failed_request_frees_idempotency_key(self):
        store = self._seed()
        headers = {**self.auth(store["customer_id"]), "Idempotency-Key": "order-attempt-2"}
        payload = self._payload(store["slug"], store["item_id"], quantity=9)
        self.assertEqual(self.client.post("/api/orders", json=payload, headers=headers).status_code, 400)
        with self.app.app_context():
            item = db.session.get(Item, store["item_id"])
            item.inventory = 20
            db.session.commit()
        self.assertEqual(self.client.post("/api/orders", json=payload, headers=headers).status_code, 201)

    def test_order_detail_and_status_updates(self):
        store = self._seed()
        created = self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"]), headers=self.auth(store["customer_id"]))
        order_id = created.get_json()["order"]["id"]

        detail = self.client.get(f"/api/orders/{order_id}", headers=self.auth(store["customer_id"]))
        self.assertEqual(detail.status_code, 200)
        body = detail.get_json()["order"]
        self.assertEqual(body["tenant"]["slug"], store["slug"])
        self.assertEqual(body["timeline"][0]["state"], "current")
        self.assertEqual(body["status_message"], "Your order has been placed and is pending confirmation")

        denied = self.client.post(f"/api/orders/{order_id}/status", json={"status": "confirmed"}, headers=self.auth(store["customer_id"]))
        self.assertEqual(denied.status_code, 403)

        moved = self.client.post(f"/api/orders/{order_id}/status", json={"status": "preparing"}, headers=self.auth(store["merchant_id"]))
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.get_json()["order"]["status"], "preparing")
        self.assertEqual([s["state"] for s in moved.get_json()["timeline"]][:3], ["completed", "completed", "current"])

        back = self.client.post(f"/api/orders/{order_id}/status", json={"status": "confirmed"}, headers=self.auth(store["merchant_id"]))
        self.assertEqual(back.status_code, 400)
        self.assertEqual(back.get_json()["code"], "INVALID_STATUS_TRANSITION")

        cancelled = self.client.post(f"/api/orders/{order_id}/cancel", json={"reason": "changed my mind"}, headers=self.auth(store["customer_id"]))
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.get_json()["order"]["status"], "cancelled")

        again = self.client.post(f"/api/orders/{order_id}/cancel", headers=self.auth(store["customer_id"]))
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.get_json()["code"], "ORDER_FINALIZED")

    def test_my_orders_are_paginated(self):
        store = self._seed(inventory=50)
        for _ in range(3):
            self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"]), headers=self.auth(store["customer_id"]))
        res = self.client.get("/api/orders?limit=2", headers=self.auth(store["customer_id"]))
        body = res.get_json()
        self.assertEqual(body["total"], 3)
        self.assertEqual(len(body["docs"]), 2)
        self.assertTrue(body["has_next_page"])
        self.assertEqual(body["total_pages"], 2)

    def test_requires_authentication(self):
        store = self._seed()
        res = self.client.post("/api/orders", json=self._payload(store["slug"], store["item_id"]))
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "UNAUTHORIZED")


class ConcurrentCheckoutTestCase(StorefrontTestCase):
    """Two buyers racing for the last unit against a file-backed database."""

    @classmethod
    def setUpClass(cls):
        cls._db_dir = tempfile.mkdtemp(prefix="dropcart-race-")
        db_path = os.path.join(cls._db_dir, "race.db").replace(os.sep, "/")
        cls.ENV_OVERRIDES = {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}"}
        super().setUpClass()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.engine.dispose()
        super().tearDownClass()
        shutil.rmtree(cls._db_dir, ignore_errors=True)

    def test_parallel_buyers_split_the_last_unit(self):
        with self.app.app_context():
            store = self.seed_store()
            item_id = self.seed_item(store["tenant_id"], price="25.00", inventory=1)
            buyers = [store["customer_id"], self.seed_user("customer")]

        payload = {
            "tenant_slug": store["slug"],
            "items": [{"item_id": item_id, "quantity": 1}],
            "order_type": "delivery",
            "payment_method": "cash",
            "delivery_address": self.delivery_address(),
        }
        barrier = threading.Barrier(len(buyers))
        responses = []
        lock = threading.Lock()

        def buy(user_id):
            client = self.app.test_client()
            headers = self.auth(user_id)
            barrier.wait(timeout=10)
            res = client.post("/api/orders", json=payload, headers=headers)
            with lock:
                responses.append((res.status_code, res.get_json()))

        threads = [threading.Thread(target=buy, args=(user_id,)) for user_id in buyers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        statuses = sorted(status for status, _ in responses)
        self.assertEqual(statuses, [201, 400], responses)
        rejected = next(body for status, body in responses if status == 400)
        self.assertEqual(rejected["code"], "INSUFFICIENT_INVENTORY")
        with self.app.app_context():
            self.assertEqual(db.session.get(Item, item_id).inventory, 0)
            self.assertEqual(Order.query.count(), 1)
            self.assertEqual(InventoryAdjustment.query.filter_by(item_id=item_id, reason="sale").count(), 1)


if __name__ == "__main__":
    unittest.main()
