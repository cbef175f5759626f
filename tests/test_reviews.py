from __future__ import annotations

import unittest

from dropcart.services.review_service import _rounded_average

from storefront_case import StorefrontTestCase


class ReviewAverageTestCase(unittest.TestCase):
    def test_average_rounds_half_up_to_one_decimal(self):
        self.assertEqual(_rounded_average(17, 4), 4.3)
        self.assertEqual(_rounded_average(13, 3), 4.3)
        self.assertEqual(_rounded_average(9, 2), 4.5)
        self.assertEqual(_rounded_average(0, 0), 0.0)


class ReviewApiTestCase(StorefrontTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.store = self.seed_store()
            self.item_id = self.seed_item(self.store["tenant_id"], price="25.00", inventory=20)

    def _buy(self, customer_id: int) -> int:
        res = self.client.post(
            "/api/orders",
            json={
                "tenant_slug": self.store["slug"],
                "items": [{"item_id": self.item_id, "quantity": 1}],
                "order_type": "pickup",
                "payment_method": "cash",
            },
            headers=self.auth(customer_id),
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        return res.get_json()["order"]["id"]

    def _review(self, customer_id: int, rating, comment: str = ""):
        return self.client.post(
            f"/api/items/{self.item_id}/reviews",
            json={"rating": rating, "comment": comment},
            headers=self.auth(customer_id),
        )

    def test_review_requires_purchase(self):
        res = self._review(self.store["customer_id"], 5)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json()["code"], "REVIEW_REQUIRES_PURCHASE")

    def test_cancelled_orders_do_not_count_as_purchases(self):
        order_id = self._buy(self.store["customer_id"])
        cancel = self.client.post(
            f"/api/orders/{order_id}/cancel",
            json={"reason": "changed my mind"},
            headers=self.auth(self.store["customer_id"]),
        )
        self.assertEqual(cancel.status_code, 200, cancel.get_json())
        res = self._review(self.store["customer_id"], 4)
        self.assertEqual(res.status_code, 403)

    def test_buyers_review_and_stats_are_aggregated(self):
        ratings = [5, 4, 4, 4]
        for rating in ratings:
            with self.app.app_context():
                buyer = self.seed_user("customer")
            self._buy(buyer)
            res = self._review(buyer, rating, "tasty")
            self.assertEqual(res.status_code, 201, res.get_json())

        listing = self.client.get(f"/api/items/{self.item_id}/reviews")
        self.assertEqual(listing.status_code, 200)
        body = listing.get_json()
        self.assertEqual(body["stats"], {"count": 4, "average_rating": 4.3})
        self.assertEqual(len(body["reviews"]), 4)
        self.assertTrue(all(r["comment"] == "tasty" for r in body["reviews"]))
        self.assertTrue(all(r["user"]["name"] for r in body["reviews"]))

        detail = self.client.get(f"/api/items/{self.item_id}").get_json()["item"]
        self.assertEqual(detail["review_stats"]["average_rating"], 4.3)

    def test_rating_range_is_enforced(self):
        self._buy(self.store["customer_id"])
        for bad in (0, 6, "five", None):
            res = self._review(self.store["customer_id"], bad)
            self.assertEqual(res.status_code, 400)
            self.assertEqual(res.get_json()["code"], "INVALID_RATING")

    def test_unknown_item(self):
        res = self.client.post(
            "/api/items/424242/reviews",
            json={"rating": 5},
            headers=self.auth(self.store["customer_id"]),
        )
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self.client.get("/api/items/424242/reviews").status_code, 404)


if __name__ == "__main__":
    unittest.main()
