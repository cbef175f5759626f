from __future__ import annotations

import unittest

from dropcart.extensions import db
from dropcart.models import InventoryAdjustment, Item, Tenant

from storefront_case import StorefrontTestCase


class CatalogTestCase(StorefrontTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.store = self.seed_store(slug="green-kitchen")
            self.other = self.seed_store(slug="blue-kitchen")
            tid = self.store["tenant_id"]
            self.soup = self.seed_item(tid, name="Tomato Soup", price="6.00", inventory=4)
            self.salad = self.seed_item(tid, name="Green Salad", price="9.50", inventory=0)
            self.bread = self.seed_item(tid, name="Sourdough", price="4.25", inventory=0, track_inventory=False)
            self.secret = self.seed_item(tid, name="Staff Meal", price="1.00")
            self.elsewhere = self.seed_item(self.other["tenant_id"], name="Blue Soup", price="7.00")
            db.session.get(Item, self.secret).is_private = True
            db.session.commit()

    def _names(self, **params):
        res = self.client.get("/api/items", query_string=params)
        self.assertEqual(res.status_code, 200, res.get_json())
        return [d["name"] for d in res.get_json()["docs"]]

    def test_storefront_listing_filters_and_sorts(self):
        self.assertEqual(
            self._names(tenant_slug="green-kitchen", sort="price-low"),
            ["Sourdough", "Tomato Soup", "Green Salad"],
        )
        self.assertEqual(
            self._names(tenant_slug="green-kitchen", sort="price-high"),
            ["Green Salad", "Tomato Soup", "Sourdough"],
        )
        self.assertEqual(sorted(self._names(search="soup")), ["Blue Soup", "Tomato Soup"])
        self.assertEqual(self._names(min_price="5", max_price="7", sort="price-low"), ["Tomato Soup", "Blue Soup"])
        self.assertEqual(
            sorted(self._names(tenant_slug="green-kitchen", only_in_stock="1")),
            ["Sourdough", "Tomato Soup"],
        )

    def test_listing_rejects_bad_input(self):
        res = self.client.get("/api/items", query_string={"sort": "cheapest"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "INVALID_SORT")
        res = self.client.get("/api/items", query_string={"min_price": "lots"})
        self.assertEqual(res.get_json()["code"], "INVALID_FILTER")

    def test_listing_carries_stock_and_review_stats(self):
        res = self.client.get("/api/items", query_string={"tenant_slug": "green-kitchen", "limit": 2, "sort": "price-low"})
        body = res.get_json()
        self.assertEqual(body["total"], 3)
        self.assertEqual(body["total_pages"], 2)
        self.assertTrue(body["has_next_page"])
        first = body["docs"][0]
        self.assertEqual(first["review_stats"], {"count": 0, "average_rating": 0.0})
        self.assertTrue(first["stock"]["is_available"])

    def test_merchant_manages_items(self):
        headers = self.auth(self.store["merchant_id"])
        created = self.client.post(
            "/api/tenants/green-kitchen/items",
            json={"name": "Lentil Stew", "price": "8.40", "business_type": "food", "unit": "box"},
            headers=headers,
        )
        self.assertEqual(created.status_code, 201, created.get_json())
        item = created.get_json()["item"]
        self.assertEqual(item["inventory"], 100)
        self.assertEqual(item["low_stock_threshold"], 10)
        self.assertTrue(item["track_inventory"])
        self.assertEqual(item["unit"], "box")

        patched = self.client.patch(f"/api/items/{item['id']}", json={"price": "9", "description": "Hearty"}, headers=headers)
        self.assertEqual(patched.status_code, 200)
        self.assertEqual(patched.get_json()["item"]["price"], 9.0)

        bad = self.client.patch(f"/api/items/{item['id']}", json={"price": "0"}, headers=headers)
        self.assertEqual(bad.get_json()["code"], "INVALID_PRICE")
        bad = self.client.patch(f"/api/items/{item['id']}", json={"unit": "crate"}, headers=headers)
        self.assertEqual(bad.get_json()["code"], "INVALID_ITEM")

        archived = self.client.post(f"/api/items/{item['id']}/archive", json={}, headers=headers)
        self.assertTrue(archived.get_json()["item"]["is_archived"])
        self.assertNotIn("Lentil Stew", self._names(tenant_slug="green-kitchen"))
        self.assertEqual(self.client.get(f"/api/items/{item['id']}").status_code, 404)

        own = self.client.get("/api/tenants/green-kitchen/items", headers=headers).get_json()
        self.assertNotIn("Lentil Stew", [d["name"] for d in own["docs"]])
        own = self.client.get(
            "/api/tenants/green-kitchen/items", query_string={"include_archived": "1"}, headers=headers
        ).get_json()
        self.assertIn("Lentil Stew", [d["name"] for d in own["docs"]])
        self.assertIn("Staff Meal", [d["name"] for d in own["docs"]])

    def test_stock_edit_through_item_patch_is_ledgered(self):
        headers = self.auth(self.store["merchant_id"])
        res = self.client.patch(f"/api/items/{self.soup}", json={"inventory": 0, "price": "6.50"}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["item"]["inventory"], 0)

        with self.app.app_context():
            rows = InventoryAdjustment.query.filter_by(item_id=self.soup).all()
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0].reason, "adjustment")
            self.assertEqual(rows[0].previous_quantity, 4)
            self.assertEqual(rows[0].new_quantity, 0)
            self.assertEqual(rows[0].delta, -4)
            self.assertEqual(rows[0].actor_user_id, self.store["merchant_id"])

        bad = self.client.patch(f"/api/items/{self.soup}", json={"inventory": -2}, headers=headers)
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.get_json()["code"], "INVALID_QUANTITY")
        unchanged = self.client.patch(f"/api/items/{self.soup}", json={"inventory": 0}, headers=headers)
        self.assertEqual(unchanged.status_code, 200)
        with self.app.app_context():
            self.assertEqual(InventoryAdjustment.query.filter_by(item_id=self.soup).count(), 1)

    def test_unverified_merchant_cannot_edit_items(self):
        with self.app.app_context():
            db.session.get(Tenant, self.store["tenant_id"]).payment_details_submitted = False
            db.session.commit()
        headers = self.auth(self.store["merchant_id"])
        res = self.client.patch(f"/api/items/{self.soup}", json={"price": "1.00"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "MERCHANT_NOT_VERIFIED")
        with self.app.app_context():
            self.assertEqual(float(db.session.get(Item, self.soup).price), 6.0)

    def test_item_detail_includes_store_summary(self):
        res = self.client.get(f"/api/items/{self.soup}")
        item = res.get_json()["item"]
        self.assertEqual(item["tenant"]["slug"], "green-kitchen")
        self.assertIsNone(item["category"])
        self.assertEqual(item["stock"]["inventory"], 4)

    def test_categories(self):
        with self.app.app_context():
            admin = self.seed_user("superadmin")
        merchant = self.auth(self.store["merchant_id"])

        refused = self.client.post("/api/categories", json={"name": "Soups", "slug": "soups"}, headers=merchant)
        self.assertEqual(refused.status_code, 403)

        root = self.client.post(
            "/api/categories", json={"name": "Meals", "slug": "meals", "business_type": "food"}, headers=self.auth(admin)
        )
        self.assertEqual(root.status_code, 201, root.get_json())
        root_id = root.get_json()["category"]["id"]
        child = self.client.post(
            "/api/categories",
            json={"name": "Soups", "slug": "soups", "parent_id": root_id, "business_type": "food"},
            headers=self.auth(admin),
        )
        self.assertEqual(child.status_code, 201)

        own = self.client.post(
            "/api/categories",
            json={"name": "House Specials", "slug": "house-specials", "tenant_slug": "green-kitchen"},
            headers=merchant,
        )
        self.assertEqual(own.status_code, 201)
        dup = self.client.post("/api/categories", json={"name": "Meals", "slug": "meals"}, headers=self.auth(admin))
        self.assertEqual(dup.get_json()["code"], "SLUG_TAKEN")
        bad = self.client.post("/api/categories", json={"name": "X", "slug": "Bad Slug"}, headers=self.auth(admin))
        self.assertEqual(bad.get_json()["code"], "INVALID_SLUG")

        tree = self.client.get("/api/categories").get_json()["categories"]
        self.assertEqual([c["slug"] for c in tree], ["meals"])
        self.assertEqual([c["slug"] for c in tree[0]["subcategories"]], ["soups"])

        scoped = self.client.get("/api/categories", query_string={"tenant_slug": "green-kitchen"}).get_json()["categories"]
        self.assertEqual(sorted(c["slug"] for c in scoped), ["house-specials", "meals"])

        soups_id = child.get_json()["category"]["id"]
        self.client.patch(f"/api/items/{self.soup}", json={"category_id": soups_id}, headers=merchant)
        self.assertEqual(self._names(category_slug="soups"), ["Tomato Soup"])


if __name__ == "__main__":
    unittest.main()
