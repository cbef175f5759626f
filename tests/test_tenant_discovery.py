from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from dropcart.extensions import db
from dropcart.models import Tenant
from dropcart.models.tenant import WEEKDAYS
from dropcart.services.tenant_service import discover_nearby, is_open_now

from storefront_case import BASE_LAT, BASE_LNG, StorefrontTestCase

MONDAY = datetime(2026, 10, 19)


class OpeningHoursTestCase(unittest.TestCase):
    def test_regular_day(self):
        hours = {"monday": {"open": "09:00", "close": "17:30", "closed": False}}
        self.assertTrue(is_open_now(hours, MONDAY.replace(hour=9)))
        self.assertTrue(is_open_now(hours, MONDAY.replace(hour=17, minute=30)))
        self.assertFalse(is_open_now(hours, MONDAY.replace(hour=17, minute=31)))
        self.assertFalse(is_open_now(hours, MONDAY.replace(hour=8, minute=59)))

    def test_overnight_range(self):
        hours = {"monday": {"open": "22:00", "close": "02:00"}}
        self.assertTrue(is_open_now(hours, MONDAY.replace(hour=23, minute=30)))
        self.assertTrue(is_open_now(hours, MONDAY.replace(hour=1)))
        self.assertFalse(is_open_now(hours, MONDAY.replace(hour=12)))

    def test_closed_or_missing_day(self):
        self.assertFalse(is_open_now({"monday": {"open": "09:00", "close": "17:00", "closed": True}}, MONDAY.replace(hour=10)))
        self.assertFalse(is_open_now({"tuesday": {"open": "09:00", "close": "17:00"}}, MONDAY.replace(hour=10)))
        self.assertFalse(is_open_now({"monday": {"open": "late", "close": "17:00"}}, MONDAY.replace(hour=10)))
        self.assertTrue(is_open_now({}, MONDAY))
        self.assertEqual(WEEKDAYS[MONDAY.weekday()], "monday")


class DiscoveryTestCase(StorefrontTestCase):
    def setUp(self):
        super().setUp()
        with self.app.app_context():
            self.near = self.seed_tenant(slug="near-pizza", lat=BASE_LAT + 0.009)
            self.mid = self.seed_tenant(slug="mid-pharmacy", business_type="pharmacy", lat=BASE_LAT + 0.027)
            self.far = self.seed_tenant(slug="far-grocer", business_type="grocery", lat=BASE_LAT + 0.072)
            self.seed_tenant(slug="closed-down", lat=BASE_LAT + 0.001, active=False)

    def _nearby(self, **params):
        query = {"lat": BASE_LAT, "lng": BASE_LNG, **params}
        return self.client.get("/api/tenants/nearby", query_string=query)

    def test_nearby_lists_deliverable_merchants_nearest_first(self):
        res = self._nearby()
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual([m["slug"] for m in body["merchants"]], ["near-pizza", "mid-pharmacy"])
        self.assertEqual([m["distance_km"] for m in body["merchants"]], [1.0, 3.0])
        self.assertEqual(body["merchants"][0]["estimated_delivery_minutes"], 25 + 3)
        self.assertEqual(body["merchants"][1]["estimated_delivery_minutes"], 10 + 9)
        self.assertEqual(body["search_radius_km"], 20.0)
        self.assertEqual(body["total_found"], 2)

    def test_nearby_filters(self):
        body = self._nearby(max_distance=2).get_json()
        self.assertEqual([m["slug"] for m in body["merchants"]], ["near-pizza"])
        body = self._nearby(business_type="pharmacy").get_json()
        self.assertEqual([m["slug"] for m in body["merchants"]], ["mid-pharmacy"])
        body = self._nearby(limit=1).get_json()
        self.assertEqual(len(body["merchants"]), 1)

    def test_currently_open_includes_out_of_range_merchants_flagged(self):
        with self.app.app_context():
            tenant = db.session.get(Tenant, self.mid)
            tenant.operating_hours = {"monday": {"open": "06:00", "close": "07:00"}}
            db.session.commit()
            result = discover_nearby(BASE_LAT, BASE_LNG, currently_open=True, now=MONDAY.replace(hour=12))
        slugs = {m["slug"]: m for m in result["merchants"]}
        self.assertEqual(set(slugs), {"near-pizza", "far-grocer"})
        self.assertTrue(slugs["near-pizza"]["can_deliver"])
        self.assertFalse(slugs["far-grocer"]["can_deliver"])

    def test_nearby_requires_coordinates(self):
        res = self.client.get("/api/tenants/nearby", query_string={"lat": "abc"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["code"], "INVALID_COORDINATES")
        res = self._nearby(business_type="bakery")
        self.assertEqual(res.get_json()["code"], "INVALID_BUSINESS_TYPE")

    def test_by_type_listing(self):
        res = self.client.get("/api/tenants/by-type/grocery")
        body = res.get_json()
        self.assertEqual(res.status_code, 200)
        self.assertEqual([m["slug"] for m in body["merchants"]], ["far-grocer"])
        self.assertEqual(body["total_count"], 1)
        self.assertFalse(body["has_more"])

        located = self.client.get("/api/tenants/by-type/grocery", query_string={"lat": BASE_LAT, "lng": BASE_LNG})
        self.assertEqual(located.get_json()["merchants"], [])

        self.assertEqual(self.client.get("/api/tenants/by-type/bakery").status_code, 400)

    def test_public_profile_hides_payment_fields(self):
        res = self.client.get("/api/tenants/near-pizza")
        tenant = res.get_json()["tenant"]
        self.assertEqual(tenant["slug"], "near-pizza")
        self.assertNotIn("payment_account_id", tenant)
        self.assertIn("is_currently_open", tenant)
        self.assertEqual(self.client.get("/api/tenants/nope").status_code, 404)

    def test_delete_requires_superadmin_and_no_orders(self):
        with self.app.app_context():
            merchant = self.seed_user("merchant", tenant_id=self.near)
            admin = self.seed_user("superadmin")
        self.assertEqual(self.client.delete("/api/tenants/near-pizza", headers=self.auth(merchant)).status_code, 403)
        res = self.client.delete("/api/tenants/near-pizza", headers=self.auth(admin))
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertIsNone(db.session.get(Tenant, self.near))


if __name__ == "__main__":
    unittest.main()
