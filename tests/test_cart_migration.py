from __future__ import annotations

import unittest

from dropcart.utils.cart import CART_SCHEMA_VERSION, migrate_cart

from storefront_case import StorefrontTestCase


class CartMigrationTestCase(unittest.TestCase):
    def test_legacy_book_ids_become_items(self):
        migrated = migrate_cart({"tenantCarts": {"corner-deli": {"bookIds": ["a1", "b2", None]}}})
        self.assertEqual(migrated["version"], CART_SCHEMA_VERSION)
        cart = migrated["tenantCarts"]["corner-deli"]
        self.assertEqual(cart["items"], [{"itemId": "a1", "quantity": 1}, {"itemId": "b2", "quantity": 1}])
        self.assertEqual(cart["orderType"], "delivery")

    def test_current_shape_is_kept(self):
        state = {
            "tenantCarts": {
                "pizza-place": {
                    "items": [{"itemId": 7, "quantity": 3, "specialInstructions": "no olives"}, {"quantity": 2}],
                    "orderType": "pickup",
                    "deliveryAddress": {"street": "1 Main"},
                }
            }
        }
        cart = migrate_cart(state)["tenantCarts"]["pizza-place"]
        self.assertEqual(cart["items"], [{"itemId": "7", "quantity": 3, "specialInstructions": "no olives"}])
        self.assertEqual(cart["orderType"], "pickup")
        self.assertEqual(cart["deliveryAddress"], {"street": "1 Main"})

    def test_garbage_is_tolerated(self):
        self.assertEqual(migrate_cart(None), {"version": CART_SCHEMA_VERSION, "tenantCarts": {}})
        self.assertEqual(migrate_cart({"tenantCarts": ["x"]})["tenantCarts"], {})
        cart = migrate_cart({"tenantCarts": {"s": {"items": [{"itemId": "1", "quantity": -4}], "orderType": "drone"}}})
        self.assertEqual(cart["tenantCarts"]["s"], {"items": [{"itemId": "1", "quantity": 1}], "orderType": "delivery"})


class CartNormalizeEndpointTestCase(StorefrontTestCase):
    def test_normalize_endpoint(self):
        res = self.client.post("/api/cart/normalize", json={"tenantCarts": {"x": {"bookIds": ["9"]}}})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["cart"]["tenantCarts"]["x"]["items"], [{"itemId": "9", "quantity": 1}])


if __name__ == "__main__":
    unittest.main()
