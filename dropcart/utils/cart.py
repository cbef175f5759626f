from __future__ import annotations

CART_SCHEMA_VERSION = 2


def _positive_int(value, default: int = 1) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def migrate_cart(state: dict | None) -> dict:
    """Upgrade a persisted client cart to the current item-list shape.

    Old carts carried a flat ``bookIds`` list per storefront; each id becomes
    an item with quantity 1. Unknown keys are dropped.
    """
    state = state if isinstance(state, dict) else {}
    raw_tenants = state.get("tenantCarts") or state.get("tenant_carts") or {}
    if not isinstance(raw_tenants, dict):
        raw_tenants = {}

    tenant_carts = {}
    for slug, cart in raw_tenants.items():
        if not isinstance(cart, dict):
            continue
        items = []
        if isinstance(cart.get("items"), list):
            for entry in cart["items"]:
                if not isinstance(entry, dict) or entry.get("itemId") in (None, ""):
                    continue
                migrated = {
                    "itemId": str(entry["itemId"]),
                    "quantity": _positive_int(entry.get("quantity")),
                }
                if entry.get("specialInstructions"):
                    migrated["specialInstructions"] = str(entry["specialInstructions"])
                items.append(migrated)
        elif isinstance(cart.get("bookIds"), list):
            items = [{"itemId": str(book_id), "quantity": 1} for book_id in cart["bookIds"] if book_id not in (None, "")]

        migrated_cart = {
            "items": items,
            "orderType": cart.get("orderType") if cart.get("orderType") in ("delivery", "pickup") else "delivery",
        }
        if isinstance(cart.get("deliveryAddress"), dict):
            migrated_cart["deliveryAddress"] = cart["deliveryAddress"]
        tenant_carts[str(slug)] = migrated_cart

    return {"version": CART_SCHEMA_VERSION, "tenantCarts": tenant_carts}
